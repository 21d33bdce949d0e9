from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from ..core.config import CriticSettings
from ..schemas.quality import CriticAssessment
from .enums import CriticVerdict, ProviderName, RouteKind

CRITIC_ELIGIBLE_ROUTES = frozenset({RouteKind.CHAT.value, RouteKind.CODING.value, RouteKind.SEARCH.value})
SILENCE_MARKER = "[SILENCE]"
MAX_CRITIC_LOOPS = 2
MAX_REDISPATCH_PROVIDERS = 3

_KEYWORD_TARGETS: tuple[tuple[re.Pattern[str], tuple[ProviderName, ...]], ...] = (
    (
        re.compile(r"\b(?:fact|correct|accura|halluc|citation|source|verif|evidence)", re.IGNORECASE),
        (ProviderName.MEMORY,),
    ),
    (
        re.compile(r"\b(?:relationship|friend|social|tone|persona|community)", re.IGNORECASE),
        (ProviderName.SOCIAL_GRAPH,),
    ),
    (
        re.compile(r"\b(?:voice|speaker|audio|talked|vc\b)", re.IGNORECASE),
        (ProviderName.VOICE_ANALYTICS,),
    ),
    (
        re.compile(r"\b(?:summar|context|missing context|thread)", re.IGNORECASE),
        (ProviderName.SUMMARIZER, ProviderName.CHANNEL_MEMORY),
    ),
)

_TAG_TARGETS: dict[str, tuple[ProviderName, ...]] = {
    "factuality": (ProviderName.MEMORY,),
    "knowledge": (ProviderName.MEMORY,),
    "memory": (ProviderName.MEMORY,),
    "tone": (ProviderName.SOCIAL_GRAPH,),
    "relationship": (ProviderName.SOCIAL_GRAPH,),
    "social": (ProviderName.SOCIAL_GRAPH,),
    "voice": (ProviderName.VOICE_ANALYTICS,),
    "context": (ProviderName.SUMMARIZER, ProviderName.CHANNEL_MEMORY),
    "summary": (ProviderName.SUMMARIZER,),
}


@dataclass(slots=True)
class CriticConfig:
    enabled: bool
    max_loops: int
    min_score: float

    @classmethod
    def from_settings(cls, settings: CriticSettings) -> "CriticConfig":
        return cls.normalize(enabled=settings.enabled, max_loops=settings.max_loops, min_score=settings.min_score)

    @classmethod
    def normalize(cls, *, enabled: object, max_loops: object, min_score: object) -> "CriticConfig":
        try:
            loops = int(float(max_loops))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            loops = 0
        try:
            score = float(min_score)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            score = 0.7
        if math.isnan(score):
            score = 0.7
        return cls(
            enabled=bool(enabled),
            max_loops=max(0, min(MAX_CRITIC_LOOPS, loops)),
            min_score=max(0.0, min(1.0, score)),
        )


def critic_skip_reason(
    config: CriticConfig,
    *,
    route: str,
    draft: str,
    voice_active: bool = False,
    has_files: bool = False,
    skip: bool = False,
) -> str | None:
    """Return why the critic must not run, or ``None`` when it may."""
    if skip:
        return "skip_requested"
    if not config.enabled or config.max_loops <= 0:
        return "disabled"
    if route not in CRITIC_ELIGIBLE_ROUTES:
        return "route_not_eligible"
    if not draft.strip():
        return "empty_draft"
    if SILENCE_MARKER in draft:
        return "silence"
    if voice_active:
        return "voice_active"
    if has_files:
        return "files_present"
    return None


def should_request_revision(assessment: CriticAssessment, min_score: float) -> bool:
    threshold = max(0.0, min(1.0, min_score))
    if assessment.verdict is CriticVerdict.PASS:
        return False
    return assessment.score < threshold


def _ordered_unique(items: Iterable[ProviderName]) -> list[ProviderName]:
    return list(dict.fromkeys(items))


def select_redispatch_providers(
    assessment: CriticAssessment,
    active_providers: Sequence[ProviderName],
) -> list[ProviderName]:
    """Map critic feedback to the providers worth re-running, limited to the ones this turn used."""
    targets: list[ProviderName] = []
    if assessment.tags:
        for tag in assessment.tags:
            key = tag.strip().lower()
            try:
                targets.append(ProviderName(tag.strip()))
                continue
            except ValueError:
                pass
            targets.extend(_TAG_TARGETS.get(key, ()))
    else:
        blob = " ".join([assessment.rewrite_prompt, *assessment.issues])
        for pattern, providers in _KEYWORD_TARGETS:
            if pattern.search(blob):
                targets.extend(providers)
    active = set(active_providers)
    return [provider for provider in _ordered_unique(targets) if provider in active][:MAX_REDISPATCH_PROVIDERS]


def revision_temperature(temperature: float) -> float:
    return max(0.1, round(temperature - 0.2, 4))


__all__ = [
    "CRITIC_ELIGIBLE_ROUTES",
    "CriticConfig",
    "critic_skip_reason",
    "revision_temperature",
    "select_redispatch_providers",
    "should_request_revision",
]
