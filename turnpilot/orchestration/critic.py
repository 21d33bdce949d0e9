"""Critic evaluation and bounded revision loop."""

from __future__ import annotations

import json
import math
import re
import time
from typing import Any, Awaitable, Callable, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from ..core.errors import CriticEvaluationError
from ..core.logging import get_logger
from ..core.metrics import record_critic_iteration
from ..llm.client import ChatClient, ChatResponse
from ..llm.health import ModelHealthTracker
from ..llm.resolver import ModelResolver
from ..schemas.models import ModelRequirements
from ..schemas.quality import CriticAssessment, CriticIteration, CriticLoopResult
from .enums import CriticVerdict, ProviderName, RouteKind
from .quality_policy import (
    CriticConfig,
    critic_skip_reason,
    revision_temperature,
    select_redispatch_providers,
    should_request_revision,
)

logger = get_logger(name=__name__)

CRITIC_TEMPERATURE = 0.1
CRITIC_TIMEOUT_SECONDS = 60.0

_JSON_CONTRACT = """Return ONLY JSON:
{
  "score": 0.0,
  "verdict": "pass|revise",
  "issues": ["short issue list"],
  "rewrite_prompt": "precise revision guidance",
  "tags": ["factuality|tone|context|voice"]
}"""

CHAT_RUBRIC = f"""You are a conversational quality critic.
Evaluate the candidate answer for:
1) natural flow and tone,
2) relevance to the last user message,
3) consistency with the conversation history.

{_JSON_CONTRACT}

Rules:
- score is between 0 and 1.
- Use "revise" only if the answer is off-topic, hallucinated or rude.
- Allow for casual banter and creativity."""

CODING_RUBRIC = f"""You are a strict code review critic.
Evaluate the candidate answer for:
1) correctness of the code and explanation,
2) completeness for the user's request,
3) clarity.

{_JSON_CONTRACT}

Rules:
- score is between 0 and 1.
- Use "revise" when code would not run, misses requirements, or is likely incorrect.
- rewrite_prompt must be specific and actionable."""

SEARCH_RUBRIC = f"""You are a strict research answer critic.
Evaluate the candidate answer for:
1) freshness of the information,
2) grounding in cited sources,
3) factual accuracy and clarity.

{_JSON_CONTRACT}

Rules:
- score is between 0 and 1.
- Use "revise" when claims are stale, unsourced, or likely incorrect.
- Never include markdown."""

CODING_CONTRACT = (
    "Coding contract: return complete, runnable code in fenced blocks, keep required imports, "
    "and keep the explanation short."
)

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_OBJECT = re.compile(r"\{[\s\S]*\}")


def rubric_for(route: str) -> str:
    if route == RouteKind.CODING.value:
        return CODING_RUBRIC
    if route == RouteKind.SEARCH.value:
        return SEARCH_RUBRIC
    return CHAT_RUBRIC


def extract_json_object(raw: str) -> str:
    text = raw.strip()
    fenced = _FENCED.search(text)
    if fenced:
        return fenced.group(1).strip()
    match = _OBJECT.search(text)
    return match.group(0) if match else text


def _normalize_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.5
    if math.isnan(score):
        return 0.5
    return max(0.0, min(1.0, score))


def parse_assessment(raw: str, model: str) -> CriticAssessment | None:
    try:
        parsed = json.loads(extract_json_object(raw))
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    verdict = str(parsed.get("verdict") or "").strip().lower()
    issues = parsed.get("issues")
    tags = parsed.get("tags")
    rewrite = parsed.get("rewrite_prompt", parsed.get("rewritePrompt", ""))
    return CriticAssessment(
        score=_normalize_score(parsed.get("score")),
        verdict=CriticVerdict.REVISE if verdict == "revise" else CriticVerdict.PASS,
        issues=[str(item).strip() for item in issues if str(item).strip()] if isinstance(issues, list) else [],
        rewrite_prompt=rewrite if isinstance(rewrite, str) else "",
        model=model,
        tags=[str(item).strip() for item in tags if str(item).strip()] if isinstance(tags, list) else [],
    )


class CriticEvaluator:
    def __init__(
        self,
        *,
        client: ChatClient,
        resolver: ModelResolver,
        health: ModelHealthTracker | None = None,
        timeout_seconds: float = CRITIC_TIMEOUT_SECONDS,
        api_key: str | None = None,
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._health = health
        self._timeout = timeout_seconds
        self._api_key = api_key

    async def evaluate(
        self,
        *,
        route: str,
        user_text: str,
        draft: str,
        history: Sequence[BaseMessage] = (),
        allowed_models: Sequence[str] | None = None,
    ) -> CriticAssessment:
        details = await self._resolver.resolve(
            route=route,
            requirements=ModelRequirements(reasoning=True),
            prompt_chars=len(user_text) + len(draft),
            allowed_models=allowed_models,
        )
        model = details.model
        sections = [f"Route: {route}"]
        if route == RouteKind.CHAT.value and history:
            transcript = "\n".join(f"{message.type}: {message.content}" for message in history)
            sections.append(f"Conversation history:\n{transcript}")
        sections.append(f"User request:\n{user_text}")
        sections.append(f"Candidate answer:\n{draft}")
        messages = [SystemMessage(content=rubric_for(route)), HumanMessage(content="\n\n".join(sections))]

        started = time.perf_counter()
        try:
            response = await self._client.chat(
                messages,
                model=model,
                temperature=CRITIC_TEMPERATURE,
                timeout=self._timeout,
                api_key=self._api_key,
                response_format={"type": "json_object"},
            )
        except Exception as exc:
            self._record(model, success=False)
            raise CriticEvaluationError(f"critic call failed: {exc}") from exc
        self._record(model, success=True, latency_ms=(time.perf_counter() - started) * 1000)

        assessment = parse_assessment(response.content, model)
        if assessment is None:
            raise CriticEvaluationError("critic returned an unparseable assessment")
        return assessment

    def _record(self, model: str, *, success: bool, latency_ms: float | None = None) -> None:
        if self._health is not None:
            self._health.record_outcome(model, success=success, latency_ms=latency_ms)


def build_revision_messages(
    *,
    base_messages: Sequence[BaseMessage],
    draft: str,
    assessment: CriticAssessment,
    route: str,
    refreshed_context: str = "",
) -> list[BaseMessage]:
    instruction = assessment.rewrite_prompt.strip() or "Improve the answer to address the issues below."
    parts = [f"Critic requested revision:\n{instruction}"]
    if assessment.issues:
        parts.append("Issues:\n" + "\n".join(f"- {issue}" for issue in assessment.issues))
    if route == RouteKind.CODING.value:
        parts.append(CODING_CONTRACT)
    if refreshed_context.strip():
        parts.append(f"Additional provider refresh:\n{refreshed_context.strip()}")
    parts.append("Rewrite the full answer. Do not mention the critic.")
    return [*base_messages, AIMessage(content=draft), SystemMessage(content="\n\n".join(parts))]


Redispatch = Callable[[list[ProviderName]], Awaitable[str]]
Regenerate = Callable[[list[BaseMessage], float], Awaitable[ChatResponse]]


class CriticLoop:
    def __init__(self, evaluator: CriticEvaluator, config: CriticConfig) -> None:
        self._evaluator = evaluator
        self._config = config

    @property
    def config(self) -> CriticConfig:
        return self._config

    async def run(
        self,
        *,
        route: str,
        user_text: str,
        draft: str,
        base_messages: Sequence[BaseMessage],
        temperature: float,
        active_providers: Sequence[ProviderName],
        redispatch: Redispatch,
        regenerate: Regenerate,
        history: Sequence[BaseMessage] = (),
        allowed_models: Sequence[str] | None = None,
        voice_active: bool = False,
        has_files: bool = False,
        skip: bool = False,
    ) -> CriticLoopResult:
        skip_reason = critic_skip_reason(
            self._config,
            route=route,
            draft=draft,
            voice_active=voice_active,
            has_files=has_files,
            skip=skip,
        )
        if skip_reason is not None:
            return CriticLoopResult(final_text=draft, skipped_reason=skip_reason)

        result = CriticLoopResult(final_text=draft)
        current_temperature = temperature
        for index in range(1, self._config.max_loops + 1):
            try:
                assessment = await self._evaluator.evaluate(
                    route=route,
                    user_text=user_text,
                    draft=result.final_text,
                    history=history,
                    allowed_models=allowed_models,
                )
            except CriticEvaluationError as exc:
                logger.warning("critic_evaluation_failed", route=route, iteration=index, error=str(exc))
                result.aborted_reason = "evaluator_failed"
                break

            record_critic_iteration(route=route, verdict=assessment.verdict.value, score=assessment.score)
            iteration = CriticIteration(
                iteration=index,
                score=assessment.score,
                verdict=assessment.verdict,
                issues=list(assessment.issues),
                model=assessment.model,
            )
            result.iterations.append(iteration)
            if not should_request_revision(assessment, self._config.min_score):
                break

            targets = select_redispatch_providers(assessment, active_providers)
            refreshed = ""
            if targets:
                iteration.redispatched = targets
                try:
                    refreshed = await redispatch(targets)
                except Exception as exc:
                    logger.warning(
                        "critic_redispatch_failed",
                        route=route,
                        providers=[p.value for p in targets],
                        error=str(exc),
                    )

            current_temperature = revision_temperature(current_temperature)
            messages = build_revision_messages(
                base_messages=base_messages,
                draft=result.final_text,
                assessment=assessment,
                route=route,
                refreshed_context=refreshed,
            )
            try:
                response = await regenerate(messages, current_temperature)
            except Exception as exc:
                logger.warning("critic_revision_failed", route=route, iteration=index, error=str(exc))
                result.aborted_reason = "revision_failed"
                break
            revised = (response.content or "").strip()
            if not revised:
                result.aborted_reason = "empty_revision"
                break
            iteration.revised = True
            iteration.revision_model = response.model
            result.final_text = revised
            logger.info("critic_revision_applied", route=route, iteration=index, score=assessment.score)
        return result


__all__ = [
    "CriticEvaluator",
    "CriticLoop",
    "build_revision_messages",
    "extract_json_object",
    "parse_assessment",
    "rubric_for",
]
