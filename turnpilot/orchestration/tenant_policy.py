from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..core.config import Settings
from ..core.logging import get_logger
from .quality_policy import CriticConfig

logger = get_logger(name=__name__)


def _normalize_list(values: list[str] | None) -> list[str] | None:
    if not values:
        return None
    normalized = list(dict.fromkeys(item.strip().lower() for item in values if item and item.strip()))
    return normalized or None


class TenantCriticPolicy(BaseModel):
    enabled: bool | None = None
    max_loops: int | None = None
    min_score: float | None = None


class TenantToolPolicy(BaseModel):
    allow_external_write: bool | None = None
    allow_high_risk: bool | None = None
    blocked_tools: list[str] | None = None

    @field_validator("blocked_tools")
    @classmethod
    def normalize_tools(cls, value: list[str] | None) -> list[str] | None:
        return _normalize_list(value)


class TenantPolicy(BaseModel):
    max_parallel: int | None = Field(default=None, ge=1, le=16)
    critic: TenantCriticPolicy = Field(default_factory=TenantCriticPolicy)
    tools: TenantToolPolicy = Field(default_factory=TenantToolPolicy)
    allowed_models: list[str] | None = None

    @field_validator("allowed_models")
    @classmethod
    def normalize_models(cls, value: list[str] | None) -> list[str] | None:
        return _normalize_list(value)


class TenantPolicyRegistry(BaseModel):
    default: TenantPolicy = Field(default_factory=TenantPolicy)
    guilds: dict[str, TenantPolicy] = Field(default_factory=dict)


@dataclass(slots=True)
class ResolvedTenantPolicy:
    """Effective per-turn policy after layering guild overrides on global settings."""

    max_parallel: int
    critic: CriticConfig
    allow_external_write: bool
    allow_high_risk: bool
    blocked_tools: list[str] = field(default_factory=list)
    allowed_models: list[str] | None = None


def parse_registry(raw: str | None) -> TenantPolicyRegistry:
    if not raw or not raw.strip():
        return TenantPolicyRegistry()
    try:
        payload: Any = json.loads(raw)
        return TenantPolicyRegistry.model_validate(payload)
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.warning("tenant_policy_invalid", error=str(exc))
        return TenantPolicyRegistry()


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


class TenantPolicyResolver:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._registry = parse_registry(settings.tenant.policy_json)

    @property
    def registry(self) -> TenantPolicyRegistry:
        return self._registry

    def resolve(self, guild_id: str | None) -> ResolvedTenantPolicy:
        default = self._registry.default
        guild = self._registry.guilds.get(guild_id) if guild_id else None
        layers = [layer for layer in (guild, default) if layer is not None]

        critic_settings = self._settings.critic
        critic = CriticConfig.normalize(
            enabled=_first(*(layer.critic.enabled for layer in layers), critic_settings.enabled),
            max_loops=_first(*(layer.critic.max_loops for layer in layers), critic_settings.max_loops),
            min_score=_first(*(layer.critic.min_score for layer in layers), critic_settings.min_score),
        )
        tools = self._settings.tools
        blocked = list(tools.blocked_tools)
        for layer in layers:
            for tool in layer.tools.blocked_tools or []:
                if tool not in blocked:
                    blocked.append(tool)
        return ResolvedTenantPolicy(
            max_parallel=_first(*(layer.max_parallel for layer in layers), self._settings.graph.max_parallel),
            critic=critic,
            allow_external_write=_first(
                *(layer.tools.allow_external_write for layer in layers), tools.allow_external_write
            ),
            allow_high_risk=_first(*(layer.tools.allow_high_risk for layer in layers), tools.allow_high_risk),
            blocked_tools=blocked,
            allowed_models=_first(*(layer.allowed_models for layer in layers)),
        )


__all__ = [
    "ResolvedTenantPolicy",
    "TenantPolicy",
    "TenantPolicyRegistry",
    "TenantPolicyResolver",
    "parse_registry",
]
