from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import Any, Sequence

from ..core.logging import get_logger
from .tenant_policy import ResolvedTenantPolicy

logger = get_logger(name=__name__)


def normalize_tool_name(name: str) -> str:
    return name.strip().lower()


@dataclass(slots=True)
class ToolSpec:
    name: str
    description: str = ""
    high_risk: bool = False
    external_write: bool = False
    parameters: dict[str, Any] = field(default_factory=dict)

    def as_function(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters or {"type": "object", "properties": {}},
            },
        }


@dataclass(slots=True)
class ToolDecision:
    allowed: bool
    reason: str


@dataclass(frozen=True)
class ToolPolicy:
    blocked_patterns: tuple[str, ...] = ()
    allow_external_write: bool = False
    allow_high_risk: bool = False

    @classmethod
    def from_tenant(cls, policy: ResolvedTenantPolicy) -> "ToolPolicy":
        return cls(
            blocked_patterns=tuple(normalize_tool_name(item) for item in policy.blocked_tools),
            allow_external_write=policy.allow_external_write,
            allow_high_risk=policy.allow_high_risk,
        )

    def evaluate(self, tool: ToolSpec) -> ToolDecision:
        identifier = normalize_tool_name(tool.name)
        for pattern in self.blocked_patterns:
            if fnmatch(identifier, pattern):
                return ToolDecision(False, "blocklisted")
        if tool.high_risk and not self.allow_high_risk:
            return ToolDecision(False, "high_risk_not_allowed")
        if tool.external_write and not self.allow_external_write:
            return ToolDecision(False, "external_write_not_allowed")
        return ToolDecision(True, "allowed")

    def filter_tools(self, tools: Sequence[ToolSpec]) -> tuple[list[ToolSpec], list[tuple[str, str]]]:
        allowed: list[ToolSpec] = []
        removed: list[tuple[str, str]] = []
        for tool in tools:
            decision = self.evaluate(tool)
            if decision.allowed:
                allowed.append(tool)
            else:
                removed.append((tool.name, decision.reason))
        if removed:
            logger.info("tool_policy_filtered", removed=[name for name, _ in removed])
        return allowed, removed


__all__ = ["ToolDecision", "ToolPolicy", "ToolSpec", "normalize_tool_name"]
