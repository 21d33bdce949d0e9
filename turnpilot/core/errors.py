from __future__ import annotations

from typing import Sequence


class TurnpilotError(Exception):
    """Base class for control plane failures."""


class GraphValidationError(TurnpilotError):
    def __init__(self, violations: Sequence[str]) -> None:
        self.violations = list(violations)
        super().__init__("Invalid agent graph: " + "; ".join(self.violations))


class ProviderNotRegisteredError(TurnpilotError):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"No handler registered for provider {provider}")


class InvalidProviderResultError(TurnpilotError):
    def __init__(self, provider: str, received: str) -> None:
        self.provider = provider
        self.received = received
        super().__init__(f"Provider {provider} returned {received} instead of ProviderPacket")


class CanaryStateError(TurnpilotError):
    """Raised by durable canary stores when persistence is unavailable."""


class CriticEvaluationError(TurnpilotError):
    """Raised when the critic evaluator call fails or returns nothing usable."""


class SynthesisError(TurnpilotError):
    """Raised when the main generation call fails."""


__all__ = [
    "TurnpilotError",
    "GraphValidationError",
    "ProviderNotRegisteredError",
    "InvalidProviderResultError",
    "CanaryStateError",
    "CriticEvaluationError",
    "SynthesisError",
]
