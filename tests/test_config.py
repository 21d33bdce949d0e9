from __future__ import annotations

import pytest
from pydantic import ValidationError

from turnpilot.core.config import CanarySettings, CriticSettings, Settings, get_settings, split_csv


def test_split_csv_trims_and_dedupes() -> None:
    assert split_csv(" Chat, coding,,chat ") == ["chat", "coding"]
    assert split_csv("A,a", lower=False) == ["A", "a"]
    assert split_csv(None) == []


def test_defaults() -> None:
    settings = Settings()

    assert settings.graph.max_parallel == 3
    assert settings.canary.allowed_routes == ["chat", "coding", "search", "creative", "analyze", "manage"]
    assert settings.critic.enabled is False
    assert settings.models.default_model == "openai-fast"


def test_nested_environment_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TURNPILOT_CANARY__ROLLOUT_PERCENT", "25")
    monkeypatch.setenv("TURNPILOT_GRAPH__PARALLEL_ENABLED", "false")

    settings = Settings()

    assert settings.canary.rollout_percent == 25
    assert settings.graph.parallel_enabled is False


def test_overrides_bypass_cache() -> None:
    assert get_settings() is get_settings()
    assert get_settings({"graph": {"max_parallel": 7}}).graph.max_parallel == 7


def test_validation_bounds() -> None:
    assert CriticSettings(max_loops=9).max_loops == 2
    with pytest.raises(ValidationError):
        CanarySettings(rollout_percent=150)
    with pytest.raises(ValidationError):
        Settings(graph={"max_parallel": 0})


def test_canary_window_must_hold_min_samples() -> None:
    assert CanarySettings(window_size=10, min_samples=10).min_samples == 10
    with pytest.raises(ValidationError, match="could never trip"):
        CanarySettings(window_size=10)
    with pytest.raises(ValidationError):
        get_settings({"canary": {"window_size": 5, "min_samples": 6}})
