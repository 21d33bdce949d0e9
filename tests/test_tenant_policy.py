from __future__ import annotations

import json

from turnpilot.core.config import get_settings
from turnpilot.orchestration.tenant_policy import TenantPolicyResolver, parse_registry


def _settings(policy: dict | str, **extra: object):
    raw = policy if isinstance(policy, str) else json.dumps(policy)
    return get_settings({"tenant": {"policy_json": raw}, **extra})


def test_settings_apply_when_no_policy_exists() -> None:
    settings = get_settings({"graph": {"max_parallel": 5}, "critic": {"enabled": True, "max_loops": 2}})

    resolved = TenantPolicyResolver(settings).resolve("guild-1")

    assert resolved.max_parallel == 5
    assert resolved.critic.enabled is True
    assert resolved.critic.max_loops == 2
    assert resolved.allowed_models is None
    assert resolved.allow_external_write is False


def test_guild_overrides_default_layer() -> None:
    settings = _settings(
        {
            "default": {"max_parallel": 2, "critic": {"enabled": True, "min_score": 0.6}},
            "guilds": {
                "guild-1": {
                    "max_parallel": 6,
                    "critic": {"max_loops": 2},
                    "allowed_models": [" DeepSeek ", "deepseek", "kimi"],
                }
            },
        }
    )
    resolver = TenantPolicyResolver(settings)

    guild = resolver.resolve("guild-1")
    other = resolver.resolve("guild-2")

    assert guild.max_parallel == 6
    assert guild.critic.enabled is True
    assert guild.critic.max_loops == 2
    assert guild.critic.min_score == 0.6
    assert guild.allowed_models == ["deepseek", "kimi"]
    assert other.max_parallel == 2
    assert other.allowed_models is None


def test_blocked_tools_accumulate_across_layers() -> None:
    settings = _settings(
        {
            "default": {"tools": {"blocked_tools": ["Shell.*"]}},
            "guilds": {"guild-1": {"tools": {"blocked_tools": ["browser.open"], "allow_high_risk": True}}},
        },
        tools={"blocklist": "email.send"},
    )

    resolved = TenantPolicyResolver(settings).resolve("guild-1")

    assert resolved.blocked_tools == ["email.send", "browser.open", "shell.*"]
    assert resolved.allow_high_risk is True


def test_invalid_policy_json_falls_back_to_settings() -> None:
    assert parse_registry("{broken").guilds == {}
    assert parse_registry(json.dumps({"default": {"max_parallel": 99}})).default.max_parallel is None

    resolved = TenantPolicyResolver(_settings("{broken")).resolve(None)

    assert resolved.max_parallel == 3
