"""Tests for config loading, env overrides, validation, retry and log redaction."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from career_agent.config import AppConfig, apply_env_overrides, build_config, load_config, validate_config
from career_agent.redaction import redact_for_log, redact_text, summarize_parts
from career_agent.retry import (
    PermanentError,
    RetryConfig,
    TransientError,
    always_retry,
    is_transient_error,
    retry_with_backoff,
)


def _write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestConfigLoading:
    """YAML defaults, local overrides and CAREER_AGENT_* environment variables."""

    def test_repository_default_config_loads(self):
        config = load_config("config/config.yaml", environ={})
        assert config.provider.name == "stub"
        assert config.routing.fallback_persona == "triage"
        assert config.entitlements.max_messages_per_day == {"guest": 20, "regular": 100}
        assert config.provider.api_key == ""
        assert config.sessions.max_turns_per_session == 20

    def test_missing_file_gives_defaults(self, tmp_path: Path):
        config = load_config(str(tmp_path / "absent.yaml"), environ={})
        assert config == AppConfig()

    def test_local_file_is_deep_merged(self, tmp_path: Path):
        base = _write_yaml(tmp_path / "config.yaml", {"provider": {"name": "stub", "model": "a"}, "memory": {"max_items": 5}})
        _write_yaml(tmp_path / "config.local.yaml", {"provider": {"model": "b"}})

        config = load_config(str(base), environ={})
        assert config.provider.name == "stub"
        assert config.provider.model == "b"
        assert config.memory.max_items == 5

    def test_env_overrides_win(self, tmp_path: Path):
        base = _write_yaml(tmp_path / "config.yaml", {"memory": {"max_items": 5}})
        config = load_config(
            str(base),
            environ={
                "CAREER_AGENT_MEMORY_MAX_ITEMS": "7",
                "CAREER_AGENT_PERSIST_PARTIAL_ON_ERROR": "yes",
                "CAREER_AGENT_TURN_TIMEOUT_SECONDS": "2.5",
                "CAREER_AGENT_MODEL": "  ",
            },
        )
        assert config.memory.max_items == 7
        assert config.turn.persist_partial_on_error is True
        assert config.turn.timeout_seconds == 2.5
        assert config.provider.model == "gpt-4o"

    def test_env_overrides_do_not_mutate_input(self):
        raw = {"memory": {"max_items": 1}}
        updated = apply_env_overrides(raw, {"CAREER_AGENT_MEMORY_MAX_ITEMS": "9"})
        assert raw["memory"]["max_items"] == 1
        assert updated["memory"]["max_items"] == 9

    def test_sessions_section_and_ttl_override(self, tmp_path: Path):
        base = _write_yaml(tmp_path / "config.yaml", {"sessions": {"max_turns_per_session": 5}})
        config = load_config(str(base), environ={"CAREER_AGENT_SESSION_TTL_SECONDS": "0"})
        assert config.sessions.max_turns_per_session == 5
        assert config.sessions.ttl_seconds == 0.0
        assert config.sessions.cleanup_interval_seconds == 300.0

    def test_api_key_placeholder_reads_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = build_config({"provider": {"api_key": "${OPENAI_API_KEY}"}})
        assert config.provider.api_key == "sk-test"

    def test_unknown_keys_are_ignored(self, caplog):
        config = build_config({"memory": {"max_items": 3, "flavour": "mint"}})
        assert config.memory.max_items == 3
        assert "flavour" in caplog.text

    def test_non_mapping_section_rejected(self):
        with pytest.raises(ValueError):
            build_config({"memory": ["not", "a", "mapping"]})

    def test_invalid_config_raises(self, tmp_path: Path):
        base = _write_yaml(tmp_path / "config.yaml", {"auth": {"mode": "token"}, "storage": {"backend": "redis"}})
        with pytest.raises(ValueError) as exc_info:
            load_config(str(base), environ={})
        message = str(exc_info.value)
        assert "auth.tokens" in message
        assert "storage.backend" in message

    def test_validate_reports_each_problem(self):
        config = AppConfig()
        config.memory.max_items = 0
        config.turn.timeout_seconds = 0
        config.entitlements.max_messages_per_day = {"guest": -1}
        errors = validate_config(config)
        assert len(errors) == 3


class TestRetry:
    """retry_with_backoff with transient, permanent and exhausted failures."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("database is locked")
            return "ok"

        result = await retry_with_backoff(flaky, RetryConfig(max_attempts=3, base_delay=0.0), operation="flaky")
        assert result == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self):
        def always_fails():
            raise TimeoutError("timeout")

        with pytest.raises(TimeoutError):
            await retry_with_backoff(always_fails, RetryConfig(max_attempts=2, base_delay=0.0))

    @pytest.mark.asyncio
    async def test_non_retryable_becomes_permanent(self):
        calls = []

        async def bad_input():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(PermanentError):
            await retry_with_backoff(bad_input, RetryConfig(max_attempts=3, base_delay=0.0))
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_always_retry_predicate_uses_every_attempt(self):
        calls = []

        async def bad_input():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await retry_with_backoff(
                bad_input, RetryConfig(max_attempts=3, base_delay=0.0), should_retry=always_retry
            )
        assert len(calls) == 3

    def test_transient_classification(self):
        assert is_transient_error(TransientError("x"))
        assert is_transient_error(ConnectionError("reset"))
        assert is_transient_error(RuntimeError("HTTP 503 Service Unavailable"))
        assert not is_transient_error(ValueError("invalid json"))


class TestRedaction:
    """Personal details are masked before logging."""

    def test_contact_details_masked(self):
        text = "Jane jane@example.com +1 (555) 123-4567 https://linkedin.com/in/jane sk-abcdefghijkl"
        redacted = redact_text(text)
        assert "jane@example.com" not in redacted
        assert "555" not in redacted
        assert "linkedin.com/in/jane" not in redacted
        assert "sk-abcdefghijkl" not in redacted
        assert redacted.startswith("Jane ")

    def test_nested_values_and_truncation(self):
        redacted = redact_for_log({"args": ["a@b.io", 3], "long": "x" * 300})
        assert redacted["args"] == ["[REDACTED_EMAIL]", 3]
        assert redacted["long"].endswith("...")

    def test_summarize_parts(self):
        summary = summarize_parts([{"type": "text", "text": "see attached"}, {"type": "file", "media_type": "application/pdf"}])
        assert summary == "see attached <file:application/pdf>"
