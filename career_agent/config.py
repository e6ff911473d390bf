"""Configuration loading: YAML defaults, local overrides, then environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = "config/config.yaml"
LOCAL_CONFIG_NAME = "config.local.yaml"
ENV_PREFIX = "CAREER_AGENT_"


@dataclass
class ProviderConfig:
    name: str = "stub"
    model: str = "gpt-4o"
    api_key: str = ""
    api_base: str = ""
    max_tokens: int = 2048
    # When true each persona's own model id is sent to the provider.
    use_persona_models: bool = True
    # Set for backends that stream the full text so far in every chunk.
    cumulative_text: bool = False


@dataclass
class RoutingConfig:
    fallback_persona: str = "triage"
    switch_phrases: List[str] = field(
        default_factory=lambda: ["switch to", "connect me to", "transfer me to"]
    )


@dataclass
class MemoryConfig:
    max_items: int = 50
    context_items: int = 10


@dataclass
class TurnConfig:
    timeout_seconds: float = 60.0
    max_steps: int = 8
    history_messages: int = 15
    persist_partial_on_error: bool = False


@dataclass
class SessionConfig:
    ttl_seconds: float = 3600.0
    cleanup_interval_seconds: float = 300.0
    max_turns_per_session: int = 20


@dataclass
class RetrySettings:
    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 2.0


@dataclass
class AuthConfig:
    mode: str = "header"
    tokens: Dict[str, Dict[str, str]] = field(default_factory=dict)


@dataclass
class EntitlementsConfig:
    max_messages_per_day: Dict[str, int] = field(
        default_factory=lambda: {"guest": 20, "regular": 100}
    )


@dataclass
class StorageConfig:
    backend: str = "memory"
    sqlite_path: str = "workspace/career_agent.db"
    blob_root: str = "workspace/blobs"
    blob_base_url: str = "/blobs"


@dataclass
class ServerConfig:
    rate_limit_rpm: int = 300


@dataclass
class AppConfig:
    """Fully-resolved application configuration."""

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    turn: TurnConfig = field(default_factory=TurnConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    retry: RetrySettings = field(default_factory=RetrySettings)
    auth: AuthConfig = field(default_factory=AuthConfig)
    entitlements: EntitlementsConfig = field(default_factory=EntitlementsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def load_raw_config(config_path: str = DEFAULT_CONFIG_PATH) -> dict:
    """Load raw configuration dictionary from YAML.

    Priority order:
    1. config.local.yaml next to the requested file (secrets, developer overrides)
    2. the requested file (template/defaults)
    """

    def _resolve(candidate: str) -> Path:
        path = Path(candidate)
        if path.exists():
            return path
        alt = REPO_ROOT / candidate
        if alt.exists():
            return alt
        return path

    def _load_yaml(path: Path) -> dict:
        if not path.exists():
            return {}
        with open(path) as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file must be a mapping: {path}")
            return data

    base_path = _resolve(config_path)
    local_path = base_path.with_name(LOCAL_CONFIG_NAME)
    merged = _load_yaml(base_path)
    if local_path != base_path:
        merged = _deep_merge(merged, _load_yaml(local_path))
    return merged


def _deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(base_value, value)
        else:
            merged[key] = value
    return merged


# (env var suffix, section, key, caster)
_ENV_OVERRIDES = (
    ("PROVIDER", "provider", "name", str),
    ("MODEL", "provider", "model", str),
    ("API_KEY", "provider", "api_key", str),
    ("API_BASE", "provider", "api_base", str),
    ("FALLBACK_PERSONA", "routing", "fallback_persona", str),
    ("MEMORY_MAX_ITEMS", "memory", "max_items", int),
    ("TURN_TIMEOUT_SECONDS", "turn", "timeout_seconds", float),
    ("PERSIST_PARTIAL_ON_ERROR", "turn", "persist_partial_on_error", None),
    ("SESSION_TTL_SECONDS", "sessions", "ttl_seconds", float),
    ("AUTH_MODE", "auth", "mode", str),
    ("STORAGE_BACKEND", "storage", "backend", str),
    ("SQLITE_PATH", "storage", "sqlite_path", str),
    ("BLOB_ROOT", "storage", "blob_root", str),
    ("RATE_LIMIT_RPM", "server", "rate_limit_rpm", int),
)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def apply_env_overrides(raw: dict, environ: Optional[Dict[str, str]] = None) -> dict:
    """Overlay ``CAREER_AGENT_*`` environment variables onto a raw config dict."""
    env = os.environ if environ is None else environ
    result = {key: dict(value) if isinstance(value, dict) else value for key, value in raw.items()}
    for suffix, section, key, caster in _ENV_OVERRIDES:
        value = env.get(ENV_PREFIX + suffix)
        if value is None or value.strip() == "":
            continue
        section_data = result.setdefault(section, {})
        if not isinstance(section_data, dict):
            raise ValueError(f"Config section '{section}' must be a mapping")
        section_data[key] = _parse_bool(value) if caster is None else caster(value.strip())
    return result


def _section(raw: dict, name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    return value


def build_config(raw: dict) -> AppConfig:
    """Build typed config from a raw mapping, ignoring unknown keys."""

    def _pick(cls, data: Dict[str, Any]):
        known = {f for f in cls.__dataclass_fields__}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys for %s: %s", cls.__name__, ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})

    provider = _pick(ProviderConfig, _section(raw, "provider"))
    provider.api_key = _expand_env_reference(provider.api_key)
    return AppConfig(
        provider=provider,
        routing=_pick(RoutingConfig, _section(raw, "routing")),
        memory=_pick(MemoryConfig, _section(raw, "memory")),
        turn=_pick(TurnConfig, _section(raw, "turn")),
        sessions=_pick(SessionConfig, _section(raw, "sessions")),
        retry=_pick(RetrySettings, _section(raw, "retry")),
        auth=_pick(AuthConfig, _section(raw, "auth")),
        entitlements=_pick(EntitlementsConfig, _section(raw, "entitlements")),
        storage=_pick(StorageConfig, _section(raw, "storage")),
        server=_pick(ServerConfig, _section(raw, "server")),
    )


def _expand_env_reference(value: Optional[str]) -> str:
    # "${OPENAI_API_KEY}" style placeholders are resolved from the environment.
    value = value or ""
    if value.startswith("${") and value.endswith("}"):
        return os.environ.get(value[2:-1], "")
    return value


def validate_config(config: AppConfig) -> List[str]:
    """Return human-readable problems; an empty list means the config is usable."""
    errors: List[str] = []
    if config.memory.max_items < 1:
        errors.append("memory.max_items must be >= 1")
    if config.memory.context_items < 0:
        errors.append("memory.context_items must be >= 0")
    if config.turn.timeout_seconds <= 0:
        errors.append("turn.timeout_seconds must be > 0")
    if config.turn.max_steps < 1:
        errors.append("turn.max_steps must be >= 1")
    if config.sessions.ttl_seconds < 0:
        errors.append("sessions.ttl_seconds must be >= 0")
    if config.sessions.cleanup_interval_seconds <= 0:
        errors.append("sessions.cleanup_interval_seconds must be > 0")
    if config.sessions.max_turns_per_session < 1:
        errors.append("sessions.max_turns_per_session must be >= 1")
    if config.retry.max_attempts < 1:
        errors.append("retry.max_attempts must be >= 1")
    if config.auth.mode not in {"header", "token"}:
        errors.append(f"auth.mode must be 'header' or 'token', got '{config.auth.mode}'")
    if config.auth.mode == "token" and not config.auth.tokens:
        errors.append("auth.tokens must not be empty when auth.mode is 'token'")
    if config.storage.backend not in {"memory", "sqlite"}:
        errors.append(f"storage.backend must be 'memory' or 'sqlite', got '{config.storage.backend}'")
    for user_type, limit in config.entitlements.max_messages_per_day.items():
        if int(limit) < 0:
            errors.append(f"entitlements.max_messages_per_day.{user_type} must be >= 0")
    return errors


def load_config(config_path: str = DEFAULT_CONFIG_PATH, environ: Optional[Dict[str, str]] = None) -> AppConfig:
    """Load, overlay and validate configuration."""
    raw = apply_env_overrides(load_raw_config(config_path), environ)
    config = build_config(raw)
    errors = validate_config(config)
    if errors:
        raise ValueError("Invalid configuration: " + "; ".join(errors))
    return config
