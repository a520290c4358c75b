from __future__ import annotations

from dataclasses import dataclass
from os import getenv


def _env_bool(name: str) -> bool | None:
    raw = getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return None


def _bool_default(name: str, default: bool) -> bool:
    value = _env_bool(name)
    if value is None:
        return default
    return value


def _float_csv_env(name: str, *, default: str) -> tuple[float, ...]:
    raw = getenv(name, default)
    values = [item.strip() for item in raw.split(",")]
    clean = tuple(float(item) for item in values if item)
    return clean or tuple(float(item) for item in default.split(",") if item)


def _str_csv_env(name: str) -> tuple[str, ...]:
    raw = getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    debug: bool = _bool_default("FORMFLOW_DEBUG", False)

    # HTTP server
    host: str = getenv("FORMFLOW_HOST", "0.0.0.0")
    port: int = int(getenv("FORMFLOW_PORT", "8000"))
    # Peers (addresses or CIDRs) whose X-Forwarded-For is believed
    trusted_proxies: tuple[str, ...] = _str_csv_env("FORMFLOW_TRUSTED_PROXIES")

    # Logging
    log_level: str = getenv("FORMFLOW_LOG_LEVEL", "INFO").strip().upper()
    log_json: bool = _bool_default("FORMFLOW_LOG_JSON", True)

    # Background work
    worker_concurrency: int = int(getenv("FORMFLOW_WORKER_CONCURRENCY", "8"))
    per_tenant_concurrency: int = int(getenv("FORMFLOW_PER_TENANT_CONCURRENCY", "4"))

    # Decision service
    decision_timeout_ms: int = int(getenv("FORMFLOW_DECISION_TIMEOUT_MS", "30000"))
    decision_attempts: int = int(getenv("FORMFLOW_DECISION_ATTEMPTS", "3"))
    decision_backoff_seconds: tuple[float, ...] = _float_csv_env(
        "FORMFLOW_DECISION_BACKOFF_SECONDS",
        default="2,4,8",
    )
    openai_model: str = getenv("FORMFLOW_OPENAI_MODEL", "gpt-4o-mini")
    openai_api_key: str | None = getenv("FORMFLOW_OPENAI_API_KEY", getenv("OPENAI_API_KEY"))

    # Agent loop
    action_retries: int = int(getenv("FORMFLOW_ACTION_RETRIES", "1"))
    history_touchpoints: int = int(getenv("FORMFLOW_HISTORY_TOUCHPOINTS", "5"))
    review_window_seconds: int = int(getenv("FORMFLOW_REVIEW_WINDOW_SECONDS", "3600"))

    # Stale-work sweep
    stale_after_seconds: int = int(getenv("FORMFLOW_STALE_AFTER_SECONDS", "900"))
    sweep_interval_seconds: int = int(getenv("FORMFLOW_SWEEP_INTERVAL_SECONDS", "60"))

    # Events
    event_queue_size: int = int(getenv("FORMFLOW_EVENT_QUEUE_SIZE", "1000"))
    pg_dsn: str | None = getenv("FORMFLOW_PG_DSN", getenv("PG_DSN"))

    # Forms and handler groups loaded at startup (JSON: {"forms": [...], "groups": [...]})
    config_path: str | None = getenv("FORMFLOW_CONFIG_PATH")


def get_settings() -> Settings:
    return Settings()
