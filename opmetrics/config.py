"""Runtime settings and the persisted telemetry permission record."""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger("opmetrics.config")

DEFAULT_COLLECTOR_URL = "https://sparrow.cloudflare.com"
DEFAULT_EVENT_PREFIX = "test"
CANCEL_GRACE_PERIOD_S = 0.01

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _default_config_path() -> Path:
    override = os.environ.get("OPMETRICS_CONFIG_PATH")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".opmetrics" / "metrics.json"


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


@dataclass(slots=True)
class MetricsSettings:
    """Process-level knobs; ``from_env`` reads them from ``OPMETRICS_*`` variables."""

    config_path: Path = field(default_factory=_default_config_path)
    source_key: str = ""
    collector_url: str = DEFAULT_COLLECTOR_URL
    event_prefix: str = DEFAULT_EVENT_PREFIX
    grace_period_s: float = CANCEL_GRACE_PERIOD_S
    strict: bool = False
    timeout_s: float = 5.0

    def __post_init__(self) -> None:
        if self.grace_period_s < 0:
            raise ValueError("grace_period_s must be >= 0")

    @classmethod
    def from_env(cls) -> MetricsSettings:
        return cls(
            config_path=_default_config_path(),
            source_key=os.environ.get("OPMETRICS_SOURCE_KEY", ""),
            collector_url=os.environ.get("OPMETRICS_COLLECTOR_URL", DEFAULT_COLLECTOR_URL),
            event_prefix=os.environ.get("OPMETRICS_EVENT_PREFIX", DEFAULT_EVENT_PREFIX),
            strict=_env_flag("OPMETRICS_STRICT"),
        )


class Permission(BaseModel):
    enabled: bool
    date: datetime = Field(default_factory=_utc_now)


class MetricsConfig(BaseModel):
    """On-disk record: ``{"c3permission": {...}, "deviceId": "..."}``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    c3permission: Permission | None = None
    device_id: str | None = Field(default=None, alias="deviceId")


def read_metrics_config(path: Path) -> MetricsConfig:
    """Load the config record, treating a missing or unreadable file as empty."""

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return MetricsConfig()
    except OSError as exc:
        logger.debug("metrics_config_unreadable", extra={"path": str(path), "exception": exc})
        return MetricsConfig()
    try:
        return MetricsConfig.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.debug("metrics_config_invalid", extra={"path": str(path), "exception": exc})
        return MetricsConfig()


def write_metrics_config(path: Path, config: MetricsConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = config.model_dump(mode="json", by_alias=True, exclude_none=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def _persist_quietly(path: Path, config: MetricsConfig) -> None:
    # First-use stamping must not fail the host tool; the record stays in memory.
    try:
        write_metrics_config(path, config)
    except OSError as exc:
        logger.debug("metrics_config_unwritable", extra={"path": str(path), "exception": exc})


def initialize_permission(enabled: bool = True) -> Permission:
    return Permission(enabled=enabled, date=_utc_now())


def get_permission(path: Path, config: MetricsConfig | None = None) -> Permission:
    """Return the stored permission, stamping an enabled one on first use."""

    config = config if config is not None else read_metrics_config(path)
    if config.c3permission is None:
        config.c3permission = initialize_permission()
        _persist_quietly(path, config)
    return config.c3permission


def update_permission(path: Path, enabled: bool) -> Permission:
    """Set the permission, leaving the record untouched when already in that state."""

    config = read_metrics_config(path)
    if config.c3permission is not None and config.c3permission.enabled == enabled:
        return config.c3permission
    config.c3permission = initialize_permission(enabled)
    write_metrics_config(path, config)
    logger.info("telemetry_permission_updated", extra={"enabled": enabled})
    return config.c3permission


def get_device_id(path: Path, config: MetricsConfig | None = None) -> str:
    config = config if config is not None else read_metrics_config(path)
    if not config.device_id:
        config.device_id = str(uuid.uuid4())
        _persist_quietly(path, config)
    return config.device_id


__all__ = [
    "CANCEL_GRACE_PERIOD_S",
    "DEFAULT_COLLECTOR_URL",
    "DEFAULT_EVENT_PREFIX",
    "MetricsConfig",
    "MetricsSettings",
    "Permission",
    "get_device_id",
    "get_permission",
    "initialize_permission",
    "read_metrics_config",
    "update_permission",
    "write_metrics_config",
]
