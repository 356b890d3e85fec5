"""Configuration for the dispatcher.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

The bridge fleet itself is described in a JSON file (``BRIDGE_CONFIG_FILE``):

    {"bridges": {"sipd-2025": {"year": 2025, "accepts": ["spp"]},
                 "sipd-2025-b": {"year": 2025}}}

A bridge without ``accepts`` is a default bridge: it takes any kind that no
specific bridge of the same year claims.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from transaction_bridge.errors import ConfigurationError, UnknownKindError
from transaction_bridge.workqueue.models import kind_spec


class DispatcherSettings(BaseSettings):
    """Settings for the queue, the scheduler and the worker fleet.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `DispatcherSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        validation_alias="LOG_FORMAT",
        description="JSON lines for collectors, or plain text for a terminal",
    )

    state_path: Path = Field(
        default=Path("queue"),
        validation_alias="BRIDGE_STATE_PATH",
        description="Directory where the saved queue and outcome logs are written",
    )
    persist_queue: bool = Field(
        default=False,
        validation_alias="BRIDGE_PERSIST_QUEUE",
        description="Save pending items on shutdown and reload them on startup",
    )
    noop: bool = Field(
        default=False,
        validation_alias="BRIDGE_NOOP",
        description="Accept and queue items but never dispatch them",
    )

    config_file: Path = Field(
        default=Path("bridges.json"),
        validation_alias="BRIDGE_CONFIG_FILE",
        description="JSON file describing the bridge fleet",
    )
    roles_file: Path = Field(
        default=Path("roles.json"),
        validation_alias="BRIDGE_ROLES_FILE",
        description="JSON file mapping role sets to users and users to credentials",
    )
    session_factory: str = Field(
        default="transaction_bridge.workers.session:DryRunSession",
        validation_alias="BRIDGE_SESSION_FACTORY",
        description="Dotted path 'package.module:Factory' building one session per bridge",
    )

    readiness_timeout_seconds: float = Field(
        default=30.0, gt=0, validation_alias="BRIDGE_READINESS_TIMEOUT_SECONDS"
    )
    readiness_poll_seconds: float = Field(
        default=1.0, gt=0, validation_alias="BRIDGE_READINESS_POLL_SECONDS"
    )
    tick_seconds: float = Field(default=0.5, gt=0, validation_alias="BRIDGE_TICK_SECONDS")

    item_timeout_seconds: float = Field(
        default=600.0,
        ge=0,
        validation_alias="BRIDGE_ITEM_TIMEOUT_SECONDS",
        description="Default per-item deadline (0 disables it)",
    )
    terminate_grace_seconds: float = Field(
        default=5.0,
        gt=0,
        validation_alias="BRIDGE_TERMINATE_GRACE_SECONDS",
        description="How long a forced session stop may take before it is abandoned",
    )
    max_retries: int = Field(default=3, ge=0, le=20, validation_alias="BRIDGE_MAX_RETRIES")
    outcome_log_size: int = Field(default=200, ge=1, validation_alias="BRIDGE_OUTCOME_LOG_SIZE")

    serial_dispatch: bool = Field(
        default=False,
        validation_alias="BRIDGE_SERIAL_DISPATCH",
        description="Dispatch one item at a time across the whole fleet",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )


class BridgeOptions(BaseModel):
    year: int | None = None
    accepts: list[str] | None = None
    enabled: bool = True

    @field_validator("accepts")
    @classmethod
    def _known_kinds(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        for kind in value:
            try:
                spec = kind_spec(kind)
            except UnknownKindError as e:
                raise ValueError(str(e)) from e
            if spec.bypass:
                raise ValueError(f"Kind {kind} is not handled by bridges")
        return value


class BridgesDocument(BaseModel):
    bridges: dict[str, BridgeOptions] = Field(default_factory=dict)


def load_bridge_options(path: Path, *, today: datetime | None = None) -> dict[str, BridgeOptions]:
    """Return enabled bridges keyed by name.

    Without a config file, a single default bridge for the current year is used.
    """

    if not path.exists():
        year = (today or datetime.now(tz=UTC)).year
        return {f"sipd-{year}": BridgeOptions(year=year)}

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        document = BridgesDocument.model_validate(raw)
    except (json.JSONDecodeError, ValidationError, ValueError) as e:
        raise ConfigurationError(f"Invalid bridge configuration {path}: {e}") from e

    enabled = {name: opts for name, opts in document.bridges.items() if opts.enabled}
    if not enabled:
        raise ConfigurationError(f"No enabled bridges in {path}")
    return enabled
