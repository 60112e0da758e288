"""Typed schema for the YAML configuration of mindmap_sync.

Three sections, each optional with defaults:

- ``backend``: where documents and features are stored.
- ``sync``: polling cadence and the pending-operation state directory.
- ``logging``: level and optional file.

Usage:
    from mindmap_sync.config_schema import build_config, yaml_fallbacks

    unified = build_config(load_hierarchical_config())
    config = load_config(yaml_fallbacks=yaml_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


class BackendConfig(BaseModel):
    """Store backend settings.

    Everything is optional: env vars and CLI args may supply the values
    at runtime instead.
    """

    kind: Literal["rest", "memory"] = Field(
        default="rest", description="Store backend"
    )
    url: str | None = Field(default=None, description="Backend base URL")
    api_key: str | None = Field(default=None, description="Backend API key")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent backend requests (1-100)",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    poll_interval: float = Field(
        default=2.0,
        gt=0,
        le=3600,
        description="Seconds between change-feed polls",
    )
    state_dir: str | None = Field(
        default=None,
        description="Directory for the pending-operation log",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


class UnifiedConfig(BaseModel):
    """All configuration sections; ``UnifiedConfig()`` is always valid."""

    backend: BackendConfig = Field(default_factory=BackendConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Validate the merged dict from ``load_hierarchical_config()``.

    Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()
    return UnifiedConfig(**raw_data)


def yaml_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten the ``backend`` and ``sync`` sections for ``load_config()``.

    Only explicitly set keys are included, so built-in defaults in
    ``load_config()`` still apply for the rest.
    """
    fallbacks = unified.backend.model_dump(exclude_unset=True)
    fallbacks.update(unified.sync.model_dump(exclude_unset=True))
    return {k: v for k, v in fallbacks.items() if v is not None}


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the runtime ``Config`` dataclass.

    Precedence: CLI override > unified config value > default.  CLI
    override keys: url, api_key, backend, insecure, debug.

    The result is not validated; call ``validate_config()`` on it.
    """
    # config.py is imported lazily; it does not depend on this module.
    from .config import Config

    overrides = cli_overrides or {}

    return Config(
        backend_url=overrides.get("url") or unified.backend.url or "",
        api_key=overrides.get("api_key") or unified.backend.api_key or "",
        backend_kind=overrides.get("backend") or unified.backend.kind,
        insecure=overrides.get("insecure", False) or unified.backend.insecure,
        debug=overrides.get("debug", False) or unified.backend.debug,
        max_parallel_requests=unified.backend.max_parallel_requests,
        poll_interval=unified.sync.poll_interval,
        state_dir=unified.sync.state_dir,
    )
