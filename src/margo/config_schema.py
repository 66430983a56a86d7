"""Configuration schema for margo.

Defines Pydantic models for the ``config.yml`` structure with dedicated
sections for template management and logging.

Usage:
    from margo.config_schema import MargoConfig, build_config

    raw = load_config(config_dir)
    config = build_config(raw)
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class TemplatesConfig(BaseModel):
    """Template management settings."""

    sidecar_suffix: str = Field(
        default=".new",
        description="Suffix appended to a user template path for sidecars",
    )
    manifest_file: str = Field(
        default="manifest.json",
        description="Manifest file name inside the config directory",
    )

    model_config = {"frozen": True}

    @field_validator("sidecar_suffix")
    @classmethod
    def _check_suffix(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value:
            raise ValueError(
                "sidecar_suffix must be non-empty and contain no path separators"
            )
        if value.lower().endswith(".toml"):
            raise ValueError(
                "sidecar_suffix must not end in .toml "
                "(sidecars would be listed as templates)"
            )
        return value

    @field_validator("manifest_file")
    @classmethod
    def _check_manifest_file(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value:
            raise ValueError("manifest_file must be a plain file name")
        return value


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="WARNING", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


class MargoConfig(BaseModel):
    """Top-level configuration.

    Every section has sensible defaults, so ``MargoConfig()``
    (zero-config) is always valid.  Unknown top-level sections (for
    example ``paths`` or ``theme`` used by other margo commands) are
    ignored here.
    """

    templates: TemplatesConfig = Field(default_factory=TemplatesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True, "extra": "ignore"}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> MargoConfig:
    """Construct a ``MargoConfig`` from the raw dict returned by
    ``load_config()``.

    Handles missing sections gracefully -- anything absent gets defaults.

    Args:
        raw_data: Parsed configuration dictionary.

    Returns:
        Validated ``MargoConfig`` instance.
    """
    if not raw_data:
        return MargoConfig()

    return MargoConfig(**raw_data)
