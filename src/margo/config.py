"""Resolved runtime settings for margo commands.

Reads template-management settings from CLI args, environment variables,
.env files, and the YAML config file.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    MARGO_CONFIG_DIR: Config directory (optional, default: ~/.config/margo)
    MARGO_CONFIG: Explicit config file path (optional)
    MARGO_SIDECAR_SUFFIX: Sidecar suffix (optional, default: .new)
    MARGO_LOG_LEVEL: Log level (optional, default: WARNING)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config_loader import default_config_dir, load_config
from .config_schema import TemplatesConfig, build_config
from .errors import IoError
from .templates.engine import ReconcileEngine
from .templates.manifest import ManifestStore
from .templates.registry import TemplateRegistry

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    config_dir: Path
    sidecar_suffix: str = ".new"
    manifest_file: str = "manifest.json"
    log_level: str = "WARNING"
    log_file: str | None = None
    recover_corrupt: bool = False

    @property
    def manifest_path(self) -> Path:
        return self.config_dir / self.manifest_file

    def registry(self) -> TemplateRegistry:
        return TemplateRegistry(
            self.config_dir, sidecar_suffix=self.sidecar_suffix
        )

    def store(self) -> ManifestStore:
        return ManifestStore(self.manifest_path)

    def engine(self) -> ReconcileEngine:
        return ReconcileEngine(self.registry(), self.store())


def validate_settings(settings: Settings) -> None:
    """Validate settings values and raise ValueError if invalid.

    Args:
        settings: Settings instance to validate.

    Raises:
        ValueError: If the sidecar suffix or manifest name is unusable,
            or the config directory exists but is not a directory.
    """
    try:
        TemplatesConfig(
            sidecar_suffix=settings.sidecar_suffix,
            manifest_file=settings.manifest_file,
        )
    except ValidationError as exc:
        message = "; ".join(err["msg"] for err in exc.errors())
        raise ValueError(f"Invalid template settings: {message}") from None

    if settings.config_dir.exists() and not settings.config_dir.is_dir():
        raise ValueError(
            f"Config directory '{settings.config_dir}' is not a directory"
        )

    level = settings.log_level.upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ValueError(
            f"Invalid log level '{settings.log_level}': "
            "use DEBUG, INFO, WARNING, ERROR or CRITICAL"
        )
    settings.log_level = level


def load_settings(
    config_dir: str | Path | None = None,
    sidecar_suffix: str | None = None,
    log_file: str | None = None,
    recover_corrupt: bool = False,
) -> Settings:
    """Load settings with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > YAML config > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        config_dir: Override config directory (CLI ``--config-dir``).
        sidecar_suffix: Override sidecar suffix.
        log_file: Override log file (CLI ``--log-file``).
        recover_corrupt: Discard a corrupt manifest (CLI
            ``--reset-manifest``).

    Returns:
        Validated Settings instance.

    Raises:
        ValueError: If the YAML config or any resolved value is invalid.
    """
    resolved_dir = (
        Path(config_dir).expanduser() if config_dir else default_config_dir()
    )

    try:
        raw = load_config(resolved_dir)
    except (yaml.YAMLError, FileNotFoundError, IoError) as exc:
        raise ValueError(f"Cannot read config file: {exc}") from exc
    try:
        yaml_config = build_config(raw)
    except (ValidationError, TypeError) as exc:
        raise ValueError(f"Invalid config file: {exc}") from None

    final_suffix = (
        sidecar_suffix
        or os.getenv("MARGO_SIDECAR_SUFFIX")
        or yaml_config.templates.sidecar_suffix
    )
    final_level = (
        os.getenv("MARGO_LOG_LEVEL") or yaml_config.logging.level
    )

    settings = Settings(
        config_dir=resolved_dir,
        sidecar_suffix=final_suffix,
        manifest_file=yaml_config.templates.manifest_file,
        log_level=final_level,
        log_file=log_file or yaml_config.logging.file,
        recover_corrupt=recover_corrupt,
    )

    validate_settings(settings)
    logger.debug("Resolved settings: %s", settings)

    return settings
