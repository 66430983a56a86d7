"""
Reading margo's YAML config file.

margo keeps one config file next to its templates.  It is found by
``find_config_file`` and read by ``load_config``, which supports two
extensions on top of plain YAML:

* ``${VAR}`` and ``${VAR:-default}`` in string values are replaced from
  the environment while the file is parsed.
* ``!include other.yml`` splices another YAML file in place, resolved
  relative to the file that names it.

Usage:
    from margo.config_loader import load_config

    raw = load_config(config_dir)
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from margo.file_handler import (
    decode_text,
    read_bytes_or_none,
    write_bytes_atomic,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MARGO_CONFIG"
CONFIG_DIR_ENV_VAR = "MARGO_CONFIG_DIR"
CONFIG_FILE_NAMES = ("config.yml", "config.yaml")

_ENV_REFERENCE = re.compile(
    r"\$\{(?P<name>[^}:]+?)(?::-(?P<default>.*?))?\}"
)


def expand_env(text: str) -> str:
    """Substitute environment references in *text*.

    An unset or empty variable expands to its ``:-`` default, or to ``""``
    when there is none.  A ``${`` without a closing brace is kept as is.
    """
    return _ENV_REFERENCE.sub(
        lambda m: os.environ.get(m["name"]) or (m["default"] or ""), text
    )


# ---------------------------------------------------------------------------
# YAML reading
# ---------------------------------------------------------------------------


class _YamlReader(yaml.SafeLoader):
    """SafeLoader for one config file.

    ``chain`` lists the files currently being read, outermost first, so an
    include that leads back to one of them can be refused.
    """

    def __init__(self, text: str, path: Path, chain: tuple[Path, ...]) -> None:
        super().__init__(text)
        self.path = path
        self.chain = chain


def _construct_str(reader: _YamlReader, node: yaml.ScalarNode) -> str:
    return expand_env(reader.construct_scalar(node))


def _construct_include(reader: _YamlReader, node: yaml.ScalarNode) -> Any:
    target = Path(expand_env(reader.construct_scalar(node))).expanduser()
    if not target.is_absolute():
        target = reader.path.parent / target
    return _read_yaml(target.resolve(), reader.chain)


# add_constructor copies the table, so yaml.SafeLoader itself is untouched
_YamlReader.add_constructor("tag:yaml.org,2002:str", _construct_str)
_YamlReader.add_constructor("!include", _construct_include)


def _read_yaml(path: Path, chain: tuple[Path, ...] = ()) -> Any:
    """Parse *path*, following includes.

    Raises:
        ValueError: If an include leads back to a file in *chain*.
        FileNotFoundError: If *path* does not exist.
        IoError: If *path* exists but cannot be read.
        yaml.YAMLError: On a syntax error.
    """
    if path in chain:
        cycle = " -> ".join(str(p) for p in (*chain, path))
        raise ValueError(f"Circular include detected: {cycle}")

    raw = read_bytes_or_none(path)
    if raw is None:
        where = f" (included from {chain[-1]})" if chain else ""
        raise FileNotFoundError(f"Config file not found: {path}{where}")

    reader = _YamlReader(decode_text(raw), path, (*chain, path))
    try:
        return reader.get_single_data()
    finally:
        reader.dispose()


# ---------------------------------------------------------------------------
# Locating and loading
# ---------------------------------------------------------------------------


def default_config_dir() -> Path:
    """``MARGO_CONFIG_DIR`` if set, otherwise ``~/.config/margo``."""
    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".config" / "margo"


def find_config_file(config_dir: Path) -> Path | None:
    """Return the config file margo reads for *config_dir*, if any.

    ``MARGO_CONFIG`` names the file explicitly.  Otherwise the first of
    ``config.yml`` and ``config.yaml`` found in *config_dir* is used.
    """
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        path = Path(explicit).expanduser()
        if path.is_file():
            return path
        logger.warning(
            "%s=%s does not exist, looking in %s",
            CONFIG_ENV_VAR,
            explicit,
            config_dir,
        )

    for name in CONFIG_FILE_NAMES:
        path = config_dir / name
        if path.is_file():
            return path
    return None


def load_config(config_dir: Path) -> dict[str, Any]:
    """Read the config file for *config_dir* into a plain dict.

    A missing or empty file gives ``{}``, so margo runs with no config.

    Raises:
        ValueError: If the top level is not a mapping or an include is
            circular.
        FileNotFoundError: If an included file does not exist.
        IoError: If a file cannot be read.
        yaml.YAMLError: On a syntax error.
    """
    path = find_config_file(config_dir)
    if path is None:
        logger.debug("No config file for %s, using defaults", config_dir)
        return {}

    logger.debug("Loading config: %s", path)
    data = _read_yaml(path.resolve())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"{path}: expected a mapping at the top level, "
            f"got {type(data).__name__}"
        )
    return data


# ---------------------------------------------------------------------------
# Starter file
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# margo configuration
#
# Values may reference environment variables: ${VAR} or ${VAR:-default}
#
# templates:
#   # appended to a template file name when a new default is delivered
#   # next to a file you have edited (margo refresh --sidecar)
#   sidecar_suffix: ".new"
#   manifest_file: manifest.json
#
# logging:
#   level: WARNING
#   file: null
"""


def ensure_config(config_dir: Path) -> tuple[Path, bool]:
    """Write a commented starter ``config.yml`` unless a config file exists.

    Returns:
        ``(path, created)``: the config file in use and whether this call
        wrote it.

    Raises:
        IoError: If the starter file cannot be written.
    """
    existing = find_config_file(config_dir)
    if existing is not None:
        return existing, False

    path = config_dir / CONFIG_FILE_NAMES[0]
    write_bytes_atomic(path, _STARTER_CONFIG.encode("utf-8"))
    logger.info("Created starter config: %s", path)
    return path, True
