"""Shared pytest fixtures for margo tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from dotenv import load_dotenv

from margo.config import Settings
from margo.templates.engine import ReconcileEngine
from margo.templates.manifest import ManifestStore
from margo.templates.models import TemplateId, TemplateKind
from margo.templates.registry import TemplateRegistry

load_dotenv()

_MARGO_ENV_VARS = (
    "MARGO_CONFIG",
    "MARGO_CONFIG_DIR",
    "MARGO_SIDECAR_SUFFIX",
    "MARGO_LOG_LEVEL",
)

WELLBEING = TemplateId.of(TemplateKind.OUTCOME, "wellbeing")
HEALTH = TemplateId.of(TemplateKind.OUTCOME, "health")
MINIMAL = TemplateId.of(TemplateKind.BASELINE, "minimal")

WELLBEING_V1 = b'vars = ["life_satisfaction", "meaning_purpose"]\n'
WELLBEING_V2 = b'vars = ["life_satisfaction", "meaning_purpose", "self_esteem"]\n'
HEALTH_V1 = b'vars = ["hlth_fatigue", "kessler_latent_depression"]\n'
MINIMAL_V1 = b'vars = ["age", "male_binary"]\n'


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep the developer's MARGO_* environment out of every test."""
    for name in _MARGO_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """A config directory that does not exist yet (first run)."""
    return tmp_path / "margo"


@pytest.fixture
def bundled_v1():
    """Small bundled set used by most engine tests."""
    return (
        (WELLBEING, WELLBEING_V1),
        (HEALTH, HEALTH_V1),
        (MINIMAL, MINIMAL_V1),
    )


@pytest.fixture
def make_engine(config_dir: Path, bundled_v1):
    """Factory building an engine over *config_dir* for a bundled set.

    Calling it again with a different set simulates a new release against
    the same user directory and manifest.
    """

    def _make(bundled=None, tool_version="1.0.0", sidecar_suffix=".new"):
        registry = TemplateRegistry(
            config_dir,
            bundled=bundled if bundled is not None else bundled_v1,
            sidecar_suffix=sidecar_suffix,
        )
        store = ManifestStore(config_dir / "manifest.json")
        return ReconcileEngine(registry, store, tool_version=tool_version)

    return _make


@pytest.fixture
def settings(config_dir: Path) -> Settings:
    """Settings pointing at the isolated config directory."""
    return Settings(config_dir=config_dir)


def user_file(config_dir: Path, template_id: TemplateId) -> Path:
    """Path of the user's copy of *template_id* under *config_dir*."""
    return config_dir / template_id.kind.plural / f"{template_id.name}.toml"


def write_user(config_dir: Path, template_id: TemplateId, data: bytes) -> Path:
    """Write the user's copy of *template_id*, creating directories."""
    path = user_file(config_dir, template_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path
