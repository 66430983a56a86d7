"""Template commands: list, examples, copy, init, refresh, diff.

Thin wrappers that turn a command and its flags into calls on the
registry, manifest store and reconciliation engine.  Nothing here decides
what gets written; that is ``ReconcileEngine``'s job.  Read-only commands
(``list``, ``examples``, ``diff``) never save the manifest, even when
loading it migrated an old schema.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from .config import Settings
from .config_loader import ensure_config
from .errors import TemplateNotFound
from .file_handler import decode_text
from .templates.fingerprint import fingerprint
from .templates.models import (
    SyncOptions,
    SyncReport,
    TemplateId,
    TemplateKind,
)
from .templates.registry import TemplateRegistry
from .templates.reporter import format_divergence_diff
from .validators import normalize_kind, require_valid_name

logger = logging.getLogger(__name__)

STATUS_TRACKED = "tracked"
STATUS_DIVERGED = "diverged"
STATUS_UNTRACKED = "untracked"
STATUS_SIDECAR = "sidecar-pending"


class TemplateStatus(BaseModel):
    """One row of ``margo list``.

    Attributes:
        kind: Template kind.
        name: Template name.
        status: ``tracked``, ``diverged`` or ``untracked``, optionally
            followed by ``, sidecar-pending``.
        path: Path of the user's file.
    """

    kind: TemplateKind
    name: str
    status: str
    path: str

    model_config = {"frozen": True}


def resolve_bundled(
    registry: TemplateRegistry, kind: str, name: str
) -> TemplateId:
    """Validate *kind*/*name* and return the bundled ``TemplateId``.

    Raises:
        InvalidTemplateName: If *kind* or *name* is malformed.
        TemplateNotFound: If no such template ships with this build.
    """
    canonical = TemplateKind(normalize_kind(kind))
    require_valid_name(name)
    template_id = TemplateId.of(canonical, name)
    if not registry.is_bundled(template_id):
        available = ", ".join(
            t.name for t in registry.bundled_ids() if t.kind == canonical
        )
        raise TemplateNotFound(
            f"example '{name}' not found in {canonical.plural} "
            f"(available: {available or 'none'})",
            template_id=template_id,
        )
    return template_id


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------


def list_templates(
    settings: Settings, kind: str | None = None
) -> list[TemplateStatus]:
    """List the user's templates with their tracking status.

    Args:
        settings: Resolved settings.
        kind: Restrict to one kind (singular or plural), or ``None``.

    Returns:
        Rows grouped by kind, then sorted by name.
    """
    registry = settings.registry()
    manifest = settings.store().load(
        recover_corrupt=settings.recover_corrupt
    )
    kinds = (
        [TemplateKind(normalize_kind(kind))] if kind else list(TemplateKind)
    )

    rows: list[TemplateStatus] = []
    for template_kind in kinds:
        for name in registry.list_user(template_kind):
            path = registry.kind_dir(template_kind) / f"{name}.toml"
            status = STATUS_UNTRACKED
            try:
                template_id = TemplateId.of(template_kind, name)
            except ValueError:
                # Hand-made file names need not follow our naming rules
                template_id = None

            record = (
                manifest.get_record(template_id) if template_id else None
            )
            if template_id is not None and record is not None:
                content = registry.read_user(template_id)
                if (
                    content is not None
                    and fingerprint(content) == record.synced_fingerprint
                ):
                    status = STATUS_TRACKED
                else:
                    status = STATUS_DIVERGED
                if (
                    record.sidecar_path
                    and (settings.config_dir / record.sidecar_path).exists()
                ):
                    status = f"{status}, {STATUS_SIDECAR}"

            rows.append(
                TemplateStatus(
                    kind=template_kind,
                    name=name,
                    status=status,
                    path=str(path),
                )
            )
    return rows


# ---------------------------------------------------------------------------
# examples
# ---------------------------------------------------------------------------


def list_examples(settings: Settings) -> list[TemplateId]:
    """Return the bundled template ids, grouped by kind then name."""
    return settings.registry().bundled_ids()


def show_example(settings: Settings, kind: str, name: str) -> str:
    """Return the bundled content of one example as text.

    Raises:
        TemplateNotFound: If no such template ships with this build.
    """
    registry = settings.registry()
    template_id = resolve_bundled(registry, kind, name)
    return decode_text(registry.bundled_content(template_id) or b"")


# ---------------------------------------------------------------------------
# copy / init / refresh
# ---------------------------------------------------------------------------


def copy_example(
    settings: Settings,
    kind: str,
    name: str,
    force: bool = False,
    dry_run: bool = False,
) -> SyncReport:
    """Materialise one bundled template into the user directory.

    An existing file that margo did not create is left alone and
    reported as skipped (``untracked``).

    Raises:
        TemplateNotFound: If no such template ships with this build.
    """
    engine = settings.engine()
    template_id = resolve_bundled(engine.registry, kind, name)
    options = SyncOptions(
        force=force, dry_run=dry_run, only=frozenset({template_id})
    )
    return engine.apply(
        options, command="copy", recover_corrupt=settings.recover_corrupt
    )


def init_templates(settings: Settings, dry_run: bool = False) -> SyncReport:
    """Set up the config directory and materialise all bundled templates.

    Creates the template directories and a starter ``config.yml`` when
    missing, then reconciles with no flags (hand-made files are never
    overwritten).
    """
    engine = settings.engine()
    if not dry_run:
        ensure_config(settings.config_dir)
        for directory in engine.registry.ensure_dirs():
            logger.info("Created %s", directory)

    return engine.apply(
        SyncOptions(dry_run=dry_run),
        command="init",
        recover_corrupt=settings.recover_corrupt,
    )


def refresh_templates(
    settings: Settings,
    force: bool = False,
    sidecar: bool = False,
    dry_run: bool = False,
) -> SyncReport:
    """Bring user templates up to date with the bundled defaults.

    Raises:
        ValueError: If both *force* and *sidecar* are set.
    """
    options = SyncOptions(force=force, sidecar=sidecar, dry_run=dry_run)
    return settings.engine().apply(
        options,
        command="refresh",
        recover_corrupt=settings.recover_corrupt,
    )


# ---------------------------------------------------------------------------
# diff
# ---------------------------------------------------------------------------


def diff_template(settings: Settings, kind: str, name: str) -> str:
    """Unified diff of the user's copy against the bundled default."""
    registry = settings.registry()
    template_id = resolve_bundled(registry, kind, name)
    user = registry.read_user(template_id)
    return format_divergence_diff(
        template_id,
        decode_text(user) if user is not None else None,
        decode_text(registry.bundled_content(template_id) or b""),
    )
