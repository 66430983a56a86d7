"""Template manifest and reconciliation engine.

Public API for tracking which bundled templates margo has written to the
user's config directory and reconciling them when the bundled defaults
change, without losing user edits.

Architecture
------------
Each tracked template has a manifest record holding two fingerprints:
the bundled content last shipped (``shipped_fingerprint``) and the
content last written to the user's file (``synced_fingerprint``).  A
change in the bundled content is detected against the first; a user edit
is detected against the second.  Templates the user created by hand are
never tracked and never touched.

Modules:

- ``fingerprint`` -- ``fingerprint()``: normalised SHA-256 of file content.
- ``bundled``     -- ``BUNDLED_TEMPLATES``: the set shipped with this build.
- ``registry``    -- ``TemplateRegistry``: bundled set + user paths.
- ``manifest``    -- ``ManifestStore``: atomic load/save and migration.
- ``models``      -- ``TemplateId``, ``TemplateRecord``, ``Manifest``,
  ``SyncAction``, ``SyncOptions``, ``PlannedAction``, ``SyncResult``,
  ``SyncReport``.
- ``engine``      -- ``ReconcileEngine`` and the ``classify`` function.
- ``reporter``    -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from margo.templates import (
        ManifestStore, ReconcileEngine, SyncOptions, TemplateRegistry,
        format_sync_report,
    )

    config_dir = Path.home() / ".config" / "margo"
    engine = ReconcileEngine(
        registry=TemplateRegistry(config_dir),
        store=ManifestStore(config_dir / "manifest.json"),
    )

    # Preview first
    preview = engine.apply(SyncOptions(dry_run=True))
    print(format_sync_report(preview))

    # Then deliver new defaults next to any edited files
    report = engine.apply(SyncOptions(sidecar=True))
    print(format_sync_report(report))
"""

from .bundled import BUNDLED_TEMPLATES
from .engine import ReconcileEngine, classify
from .fingerprint import fingerprint
from .manifest import ManifestStore
from .models import (
    Manifest,
    PlannedAction,
    SyncAction,
    SyncOptions,
    SyncReport,
    SyncResult,
    TemplateId,
    TemplateKind,
    TemplateRecord,
)
from .registry import TemplateRegistry
from .reporter import (
    format_divergence_diff,
    format_dry_run_preview,
    format_sync_report,
    format_template_listing,
    report_to_json,
)

__all__ = [
    "BUNDLED_TEMPLATES",
    "Manifest",
    "ManifestStore",
    "PlannedAction",
    "ReconcileEngine",
    "SyncAction",
    "SyncOptions",
    "SyncReport",
    "SyncResult",
    "TemplateId",
    "TemplateKind",
    "TemplateRecord",
    "TemplateRegistry",
    "classify",
    "fingerprint",
    "format_divergence_diff",
    "format_dry_run_preview",
    "format_sync_report",
    "format_template_listing",
    "report_to_json",
]
