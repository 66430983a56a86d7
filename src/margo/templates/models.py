"""Pydantic models for template tracking and reconciliation.

Defines the core data contracts used across the templates package:

- ``TemplateKind``: Enum of template kinds (outcome, baseline).
- ``TemplateId``: Logical template identity (kind + name).
- ``TemplateRecord``: Tracked sync state of one template.
- ``Manifest``: Schema version plus all tracked records.
- ``SyncAction``: Enum of possible reconciliation actions.
- ``SyncOptions``: Flags controlling a reconciliation run.
- ``PlannedAction``: Classification of one template, before execution.
- ``SyncResult``: Outcome of reconciling one template.
- ``SyncReport``: Aggregate results for a full run.

Everything except ``Manifest`` is frozen.  The manifest is mutated in
memory by the apply step and persisted once per run.
"""

from __future__ import annotations

from enum import Enum
from functools import total_ordering

from pydantic import BaseModel, Field, PrivateAttr, model_validator

from margo.validators import normalize_kind, require_valid_name

CURRENT_SCHEMA_VERSION = 2


class TemplateKind(str, Enum):
    """Kinds of variable templates."""

    BASELINE = "baseline"
    OUTCOME = "outcome"

    @property
    def plural(self) -> str:
        """Directory name used for this kind (``outcomes``, ``baselines``)."""
        return f"{self.value}s"

    @classmethod
    def parse(cls, value: str | TemplateKind) -> TemplateKind:
        """Accept singular or plural spellings."""
        if isinstance(value, TemplateKind):
            return value
        return cls(normalize_kind(value))


@total_ordering
class TemplateId(BaseModel):
    """Logical identity of a template across bundled and user namespaces.

    Attributes:
        kind: Template kind.
        name: Template name (file stem, without ``.toml``).
    """

    kind: TemplateKind
    name: str

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _check(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            if "kind" in data:
                data["kind"] = TemplateKind.parse(data["kind"])
            if "name" in data:
                require_valid_name(data["name"])
        return data

    @classmethod
    def of(cls, kind: str | TemplateKind, name: str) -> TemplateId:
        return cls(kind=kind, name=name)

    @classmethod
    def parse(cls, key: str) -> TemplateId:
        """Invert ``key``: ``"outcome/wellbeing"`` -> TemplateId."""
        kind, sep, name = key.partition("/")
        if not sep:
            raise ValueError(f"not a template key: {key!r}")
        return cls(kind=kind, name=name)

    @property
    def key(self) -> str:
        """Canonical manifest key."""
        return f"{self.kind.value}/{self.name}"

    def __str__(self) -> str:
        return self.key

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, TemplateId):
            return NotImplemented
        return (self.kind.value, self.name) < (
            other.kind.value,
            other.name,
        )


class TemplateRecord(BaseModel):
    """Tracked state of one materialised template.

    Attributes:
        shipped_fingerprint: Fingerprint of the bundled default at the
            tool version that last touched this record.
        synced_fingerprint: Fingerprint of the content last written to
            the user's file.
        tool_version: Tool version that produced ``shipped_fingerprint``.
        sidecar_path: Config-relative path of the last sidecar written,
            or ``None``.
        synced_at: ISO 8601 timestamp of the last sync.
    """

    shipped_fingerprint: str
    synced_fingerprint: str
    tool_version: str
    sidecar_path: str | None = None
    synced_at: str | None = None

    model_config = {"frozen": True}


class Manifest(BaseModel):
    """Persisted mapping of template key -> ``TemplateRecord``.

    ``dirty`` and ``recovered`` are in-memory flags only; they are never
    serialised.
    """

    schema_version: int = CURRENT_SCHEMA_VERSION
    templates: dict[str, TemplateRecord] = Field(default_factory=dict)

    _dirty: bool = PrivateAttr(default=False)
    _recovered: bool = PrivateAttr(default=False)

    @property
    def dirty(self) -> bool:
        """True if the in-memory manifest differs from what is on disk."""
        return self._dirty

    @property
    def recovered(self) -> bool:
        """True if this manifest replaced a corrupt file on load."""
        return self._recovered

    def mark_dirty(self) -> None:
        self._dirty = True

    def mark_clean(self) -> None:
        self._dirty = False
        self._recovered = False

    def mark_recovered(self) -> None:
        self._recovered = True
        self._dirty = True

    def get_record(self, template_id: TemplateId) -> TemplateRecord | None:
        """Return the record for *template_id*, or ``None`` if untracked."""
        return self.templates.get(template_id.key)

    def set_record(
        self, template_id: TemplateId, record: TemplateRecord
    ) -> None:
        """Upsert *record* and mark the manifest dirty."""
        self.templates[template_id.key] = record
        self._dirty = True


class SyncAction(str, Enum):
    """Possible reconciliation actions for one template."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    SIDECAR = "sidecar"
    CONFLICT = "conflict"


class SyncOptions(BaseModel):
    """Flags for one reconciliation run.

    Attributes:
        force: Overwrite user-modified files.
        sidecar: Write updated defaults next to user-modified files.
        dry_run: Compute actions without touching disk.
        only: Restrict the run to these templates (``None`` = all).
    """

    force: bool = False
    sidecar: bool = False
    dry_run: bool = False
    only: frozenset[TemplateId] | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _exclusive(self) -> SyncOptions:
        if self.force and self.sidecar:
            raise ValueError("force and sidecar are mutually exclusive")
        return self


class PlannedAction(BaseModel):
    """Classification of one template by the reconciliation engine.

    Attributes:
        template_id: The template.
        action: What the apply step will do.
        diverged: True if the user modified a tracked file since the
            last sync.
        reason: Short machine-friendly explanation (e.g. ``"untracked"``).
        path: Target path the action writes to (user file or sidecar).
        error: Why the template could not be classified, if it could not
            be read.  The apply step reports such actions as failed.
    """

    template_id: TemplateId
    action: SyncAction
    diverged: bool = False
    reason: str | None = None
    path: str | None = None
    error: str | None = None

    model_config = {"frozen": True}


class SyncResult(BaseModel):
    """Result of reconciling one template.

    Attributes:
        template_id: The template.
        action: Action that was performed (or planned).
        diverged: Whether the user copy had diverged.
        success: Whether the action succeeded.
        outcome: ``written``, ``planned``, ``unchanged``, ``reported`` or
            ``failed``.
        reason: Classification reason, when any.
        path: File written (or that would be written).
        error: Error message if the action failed.
    """

    template_id: TemplateId
    action: SyncAction
    diverged: bool = False
    success: bool = True
    outcome: str
    reason: str | None = None
    path: str | None = None
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for a reconciliation run.

    Attributes:
        command: Command that produced the report (``refresh``, ...).
        dry_run: Whether this was a dry-run (no changes applied).
        tool_version: Version of the tool that ran.
        results: Individual results, in execution order.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
    """

    command: str = "refresh"
    dry_run: bool = False
    tool_version: str
    results: list[SyncResult] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def actions(self) -> list[tuple[TemplateId, SyncAction]]:
        """Ordered ``(template_id, action)`` pairs."""
        return [(r.template_id, r.action) for r in self.results]

    @property
    def created(self) -> list[SyncResult]:
        """Results where action is CREATE."""
        return [r for r in self.results if r.action == SyncAction.CREATE]

    @property
    def updated(self) -> list[SyncResult]:
        """Results where action is UPDATE."""
        return [r for r in self.results if r.action == SyncAction.UPDATE]

    @property
    def skipped(self) -> list[SyncResult]:
        """Results where action is SKIP."""
        return [r for r in self.results if r.action == SyncAction.SKIP]

    @property
    def diverged(self) -> list[SyncResult]:
        """Skipped results whose user copy diverged."""
        return [r for r in self.skipped if r.diverged]

    @property
    def sidecars(self) -> list[SyncResult]:
        """Results where action is SIDECAR."""
        return [
            r for r in self.results if r.action == SyncAction.SIDECAR
        ]

    @property
    def conflicts(self) -> list[SyncResult]:
        """Results where action is CONFLICT."""
        return [
            r for r in self.results if r.action == SyncAction.CONFLICT
        ]

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Format a human-readable summary of the run.

        Returns:
            Multi-line summary string with counts by action.
        """
        lines = [
            f"Template {self.command}"
            + (" (dry run)" if self.dry_run else ""),
            f"  Created:   {len(self.created)}",
            f"  Updated:   {len(self.updated)}",
            f"  Sidecars:  {len(self.sidecars)}",
            f"  Skipped:   {len(self.skipped)}",
            f"  Diverged:  {len(self.diverged)}",
            f"  Conflicts: {len(self.conflicts)}",
            f"  Errors:    {len(self.errors)}",
            f"  Total:     {len(self.results)}",
        ]
        return "\n".join(lines)
