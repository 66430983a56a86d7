"""Reconciliation engine for bundled vs. user templates.

The ``ReconcileEngine`` decides, for every template that ships with this
build or is tracked in the manifest, whether the user's copy should be
created, updated, left alone, or receive a sidecar.  It:

1. Loads the manifest once.
2. Enumerates bundled and tracked template ids in stable order.
3. Fingerprints the bundled content and the user's current file.
4. Classifies each id (``classify``) -- the single decision function
   shared by ``plan`` and ``apply`` so a dry run is always accurate.
5. Executes actions in order, updating each record right after its
   write succeeds.
6. Saves the manifest once at the end.

Error handling is per-template: a failed write is reported in the
``SyncReport`` and leaves that template's record untouched, so re-running
reclassifies it correctly.  Manifest load/save failures propagate.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from margo import __version__
from margo.errors import IoError
from margo.file_handler import write_bytes_atomic

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
    TemplateRecord,
)
from .registry import TemplateRegistry

logger = logging.getLogger(__name__)

# Classification reasons
REASON_NEW = "new"
REASON_UNTRACKED = "untracked"
REASON_UNCHANGED = "bundled unchanged"
REASON_MISSING = "user file missing"
REASON_UNMODIFIED = "user file unmodified"
REASON_ALREADY_CURRENT = "user file already matches new default"
REASON_MODIFIED = "user file modified"
REASON_FORCED = "user file modified (forced)"
REASON_REMOVED = "bundled template removed"
REASON_UNREADABLE = "user file unreadable"
REASON_SIDECAR_OCCUPIED = "sidecar path occupied"


def classify(
    template_id: TemplateId,
    bundled: bytes | None,
    record: TemplateRecord | None,
    user_fingerprint: str | None,
    options: SyncOptions,
) -> PlannedAction:
    """Decide the action for one template.

    Args:
        template_id: The template being reconciled.
        bundled: Shipped content, or ``None`` if not in this build.
        record: Manifest record, or ``None`` if untracked.
        user_fingerprint: Fingerprint of the user's file, or ``None`` if
            the file is absent.
        options: Run flags (``force`` / ``sidecar``).

    Returns:
        The planned action.  ``path`` is left unset; the engine fills it
        in from the registry.
    """

    def planned(
        action: SyncAction, reason: str, diverged: bool = False
    ) -> PlannedAction:
        return PlannedAction(
            template_id=template_id,
            action=action,
            diverged=diverged,
            reason=reason,
        )

    # Tracked but no longer shipped
    if bundled is None:
        if record is not None:
            return planned(SyncAction.CONFLICT, REASON_REMOVED)
        # Neither shipped nor tracked: nothing we own
        return planned(SyncAction.SKIP, REASON_UNTRACKED)

    # Never tracked
    if record is None:
        if user_fingerprint is None:
            return planned(SyncAction.CREATE, REASON_NEW)
        # Hand-authored file sharing a bundled name: never adopt it
        return planned(SyncAction.SKIP, REASON_UNTRACKED)

    # Tracked
    shipped = fingerprint(bundled)
    if shipped == record.shipped_fingerprint:
        return planned(SyncAction.SKIP, REASON_UNCHANGED)

    if user_fingerprint is None:
        return planned(SyncAction.CREATE, REASON_MISSING)

    if user_fingerprint == record.synced_fingerprint:
        return planned(SyncAction.UPDATE, REASON_UNMODIFIED)

    if user_fingerprint == shipped:
        return planned(SyncAction.UPDATE, REASON_ALREADY_CURRENT)

    # User modified the file since last sync
    if options.force:
        return planned(SyncAction.UPDATE, REASON_FORCED, diverged=True)
    if options.sidecar:
        return planned(SyncAction.SIDECAR, REASON_MODIFIED, diverged=True)
    return planned(SyncAction.SKIP, REASON_MODIFIED, diverged=True)


class ReconcileEngine:
    """Plan and apply template reconciliation.

    Args:
        registry: Bundled set and user-directory layout.
        store: Manifest persistence.
        tool_version: Version recorded in records this run writes.
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        store: ManifestStore,
        tool_version: str = __version__,
    ) -> None:
        self.registry = registry
        self.store = store
        self.tool_version = tool_version

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(
        self,
        options: SyncOptions | None = None,
        manifest: Manifest | None = None,
        recover_corrupt: bool = False,
    ) -> list[PlannedAction]:
        """Compute the ordered action list without touching disk.

        Args:
            options: Run flags.  Defaults to no flags.
            manifest: Already-loaded manifest; loaded from the store when
                omitted.
            recover_corrupt: Passed to ``ManifestStore.load``.

        Returns:
            One ``PlannedAction`` per bundled or tracked template,
            grouped by kind then sorted by name.

        Raises:
            IoError: If the manifest cannot be read.  An unreadable user
                file is planned as a ``skip`` carrying ``error``, exactly
                as ``apply`` reports it.
            ManifestCorrupt: If the manifest is corrupt.
        """
        options = options or SyncOptions()
        if manifest is None:
            manifest = self.store.load(recover_corrupt=recover_corrupt)

        return [
            self._plan_one(template_id, manifest, options)
            for template_id in self._template_ids(manifest, options)
        ]

    def _template_ids(
        self, manifest: Manifest, options: SyncOptions
    ) -> list[TemplateId]:
        """Bundled and tracked ids, restricted by ``options.only``, sorted."""
        ids = set(self.registry.bundled_ids())
        ids.update(TemplateId.parse(key) for key in manifest.templates)
        if options.only is not None:
            ids &= set(options.only)
        return sorted(ids)

    def _plan_one(
        self,
        template_id: TemplateId,
        manifest: Manifest,
        options: SyncOptions,
    ) -> PlannedAction:
        try:
            return self._classify_on_disk(template_id, manifest, options)
        except IoError as exc:
            logger.error("%s: %s", template_id, exc)
            return PlannedAction(
                template_id=template_id,
                action=SyncAction.SKIP,
                reason=REASON_UNREADABLE,
                path=self.registry.relative(
                    self.registry.user_path(template_id)
                ),
                error=str(exc),
            )

    def _classify_on_disk(
        self,
        template_id: TemplateId,
        manifest: Manifest,
        options: SyncOptions,
    ) -> PlannedAction:
        bundled = self.registry.bundled_content(template_id)
        record = manifest.get_record(template_id)

        user_fp: str | None = None
        # Untracked ids that are no longer shipped are never read
        if bundled is not None or record is not None:
            user_bytes = self.registry.read_user(template_id)
            if user_bytes is not None:
                user_fp = fingerprint(user_bytes)

        action = classify(template_id, bundled, record, user_fp, options)

        if action.action == SyncAction.SIDECAR:
            target = self.registry.sidecar_path(template_id)
            if not self._sidecar_replaceable(template_id, bundled, record):
                logger.warning(
                    "%s: %s exists and was not written by margo, "
                    "not writing a sidecar",
                    template_id,
                    self.registry.relative(target),
                )
                action = action.model_copy(
                    update={
                        "action": SyncAction.SKIP,
                        "reason": REASON_SIDECAR_OCCUPIED,
                    }
                )
        else:
            target = self.registry.user_path(template_id)
        return action.model_copy(
            update={"path": self.registry.relative(target)}
        )

    def _sidecar_replaceable(
        self,
        template_id: TemplateId,
        bundled: bytes,
        record: TemplateRecord,
    ) -> bool:
        """True if nothing is at the sidecar path or margo wrote what is.

        The file there is ours if it still matches the default last
        delivered as a sidecar, or already holds the new default.
        """
        existing = self.registry.read_sidecar(template_id)
        if existing is None:
            return True
        existing_fp = fingerprint(existing)
        if existing_fp == fingerprint(bundled):
            return True
        last_sidecar = self.registry.relative(
            self.registry.sidecar_path(template_id)
        )
        return (
            record.sidecar_path == last_sidecar
            and existing_fp == record.shipped_fingerprint
        )

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(
        self,
        options: SyncOptions | None = None,
        command: str = "refresh",
        recover_corrupt: bool = False,
    ) -> SyncReport:
        """Plan and execute one reconciliation run.

        Args:
            options: Run flags.  With ``dry_run`` nothing is written and
                the manifest is not saved.
            command: Command name recorded in the report.
            recover_corrupt: Passed to ``ManifestStore.load``.

        Returns:
            A ``SyncReport`` with one result per planned action, in order.

        Raises:
            IoError: If the manifest cannot be read or saved.  Failures
                reading or writing individual templates are reported in
                the result list instead.
            ManifestCorrupt: If the manifest is corrupt.
        """
        options = options or SyncOptions()
        started_at = datetime.now(timezone.utc).isoformat()

        manifest = self.store.load(recover_corrupt=recover_corrupt)
        results: list[SyncResult] = []
        for template_id in self._template_ids(manifest, options):
            action = self._plan_one(template_id, manifest, options)
            if action.error is not None:
                results.append(
                    self._result(
                        action,
                        outcome="failed",
                        success=False,
                        error=action.error,
                    )
                )
                continue

            if options.dry_run:
                results.append(self._planned_result(action))
                continue
            results.append(self._execute(action, manifest))

        if not options.dry_run and manifest.dirty:
            self.store.save(manifest)

        return SyncReport(
            command=command,
            dry_run=options.dry_run,
            tool_version=self.tool_version,
            results=results,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

    @staticmethod
    def _planned_result(action: PlannedAction) -> SyncResult:
        return SyncResult(
            template_id=action.template_id,
            action=action.action,
            diverged=action.diverged,
            outcome="planned",
            reason=action.reason,
            path=action.path,
        )

    def _execute(
        self, action: PlannedAction, manifest: Manifest
    ) -> SyncResult:
        """Execute one planned action and update its record."""
        template_id = action.template_id

        if action.action == SyncAction.SKIP:
            if action.reason == REASON_MODIFIED:
                logger.warning(
                    "%s: user copy modified, not updating (use --sidecar "
                    "or --force)",
                    template_id,
                )
            return self._result(action, outcome="unchanged")

        if action.action == SyncAction.CONFLICT:
            logger.warning("%s: %s", template_id, action.reason)
            return self._result(action, outcome="reported")

        bundled = self.registry.bundled_content(template_id)
        if bundled is None:
            # classify() never writes a template that is not shipped
            return self._result(
                action,
                outcome="failed",
                success=False,
                error="no bundled content",
            )
        shipped = fingerprint(bundled)
        previous = manifest.get_record(template_id)

        if action.action == SyncAction.SIDECAR:
            target = self.registry.sidecar_path(template_id)
        else:
            target = self.registry.user_path(template_id)

        skip_write = action.reason == REASON_ALREADY_CURRENT
        if not skip_write:
            try:
                write_bytes_atomic(target, bundled)
            except IoError as exc:
                exc.template_id = template_id
                logger.error(
                    "%s: %s failed: %s",
                    template_id,
                    action.action.value,
                    exc,
                )
                return self._result(
                    action, outcome="failed", success=False, error=str(exc)
                )

        if action.action == SyncAction.SIDECAR:
            # previous is never None here: sidecars only for tracked ids
            synced = (
                previous.synced_fingerprint if previous else shipped
            )
            sidecar_rel = self.registry.relative(target)
        else:
            synced = shipped
            sidecar_rel = None

        manifest.set_record(
            template_id,
            TemplateRecord(
                shipped_fingerprint=shipped,
                synced_fingerprint=synced,
                tool_version=self.tool_version,
                sidecar_path=sidecar_rel,
                synced_at=datetime.now(timezone.utc).isoformat(),
            ),
        )
        logger.info(
            "%s: %s -> %s", template_id, action.action.value, action.path
        )
        return self._result(
            action, outcome="unchanged" if skip_write else "written"
        )

    @staticmethod
    def _result(
        action: PlannedAction,
        outcome: str,
        success: bool = True,
        error: str | None = None,
    ) -> SyncResult:
        return SyncResult(
            template_id=action.template_id,
            action=action.action,
            diverged=action.diverged,
            success=success,
            outcome=outcome,
            reason=action.reason,
            path=action.path,
            error=error,
        )

