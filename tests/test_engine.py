"""Tests for the reconciliation engine.

Covers:
- classify(): every branch of the decision table
- plan(): ordering, ``only`` filter, read-only
- apply(): create/update/sidecar writes and manifest records
- Partial failure: failed writes reported, record untouched, run continues
- Properties: idempotence, no-clobber, sidecar preservation, dry-run
  equivalence and no disk effect, first-run safety
- The wellbeing A -> B -> C/D scenario end-to-end
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import (
    HEALTH,
    HEALTH_V1,
    MINIMAL,
    MINIMAL_V1,
    WELLBEING,
    WELLBEING_V1,
    WELLBEING_V2,
    user_file,
    write_user,
)
from margo.errors import IoError, ManifestCorrupt
from margo.file_handler import write_bytes_atomic
from margo.templates.engine import (
    REASON_ALREADY_CURRENT,
    REASON_FORCED,
    REASON_MISSING,
    REASON_MODIFIED,
    REASON_NEW,
    REASON_REMOVED,
    REASON_SIDECAR_OCCUPIED,
    REASON_UNCHANGED,
    REASON_UNMODIFIED,
    REASON_UNREADABLE,
    REASON_UNTRACKED,
    classify,
)
from margo.templates.fingerprint import fingerprint
from margo.templates.models import (
    SyncAction,
    SyncOptions,
    TemplateId,
    TemplateRecord,
)

A = b'vars = ["a"]\n'
B = b'vars = ["b"]\n'
C = b'vars = ["c"]\n'
D = b'vars = ["d"]\n'


def _record(shipped: bytes, synced: bytes) -> TemplateRecord:
    return TemplateRecord(
        shipped_fingerprint=fingerprint(shipped),
        synced_fingerprint=fingerprint(synced),
        tool_version="1.0.0",
    )


def _snapshot(root: Path) -> dict:
    """Map of relative path -> (bytes, mtime_ns) for every file under *root*."""
    if not root.exists():
        return {}
    return {
        p.relative_to(root).as_posix(): (p.read_bytes(), p.stat().st_mtime_ns)
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def _manifest(config_dir: Path) -> dict:
    return json.loads((config_dir / "manifest.json").read_text())["templates"]


# ---------------------------------------------------------------------------
# classify()
# ---------------------------------------------------------------------------


class TestClassify:
    def _classify(self, bundled, record, user, **options):
        return classify(
            WELLBEING,
            bundled,
            record,
            fingerprint(user) if user is not None else None,
            SyncOptions(**options),
        )

    def test_removed_from_bundle_is_conflict(self):
        planned = self._classify(None, _record(A, A), A)
        assert planned.action == SyncAction.CONFLICT
        assert planned.reason == REASON_REMOVED

    def test_untracked_and_not_bundled_is_skip(self):
        planned = self._classify(None, None, A)
        assert planned.action == SyncAction.SKIP

    def test_untracked_missing_is_create(self):
        planned = self._classify(A, None, None)
        assert planned.action == SyncAction.CREATE
        assert planned.reason == REASON_NEW
        assert not planned.diverged

    def test_untracked_existing_is_left_alone(self):
        planned = self._classify(A, None, C)
        assert planned.action == SyncAction.SKIP
        assert planned.reason == REASON_UNTRACKED
        assert not planned.diverged

    def test_untracked_existing_left_alone_even_when_forced(self):
        planned = self._classify(A, None, C, force=True)
        assert planned.action == SyncAction.SKIP
        assert planned.reason == REASON_UNTRACKED

    @pytest.mark.parametrize("user", [A, C, None])
    def test_bundled_unchanged_is_skip_regardless_of_user(self, user):
        planned = self._classify(A, _record(A, A), user, force=True)
        assert planned.action == SyncAction.SKIP
        assert planned.reason == REASON_UNCHANGED

    def test_bundled_changed_user_missing_is_create(self):
        planned = self._classify(B, _record(A, A), None)
        assert planned.action == SyncAction.CREATE
        assert planned.reason == REASON_MISSING

    def test_bundled_changed_user_unmodified_is_update(self):
        planned = self._classify(B, _record(A, A), A)
        assert planned.action == SyncAction.UPDATE
        assert planned.reason == REASON_UNMODIFIED
        assert not planned.diverged

    def test_user_already_has_new_default(self):
        planned = self._classify(B, _record(A, A), B)
        assert planned.action == SyncAction.UPDATE
        assert planned.reason == REASON_ALREADY_CURRENT
        assert not planned.diverged

    def test_modified_without_flags_is_diverged_skip(self):
        planned = self._classify(B, _record(A, A), C)
        assert planned.action == SyncAction.SKIP
        assert planned.reason == REASON_MODIFIED
        assert planned.diverged

    def test_modified_with_force_is_update(self):
        planned = self._classify(B, _record(A, A), C, force=True)
        assert planned.action == SyncAction.UPDATE
        assert planned.reason == REASON_FORCED
        assert planned.diverged

    def test_modified_with_sidecar_is_sidecar(self):
        planned = self._classify(B, _record(A, A), C, sidecar=True)
        assert planned.action == SyncAction.SIDECAR
        assert planned.diverged

    def test_resaved_file_is_not_modified(self):
        """CRLF re-save of the synced content still counts as unmodified."""
        resaved = A.replace(b"\n", b"\r\n")
        planned = self._classify(B, _record(A, A), resaved)
        assert planned.action == SyncAction.UPDATE
        assert planned.reason == REASON_UNMODIFIED


# ---------------------------------------------------------------------------
# plan()
# ---------------------------------------------------------------------------


class TestPlan:
    def test_first_run_plans_create_for_all_in_order(self, make_engine):
        planned = make_engine().plan()
        assert [p.template_id for p in planned] == [MINIMAL, HEALTH, WELLBEING]
        assert {p.action for p in planned} == {SyncAction.CREATE}
        assert planned[0].path == "baselines/minimal.toml"

    def test_only_restricts_ids(self, make_engine):
        planned = make_engine().plan(SyncOptions(only=frozenset({HEALTH})))
        assert [p.template_id for p in planned] == [HEALTH]

    def test_sidecar_plan_targets_sidecar_path(self, make_engine, config_dir):
        make_engine().apply()
        write_user(config_dir, WELLBEING, C)
        engine = make_engine(
            bundled=[(WELLBEING, WELLBEING_V2), (HEALTH, HEALTH_V1)]
        )
        planned = engine.plan(SyncOptions(sidecar=True))
        by_id = {p.template_id: p for p in planned}
        assert by_id[WELLBEING].action == SyncAction.SIDECAR
        assert by_id[WELLBEING].path == "outcomes/wellbeing.toml.new"

    def test_tracked_but_removed_template_is_conflict(
        self, make_engine, config_dir
    ):
        make_engine().apply()
        engine = make_engine(bundled=[(HEALTH, HEALTH_V1)])
        planned = {p.template_id: p for p in engine.plan()}
        assert planned[WELLBEING].action == SyncAction.CONFLICT
        assert planned[MINIMAL].action == SyncAction.CONFLICT
        assert planned[HEALTH].action == SyncAction.SKIP

    def test_plural_manifest_key_still_tracks(self, make_engine, config_dir):
        make_engine().apply()
        manifest_path = config_dir / "manifest.json"
        document = json.loads(manifest_path.read_text())
        document["templates"]["outcomes/wellbeing"] = document[
            "templates"
        ].pop("outcome/wellbeing")
        manifest_path.write_text(json.dumps(document))
        write_user(config_dir, WELLBEING, C)

        engine = make_engine(bundled=[(WELLBEING, WELLBEING_V2)])
        planned = {p.template_id: p for p in engine.plan()}
        assert planned[WELLBEING].action == SyncAction.SKIP
        assert planned[WELLBEING].reason == REASON_MODIFIED
        assert planned[WELLBEING].diverged

    def test_unreadable_user_file_is_planned_as_failed_skip(
        self, make_engine, config_dir
    ):
        make_engine().apply()
        path = user_file(config_dir, HEALTH)
        path.unlink()
        path.mkdir()

        planned = {p.template_id: p for p in make_engine().plan()}
        assert planned[HEALTH].action == SyncAction.SKIP
        assert planned[HEALTH].reason == REASON_UNREADABLE
        assert planned[HEALTH].error
        assert planned[WELLBEING].error is None

    def test_plan_never_touches_disk(self, make_engine, config_dir):
        make_engine().plan()
        assert not config_dir.exists()

    def test_plan_propagates_corrupt_manifest(self, make_engine, config_dir):
        config_dir.mkdir()
        (config_dir / "manifest.json").write_text("{broken")
        with pytest.raises(ManifestCorrupt):
            make_engine().plan()


# ---------------------------------------------------------------------------
# apply()
# ---------------------------------------------------------------------------


class TestApply:
    def test_first_run_creates_files_and_records(
        self, make_engine, config_dir
    ):
        report = make_engine().apply(command="init")

        assert report.command == "init"
        assert [r.action for r in report.results] == [SyncAction.CREATE] * 3
        assert all(r.outcome == "written" for r in report.results)
        assert user_file(config_dir, WELLBEING).read_bytes() == WELLBEING_V1
        assert user_file(config_dir, MINIMAL).read_bytes() == MINIMAL_V1

        record = _manifest(config_dir)["outcome/wellbeing"]
        assert record["shipped_fingerprint"] == fingerprint(WELLBEING_V1)
        assert record["synced_fingerprint"] == fingerprint(WELLBEING_V1)
        assert record["tool_version"] == "1.0.0"
        assert record["sidecar_path"] is None
        assert record["synced_at"]

    def test_update_of_unmodified_file(self, make_engine, config_dir):
        make_engine().apply()
        engine = make_engine(
            bundled=[(WELLBEING, WELLBEING_V2), (HEALTH, HEALTH_V1),
                     (MINIMAL, MINIMAL_V1)],
            tool_version="1.1.0",
        )
        report = engine.apply()

        assert [r.template_id for r in report.updated] == [WELLBEING]
        assert user_file(config_dir, WELLBEING).read_bytes() == WELLBEING_V2
        record = _manifest(config_dir)["outcome/wellbeing"]
        assert record["synced_fingerprint"] == fingerprint(WELLBEING_V2)
        assert record["tool_version"] == "1.1.0"

    def test_already_current_records_without_writing(
        self, make_engine, config_dir
    ):
        make_engine().apply()
        path = write_user(config_dir, WELLBEING, WELLBEING_V2)
        os.utime(path, ns=(1_000_000_000, 1_000_000_000))

        engine = make_engine(
            bundled=[(WELLBEING, WELLBEING_V2), (HEALTH, HEALTH_V1),
                     (MINIMAL, MINIMAL_V1)]
        )
        report = engine.apply()
        result = next(r for r in report.results if r.template_id == WELLBEING)
        assert result.action == SyncAction.UPDATE
        assert result.outcome == "unchanged"
        assert path.stat().st_mtime_ns == 1_000_000_000
        record = _manifest(config_dir)["outcome/wellbeing"]
        assert record["shipped_fingerprint"] == fingerprint(WELLBEING_V2)

    def test_force_overwrites_modified_file(self, make_engine, config_dir):
        make_engine().apply()
        write_user(config_dir, WELLBEING, C)
        engine = make_engine(bundled=[(WELLBEING, WELLBEING_V2)])
        report = engine.apply(SyncOptions(force=True))

        result = next(r for r in report.results if r.template_id == WELLBEING)
        assert result.action == SyncAction.UPDATE
        assert result.diverged
        assert user_file(config_dir, WELLBEING).read_bytes() == WELLBEING_V2

    def test_sidecar_record_keeps_previous_synced(
        self, make_engine, config_dir
    ):
        make_engine().apply()
        write_user(config_dir, WELLBEING, C)
        engine = make_engine(bundled=[(WELLBEING, WELLBEING_V2)])
        engine.apply(SyncOptions(sidecar=True))

        record = _manifest(config_dir)["outcome/wellbeing"]
        assert record["shipped_fingerprint"] == fingerprint(WELLBEING_V2)
        assert record["synced_fingerprint"] == fingerprint(WELLBEING_V1)
        assert record["sidecar_path"] == "outcomes/wellbeing.toml.new"

        # the same release again: nothing new to deliver
        second = engine.apply(SyncOptions(sidecar=True))
        result = next(r for r in second.results if r.template_id == WELLBEING)
        assert result.action == SyncAction.SKIP
        assert result.reason == REASON_UNCHANGED

    def test_conflict_is_reported_not_resolved(self, make_engine, config_dir):
        make_engine().apply()
        engine = make_engine(bundled=[(HEALTH, HEALTH_V1)])
        report = engine.apply(SyncOptions(force=True))

        assert {r.template_id for r in report.conflicts} == {WELLBEING, MINIMAL}
        assert all(r.outcome == "reported" for r in report.conflicts)
        assert user_file(config_dir, WELLBEING).read_bytes() == WELLBEING_V1
        assert "outcome/wellbeing" in _manifest(config_dir)

    def test_clean_run_does_not_rewrite_manifest(
        self, make_engine, config_dir
    ):
        engine = make_engine()
        engine.apply()
        manifest_path = config_dir / "manifest.json"
        os.utime(manifest_path, ns=(1_000_000_000, 1_000_000_000))
        engine.apply()
        assert manifest_path.stat().st_mtime_ns == 1_000_000_000

    def test_migrated_manifest_is_saved(self, make_engine, config_dir):
        config_dir.mkdir()
        (config_dir / "manifest.json").write_text(
            json.dumps(
                {
                    "version": 1,
                    "entries": {
                        "outcome/health": {
                            "hash": fingerprint(HEALTH_V1).split(":", 1)[1],
                            "tool_version": "0.2.0",
                        }
                    },
                }
            )
        )
        write_user(config_dir, HEALTH, HEALTH_V1)
        report = make_engine().apply()

        health = next(r for r in report.results if r.template_id == HEALTH)
        assert health.action == SyncAction.SKIP
        assert health.reason == REASON_UNCHANGED
        document = json.loads((config_dir / "manifest.json").read_text())
        assert document["schema_version"] == 2

    def test_recover_corrupt_manifest(self, make_engine, config_dir):
        config_dir.mkdir()
        (config_dir / "manifest.json").write_text("{broken")
        write_user(config_dir, HEALTH, C)

        report = make_engine().apply(recover_corrupt=True)
        health = next(r for r in report.results if r.template_id == HEALTH)
        # with no history the existing file is treated as hand-made
        assert health.reason == REASON_UNTRACKED
        assert user_file(config_dir, HEALTH).read_bytes() == C
        assert (config_dir / "manifest.json.corrupt").read_text() == "{broken"


# ---------------------------------------------------------------------------
# Partial failure
# ---------------------------------------------------------------------------


class TestPartialFailure:
    def _failing_on(self, failing: Path):
        def _write(path, data):
            if path == failing:
                raise IoError.from_os_error(
                    PermissionError(13, "Permission denied"),
                    path,
                    action="write",
                )
            return write_bytes_atomic(path, data)

        return _write

    def test_failed_write_is_reported_and_run_continues(
        self, make_engine, config_dir
    ):
        failing = user_file(config_dir, HEALTH)
        with patch(
            "margo.templates.engine.write_bytes_atomic",
            side_effect=self._failing_on(failing),
        ):
            report = make_engine().apply()

        [error] = report.errors
        assert error.template_id == HEALTH
        assert error.action == SyncAction.CREATE
        assert error.outcome == "failed"
        assert "Permission denied" in error.error

        assert user_file(config_dir, WELLBEING).exists()
        assert user_file(config_dir, MINIMAL).exists()
        records = _manifest(config_dir)
        assert "outcome/health" not in records
        assert "outcome/wellbeing" in records

    def test_rerun_after_failure_completes(self, make_engine, config_dir):
        failing = user_file(config_dir, HEALTH)
        with patch(
            "margo.templates.engine.write_bytes_atomic",
            side_effect=self._failing_on(failing),
        ):
            make_engine().apply()

        report = make_engine().apply()
        assert [(r.template_id, r.action) for r in report.results] == [
            (MINIMAL, SyncAction.SKIP),
            (HEALTH, SyncAction.CREATE),
            (WELLBEING, SyncAction.SKIP),
        ]
        assert not report.errors

    def test_unreadable_user_file_is_reported(self, make_engine, config_dir):
        make_engine().apply()
        # a directory where the file should be cannot be read
        path = user_file(config_dir, HEALTH)
        path.unlink()
        path.mkdir()

        report = make_engine().apply()
        [error] = report.errors
        assert error.template_id == HEALTH
        assert error.reason == REASON_UNREADABLE
        assert error.action == SyncAction.SKIP

    def test_manifest_save_failure_raises(self, make_engine):
        with patch(
            "margo.templates.manifest.write_bytes_atomic",
            side_effect=IoError("failed to write 'manifest.json': disk full"),
        ):
            with pytest.raises(IoError, match="disk full"):
                make_engine().apply()


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestProperties:
    def test_idempotence(self, make_engine):
        engine = make_engine()
        engine.apply()
        second = engine.apply()
        assert {r.action for r in second.results} == {SyncAction.SKIP}

    def test_no_clobber(self, make_engine, config_dir):
        make_engine().apply()
        path = write_user(config_dir, WELLBEING, C)
        os.utime(path, ns=(1_000_000_000, 1_000_000_000))

        engine = make_engine(bundled=[(WELLBEING, WELLBEING_V2)])
        report = engine.apply()
        assert [r.template_id for r in report.diverged] == [WELLBEING]
        assert path.read_bytes() == C
        assert path.stat().st_mtime_ns == 1_000_000_000

    def test_sidecar_preserves_user_file(self, make_engine, config_dir):
        make_engine().apply()
        path = write_user(config_dir, WELLBEING, C)
        before = path.read_bytes()

        engine = make_engine(bundled=[(WELLBEING, WELLBEING_V2)])
        engine.apply(SyncOptions(sidecar=True))
        assert path.read_bytes() == before

    def test_sidecar_never_replaces_hand_written_file(
        self, make_engine, config_dir
    ):
        make_engine().apply()
        write_user(config_dir, WELLBEING, C)
        notes = config_dir / "outcomes" / "wellbeing.toml.new"
        notes.write_bytes(b"hand-written notes, not from margo\n")

        engine = make_engine(bundled=[(WELLBEING, WELLBEING_V2)])
        report = engine.apply(SyncOptions(sidecar=True))

        result = next(r for r in report.results if r.template_id == WELLBEING)
        assert result.action == SyncAction.SKIP
        assert result.reason == REASON_SIDECAR_OCCUPIED
        assert result.diverged
        assert notes.read_bytes() == b"hand-written notes, not from margo\n"
        record = _manifest(config_dir)["outcome/wellbeing"]
        assert record["shipped_fingerprint"] == fingerprint(WELLBEING_V1)

    def test_edited_sidecar_is_kept(self, make_engine, config_dir):
        make_engine().apply()
        write_user(config_dir, WELLBEING, C)
        make_engine(bundled=[(WELLBEING, WELLBEING_V2)]).apply(
            SyncOptions(sidecar=True)
        )
        sidecar = config_dir / "outcomes" / "wellbeing.toml.new"
        sidecar.write_bytes(A)

        report = make_engine(bundled=[(WELLBEING, D)]).apply(
            SyncOptions(sidecar=True)
        )
        assert [r.reason for r in report.diverged] == [REASON_SIDECAR_OCCUPIED]
        assert sidecar.read_bytes() == A

    def test_untouched_sidecar_is_refreshed(self, make_engine, config_dir):
        make_engine().apply()
        write_user(config_dir, WELLBEING, C)
        make_engine(bundled=[(WELLBEING, WELLBEING_V2)]).apply(
            SyncOptions(sidecar=True)
        )

        report = make_engine(bundled=[(WELLBEING, D)]).apply(
            SyncOptions(sidecar=True)
        )
        assert [r.template_id for r in report.sidecars] == [WELLBEING]
        sidecar = config_dir / "outcomes" / "wellbeing.toml.new"
        assert sidecar.read_bytes() == D

    def test_dry_run_equivalence_with_unreadable_file(
        self, make_engine, config_dir
    ):
        make_engine().apply()
        path = user_file(config_dir, HEALTH)
        path.unlink()
        path.mkdir()
        engine = make_engine()

        planned = engine.plan()
        dry = engine.apply(SyncOptions(dry_run=True))
        assert [(p.template_id, p.action) for p in planned] == dry.actions
        assert [r.template_id for r in dry.errors] == [HEALTH]

    @pytest.mark.parametrize(
        "options",
        [
            SyncOptions(),
            SyncOptions(force=True),
            SyncOptions(sidecar=True),
        ],
    )
    def test_dry_run_equivalence(self, make_engine, config_dir, options):
        make_engine().apply()
        write_user(config_dir, WELLBEING, C)
        write_user(config_dir, TemplateId.of("outcome", "mine"), A)
        engine = make_engine(
            bundled=[(WELLBEING, WELLBEING_V2), (HEALTH, B)]
        )

        planned = engine.plan(options)
        before = _snapshot(config_dir)
        dry = engine.apply(options.model_copy(update={"dry_run": True}))
        assert _snapshot(config_dir) == before

        assert [(p.template_id, p.action) for p in planned] == dry.actions
        assert all(r.outcome == "planned" for r in dry.results)

    def test_dry_run_on_first_run_creates_nothing(
        self, make_engine, config_dir
    ):
        report = make_engine().apply(SyncOptions(dry_run=True))
        assert len(report.created) == 3
        assert not config_dir.exists()

    def test_first_run_safety(self, make_engine, config_dir):
        path = write_user(config_dir, WELLBEING, C)
        report = make_engine().apply(SyncOptions(force=True))

        result = next(r for r in report.results if r.template_id == WELLBEING)
        assert result.action == SyncAction.SKIP
        assert result.reason == REASON_UNTRACKED
        assert path.read_bytes() == C
        assert "outcome/wellbeing" not in _manifest(config_dir)


# ---------------------------------------------------------------------------
# Scenario
# ---------------------------------------------------------------------------


class TestWellbeingScenario:
    """init with A, update to B, edit to C, release D."""

    def test_scenario(self, make_engine, config_dir):
        path = user_file(config_dir, WELLBEING)

        # init: created, {shipped=A, synced=A}
        report = make_engine(bundled=[(WELLBEING, A)]).apply(command="init")
        assert report.actions == [(WELLBEING, SyncAction.CREATE)]
        assert path.read_bytes() == A
        record = _manifest(config_dir)["outcome/wellbeing"]
        assert record["shipped_fingerprint"] == fingerprint(A)
        assert record["synced_fingerprint"] == fingerprint(A)

        # release B, file untouched: update
        report = make_engine(bundled=[(WELLBEING, B)]).apply()
        assert report.actions == [(WELLBEING, SyncAction.UPDATE)]
        assert path.read_bytes() == B
        record = _manifest(config_dir)["outcome/wellbeing"]
        assert record["shipped_fingerprint"] == fingerprint(B)
        assert record["synced_fingerprint"] == fingerprint(B)

        # user edits to C, release D: diverged skip
        path.write_bytes(C)
        engine_d = make_engine(bundled=[(WELLBEING, D)])
        report = engine_d.apply()
        assert report.actions == [(WELLBEING, SyncAction.SKIP)]
        assert report.results[0].diverged
        assert path.read_bytes() == C

        # --sidecar: original kept, new default alongside
        report = engine_d.apply(SyncOptions(sidecar=True))
        assert report.actions == [(WELLBEING, SyncAction.SIDECAR)]
        assert path.read_bytes() == C
        sidecar = config_dir / "outcomes" / "wellbeing.toml.new"
        assert sidecar.read_bytes() == D
