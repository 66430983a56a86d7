"""Manifest persistence layer.

Manages the JSON manifest that tracks, per template, which bundled
content was last shipped and what was last written to the user's file.
The manifest lives at ``<config_dir>/manifest.json``.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Read-only load** -- ``load()`` never touches the file on disk, even
  when it migrates an old schema.  Migration only marks the in-memory
  manifest dirty; a later ``save()`` persists it.
* **Load once, save once** -- callers load at the start of a run, mutate
  the ``Manifest`` in memory and persist once at the end.

Schema history:

* ``1`` -- ``{"version": 1, "entries": {key: {"hash", "tool_version"}}}``.
  One hash per entry; shipped and synced content were always equal.
  Hashes were bare SHA-256 hex digests of the same canonical form.
* ``2`` -- ``{"schema_version": 2, "templates": {key: TemplateRecord}}``.
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from margo import __version__
from margo.errors import IoError, ManifestCorrupt
from margo.file_handler import read_bytes_or_none, write_bytes_atomic

from .fingerprint import FINGERPRINT_PREFIX
from .models import (
    CURRENT_SCHEMA_VERSION,
    Manifest,
    TemplateId,
    TemplateRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_FILE = "manifest.json"


class ManifestStore:
    """Load and save the template manifest.

    Args:
        path: Path to the manifest file (typically
            ``~/.config/margo/manifest.json``).
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, recover_corrupt: bool = False) -> Manifest:
        """Load the manifest from disk.

        Args:
            recover_corrupt: If ``True``, a corrupt manifest is replaced
                by an empty one (flagged ``recovered``) instead of
                raising.  Only pass this on explicit user confirmation.

        Returns:
            The manifest.  If the file does not exist an empty manifest
            is returned (first run).  Old schemas are migrated in memory
            and the result is marked dirty.

        Raises:
            ManifestCorrupt: If the file cannot be parsed or validated
                and *recover_corrupt* is ``False``.
            IoError: If the file exists but cannot be read.
        """
        raw = read_bytes_or_none(self.path)
        if raw is None:
            logger.debug("No manifest at %s -- starting empty", self.path)
            return Manifest()

        try:
            return self._parse(raw)
        except ManifestCorrupt as exc:
            if not recover_corrupt:
                raise
            logger.warning(
                "Discarding corrupt manifest %s (%s)",
                self.path,
                exc.reason,
            )
            manifest = Manifest()
            manifest.mark_recovered()
            return manifest

    def save(self, manifest: Manifest) -> None:
        """Persist the manifest atomically.

        Writes to a temporary file in the same directory then atomically
        replaces the target.  Creates the directory if needed.  If the
        manifest was recovered from a corrupt file, that file is kept as
        ``<name>.corrupt`` first.

        Raises:
            IoError: On any disk failure.  The previous manifest file is
                left intact.
        """
        if manifest.recovered and self.path.exists():
            backup = self.path.with_name(self.path.name + ".corrupt")
            try:
                shutil.copy2(self.path, backup)
            except OSError as exc:
                raise IoError.from_os_error(
                    exc, backup, action="back up manifest to"
                ) from exc
            logger.info("Kept corrupt manifest as %s", backup)

        document = {
            "schema_version": CURRENT_SCHEMA_VERSION,
            "tool_version": __version__,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "templates": {
                key: record.model_dump()
                for key, record in sorted(manifest.templates.items())
            },
        }
        data = json.dumps(document, indent=2).encode("utf-8") + b"\n"
        write_bytes_atomic(self.path, data)
        manifest.mark_clean()
        logger.debug(
            "Saved manifest with %d records to %s",
            len(manifest.templates),
            self.path,
        )

    # ------------------------------------------------------------------
    # Parsing and migration
    # ------------------------------------------------------------------

    def _parse(self, raw: bytes) -> Manifest:
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ManifestCorrupt(self.path, f"invalid JSON ({exc})") from exc

        if not isinstance(document, dict):
            raise ManifestCorrupt(
                self.path,
                f"root is {type(document).__name__}, expected object",
            )

        version = document.get("schema_version", document.get("version"))
        if version == CURRENT_SCHEMA_VERSION:
            return self._validate(document.get("templates", {}))
        if version == 1:
            return self._migrate_v1(document)
        if isinstance(version, int) and version > CURRENT_SCHEMA_VERSION:
            raise ManifestCorrupt(
                self.path,
                f"schema version {version} is newer than this margo "
                f"(supports {CURRENT_SCHEMA_VERSION}); upgrade margo",
            )
        raise ManifestCorrupt(
            self.path, f"unknown schema version {version!r}"
        )

    def _validate(self, templates: Any) -> Manifest:
        if not isinstance(templates, dict):
            raise ManifestCorrupt(self.path, "'templates' is not an object")
        records: dict[str, TemplateRecord] = {}
        rekeyed = False
        for key, value in templates.items():
            try:
                canonical = TemplateId.parse(key).key
            except ValueError as exc:
                raise ManifestCorrupt(
                    self.path, f"invalid template key {key!r}"
                ) from exc
            if canonical in records:
                raise ManifestCorrupt(
                    self.path, f"template {canonical!r} is listed twice"
                )
            try:
                records[canonical] = TemplateRecord.model_validate(value)
            except ValidationError as exc:
                raise ManifestCorrupt(
                    self.path,
                    f"invalid record for {key!r} "
                    f"({exc.error_count()} errors)",
                ) from exc
            if canonical != key:
                logger.info("Manifest key %r stored as %r", key, canonical)
                rekeyed = True

        manifest = Manifest(
            schema_version=CURRENT_SCHEMA_VERSION, templates=records
        )
        if rekeyed:
            manifest.mark_dirty()
        return manifest

    def _migrate_v1(self, document: dict) -> Manifest:
        """Upgrade a schema-1 manifest in memory."""
        entries = document.get("entries", {})
        if not isinstance(entries, dict):
            raise ManifestCorrupt(self.path, "'entries' is not an object")

        templates: dict[str, dict] = {}
        for key, entry in entries.items():
            if not isinstance(entry, dict) or not entry.get("hash"):
                raise ManifestCorrupt(
                    self.path, f"schema 1 entry {key!r} has no hash"
                )
            digest = str(entry["hash"])
            if not digest.startswith(FINGERPRINT_PREFIX):
                digest = FINGERPRINT_PREFIX + digest
            templates[key] = {
                "shipped_fingerprint": digest,
                "synced_fingerprint": digest,
                "tool_version": entry.get("tool_version") or "unknown",
                "synced_at": entry.get("last_synced"),
            }

        manifest = self._validate(templates)
        manifest.mark_dirty()
        logger.info(
            "Migrated manifest %s from schema 1 to %d (%d records)",
            self.path,
            CURRENT_SCHEMA_VERSION,
            len(templates),
        )
        return manifest
