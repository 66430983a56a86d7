"""Error taxonomy for template management.

Every error carries enough context (template id and/or path) for the
command surface to tell the user what failed and to re-run safely.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .templates.models import TemplateId


class MargoError(Exception):
    """Base class for all margo errors.

    Attributes:
        template_id: The template involved, when known.
        path: The filesystem path involved, when known.
    """

    def __init__(
        self,
        message: str,
        *,
        template_id: TemplateId | None = None,
        path: Path | str | None = None,
    ) -> None:
        super().__init__(message)
        self.template_id = template_id
        self.path = Path(path) if path is not None else None


class IoError(MargoError):
    """Read, write or permission failure on a template or manifest file."""

    @classmethod
    def from_os_error(
        cls,
        exc: OSError,
        path: Path | str,
        *,
        action: str = "access",
        template_id: TemplateId | None = None,
    ) -> IoError:
        """Build an ``IoError`` from an ``OSError`` with path context."""
        reason = exc.strerror or str(exc)
        if exc.errno is not None and not exc.strerror:
            reason = os.strerror(exc.errno)
        prefix = f"{template_id}: " if template_id is not None else ""
        return cls(
            f"{prefix}failed to {action} '{path}': {reason}",
            template_id=template_id,
            path=path,
        )


class ManifestCorrupt(MargoError):
    """The persisted manifest cannot be parsed or validated."""

    def __init__(self, path: Path | str, reason: str) -> None:
        super().__init__(
            f"manifest '{path}' is corrupt: {reason}. "
            "Re-run with --reset-manifest to discard sync history.",
            path=path,
        )
        self.reason = reason


class TemplateNotFound(MargoError):
    """No bundled template exists for the requested kind and name."""


class InvalidTemplateName(MargoError, ValueError):
    """A template name or kind failed validation."""
