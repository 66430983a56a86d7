"""Template registry: bundled set and user-directory layout.

Resolves a logical ``TemplateId`` to content on the bundled side and to a
path on the user side.

User layout (under the config directory, typically ``~/.config/margo``)::

    baselines/<name>.toml
    baselines/<name>.toml.new     # sidecar, see ``sidecar_path``
    outcomes/<name>.toml

The registry never decides *what* to write; that is the reconciliation
engine's job.  It only answers "what ships" and "where does it live".
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from margo.errors import IoError

from .bundled import BUNDLED_TEMPLATES
from .models import TemplateId, TemplateKind

TEMPLATE_SUFFIX = ".toml"
DEFAULT_SIDECAR_SUFFIX = ".new"


class TemplateRegistry:
    """Bundled template set plus the user template directories.

    Args:
        config_dir: Root of the user's margo configuration.
        bundled: ``(TemplateId, content)`` pairs seeded at build time.
        sidecar_suffix: Appended to a user path to form its sidecar path.

    Raises:
        ValueError: If *bundled* contains the same id twice.
    """

    def __init__(
        self,
        config_dir: Path,
        bundled: Iterable[tuple[TemplateId, bytes]] = BUNDLED_TEMPLATES,
        sidecar_suffix: str = DEFAULT_SIDECAR_SUFFIX,
    ) -> None:
        self.config_dir = Path(config_dir)
        self.sidecar_suffix = sidecar_suffix

        self._bundled: dict[TemplateId, bytes] = {}
        for template_id, content in bundled:
            if template_id in self._bundled:
                raise ValueError(
                    f"duplicate bundled template: {template_id}"
                )
            self._bundled[template_id] = bytes(content)

    # ------------------------------------------------------------------
    # Bundled side
    # ------------------------------------------------------------------

    def list_bundled(self) -> list[tuple[TemplateId, bytes]]:
        """Return the bundled set grouped by kind, then sorted by name."""
        return sorted(self._bundled.items(), key=lambda item: item[0])

    def bundled_ids(self) -> list[TemplateId]:
        return [tid for tid, _ in self.list_bundled()]

    def bundled_content(self, template_id: TemplateId) -> bytes | None:
        """Return shipped content for *template_id*, or ``None``."""
        return self._bundled.get(template_id)

    def is_bundled(self, template_id: TemplateId) -> bool:
        return template_id in self._bundled

    # ------------------------------------------------------------------
    # User side
    # ------------------------------------------------------------------

    def kind_dir(self, kind: TemplateKind) -> Path:
        """Directory holding user templates of *kind*."""
        return self.config_dir / kind.plural

    def user_path(self, template_id: TemplateId) -> Path:
        """Path of the user's copy of *template_id* (may not exist)."""
        return (
            self.kind_dir(template_id.kind)
            / f"{template_id.name}{TEMPLATE_SUFFIX}"
        )

    def sidecar_path(self, template_id: TemplateId) -> Path:
        """Path where an updated default is delivered next to a diverged file."""
        user = self.user_path(template_id)
        return user.with_name(user.name + self.sidecar_suffix)

    def relative(self, path: Path) -> str:
        """*path* relative to the config directory, POSIX-style."""
        try:
            return path.relative_to(self.config_dir).as_posix()
        except ValueError:
            return str(path)

    def read_user(self, template_id: TemplateId) -> bytes | None:
        """Read the user's copy of *template_id*.

        Returns:
            File content, or ``None`` if the file does not exist.

        Raises:
            IoError: On read failures other than "not found".
        """
        return self._read(self.user_path(template_id), template_id)

    def read_sidecar(self, template_id: TemplateId) -> bytes | None:
        """Read whatever sits at the sidecar path, or ``None`` if nothing."""
        return self._read(self.sidecar_path(template_id), template_id)

    @staticmethod
    def _read(path: Path, template_id: TemplateId) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise IoError.from_os_error(
                exc, path, action="read", template_id=template_id
            ) from exc

    def list_user(self, kind: TemplateKind) -> list[str]:
        """Names of user templates of *kind*, sorted.

        Only ``*.toml`` files directly in the kind directory count;
        subdirectories and sidecars are ignored.
        """
        directory = self.kind_dir(kind)
        if not directory.is_dir():
            return []
        names = [
            path.stem
            for path in directory.iterdir()
            if path.is_file() and path.suffix == TEMPLATE_SUFFIX
        ]
        return sorted(names)

    def ensure_dirs(self) -> list[Path]:
        """Create the kind directories.  Returns the ones created."""
        created: list[Path] = []
        for kind in TemplateKind:
            directory = self.kind_dir(kind)
            if not directory.is_dir():
                try:
                    directory.mkdir(parents=True, exist_ok=True)
                except OSError as exc:
                    raise IoError.from_os_error(
                        exc, directory, action="create"
                    ) from exc
                created.append(directory)
        return created
