"""File handler module: byte-level reads, atomic writes, encoding detection.

Provides the file I/O infrastructure shared by the template registry and
the manifest store.  Every write goes through ``write_bytes_atomic`` so a
crash mid-write leaves either the old file or the new one on disk, never
a truncated mix.
"""

import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

from margo.errors import IoError

# =============================================================================
# Read
# =============================================================================


def read_bytes_or_none(path: Path) -> bytes | None:
    """Read a file's raw bytes.

    Args:
        path: Path to the file to read.

    Returns:
        The file content, or ``None`` if the file does not exist.

    Raises:
        IoError: On any failure other than "not found" (permission
            denied, path is a directory, ...).
    """
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise IoError.from_os_error(exc, path, action="read") from exc


def decode_text(raw: bytes) -> str:
    """Decode bytes of unknown encoding to text.

    UTF-8 is tried first (BOM removed).  Otherwise charset-normalizer's
    best guess is used, falling back to UTF-8 with replacement
    characters when detection fails.

    Args:
        raw: Raw file content.

    Returns:
        Decoded string.
    """
    if not raw:
        return ""
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        return raw.decode("utf-8", errors="replace")
    return str(result)


# =============================================================================
# Write
# =============================================================================


def write_bytes_atomic(path: Path, data: bytes) -> int:
    """Write bytes to *path* atomically, creating parent directories.

    Writes to a temporary file in the target directory, fsyncs it, then
    ``os.replace()``s it over the target.  The temporary file is removed
    on any failure.

    Args:
        path: Path to the output file.
        data: Content to write.

    Returns:
        Number of bytes written.

    Raises:
        IoError: If the directory cannot be created or the write fails.
            The previous file at *path* (if any) is left intact.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
        )
    except OSError as exc:
        raise IoError.from_os_error(exc, path, action="write") from exc

    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException as exc:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        if isinstance(exc, OSError):
            raise IoError.from_os_error(
                exc, path, action="write"
            ) from exc
        raise
    return len(data)
