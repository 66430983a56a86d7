"""Content fingerprinting for template files.

``fingerprint()`` normalises content before hashing so that an editor
re-save on another platform (CRLF line endings, a BOM, trailing
whitespace, a missing final newline) is not mistaken for a user edit.

Normalisation steps (applied in order):

1. Decode (UTF-8 first, charset-normalizer best guess otherwise).
2. Strip BOM (``\\ufeff``).
3. Replace ``\\r\\n`` and lone ``\\r`` with ``\\n``.
4. Right-strip each line.
5. Strip trailing empty lines.

The result is encoded as UTF-8 and hashed with SHA-256.
"""

from __future__ import annotations

import hashlib

from margo.file_handler import decode_text

FINGERPRINT_PREFIX = "sha256:"


def canonicalize(text: str) -> str:
    """Return the canonical form of *text* used for fingerprinting."""
    text = text.lstrip("\ufeff")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [line.rstrip() for line in text.split("\n")]
    while lines and lines[-1] == "":
        lines.pop()
    return "\n".join(lines)


def fingerprint(data: bytes) -> str:
    """Compute the fingerprint of raw file content.

    Args:
        data: File content as bytes.

    Returns:
        ``"sha256:<hex digest>"`` of the canonicalised content.
    """
    normalised = canonicalize(decode_text(data))
    digest = hashlib.sha256(normalised.encode("utf-8")).hexdigest()
    return FINGERPRINT_PREFIX + digest
