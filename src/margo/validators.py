"""
Input validation for template kinds and names.

Template names become file names under the user's config directory, so
they are checked before any path is built from them.
"""

import re

from margo.errors import InvalidTemplateName

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

# Accepted spellings -> canonical kind value
_KIND_ALIASES: dict[str, str] = {
    "outcome": "outcome",
    "outcomes": "outcome",
    "baseline": "baseline",
    "baselines": "baseline",
}


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Template name")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_template_name(name: str) -> tuple[bool, str]:
    """
    Validate a template name.

    Args:
        name: The template name to validate

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot contain '..' or path separators
        - Cannot end in '.toml' (the extension is added by the registry)
        - Must start with a letter or digit, then letters, digits, '_', '-', '.'
    """
    if not name or not name.strip():
        return (
            False,
            format_validation_error("Template name", "cannot be empty"),
        )

    if ".." in name or "/" in name or "\\" in name:
        return (
            False,
            format_validation_error(
                "Template name", "cannot contain '..' or path separators"
            ),
        )

    if name.lower().endswith(".toml"):
        return (
            False,
            format_validation_error(
                "Template name", "must not include the .toml extension"
            ),
        )

    if not _NAME_PATTERN.match(name):
        return (
            False,
            format_validation_error(
                "Template name",
                f"'{name}' may only contain letters, digits, '_', '-' and '.'",
            ),
        )

    return (True, "")


def normalize_kind(kind: str) -> str:
    """Return the canonical kind ("outcome" or "baseline") for *kind*.

    Raises:
        InvalidTemplateName: If *kind* is not a known template kind.
    """
    canonical = _KIND_ALIASES.get(kind.strip().lower())
    if canonical is None:
        raise InvalidTemplateName(
            f"unknown template kind: {kind} "
            "(expected outcome(s) or baseline(s))"
        )
    return canonical


def require_valid_name(name: str) -> str:
    """Return *name* unchanged, or raise ``InvalidTemplateName``."""
    ok, reason = validate_template_name(name)
    if not ok:
        raise InvalidTemplateName(reason)
    return name
