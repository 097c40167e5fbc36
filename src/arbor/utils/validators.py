"""Document name validation helpers.

Naming rules:
- Names map 1:1 to file names ("{name}.arbor") in the documents directory
- Must be non-empty and free of characters illegal on common filesystems
- Must not start with "." (reserved for lock and temporary files)
- Windows device names (CON, NUL, COM1, ...) are rejected everywhere so
  documents stay portable

Functions:
- validate_document_name(name) -> str: Return the name or raise InvalidNameError
- resolve_document_name(prefix, candidates) -> str: Resolve prefix to unique name
- names_collide(a, b) -> bool: Case-insensitive name comparison
"""

import re

MAX_NAME_LENGTH = 128
ILLEGAL_CHARS = '<>:"/\\|?*'
RESERVED_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class DocumentNameError(Exception):
    """Base exception for rejected document names."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(reason)


class InvalidNameError(DocumentNameError):
    """Raised when a name cannot be used as a document file name."""

    def __init__(self, name: str, reason: str):
        super().__init__(name, f"Invalid name '{name}': {reason}")


class NameCollisionError(DocumentNameError):
    """Raised when a name is already used by another document."""

    def __init__(self, name: str, existing: str | None = None):
        self.existing = existing or name
        super().__init__(name, f"A document named '{self.existing}' already exists.")


class AmbiguousNameError(DocumentNameError):
    """Raised when a name prefix matches multiple documents."""

    def __init__(self, prefix: str, candidates: list[str]):
        self.candidates = candidates
        super().__init__(
            prefix,
            f"Prefix '{prefix}' is ambiguous. Candidates:\n"
            + "\n".join(f"  - {c}" for c in candidates),
        )


class UnknownNameError(DocumentNameError):
    """Raised when no document matches the given prefix."""

    def __init__(self, prefix: str):
        super().__init__(prefix, f"No document matches '{prefix}'.")


def validate_document_name(name: str) -> str:
    """Check that a name can be used as a document name.

    Args:
        name: Proposed document name (used verbatim, not trimmed)

    Returns:
        The same name

    Raises:
        InvalidNameError: With a human-readable reason for the status bar
    """
    if not name or not name.strip():
        raise InvalidNameError(name, "name is empty")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidNameError(name, f"longer than {MAX_NAME_LENGTH} characters")
    if name != name.strip():
        raise InvalidNameError(name, "leading or trailing whitespace")
    if name.startswith("."):
        raise InvalidNameError(name, "cannot start with '.'")
    if name.endswith("."):
        raise InvalidNameError(name, "cannot end with '.'")

    bad = sorted({c for c in name if c in ILLEGAL_CHARS})
    if bad:
        raise InvalidNameError(name, f"contains illegal characters {' '.join(bad)}")
    if _CONTROL_CHARS.search(name):
        raise InvalidNameError(name, "contains control characters")

    stem = name.split(".")[0].upper()
    if stem in RESERVED_NAMES:
        raise InvalidNameError(name, f"'{stem}' is a reserved device name")
    return name


def names_collide(a: str, b: str) -> bool:
    """True if two names would map to the same file on a case-insensitive FS."""
    return a.casefold() == b.casefold()


def resolve_document_name(prefix: str, candidates: list[str]) -> str:
    """Resolve a name prefix to a unique full document name.

    Args:
        prefix: Partial or full document name (e.g., "out" or "outline")
        candidates: List of all available document names

    Returns:
        The unique matching name

    Raises:
        UnknownNameError: If no candidates match the prefix
        AmbiguousNameError: If multiple candidates match the prefix
    """
    # Exact match first
    if prefix in candidates:
        return prefix

    matches = [c for c in candidates if c.casefold().startswith(prefix.casefold())]

    if len(matches) == 0:
        raise UnknownNameError(prefix)
    elif len(matches) == 1:
        return matches[0]
    else:
        raise AmbiguousNameError(prefix, matches)
