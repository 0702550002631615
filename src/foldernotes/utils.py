"""Utility functions for the folder notes store."""
import re

# Characters that are invalid in file names on at least one major platform
_RESERVED_CHARS = re.compile(r'[<>:"/\\|?*]')

UNTITLED = "Untitled"
MAX_NAME_LENGTH = 100


def sanitize_filename(name: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """Convert a display name into a single filesystem-safe path segment.

    - Reserved characters (``< > : " / \\ | ? *``) become ``_``
    - Leading/trailing whitespace is trimmed
    - Empty or whitespace-only input becomes ``"Untitled"``
    - The result is capped at ``max_length`` characters

    Examples:
        "Work: 2024" -> "Work_ 2024"
        "  Projects  " -> "Projects"
        "   " -> "Untitled"

    Args:
        name: Folder or note display name.
        max_length: Maximum length of the returned segment.

    Returns:
        A non-empty string usable as a directory or file name. The function
        is idempotent: sanitizing its own output returns the same value.
    """
    if not name or not name.strip():
        return UNTITLED

    result = _RESERVED_CHARS.sub("_", name).strip()
    result = result[:max_length].rstrip()

    # "." and ".." are path navigation, not names
    if not result or set(result) == {"."}:
        return UNTITLED
    return result
