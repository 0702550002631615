"""Pure folder-path derivation.

A folder's physical location is the chain of sanitized ancestor names
from the store root. These helpers compute that chain from an in-memory
``id -> folder`` mapping without touching the filesystem, with explicit
cycle detection so malformed ``parentId`` links always terminate.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from foldernotes.utils import sanitize_filename

logger = logging.getLogger(__name__)


def _field(folder: Any, *names: str) -> Any:
    for name in names:
        if isinstance(folder, Mapping):
            if name in folder:
                return folder[name]
        elif hasattr(folder, name):
            return getattr(folder, name)
    return None


def resolve_segments(
    folder_id: Optional[str],
    folder_map: Mapping[str, Any],
    visited: Optional[Set[str]] = None,
    sanitize: Callable[[str], str] = sanitize_filename,
) -> List[str]:
    """Resolve the sanitized path segments of ``folder_id``, root first.

    Walks ``parentId`` links upward. The walk stops at a missing parent
    (the chain is rooted there) or at an ID already in ``visited`` (a
    cycle: the path is truncated at the repeat).

    Args:
        folder_id: Folder to resolve; None resolves to the root (no segments).
        folder_map: ID -> folder, either a Folder model or a plain dict
            with ``name``/``parentId`` keys.
        visited: IDs already on the path. Pass a set to observe the walk;
            a fresh one is used otherwise.
        sanitize: Name-to-segment conversion.

    Returns:
        Path segments from the top-level folder down to ``folder_id``.
    """
    if visited is None:
        visited = set()

    segments: List[str] = []
    current = folder_id
    while current:
        if current in visited:
            logger.warning(f"Cycle in folder parent chain at {current}; truncating path")
            break
        folder = folder_map.get(current)
        if folder is None:
            break
        visited.add(current)
        segments.append(sanitize(str(_field(folder, "name") or "")))
        current = _field(folder, "parent_id", "parentId")

    segments.reverse()
    return segments


def order_parents_first(folders: Iterable[Any]) -> List[Any]:
    """Order folders so every folder comes after its parent.

    Depth-first from the roots (folders whose parent is absent from the
    input); siblings keep their input order. Members of a parent cycle
    keep their relative input order after everything else.
    """
    items = list(folders)
    ids = {_field(f, "id") for f in items if _field(f, "id")}
    children: Dict[Optional[str], List[Any]] = {}
    for folder in items:
        parent = _field(folder, "parent_id", "parentId")
        key = parent if parent in ids and parent != _field(folder, "id") else None
        children.setdefault(key, []).append(folder)

    ordered: List[Any] = []
    seen: Set[int] = set()
    stack = list(reversed(children.get(None, [])))
    while stack:
        folder = stack.pop()
        if id(folder) in seen:
            continue
        seen.add(id(folder))
        ordered.append(folder)
        stack.extend(reversed(children.get(_field(folder, "id"), [])))

    # Unreachable from a root: only cycles are left
    ordered.extend(f for f in items if id(f) not in seen)
    return ordered
