"""Folder reconciliation.

Brings the physical directory tree in line with a desired logical folder
list: creates missing directories, renames/moves directories whose derived
path changed, merges into an existing directory on a name collision, and
rewrites every sidecar along the way.
"""
import logging
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Set

from foldernotes.config import StoreLayout
from foldernotes.models.schema import (
    Folder,
    FolderSidecar,
    ReconcileReport,
    generate_id,
    utc_now_iso,
)
from foldernotes.storage.path_resolver import order_parents_first, resolve_segments
from foldernotes.storage.sidecar import read_sidecar, write_sidecar
from foldernotes.utils import sanitize_filename

logger = logging.getLogger(__name__)


class FolderReconciler:
    """Applies a desired folder list to the directory tree.

    Args:
        layout: Physical layout of the store.
    """

    def __init__(self, layout: StoreLayout) -> None:
        self.layout = layout

    def reconcile(
        self, desired: List[Folder], index: Dict[str, Path]
    ) -> ReconcileReport:
        """Reconcile ``desired`` against the scanned ``index`` (mutated in place).

        Folders are processed parents first. After every move the index is
        rewritten for the moved directory and everything below it, so a
        child later in the same batch resolves against its parent's new
        location. A failure on one folder is recorded and the pass
        continues.

        Folders present on disk but absent from ``desired`` are left alone;
        removal only happens through an explicit delete.
        """
        report = ReconcileReport()
        for folder in desired:
            if not folder.id:
                folder.id = generate_id()
        by_id = {folder.id: folder for folder in desired}
        pending: Set[str] = set(by_id)

        for folder in order_parents_first(desired):
            pending.discard(folder.id)
            try:
                self._reconcile_one(folder, by_id, index, report, pending)
            except OSError as e:
                logger.warning(f"Reconciling folder {folder.id} ({folder.name!r}) failed: {e}")
                report.failed[folder.id] = str(e)

        logger.info(
            f"Reconciled {len(desired)} folders: {len(report.created)} created, "
            f"{len(report.moved)} moved, {len(report.merged)} merged, "
            f"{len(report.failed)} failed"
        )
        return report

    def desired_path(
        self, folder: Folder, by_id: Dict[str, Folder], index: Dict[str, Path]
    ) -> Path:
        """Where ``folder`` should live given the (possibly updated) index."""
        return self._parent_path(folder, by_id, index) / sanitize_filename(folder.name)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _parent_path(
        self, folder: Folder, by_id: Dict[str, Folder], index: Dict[str, Path]
    ) -> Path:
        parent_id = folder.parent_id
        if not parent_id or parent_id == folder.id:
            return self.layout.root
        if parent_id in index:
            return index[parent_id]
        if parent_id in by_id:
            # Parent not on disk yet (or failed): derive from the desired list
            segments = resolve_segments(parent_id, by_id, visited={folder.id})
            return self.layout.root.joinpath(*segments)
        logger.warning(
            f"Folder {folder.id} references unknown parent {parent_id}; "
            "placing it at the root"
        )
        return self.layout.root

    def _reconcile_one(
        self,
        folder: Folder,
        by_id: Dict[str, Folder],
        index: Dict[str, Path],
        report: ReconcileReport,
        pending: Set[str],
    ) -> None:
        target = self.desired_path(folder, by_id, index)
        at_root = target.parent == self.layout.root
        if self.layout.is_reserved(target.name, at_root):
            logger.warning(f"Folder {folder.id} resolves to reserved name {target.name!r}")
            report.failed[folder.id] = f"reserved name: {target.name}"
            return

        current = index.get(folder.id)
        if current is None:
            if target.exists():
                self._stash_pending_occupant(folder.id, target, index, pending)
            owner = _owner_of(index, target, folder.id)
            if owner is not None:
                # The new folder shares the directory; the last sidecar wins
                logger.warning(
                    f"New folder {folder.id} collides with {owner} at {target}, merging"
                )
                report.merged.append(folder.id)
            else:
                target.mkdir(parents=True, exist_ok=True)
                report.created.append(folder.id)
                logger.info(f"Created folder {target} for {folder.id}")
        elif current == target:
            report.unchanged.append(folder.id)
        else:
            if _is_within(target, current):
                logger.warning(f"Refusing to move {current} into its own subtree {target}")
                report.failed[folder.id] = "cannot move a folder into itself"
                return
            if target.exists():
                self._stash_pending_occupant(folder.id, target, index, pending)
                current = index[folder.id]
            if target.exists():
                self._merge(current, target)
                report.merged.append(folder.id)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(current), str(target))
                report.moved.append(folder.id)
                logger.info(f"Moved folder {folder.id}: {current} -> {target}")
            _rebase_index(index, current, target)

        index[folder.id] = target
        self._write_sidecar(folder, target)

    def _stash_pending_occupant(
        self,
        folder_id: str,
        target: Path,
        index: Dict[str, Path],
        pending: Set[str],
    ) -> None:
        """Move a not-yet-processed folder out of ``target``.

        Two folders swapping names would otherwise merge. The occupant is
        parked under a temporary name and reaches its own destination when
        its turn comes.
        """
        occupant = next(
            (
                other_id
                for other_id, path in index.items()
                if path == target and other_id != folder_id and other_id in pending
            ),
            None,
        )
        if occupant is None:
            return
        parked = target.with_name(f"{target.name}.{occupant}.moving")
        shutil.move(str(target), str(parked))
        _rebase_index(index, target, parked)
        logger.debug(f"Parked folder {occupant} at {parked}")

    def _merge(self, source: Path, target: Path) -> None:
        """Union ``source`` into ``target``; same-named files are overwritten."""
        logger.warning(f"Folder name collision, merging {source} into {target}")
        shutil.copytree(source, target, dirs_exist_ok=True)
        shutil.rmtree(source)

    def _write_sidecar(self, folder: Folder, directory: Path) -> None:
        sidecar = FolderSidecar.for_folder(folder)
        if sidecar.created_at is None:
            existing = read_sidecar(directory, self.layout.sidecar_filename)
            sidecar.created_at = (
                existing.created_at if existing and existing.created_at else utc_now_iso()
            )
        write_sidecar(directory, self.layout.sidecar_filename, sidecar)


def _is_within(path: Path, ancestor: Path) -> bool:
    return path == ancestor or ancestor in path.parents


def _owner_of(index: Dict[str, Path], path: Path, exclude: str) -> Optional[str]:
    """ID of another folder indexed at exactly ``path``, if any."""
    return next(
        (other for other, p in index.items() if p == path and other != exclude),
        None,
    )


def _rebase_index(index: Dict[str, Path], old: Path, new: Path) -> None:
    """Point every index entry at or below ``old`` to the same place under ``new``."""
    for key, path in list(index.items()):
        if _is_within(path, old):
            index[key] = new / path.relative_to(old)

