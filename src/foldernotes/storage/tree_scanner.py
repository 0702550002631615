"""Directory tree scanner.

Walks the store root and rebuilds the logical view from what is on
disk. Physical location is authoritative: a note's ``folderId`` is the
ID of the directory it sits in, whatever its own header says, so the
returned tree always matches what a person browsing the folders sees.
"""
import logging
import os
from pathlib import Path
from typing import Optional

from foldernotes.config import StoreLayout
from foldernotes.models.schema import (
    Folder,
    FolderSidecar,
    ScanResult,
    generate_id,
    utc_now_iso,
)
from foldernotes.storage.markdown_codec import MarkdownCodec
from foldernotes.storage.sidecar import read_sidecar, write_sidecar

logger = logging.getLogger(__name__)


class TreeScanner:
    """Depth-first scanner producing folder/note lists and ID indices.

    Args:
        layout: Physical layout of the store.
        codec: Note codec; a default MarkdownCodec is created if omitted.
    """

    def __init__(self, layout: StoreLayout, codec: Optional[MarkdownCodec] = None):
        self.layout = layout
        self.codec = codec or MarkdownCodec()

    def scan(self) -> ScanResult:
        """Walk the whole store.

        Raises:
            OSError: If the Uncategorized bucket cannot be created, which
                means the store root itself is unusable.
        """
        self.layout.uncategorized_path.mkdir(parents=True, exist_ok=True)
        result = ScanResult()
        self._scan_directory(self.layout.root, None, result, at_root=True)
        logger.debug(
            f"Scanned {self.layout.root}: {len(result.folders)} folders, "
            f"{len(result.notes)} notes"
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _scan_directory(
        self,
        directory: Path,
        parent_id: Optional[str],
        result: ScanResult,
        at_root: bool = False,
    ) -> None:
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            logger.warning(f"Cannot list {directory}, skipping: {e}")
            return

        for entry in entries:
            path = Path(entry.path)
            try:
                if entry.is_dir(follow_symlinks=False):
                    if at_root and entry.name == self.layout.uncategorized_dir:
                        # Bucket contents are top-level notes, not a folder
                        self._scan_directory(path, None, result)
                    elif self.layout.is_reserved(entry.name, at_root):
                        continue
                    else:
                        self._scan_folder(path, parent_id, result)
                elif entry.is_file() and self.layout.is_note_file(entry.name):
                    self._scan_note(path, parent_id, result)
            except OSError as e:
                logger.warning(f"Skipping {path}: {e}")

    def _scan_folder(
        self, path: Path, parent_id: Optional[str], result: ScanResult
    ) -> None:
        sidecar = read_sidecar(path, self.layout.sidecar_filename)
        if sidecar is not None and sidecar.id in result.folder_index:
            # A directory copied by hand carries its original's sidecar
            logger.warning(
                f"Folder {path} duplicates ID {sidecar.id} of "
                f"{result.folder_index[sidecar.id]}; assigning a new ID"
            )
            sidecar = FolderSidecar(
                id=generate_id(),
                icon=sidecar.icon,
                color=sidecar.color,
                created_at=sidecar.created_at,
            )
            self._persist_sidecar(path, sidecar)
        elif sidecar is None:
            sidecar = FolderSidecar(id=generate_id(), created_at=utc_now_iso())
            self._persist_sidecar(path, sidecar)

        result.folder_index[sidecar.id] = path
        result.folders.append(
            Folder(
                id=sidecar.id,
                parent_id=parent_id,
                name=path.name,
                icon=sidecar.icon or "default",
                color=sidecar.color,
                created_at=sidecar.created_at or utc_now_iso(),
            )
        )
        self._scan_directory(path, sidecar.id, result)

    def _persist_sidecar(self, path: Path, sidecar: FolderSidecar) -> None:
        try:
            write_sidecar(path, self.layout.sidecar_filename, sidecar)
            logger.info(f"Adopted folder {path} as {sidecar.id}")
        except OSError as e:
            # The folder still appears, with an ID that changes every scan
            logger.warning(f"Could not write sidecar for {path}: {e}")

    def _scan_note(
        self, path: Path, parent_id: Optional[str], result: ScanResult
    ) -> None:
        note = self.codec.read_note(path)
        if note is None:
            return
        if note.id in result.note_index:
            logger.warning(
                f"Note {note.id} found at {path} and "
                f"{result.note_index[note.id]}; keeping the first"
            )
            return
        note.folder_id = parent_id
        result.notes.append(note)
        result.note_index[note.id] = path
