"""Legacy store migration.

Older versions kept every note as a flat file in one ``notes`` directory
and every folder as a JSON record in a ``folders`` directory, with folder
membership carried in each note's ``folderId`` field. This module rebuilds
that layout as a physical folder tree, once, before the first scan.

The source directories are renamed to ``*_old_backup`` afterwards rather
than deleted, which also makes the next startup a no-op.
"""
import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

from foldernotes.config import LEGACY_BACKUP_SUFFIX, StoreLayout
from foldernotes.exceptions import MigrationError
from foldernotes.models.schema import (
    FolderSidecar,
    MigrationReport,
    Note,
    validate_safe_path_component,
)
from foldernotes.storage.markdown_codec import MarkdownCodec
from foldernotes.storage.path_resolver import resolve_segments
from foldernotes.storage.sidecar import write_sidecar

logger = logging.getLogger(__name__)

# Derived fields of the old JSON note format, rebuilt by the editor on load
_DERIVED_NOTE_FIELDS = ("contentPlain", "contentHtmlArray")


class LegacyMigrator:
    """Moves a flat legacy store into the folder tree.

    Args:
        layout: Physical layout of the target store.
        notes_dir: Legacy flat notes directory.
        folders_dir: Legacy directory of folder JSON records.
        codec: Note codec; a default MarkdownCodec is created if omitted.
    """

    def __init__(
        self,
        layout: StoreLayout,
        notes_dir: Path,
        folders_dir: Path,
        codec: Optional[MarkdownCodec] = None,
    ):
        self.layout = layout
        self.notes_dir = notes_dir
        self.folders_dir = folders_dir
        self.codec = codec or MarkdownCodec()

    @property
    def has_old_notes(self) -> bool:
        return self.notes_dir.is_dir()

    @property
    def has_old_folders(self) -> bool:
        return self.folders_dir.is_dir()

    @property
    def needed(self) -> bool:
        return self.has_old_notes or self.has_old_folders

    def migrate(self) -> MigrationReport:
        """Run the migration if a legacy store is present.

        Per-folder and per-note failures are logged and counted; the run
        carries on with the next item.

        Raises:
            MigrationError: If the legacy directories cannot be listed or
                cannot be renamed to their backup names afterwards.
        """
        report = MigrationReport()
        if not self.needed:
            report.skipped = True
            return report

        logger.info(f"Legacy store found under {self.layout.root}, migrating")
        self.layout.uncategorized_path.mkdir(parents=True, exist_ok=True)

        folder_paths: Dict[str, Path] = {}
        if self.has_old_folders:
            records = self._load_folder_records()
            folder_paths = self._create_folders(records, report)
        if self.has_old_notes:
            self._migrate_notes(folder_paths, report)

        for source in (self.notes_dir, self.folders_dir):
            if source.is_dir():
                report.backups.append(self._backup(source))

        logger.info(
            f"Migration finished: {report.folders_created} folders, "
            f"{report.notes_migrated} notes ({report.notes_uncategorized} "
            f"uncategorized, {len(report.notes_failed)} failed)"
        )
        return report

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def _load_folder_records(self) -> Dict[str, Dict[str, Any]]:
        records: Dict[str, Dict[str, Any]] = {}
        for path in self._list_files(self.folders_dir):
            if path.suffix != ".json":
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable legacy folder {path}: {e}")
                continue

            # One record per file, or an exported list of records
            for record in data if isinstance(data, list) else [data]:
                if not isinstance(record, dict):
                    logger.warning(f"Skipping non-object folder record in {path}")
                    continue
                folder_id = str(record.get("id") or path.stem)
                records[folder_id] = dict(record, id=folder_id)
        return records

    def _create_folders(
        self, records: Dict[str, Dict[str, Any]], report: MigrationReport
    ) -> Dict[str, Path]:
        """Create one directory plus sidecar per record; return id -> path."""
        folder_paths: Dict[str, Path] = {}
        for folder_id, record in records.items():
            segments = resolve_segments(folder_id, records)
            if not segments:
                continue
            if self.layout.is_reserved(segments[0], at_root=True) or any(
                self.layout.is_reserved(s, at_root=False) for s in segments[1:]
            ):
                logger.warning(
                    f"Legacy folder {folder_id} resolves to reserved path "
                    f"{'/'.join(segments)}; its notes go to "
                    f"{self.layout.uncategorized_dir}"
                )
                continue

            path = self.layout.root.joinpath(*segments)
            sidecar = FolderSidecar(
                id=folder_id,
                icon=record.get("icon") or "default",
                color=record.get("color"),
                created_at=record.get("createdAt"),
            )
            try:
                path.mkdir(parents=True, exist_ok=True)
                write_sidecar(path, self.layout.sidecar_filename, sidecar)
            except OSError as e:
                logger.warning(f"Could not create folder {path} for {folder_id}: {e}")
                continue
            folder_paths[folder_id] = path
            report.folders_created += 1
        return folder_paths

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def _migrate_notes(
        self, folder_paths: Dict[str, Path], report: MigrationReport
    ) -> None:
        for path in self._list_files(self.notes_dir):
            if self.layout.is_note_file(path.name):
                self._migrate_markdown_note(path, folder_paths, report)
            elif path.suffix == ".json":
                self._migrate_json_note(path, folder_paths, report)

    def _migrate_markdown_note(
        self, path: Path, folder_paths: Dict[str, Path], report: MigrationReport
    ) -> None:
        try:
            metadata, _ = self.codec.decode(path.read_text(encoding="utf-8"))
            target, uncategorized = self._target_dir(metadata.get("folderId"), folder_paths)
            shutil.copy2(path, target / path.name)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Migrating note {path} failed, copying to uncategorized: {e}")
            try:
                shutil.copy2(path, self.layout.uncategorized_path / path.name)
            except OSError as fallback_error:
                logger.error(f"Could not rescue note {path}: {fallback_error}")
                report.notes_failed.append(path.name)
                return
            uncategorized = True
        self._count(report, uncategorized)

    def _migrate_json_note(
        self, path: Path, folder_paths: Dict[str, Path], report: MigrationReport
    ) -> None:
        """Convert an old JSON note record into a Markdown note file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("note record is not a JSON object")
            for key in _DERIVED_NOTE_FIELDS:
                data.pop(key, None)
            data["id"] = validate_safe_path_component(
                str(data.get("id") or path.stem), "id"
            )
            note = Note.from_payload(data)
            text = self.codec.encode_note(note)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            # JSONDecodeError and pydantic ValidationError are ValueErrors
            logger.warning(f"Skipping unusable legacy note {path}: {e}")
            report.notes_failed.append(path.name)
            return
        filename = f"{note.id}{self.layout.note_extension}"

        target, uncategorized = self._target_dir(note.folder_id, folder_paths)
        try:
            (target / filename).write_text(text, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Writing note {note.id} to {target} failed: {e}")
            try:
                (self.layout.uncategorized_path / filename).write_text(
                    text, encoding="utf-8"
                )
            except OSError as fallback_error:
                logger.error(f"Could not rescue note {path}: {fallback_error}")
                report.notes_failed.append(path.name)
                return
            uncategorized = True
        self._count(report, uncategorized)

    def _target_dir(
        self, folder_id: Any, folder_paths: Dict[str, Path]
    ) -> Tuple[Path, bool]:
        if folder_id and str(folder_id) in folder_paths:
            return folder_paths[str(folder_id)], False
        return self.layout.uncategorized_path, True

    @staticmethod
    def _count(report: MigrationReport, uncategorized: bool) -> None:
        report.notes_migrated += 1
        if uncategorized:
            report.notes_uncategorized += 1

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _list_files(directory: Path) -> Iterator[Path]:
        try:
            paths = sorted(directory.iterdir())
        except OSError as e:
            raise MigrationError(
                f"Cannot list legacy directory {directory.name}",
                source=str(directory),
                original_error=e,
            ) from e
        return (p for p in paths if p.is_file())

    @staticmethod
    def _backup(source: Path) -> Path:
        """Rename ``source`` to ``<name>_old_backup``.

        An earlier backup keeps its name; the new one is nested inside it
        as ``<name>.<n>`` so the backup directory stays a single reserved
        name.
        """
        backup = source.with_name(f"{source.name}{LEGACY_BACKUP_SUFFIX}")
        if backup.exists():
            n = 1
            while (backup / f"{source.name}.{n}").exists():
                n += 1
            destination = backup / f"{source.name}.{n}"
        else:
            destination = backup
        try:
            source.rename(destination)
        except OSError as e:
            raise MigrationError(
                f"Cannot rename legacy directory {source.name} to its backup name",
                source=str(source),
                original_error=e,
            ) from e
        logger.info(f"Legacy directory {source} kept as {destination}")
        return destination
