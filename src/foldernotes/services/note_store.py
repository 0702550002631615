"""Service layer for the folder notes store.

``NoteStore`` is the single process-scoped object the request layer talks
to. Every operation re-scans the tree (the filesystem is the only source
of truth), then reads or mutates it through the storage components.
"""
import json
import logging
import os
import shutil
import threading
import weakref
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from foldernotes.config import NoteStoreConfig, StoreLayout, config
from foldernotes.exceptions import (
    ErrorCode,
    MigrationError,
    NoteNotFoundError,
    StorageError,
    ValidationError,
)
from foldernotes.models.schema import (
    Folder,
    MigrationReport,
    Note,
    ReconcileReport,
    ScanResult,
    utc_now_iso,
    validate_safe_path_component,
)
from foldernotes.observability import metrics, timed_operation
from foldernotes.storage import (
    DocumentStore,
    FolderReconciler,
    LegacyMigrator,
    MarkdownCodec,
    TreeScanner,
)

logger = logging.getLogger(__name__)

BACKUP_DIR = "backups"


class NoteStore:
    """Notes and folders stored as a directory tree of Markdown files.

    Saves and deletes of the same note ID are serialized by a per-note
    lock; folder reconciliation, folder deletion, bulk deletion and
    migration hold a store-wide tree lock.
    """

    def __init__(
        self,
        layout: Optional[StoreLayout] = None,
        legacy_notes_dir: Optional[Path] = None,
        legacy_folders_dir: Optional[Path] = None,
        migrate_on_startup: Optional[bool] = None,
    ):
        """Initialize the store.

        Args:
            layout: Physical layout. Taken from the global config if None.
            legacy_notes_dir: Legacy flat notes directory. Defaults to the
                configured name under the store root.
            legacy_folders_dir: Legacy folder records directory. Defaults
                to the configured name under the store root.
            migrate_on_startup: Run the legacy migration in
                :meth:`initialize`. Taken from the global config if None.
        """
        self.layout = layout or config.get_layout()
        self.legacy_notes_dir = legacy_notes_dir or self.layout.root / config.legacy_notes_dir
        self.legacy_folders_dir = (
            legacy_folders_dir or self.layout.root / config.legacy_folders_dir
        )
        self.migrate_on_startup = (
            config.migrate_on_startup if migrate_on_startup is None else migrate_on_startup
        )

        self.codec = MarkdownCodec()
        self.scanner = TreeScanner(self.layout, self.codec)
        self.reconciler = FolderReconciler(self.layout)
        self.documents = DocumentStore(self.layout.root)
        self.last_migration: Optional[MigrationReport] = None

        self.tree_lock = threading.RLock()
        self._note_locks: weakref.WeakValueDictionary[str, threading.RLock] = (
            weakref.WeakValueDictionary()
        )
        self._note_locks_lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: Optional[NoteStoreConfig] = None) -> "NoteStore":
        cfg = cfg or config
        return cls(
            layout=cfg.get_layout(),
            legacy_notes_dir=cfg.get_legacy_notes_path(),
            legacy_folders_dir=cfg.get_legacy_folders_path(),
            migrate_on_startup=cfg.migrate_on_startup,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> "NoteStore":
        """Prepare the store root and run a pending legacy migration.

        A failed migration is logged and leaves the legacy directories in
        place for the next start; the store itself stays usable.

        Raises:
            StorageError: If the store root cannot be created or written.
        """
        root = self.layout.root
        try:
            root.mkdir(parents=True, exist_ok=True)
            self.layout.uncategorized_path.mkdir(exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Store root {root} is not usable",
                operation="initialize",
                path=str(root),
                code=ErrorCode.STORAGE_ROOT_UNAVAILABLE,
                original_error=e,
            ) from e
        if not os.access(root, os.W_OK | os.X_OK):
            raise StorageError(
                f"Store root {root} is not writable",
                operation="initialize",
                path=str(root),
                code=ErrorCode.STORAGE_ROOT_UNAVAILABLE,
            )

        if self.migrate_on_startup:
            try:
                self.migrate()
            except MigrationError as e:
                logger.error(f"Legacy migration failed, will retry on next start: {e}")
        logger.info(f"Note store ready at {root}")
        return self

    def migrate(self) -> MigrationReport:
        """Migrate a legacy flat store, if one is present."""
        migrator = LegacyMigrator(
            self.layout, self.legacy_notes_dir, self.legacy_folders_dir, self.codec
        )
        with self.tree_lock, timed_operation("migrate") as op:
            report = migrator.migrate()
            op["skipped"] = report.skipped
            self.last_migration = report
            return report

    # =========================================================================
    # Reads
    # =========================================================================

    def scan(self) -> ScanResult:
        """Walk the tree.

        Raises:
            StorageError: If the store root is unusable.
        """
        try:
            return self.scanner.scan()
        except OSError as e:
            raise StorageError(
                "Cannot scan the store root",
                operation="scan",
                path=str(self.layout.root),
                code=ErrorCode.STORAGE_ROOT_UNAVAILABLE,
                original_error=e,
            ) from e

    def list_notes(self) -> List[Note]:
        with timed_operation("list_notes") as op:
            notes = self.scan().notes
            op["count"] = len(notes)
            return notes

    def list_folders(self) -> List[Folder]:
        with timed_operation("list_folders") as op:
            folders = self.scan().folders
            op["count"] = len(folders)
            return folders

    def get_note(self, note_id: str) -> Note:
        """Get one note by ID.

        Raises:
            NoteNotFoundError: If no file carries that ID.
        """
        with timed_operation("get_note", note_id=note_id):
            for note in self.scan().notes:
                if note.id == note_id:
                    return note
            raise NoteNotFoundError(note_id)

    def file_structure(self) -> Dict[str, Any]:
        """Folders plus a light per-note summary, for a sidebar."""
        with timed_operation("file_structure"):
            result = self.scan()
            return {
                "folders": [folder.to_dict() for folder in result.folders],
                "notes": [
                    {
                        "id": note.id,
                        "title": note.title,
                        "folderId": note.folder_id,
                        "createdAt": note.metadata.get("createdAt"),
                        "updatedAt": note.metadata.get("updatedAt"),
                    }
                    for note in result.notes
                ],
            }

    # =========================================================================
    # Notes
    # =========================================================================

    def save_note(
        self,
        note_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        body: str = "",
        folder_id: Optional[str] = None,
    ) -> Path:
        """Write a note into its folder, removing any copy at an old path.

        An unknown ``folder_id`` files the note under Uncategorized.

        Returns:
            Path of the written file.

        Raises:
            ValidationError: If ``note_id`` cannot be used as a file name.
            StorageError: If the file cannot be written.
        """
        self._check_id(note_id, "note_id")
        with timed_operation("save_note", note_id=note_id, folder_id=folder_id) as op:
            with self._get_note_lock(note_id):
                result = self.scan()

                target_dir = self.layout.uncategorized_path
                if folder_id and folder_id in result.folder_index:
                    target_dir = result.folder_index[folder_id]
                elif folder_id:
                    logger.warning(
                        f"Note {note_id} names unknown folder {folder_id}; "
                        f"saving it under {self.layout.uncategorized_dir}"
                    )
                    folder_id = None

                fields = dict(metadata or {})
                fields["id"] = note_id
                fields["folderId"] = folder_id
                path = target_dir / f"{note_id}{self.layout.note_extension}"
                self._write_text(path, self.codec.encode(fields, body), note_id)

                old_path = result.note_index.get(note_id)
                if old_path is not None and old_path != path:
                    try:
                        old_path.unlink()
                        logger.info(f"Moved note {note_id}: {old_path} -> {path}")
                    except FileNotFoundError:
                        pass
                    except OSError as e:
                        logger.warning(f"Could not remove old copy {old_path}: {e}")

                op["path"] = path
                return path

    def delete_note(self, note_id: str) -> bool:
        """Delete a note's file.

        Returns:
            True if a file was removed, False if the note did not exist.

        Raises:
            StorageError: If the file exists but cannot be removed.
        """
        self._check_id(note_id, "note_id")
        with timed_operation("delete_note", note_id=note_id) as op:
            with self._get_note_lock(note_id):
                path = self.scan().note_index.get(note_id)
                if path is None:
                    op["existed"] = False
                    return False
                try:
                    path.unlink()
                except FileNotFoundError:
                    op["existed"] = False
                    return False
                except OSError as e:
                    raise StorageError(
                        f"Failed to delete note {note_id}",
                        operation="delete_note",
                        path=str(path),
                        code=ErrorCode.STORAGE_DELETE_FAILED,
                        original_error=e,
                    ) from e
                op["existed"] = True
                return True

    def delete_all_notes(self) -> int:
        """Remove every note file; folders and system directories stay."""
        with self.tree_lock, timed_operation("delete_all_notes") as op:
            deleted = 0
            for note_id, path in self.scan().note_index.items():
                try:
                    path.unlink()
                    deleted += 1
                except OSError as e:
                    logger.warning(f"Could not delete note {note_id} at {path}: {e}")
            op["deleted"] = deleted
            logger.info(f"Deleted {deleted} notes")
            return deleted

    # =========================================================================
    # Folders
    # =========================================================================

    def save_folders(
        self, folders: Iterable[Union[Folder, Dict[str, Any]]]
    ) -> ReconcileReport:
        """Make the directory tree match ``folders`` (the full desired list).

        Raises:
            ValidationError: If an entry is not a valid folder record.
        """
        desired = [self._to_folder(f) for f in folders]
        with self.tree_lock, timed_operation("save_folders", count=len(desired)) as op:
            result = self.scan()
            report = self.reconciler.reconcile(desired, result.folder_index)
            op["merged"] = len(report.merged)
            op["failed"] = len(report.failed)
            return report

    def delete_folder(self, folder_id: str) -> bool:
        """Remove a folder's directory with everything inside it.

        Returns:
            True if a directory was removed, False if the folder did not exist.

        Raises:
            StorageError: If the directory cannot be removed.
        """
        with self.tree_lock, timed_operation("delete_folder", folder_id=folder_id) as op:
            path = self.scan().folder_index.get(folder_id)
            if path is None:
                op["existed"] = False
                return False
            try:
                shutil.rmtree(path)
            except FileNotFoundError:
                op["existed"] = False
                return False
            except OSError as e:
                raise StorageError(
                    f"Failed to delete folder {folder_id}",
                    operation="delete_folder",
                    path=str(path),
                    code=ErrorCode.STORAGE_DELETE_FAILED,
                    original_error=e,
                ) from e
            logger.info(f"Deleted folder {folder_id} at {path}")
            op["existed"] = True
            return True

    # =========================================================================
    # Documents, backups and status
    # =========================================================================

    def get_document(self, name: str) -> Any:
        with timed_operation("get_document", name=name):
            return self.documents.get(name)

    def save_document(self, name: str, data: Any) -> Path:
        with timed_operation("save_document", name=name):
            return self.documents.save(name, data)

    def clear_document(self, name: str) -> bool:
        with timed_operation("clear_document", name=name):
            return self.documents.clear(name)

    def create_backup(self) -> Path:
        """Write a JSON snapshot of notes, folders, trash and settings.

        Returns:
            Path of the backup file under ``backups/``.
        """
        with timed_operation("create_backup") as op:
            result = self.scan()
            created_at = utc_now_iso()
            data = {
                "notes": [note.to_dict() for note in result.notes],
                "folders": [folder.to_dict() for folder in result.folders],
                "trash": self.documents.get("trash"),
                "settings": self.documents.get("settings"),
                "createdAt": created_at,
            }
            stamp = created_at.replace(":", "-").replace(".", "-")
            path = self.layout.root / BACKUP_DIR / f"backup-{stamp}.json"
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                temp_path = path.with_suffix(".tmp")
                with open(temp_path, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(temp_path, path)
            except (OSError, TypeError) as e:
                raise StorageError(
                    "Failed to write backup",
                    operation="create_backup",
                    path=str(path),
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e
            op["notes"] = len(result.notes)
            logger.info(f"Backup written to {path}")
            return path

    def status(self) -> Dict[str, Any]:
        result = self.scan()
        migrator = LegacyMigrator(
            self.layout, self.legacy_notes_dir, self.legacy_folders_dir, self.codec
        )
        return {
            "storage_root": str(self.layout.root),
            "notes": len(result.notes),
            "folders": len(result.folders),
            "legacy_store_present": migrator.needed,
            "last_migration": self.last_migration.to_dict() if self.last_migration else None,
            "metrics": metrics.get_summary(),
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_note_lock(self, note_id: str) -> threading.RLock:
        """Get or create the lock for one note ID (collected when unused)."""
        with self._note_locks_lock:
            lock = self._note_locks.get(note_id)
            if lock is None:
                lock = threading.RLock()
                self._note_locks[note_id] = lock
            return lock

    @staticmethod
    def _check_id(value: str, field: str) -> None:
        try:
            validate_safe_path_component(value, field)
        except ValueError as e:
            raise ValidationError(
                str(e), field=field, value=value, code=ErrorCode.PATH_TRAVERSAL_DETECTED
            ) from e

    @staticmethod
    def _to_folder(item: Union[Folder, Dict[str, Any]]) -> Folder:
        if isinstance(item, Folder):
            return item.model_copy()
        if not isinstance(item, dict):
            raise ValidationError("Folder entries must be objects", field="folders")
        try:
            return Folder.model_validate(item)
        except ValueError as e:
            raise ValidationError(
                f"Invalid folder record: {e}", field="folders", value=item.get("id")
            ) from e

    def _write_text(self, path: Path, text: str, note_id: str) -> None:
        temp_path = path.with_name(f"{path.name}.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8", newline="") as f:
                f.write(text)
            os.replace(temp_path, path)
        except OSError as e:
            raise StorageError(
                f"Failed to write note {note_id}",
                operation="save_note",
                path=str(path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
