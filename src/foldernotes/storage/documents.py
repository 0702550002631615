"""Application JSON documents kept beside the folder tree.

Settings, the trash list, tasks and questions each live in a reserved
top-level directory as ``<name>/<name>.json``. The scanner never enters
these directories.
"""
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from foldernotes.exceptions import ErrorCode, StorageError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENTS: Dict[str, Any] = {
    "settings": {"theme": "light", "foldersOpen": [], "autoSave": True},
    "trash": [],
    "tasks": [],
    "questions": [],
}


class DocumentStore:
    """Reads and writes the named JSON documents under ``root``."""

    def __init__(self, root: Path):
        self.root = root

    def path_for(self, name: str) -> Path:
        if name not in DEFAULT_DOCUMENTS:
            raise ValidationError(
                f"Unknown document '{name}'",
                field="name",
                value=name,
            )
        return self.root / name / f"{name}.json"

    def get(self, name: str) -> Any:
        """Load a document, or a fresh copy of its default.

        A missing or corrupt file yields the default; the corrupt file is
        left in place until the next save overwrites it.
        """
        path = self.path_for(name)
        if not path.is_file():
            return copy.deepcopy(DEFAULT_DOCUMENTS[name])
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Unreadable {name} document {path}, using default: {e}")
            return copy.deepcopy(DEFAULT_DOCUMENTS[name])

    def save(self, name: str, data: Any) -> Path:
        """Replace a document atomically."""
        path = self.path_for(name)
        temp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(temp_path, path)
        except (OSError, TypeError) as e:
            raise StorageError(
                f"Failed to save {name}",
                operation="save_document",
                path=str(path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        logger.debug(f"Saved {name} document to {path}")
        return path

    def clear(self, name: str) -> bool:
        """Delete a document; returns False if there was nothing to delete."""
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(
                f"Failed to clear {name}",
                operation="clear_document",
                path=str(path),
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e
        return True
