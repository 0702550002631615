"""Configuration module for the folder notes store."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from foldernotes import __version__
from foldernotes.exceptions import ConfigurationError

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: survives reinstalls, lives alongside logs and metrics
_USER_ENV = Path.home() / ".foldernotes" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_DIRS = (
    "trash",
    "settings",
    "backups",
    ".git",
    "node_modules",
    "tasks",
    "questions",
    "notes_old_backup",
    "folders_old_backup",
)

# Appended to a legacy directory name once it has been migrated
LEGACY_BACKUP_SUFFIX = "_old_backup"


def _env_list(name: str, default: tuple) -> FrozenSet[str]:
    raw = os.getenv(name)
    if raw is None:
        return frozenset(default)
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class StoreLayout:
    """Physical layout of one store root.

    Passed explicitly to every storage component so none of them depends
    on the process-wide ``config`` instance.
    """

    root: Path
    note_extension: str = ".md"
    sidecar_filename: str = ".folder.json"
    uncategorized_dir: str = "Uncategorized"
    system_dirs: FrozenSet[str] = frozenset(DEFAULT_SYSTEM_DIRS)

    @property
    def uncategorized_path(self) -> Path:
        return self.root / self.uncategorized_dir

    def is_note_file(self, name: str) -> bool:
        return name.endswith(self.note_extension) and name != self.sidecar_filename

    def is_reserved(self, name: str, at_root: bool) -> bool:
        """Whether ``name`` can never be a logical folder at this level.

        System directories are reserved at the store root only; hidden
        directories (``.git``, editor caches) are reserved at every level.
        """
        if name.startswith("."):
            return True
        if not at_root:
            return False
        return name in self.system_dirs or name == self.uncategorized_dir


class NoteStoreConfig(BaseModel):
    """Configuration for the note store."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("FOLDERNOTES_BASE_DIR", "."))
    )
    # Root of the physical folder tree
    storage_root: Path = Field(
        default_factory=lambda: Path(os.getenv("FOLDERNOTES_STORAGE_ROOT", "data"))
    )
    note_extension: str = Field(
        default_factory=lambda: os.getenv("FOLDERNOTES_NOTE_EXTENSION", ".md")
    )
    sidecar_filename: str = Field(
        default_factory=lambda: os.getenv("FOLDERNOTES_SIDECAR_FILENAME", ".folder.json")
    )
    uncategorized_dir: str = Field(
        default_factory=lambda: os.getenv("FOLDERNOTES_UNCATEGORIZED_DIR", "Uncategorized")
    )
    # Reserved top-level names that are never interpreted as folders
    system_dirs: FrozenSet[str] = Field(
        default_factory=lambda: _env_list("FOLDERNOTES_SYSTEM_DIRS", DEFAULT_SYSTEM_DIRS)
    )
    # Flat legacy stores (one .md per note, one .json per folder), relative
    # to storage_root
    legacy_notes_dir: str = Field(
        default_factory=lambda: os.getenv("FOLDERNOTES_LEGACY_NOTES_DIR", "notes")
    )
    legacy_folders_dir: str = Field(
        default_factory=lambda: os.getenv("FOLDERNOTES_LEGACY_FOLDERS_DIR", "folders")
    )
    migrate_on_startup: bool = Field(
        default_factory=lambda: os.getenv(
            "FOLDERNOTES_MIGRATE_ON_STARTUP", "true"
        ).lower()
        in ("true", "1", "yes")
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("FOLDERNOTES_SERVER_NAME", "foldernotes"))
    server_version: str = Field(default=__version__)
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("FOLDERNOTES_LOG_DIR"))
            if os.getenv("FOLDERNOTES_LOG_DIR")
            else None
        )
    )

    model_config = {"validate_assignment": True}

    @model_validator(mode="after")
    def _validate_layout(self) -> "NoteStoreConfig":
        """Reject layouts the scanner could not tell apart."""
        if not self.note_extension.startswith("."):
            raise ConfigurationError(
                "note_extension must start with '.'", config_key="note_extension"
            )
        if self.sidecar_filename.endswith(self.note_extension):
            raise ConfigurationError(
                "sidecar_filename must not use the note extension",
                config_key="sidecar_filename",
            )
        if self.uncategorized_dir in self.system_dirs:
            raise ConfigurationError(
                "uncategorized_dir cannot be a system directory",
                config_key="uncategorized_dir",
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        path = path.expanduser()
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_storage_root(self) -> Path:
        """Get the absolute store root (not created here)."""
        return self.get_absolute_path(self.storage_root).resolve()

    def get_layout(self) -> StoreLayout:
        """Snapshot the physical layout for the storage components.

        The legacy store directories and their migrated backups are
        reserved too, so neither is ever adopted as an ordinary folder.
        """
        legacy = (self.legacy_notes_dir, self.legacy_folders_dir)
        return StoreLayout(
            root=self.get_storage_root(),
            note_extension=self.note_extension,
            sidecar_filename=self.sidecar_filename,
            uncategorized_dir=self.uncategorized_dir,
            system_dirs=frozenset(self.system_dirs)
            | set(legacy)
            | {f"{name}{LEGACY_BACKUP_SUFFIX}" for name in legacy},
        )

    def get_legacy_notes_path(self) -> Path:
        return self.get_storage_root() / self.legacy_notes_dir

    def get_legacy_folders_path(self) -> Path:
        return self.get_storage_root() / self.legacy_folders_dir


# Create a global config instance
config = NoteStoreConfig()
