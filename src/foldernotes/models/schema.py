"""Data models for the folder notes store."""

import datetime
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

# Characters that would let an ID used as a file name leave its directory
_UNSAFE_CHARS = re.compile(r"[/\\\x00]")

# Request-body keys that carry the note body rather than metadata
BODY_KEYS = ("content", "contentHtml")


def validate_safe_path_component(value: str, field_name: str = "value") -> str:
    """Validate that a value is safe to use as a single file name.

    Note IDs become file names, and IDs of notes adopted from hand-made
    files are whatever the file was called, so spaces and dots are
    allowed. Rejected are:
    - Empty values
    - Path separators (/, \\) and NUL
    - The navigation names "." and ".."

    Args:
        value: The string to validate
        field_name: Name of the field for error messages

    Returns:
        The validated value (unchanged)

    Raises:
        ValueError: If the value could escape its directory
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")

    if _UNSAFE_CHARS.search(value):
        raise ValueError(f"{field_name} cannot contain path separators")

    if set(value) == {"."}:
        raise ValueError(f"{field_name} cannot be a '.' or '..' reference")

    return value


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time in the ISO form used for ``createdAt`` defaults."""
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


# Thread-safe counter for uniqueness (seeded from PID for cross-process safety)
_id_lock = threading.Lock()
_last_timestamp = 0
_counter = (
    os.getpid() * 7
) % 1_000_000  # PID-based seed prevents multiprocess collisions


def generate_id() -> str:
    """Generate a timestamp-based ID with guaranteed uniqueness.

    Returns:
        A string in format "YYYYMMDDTHHMMSSsssssscccccc" where:
        - YYYYMMDD is the date
        - T is the ISO 8601 date/time separator
        - HHMMSS is the time (hours, minutes, seconds)
        - ssssss is the 6-digit microsecond component
        - cccccc is a 6-digit counter for cross-process and same-microsecond uniqueness
    """
    global _last_timestamp, _counter

    with _id_lock:
        now = utc_now()
        current_timestamp = int(now.timestamp() * 1_000_000)

        # If multiple IDs generated in same microsecond, increment counter
        if current_timestamp == _last_timestamp:
            _counter += 1
        else:
            _last_timestamp = current_timestamp
            _counter = (os.getpid() * 7) % 1_000_000

        _counter %= 1_000_000

        date_time = now.strftime("%Y%m%dT%H%M%S")
        return f"{date_time}{now.microsecond:06d}{_counter:06d}"


class Note(BaseModel):
    """A note: open metadata mapping plus a Markdown body.

    ``folder_id`` is None for notes in the Uncategorized bucket.
    """

    id: str = Field(..., description="Stable note identifier")
    folder_id: Optional[str] = Field(
        default=None, alias="folderId", description="Containing folder ID"
    )
    title: Optional[str] = Field(default=None, description="Display title")
    content: str = Field(default="", description="Markdown body")
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Every other front-matter field"
    )

    model_config = {"populate_by_name": True}

    @field_validator("folder_id", "title", mode="before")
    @classmethod
    def _scalar_to_str(cls, value: Any) -> Any:
        # Hand-edited YAML turns `title: 2024` into an int
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("content", mode="before")
    @classmethod
    def _body_to_str(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Note":
        """Build a note from a flat request body.

        ``content`` (or the editor's ``contentHtml``) becomes the body,
        ``id``/``folderId``/``title`` are lifted out, the rest is metadata.
        """
        data = dict(payload)
        body = ""
        for key in BODY_KEYS:
            value = data.pop(key, None)
            if value and not body:
                body = value
        return cls(
            id=str(data.pop("id")),
            folder_id=data.pop("folderId", None),
            title=data.pop("title", None),
            content=body,
            metadata=data,
        )

    def front_matter(self) -> Dict[str, Any]:
        """Metadata as written to the file header."""
        fields = dict(self.metadata)
        fields["id"] = self.id
        fields["title"] = self.title
        fields["folderId"] = self.folder_id
        return fields

    def to_dict(self) -> Dict[str, Any]:
        """Flatten back into the request-layer shape."""
        data = dict(self.metadata)
        data.update(
            id=self.id,
            title=self.title,
            folderId=self.folder_id,
            content=self.content,
        )
        return data


class Folder(BaseModel):
    """A logical folder. Its physical path is derived, never stored."""

    id: Optional[str] = Field(default=None, description="Stable folder identifier")
    parent_id: Optional[str] = Field(
        default=None, alias="parentId", description="Parent folder ID"
    )
    name: str = Field(default="", description="Display name")
    icon: Optional[str] = Field(default="default", description="Display icon key")
    color: Optional[str] = Field(default=None, description="Display colour")
    created_at: Optional[Any] = Field(
        default=None, alias="createdAt", description="Opaque creation stamp"
    )

    model_config = {"populate_by_name": True}

    @field_validator("parent_id", mode="before")
    @classmethod
    def _empty_parent_is_top_level(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class FolderSidecar(BaseModel):
    """The JSON document stored inside each folder directory."""

    id: str
    icon: Optional[str] = "default"
    color: Optional[str] = None
    created_at: Optional[Any] = Field(default=None, alias="createdAt")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @classmethod
    def for_folder(cls, folder: Folder) -> "FolderSidecar":
        return cls(
            id=folder.id,
            icon=folder.icon,
            color=folder.color,
            created_at=folder.created_at,
        )


@dataclass
class ScanResult:
    """Logical view of the store plus ID -> physical path indices."""

    notes: List[Note] = field(default_factory=list)
    folders: List[Folder] = field(default_factory=list)
    folder_index: Dict[str, Path] = field(default_factory=dict)
    note_index: Dict[str, Path] = field(default_factory=dict)


@dataclass
class ReconcileReport:
    """What a reconciliation pass did, folder by folder."""

    created: List[str] = field(default_factory=list)
    moved: List[str] = field(default_factory=list)
    merged: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def merge_performed(self) -> bool:
        """True when a rename collided with an existing directory."""
        return bool(self.merged)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": list(self.created),
            "moved": list(self.moved),
            "merged": list(self.merged),
            "unchanged": list(self.unchanged),
            "failed": dict(self.failed),
            "merge_performed": self.merge_performed,
        }


@dataclass
class MigrationReport:
    """Outcome of a legacy store migration."""

    skipped: bool = False
    folders_created: int = 0
    notes_migrated: int = 0
    notes_uncategorized: int = 0
    notes_failed: List[str] = field(default_factory=list)
    backups: List[Path] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skipped": self.skipped,
            "folders_created": self.folders_created,
            "notes_migrated": self.notes_migrated,
            "notes_uncategorized": self.notes_uncategorized,
            "notes_failed": list(self.notes_failed),
            "backups": [str(p) for p in self.backups],
        }
