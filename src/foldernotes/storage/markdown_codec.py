"""Markdown serialization for notes.

Converts between a note's metadata mapping plus body text and a
Markdown file with a YAML front-matter header:

    ---
    id: n1
    title: Hi
    ---
    Hello

The header is YAML written and read through python-frontmatter's
YAMLHandler (safe dumper/loader), so colons, quotes and other special
characters in values are escaped by YAML quoting rules. The body follows
the closing delimiter verbatim.
"""
import datetime
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import frontmatter
import yaml
from pydantic import ValidationError as PydanticValidationError

from foldernotes.models.schema import BODY_KEYS, Note

logger = logging.getLogger(__name__)

DELIMITER = "---"

# Opening delimiter, lazily-matched YAML block, closing delimiter line
_FRONT_MATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(?P<header>.*?)^---[ \t]*(?:\r?\n|\Z)",
    re.DOTALL | re.MULTILINE,
)


class MarkdownCodec:
    """Encodes and decodes notes as Markdown with front matter."""

    def __init__(self) -> None:
        self._handler = frontmatter.YAMLHandler()

    def encode(self, metadata: Dict[str, Any], body: str) -> str:
        """Render metadata and body as file text.

        None-valued fields are dropped and body keys never enter the
        header.
        """
        header_fields = {
            key: value
            for key, value in metadata.items()
            if value is not None and key not in BODY_KEYS
        }
        if header_fields:
            header = self._handler.export(header_fields)
            return f"{DELIMITER}\n{header}\n{DELIMITER}\n{body}"
        return f"{DELIMITER}\n{DELIMITER}\n{body}"

    def decode(self, text: str) -> Tuple[Dict[str, Any], str]:
        """Split file text into ``(metadata, body)``.

        A missing or malformed header yields empty metadata and the whole
        text as body; this never raises for bad input.
        """
        match = _FRONT_MATTER_RE.match(text)
        if not match:
            return {}, text

        header = match.group("header")
        try:
            loaded = self._handler.load(header) if header.strip() else {}
        except yaml.YAMLError as e:
            logger.warning(f"Malformed front matter, treating file as body: {e}")
            return {}, text

        if not isinstance(loaded, dict):
            logger.warning(
                f"Front matter is a {type(loaded).__name__}, not a mapping; "
                "treating file as body"
            )
            return {}, text

        metadata = {str(k): _normalize_value(v) for k, v in loaded.items()}
        return metadata, text[match.end():]

    def encode_note(self, note: Note) -> str:
        return self.encode(note.front_matter(), note.content)

    def decode_note(self, text: str, fallback_id: str) -> Note:
        """Build a Note, using ``fallback_id`` when the header has no id."""
        metadata, body = self.decode(text)
        note_id = metadata.pop("id", None) or fallback_id
        return Note(
            id=str(note_id),
            folder_id=metadata.pop("folderId", None),
            title=metadata.pop("title", None),
            content=body,
            metadata=metadata,
        )

    def read_note(self, path: Path) -> Optional[Note]:
        """Read and decode a note file.

        Returns None when the file cannot be read or its header does not
        describe a note; callers skip the entry. Line endings in the body
        are kept as written. The note ID falls back to the file name
        without its extension.
        """
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                text = f.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable note file {path}: {e}")
            return None
        try:
            return self.decode_note(text, fallback_id=path.stem)
        except PydanticValidationError as e:
            logger.warning(
                f"Skipping note file {path} with invalid header: "
                f"{e.error_count()} error(s)"
            )
            return None


def _normalize_value(value: Any) -> Any:
    """Turn YAML implicit timestamps back into the ISO strings they were."""
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, list):
        return [_normalize_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _normalize_value(v) for k, v in value.items()}
    return value
