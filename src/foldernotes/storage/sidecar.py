"""Folder sidecar files.

Each folder directory carries a small JSON document holding the folder's
stable ID and display attributes. The directory name is the folder name;
the physical path is never stored.
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from foldernotes.models.schema import FolderSidecar

logger = logging.getLogger(__name__)


def read_sidecar(directory: Path, filename: str) -> Optional[FolderSidecar]:
    """Load the sidecar in ``directory``.

    Returns None when the file is missing, unreadable, or does not hold
    a JSON object with an ``id``; the caller then treats the directory as
    a folder without identity.
    """
    path = directory / filename
    if not path.is_file():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return FolderSidecar.model_validate(data)
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Unreadable folder sidecar {path}: {e}")
    except PydanticValidationError as e:
        logger.warning(f"Invalid folder sidecar {path}: {e.error_count()} error(s)")
    return None


def write_sidecar(directory: Path, filename: str, sidecar: FolderSidecar) -> Path:
    """Write the sidecar atomically (temp file + rename).

    Raises:
        OSError: If the directory is not writable.
    """
    path = directory / filename
    temp_path = directory / f"{filename}.tmp"
    data = sidecar.model_dump(by_alias=True)
    with open(temp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    os.replace(temp_path, path)
    return path
