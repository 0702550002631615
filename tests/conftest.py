"""Common test fixtures for the folder notes store."""

import tempfile
from pathlib import Path

import pytest

from foldernotes import observability
from foldernotes.config import DEFAULT_SYSTEM_DIRS, StoreLayout, config
from foldernotes.services.note_store import NoteStore
from foldernotes.storage.markdown_codec import MarkdownCodec


@pytest.fixture(autouse=True)
def _isolated_metrics(tmp_path, monkeypatch):
    """Keep the process-wide metrics collector away from the home directory."""
    monkeypatch.setattr(
        observability.metrics, "_metrics_file", tmp_path / "metrics.json"
    )
    monkeypatch.setattr(observability.metrics, "_auto_save_interval", 0)


@pytest.fixture
def store_root():
    """Create a temporary store root."""
    with tempfile.TemporaryDirectory() as root:
        yield Path(root).resolve()


@pytest.fixture
def test_config(store_root, monkeypatch):
    """Point the global config at the temporary root (auto-restored)."""
    monkeypatch.setattr(config, "storage_root", store_root)
    monkeypatch.setattr(config, "migrate_on_startup", True)
    yield config


@pytest.fixture
def layout(store_root):
    """Layout with the default names, as the config would produce it."""
    return StoreLayout(
        root=store_root,
        system_dirs=frozenset(DEFAULT_SYSTEM_DIRS) | {"notes", "folders"},
    )


@pytest.fixture
def codec():
    return MarkdownCodec()


@pytest.fixture
def note_store(test_config):
    """An initialized store on the temporary root."""
    store = NoteStore.from_config(test_config).initialize()
    yield store


@pytest.fixture
def write_note():
    """Drop a note file into a directory the way an outside tool would."""

    def _write(directory: Path, note_id: str, title: str = "", body: str = "") -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        header = f"id: {note_id}\n" + (f"title: {title}\n" if title else "")
        path = directory / f"{note_id}.md"
        path.write_text(f"---\n{header}---\n{body}", encoding="utf-8")
        return path

    return _write
