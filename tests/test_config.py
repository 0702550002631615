"""Tests for configuration loading and the store layout."""
from pathlib import Path

import pytest

from foldernotes.config import DEFAULT_SYSTEM_DIRS, NoteStoreConfig, StoreLayout
from foldernotes.exceptions import ConfigurationError


class TestNoteStoreConfig:
    """Environment-driven settings."""

    def test_defaults(self, monkeypatch):
        for name in (
            "FOLDERNOTES_STORAGE_ROOT",
            "FOLDERNOTES_SYSTEM_DIRS",
            "FOLDERNOTES_MIGRATE_ON_STARTUP",
            "FOLDERNOTES_LOG_DIR",
        ):
            monkeypatch.delenv(name, raising=False)

        cfg = NoteStoreConfig()

        assert cfg.storage_root == Path("data")
        assert cfg.note_extension == ".md"
        assert cfg.sidecar_filename == ".folder.json"
        assert cfg.uncategorized_dir == "Uncategorized"
        assert cfg.system_dirs == frozenset(DEFAULT_SYSTEM_DIRS)
        assert cfg.migrate_on_startup is True
        assert cfg.log_dir is None

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FOLDERNOTES_STORAGE_ROOT", str(tmp_path))
        monkeypatch.setenv("FOLDERNOTES_SYSTEM_DIRS", "trash, archive ,")
        monkeypatch.setenv("FOLDERNOTES_MIGRATE_ON_STARTUP", "no")
        monkeypatch.setenv("FOLDERNOTES_LOG_DIR", str(tmp_path / "logs"))

        cfg = NoteStoreConfig()

        assert cfg.get_storage_root() == tmp_path.resolve()
        assert cfg.system_dirs == frozenset({"trash", "archive"})
        assert cfg.migrate_on_startup is False
        assert cfg.log_dir == tmp_path / "logs"

    def test_relative_root_uses_base_dir(self, tmp_path):
        cfg = NoteStoreConfig(base_dir=tmp_path, storage_root=Path("store"))
        assert cfg.get_storage_root() == (tmp_path / "store").resolve()
        assert cfg.get_legacy_notes_path() == (tmp_path / "store").resolve() / "notes"
        assert cfg.get_legacy_folders_path() == (tmp_path / "store").resolve() / "folders"

    def test_extension_must_start_with_dot(self):
        with pytest.raises(ConfigurationError) as exc_info:
            NoteStoreConfig(note_extension="md")
        assert exc_info.value.details["config_key"] == "note_extension"

    def test_sidecar_cannot_look_like_a_note(self):
        with pytest.raises(ConfigurationError):
            NoteStoreConfig(sidecar_filename="folder.md")

    def test_uncategorized_cannot_be_reserved(self):
        with pytest.raises(ConfigurationError):
            NoteStoreConfig(uncategorized_dir="trash")

    def test_assignment_is_validated(self):
        cfg = NoteStoreConfig()
        with pytest.raises(ConfigurationError):
            cfg.note_extension = "txt"

    def test_layout_reserves_legacy_directories(self, tmp_path):
        cfg = NoteStoreConfig(storage_root=tmp_path, legacy_notes_dir="old-notes")
        layout = cfg.get_layout()
        assert layout.root == tmp_path.resolve()
        assert layout.is_reserved("old-notes", at_root=True)
        assert layout.is_reserved("folders", at_root=True)
        assert layout.is_reserved("old-notes_old_backup", at_root=True)
        assert layout.is_reserved("folders_old_backup", at_root=True)
        assert not layout.is_reserved("Work", at_root=True)


class TestStoreLayout:
    """Name classification used by the scanner."""

    @pytest.fixture
    def plain_layout(self, tmp_path):
        return StoreLayout(root=tmp_path)

    def test_uncategorized_path(self, plain_layout, tmp_path):
        assert plain_layout.uncategorized_path == tmp_path / "Uncategorized"

    def test_note_files(self, plain_layout):
        assert plain_layout.is_note_file("n1.md")
        assert not plain_layout.is_note_file("n1.md.tmp")
        assert not plain_layout.is_note_file("notes.txt")

    def test_sidecar_is_not_a_note(self, tmp_path):
        layout = StoreLayout(root=tmp_path, sidecar_filename="folder.md")
        assert not layout.is_note_file("folder.md")

    @pytest.mark.parametrize("name", ["trash", "settings", "backups", "Uncategorized"])
    def test_reserved_at_root_only(self, plain_layout, name):
        assert plain_layout.is_reserved(name, at_root=True)
        assert not plain_layout.is_reserved(name, at_root=False)

    def test_hidden_reserved_everywhere(self, plain_layout):
        assert plain_layout.is_reserved(".cache", at_root=True)
        assert plain_layout.is_reserved(".cache", at_root=False)
