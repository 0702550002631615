"""Tests for the legacy flat-store migration."""
import json
import threading

import pytest

from foldernotes.storage.legacy_migrator import LegacyMigrator
from foldernotes.storage.sidecar import read_sidecar
from foldernotes.storage.tree_scanner import TreeScanner


@pytest.fixture
def legacy(layout):
    """Paths of an (initially empty) legacy store under the root."""
    notes = layout.root / "notes"
    folders = layout.root / "folders"
    return notes, folders


@pytest.fixture
def migrator(layout, legacy, codec):
    notes, folders = legacy
    return LegacyMigrator(layout, notes, folders, codec)


def _folder_record(folders_dir, record):
    folders_dir.mkdir(parents=True, exist_ok=True)
    (folders_dir / f"{record['id']}.json").write_text(json.dumps(record), encoding="utf-8")


def _legacy_note(notes_dir, codec, note_id, folder_id=None, body="", **fields):
    notes_dir.mkdir(parents=True, exist_ok=True)
    metadata = dict(fields, id=note_id, folderId=folder_id)
    path = notes_dir / f"{note_id}.md"
    path.write_text(codec.encode(metadata, body), encoding="utf-8")
    return path


class TestDetection:
    """Presence checks."""

    def test_no_legacy_store_is_a_no_op(self, migrator, layout):
        report = migrator.migrate()
        assert report.skipped
        assert not migrator.has_old_notes
        assert not migrator.has_old_folders
        assert list(layout.root.iterdir()) == []

    def test_detects_either_directory(self, migrator, legacy):
        notes, _ = legacy
        notes.mkdir()
        assert migrator.has_old_notes
        assert not migrator.has_old_folders
        assert migrator.needed


class TestMigration:
    """End-to-end migration of folders and notes."""

    def test_rebuilds_tree_and_moves_notes(self, migrator, legacy, layout, codec):
        notes, folders = legacy
        _folder_record(folders, {"id": "f1", "name": "Work", "parentId": None,
                                 "icon": "briefcase", "color": "#abc",
                                 "createdAt": "2023-05-01T00:00:00.000Z"})
        _folder_record(folders, {"id": "f2", "name": "Clients: A/B", "parentId": "f1"})
        _legacy_note(notes, codec, "n1", "f1", "in work", title="One")
        _legacy_note(notes, codec, "n2", "f2", "in clients")
        _legacy_note(notes, codec, "n3", None, "loose")

        report = migrator.migrate()

        assert not report.skipped
        assert report.folders_created == 2
        assert report.notes_migrated == 3
        assert report.notes_uncategorized == 1
        assert report.notes_failed == []

        work = layout.root / "Work"
        clients = work / "Clients_ A_B"
        sidecar = read_sidecar(work, ".folder.json")
        assert (sidecar.id, sidecar.icon, sidecar.color) == ("f1", "briefcase", "#abc")
        assert sidecar.created_at == "2023-05-01T00:00:00.000Z"
        assert (work / "n1.md").is_file()
        assert (clients / "n2.md").is_file()
        assert (layout.uncategorized_path / "n3.md").is_file()

        scan = TreeScanner(layout).scan()
        placed = {n.id: n.folder_id for n in scan.notes}
        assert placed == {"n1": "f1", "n2": "f2", "n3": None}
        assert {n.id: n.content for n in scan.notes}["n1"] == "in work"

    def test_sources_renamed_to_backups(self, migrator, legacy, layout, codec):
        notes, folders = legacy
        _folder_record(folders, {"id": "f1", "name": "Work"})
        _legacy_note(notes, codec, "n1", "f1")

        report = migrator.migrate()

        assert not notes.exists()
        assert not folders.exists()
        assert (layout.root / "notes_old_backup" / "n1.md").is_file()
        assert (layout.root / "folders_old_backup" / "f1.json").is_file()
        assert sorted(p.name for p in report.backups) == [
            "folders_old_backup",
            "notes_old_backup",
        ]

    def test_backups_are_not_scanned(self, migrator, legacy, layout, codec):
        """Backup directories are reserved names, never folders."""
        notes, _ = legacy
        _legacy_note(notes, codec, "n1")
        migrator.migrate()
        scan = TreeScanner(layout).scan()
        assert scan.folders == []
        assert [n.id for n in scan.notes] == ["n1"]

    def test_unknown_folder_goes_to_uncategorized(self, migrator, legacy, layout, codec):
        notes, _ = legacy
        _legacy_note(notes, codec, "n1", "deleted-folder")
        report = migrator.migrate()
        assert report.notes_uncategorized == 1
        assert (layout.uncategorized_path / "n1.md").is_file()

    def test_folders_without_notes_directory(self, migrator, legacy, layout):
        _, folders = legacy
        _folder_record(folders, {"id": "f1", "name": "Only folders"})
        report = migrator.migrate()
        assert report.folders_created == 1
        assert (layout.root / "Only folders").is_dir()

    def test_folder_file_with_list_of_records(self, migrator, legacy, layout):
        _, folders = legacy
        folders.mkdir()
        (folders / "export.json").write_text(
            json.dumps([{"id": "a", "name": "A"}, {"id": "b", "name": "B", "parentId": "a"}]),
            encoding="utf-8",
        )
        migrator.migrate()
        assert (layout.root / "A" / "B" / ".folder.json").is_file()


class TestFailures:
    """One bad item never stops the migration."""

    def test_unreadable_note_still_copied_to_uncategorized(self, migrator, legacy, layout, codec):
        notes, _ = legacy
        _legacy_note(notes, codec, "good")
        notes.joinpath("bad.md").write_bytes(b"\xff\xfe\xfa")

        report = migrator.migrate()

        assert report.notes_migrated == 2
        assert (layout.uncategorized_path / "bad.md").is_file()
        assert (layout.uncategorized_path / "good.md").is_file()

    def test_corrupt_folder_record_skipped(self, migrator, legacy, layout, codec):
        notes, folders = legacy
        folders.mkdir()
        (folders / "broken.json").write_text("{nope", encoding="utf-8")
        _folder_record(folders, {"id": "ok", "name": "Fine"})
        _legacy_note(notes, codec, "n1", "broken")

        report = migrator.migrate()

        assert report.folders_created == 1
        assert (layout.root / "Fine").is_dir()
        assert (layout.uncategorized_path / "n1.md").is_file()

    def test_reserved_folder_name_not_created(self, migrator, legacy, layout, codec):
        notes, folders = legacy
        _folder_record(folders, {"id": "t", "name": "trash"})
        _legacy_note(notes, codec, "n1", "t")

        report = migrator.migrate()

        assert report.folders_created == 0
        assert not (layout.root / "trash" / ".folder.json").exists()
        assert (layout.uncategorized_path / "n1.md").is_file()


class TestCycles:
    """Malformed parent chains terminate."""

    def test_two_folder_cycle_finishes(self, migrator, legacy, layout, codec):
        notes, folders = legacy
        _folder_record(folders, {"id": "A", "name": "Alpha", "parentId": "B"})
        _folder_record(folders, {"id": "B", "name": "Beta", "parentId": "A"})
        _legacy_note(notes, codec, "n1", "A")

        worker = threading.Thread(target=migrator.migrate)
        worker.start()
        worker.join(timeout=10)

        assert not worker.is_alive()
        assert (layout.root / "Beta" / "Alpha" / "n1.md").is_file()
        assert read_sidecar(layout.root / "Beta" / "Alpha", ".folder.json").id == "A"
        assert read_sidecar(layout.root / "Alpha" / "Beta", ".folder.json").id == "B"


class TestJsonNotes:
    """The older JSON note format is converted to Markdown."""

    def test_json_note_converted(self, migrator, legacy, layout, codec):
        notes, folders = legacy
        _folder_record(folders, {"id": "f1", "name": "Work"})
        notes.mkdir()
        (notes / "old.json").write_text(
            json.dumps({
                "id": "old",
                "title": "From JSON",
                "folderId": "f1",
                "contentHtml": "<p>Hello</p>",
                "contentPlain": "Hello",
                "contentHtmlArray": ["<p>Hello</p>"],
                "tags": ["x"],
            }),
            encoding="utf-8",
        )

        report = migrator.migrate()

        assert report.notes_migrated == 1
        note = codec.read_note(layout.root / "Work" / "old.md")
        assert note.title == "From JSON"
        assert note.content == "<p>Hello</p>"
        assert note.metadata == {"tags": ["x"]}
        assert note.folder_id == "f1"

    def test_json_note_without_id_uses_file_name(self, migrator, legacy, layout):
        notes, _ = legacy
        notes.mkdir()
        (notes / "nameless.json").write_text(json.dumps({"title": "T"}), encoding="utf-8")
        migrator.migrate()
        assert (layout.uncategorized_path / "nameless.md").is_file()

    def test_invalid_json_note_reported(self, migrator, legacy):
        notes, _ = legacy
        notes.mkdir()
        (notes / "broken.json").write_text("[1, 2", encoding="utf-8")
        report = migrator.migrate()
        assert report.notes_failed == ["broken.json"]


class TestIdempotence:
    """A second run finds nothing to do."""

    def test_second_run_is_a_no_op(self, migrator, legacy, layout, codec):
        notes, folders = legacy
        _folder_record(folders, {"id": "f1", "name": "Work"})
        _legacy_note(notes, codec, "n1", "f1")

        first = migrator.migrate()
        before = sorted(p.relative_to(layout.root) for p in layout.root.rglob("*"))
        second = migrator.migrate()
        after = sorted(p.relative_to(layout.root) for p in layout.root.rglob("*"))

        assert not first.skipped
        assert second.skipped
        assert before == after

    def test_new_legacy_directory_nests_into_existing_backup(
        self, migrator, legacy, layout, codec
    ):
        notes, _ = legacy
        _legacy_note(notes, codec, "n1")
        migrator.migrate()
        _legacy_note(notes, codec, "n2")

        report = migrator.migrate()

        assert report.backups == [layout.root / "notes_old_backup" / "notes.1"]
        assert (layout.root / "notes_old_backup" / "notes.1" / "n2.md").is_file()


class TestBadNoteRecords:
    """Malformed note records are converted or reported, never fatal."""

    def test_non_string_title_is_converted(self, migrator, legacy, layout, codec):
        """A numeric title neither aborts the run nor loses later notes."""
        notes, _ = legacy
        notes.mkdir()
        (notes / "a.json").write_text(
            json.dumps({"id": "a", "title": 7, "content": "x"}), encoding="utf-8"
        )
        (notes / "b.json").write_text(
            json.dumps({"id": "b", "title": "B", "content": "y"}), encoding="utf-8"
        )

        report = migrator.migrate()

        assert report.notes_migrated == 2
        assert report.notes_failed == []
        assert codec.read_note(layout.uncategorized_path / "a.md").title == "7"
        assert (layout.uncategorized_path / "b.md").is_file()

    def test_unsafe_id_is_reported_not_written(self, migrator, legacy, layout):
        notes, _ = legacy
        notes.mkdir()
        (notes / "evil.json").write_text(
            json.dumps({"id": "../../escape", "content": "x"}), encoding="utf-8"
        )
        (notes / "good.json").write_text(json.dumps({"id": "good"}), encoding="utf-8")

        report = migrator.migrate()

        assert report.notes_failed == ["evil.json"]
        assert report.notes_migrated == 1
        assert not (layout.root.parent / "escape.md").exists()
