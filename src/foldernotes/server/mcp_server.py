"""MCP server exposing the folder notes store."""

import atexit
import json
import logging
import uuid
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from foldernotes.config import config
from foldernotes.exceptions import NoteStoreError
from foldernotes.observability import metrics
from foldernotes.services.note_store import NoteStore

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 5_000_000  # 5 MB


def _to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def _parse_json(raw: str, expected: type, what: str) -> Any:
    """Decode a JSON tool argument, raising ValueError on the wrong shape."""
    data = json.loads(raw)
    if not isinstance(data, expected):
        raise ValueError(f"{what} must be a JSON {expected.__name__}")
    return data


class FolderNotesMcpServer:
    """MCP server for the folder notes store."""

    def __init__(self, store: Optional[NoteStore] = None):
        """Initialize the MCP server.

        Args:
            store: An initialized store. When None, one is built from the
                global config and initialized (which runs any pending
                legacy migration).
        """
        self.mcp = FastMCP(
            config.server_name,
            instructions=(
                "Notes stored as Markdown files in a folder tree. "
                "Folder and note IDs are stable; paths follow folder names."
            ),
        )
        self.store = store or NoteStore.from_config().initialize()
        atexit.register(self._shutdown)
        self._register_tools()

    def _shutdown(self) -> None:
        metrics.save_metrics()

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Domain errors carry a safe message; anything else is reported by
        reference only, with the detail in the log.
        """
        error_id = uuid.uuid4().hex[:8]

        if isinstance(error, NoteStoreError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, json.JSONDecodeError):
            logger.error(f"Invalid JSON argument [{error_id}]: {error}")
            return f"Error: Invalid JSON - {error.msg} (ref: {error_id})"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {error}")
            return f"Error: Invalid input (ref: {error_id})"
        elif isinstance(error, OSError):
            logger.error(f"File system error [{error_id}]: {error}", exc_info=True)
            return f"Error: A file system error occurred (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {error}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        # ========== Notes ==========

        @self.mcp.tool(name="fn_list_notes")
        def fn_list_notes() -> str:
            """List every note with its folderId, title, metadata and body."""
            try:
                return _to_json([note.to_dict() for note in self.store.list_notes()])
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="fn_get_note")
        def fn_get_note(note_id: str) -> str:
            """Get a single note.

            Args:
                note_id: The note's ID
            """
            try:
                return _to_json(self.store.get_note(note_id).to_dict())
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="fn_save_note")
        def fn_save_note(
            note_id: str,
            content: str = "",
            folder_id: Optional[str] = None,
            metadata: Optional[str] = None,
        ) -> str:
            """Create or overwrite a note, moving it if its folder changed.

            Args:
                note_id: Stable note ID (also the file name)
                content: Markdown body
                folder_id: Folder to file the note in; empty for Uncategorized
                metadata: JSON object of extra fields (title, tags, timestamps...)
            """
            try:
                if len(content) > MAX_CONTENT_LENGTH:
                    raise ValueError(
                        f"Content exceeds maximum length of {MAX_CONTENT_LENGTH} characters"
                    )
                fields = _parse_json(metadata, dict, "metadata") if metadata else {}
                path = self.store.save_note(
                    note_id, fields, content, folder_id=folder_id or None
                )
                return f"Note saved: {note_id} ({path.parent.name}/{path.name})"
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="fn_delete_note")
        def fn_delete_note(note_id: str) -> str:
            """Delete a note. Deleting a missing note also succeeds.

            Args:
                note_id: The note's ID
            """
            try:
                existed = self.store.delete_note(note_id)
                if existed:
                    return f"Note deleted: {note_id}"
                return f"Note not present, nothing to delete: {note_id}"
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="fn_delete_all_notes")
        def fn_delete_all_notes(confirm: bool = False) -> str:
            """Delete every note file. Folders are kept.

            Args:
                confirm: Must be true to proceed
            """
            if not confirm:
                return "Refusing to delete all notes without confirm=true."
            try:
                return f"Deleted {self.store.delete_all_notes()} notes."
            except Exception as e:
                return self.format_error_response(e)

        # ========== Folders ==========

        @self.mcp.tool(name="fn_list_folders")
        def fn_list_folders() -> str:
            """List every folder with its parentId and display attributes."""
            try:
                return _to_json([f.to_dict() for f in self.store.list_folders()])
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="fn_save_folders")
        def fn_save_folders(folders: str) -> str:
            """Replace the folder tree with the given list.

            Directories are created, renamed and moved to match. Folders
            missing from the list are left alone; use fn_delete_folder.

            Args:
                folders: JSON array of {id, name, parentId, icon, color, createdAt}
            """
            try:
                records = _parse_json(folders, list, "folders")
                report = self.store.save_folders(records)
                return _to_json(report.to_dict())
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="fn_delete_folder")
        def fn_delete_folder(folder_id: str) -> str:
            """Delete a folder, its subfolders and all notes inside.

            Args:
                folder_id: The folder's ID
            """
            try:
                if self.store.delete_folder(folder_id):
                    return f"Folder deleted: {folder_id}"
                return f"Folder not present, nothing to delete: {folder_id}"
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="fn_file_structure")
        def fn_file_structure() -> str:
            """Folders plus a short summary of every note."""
            try:
                return _to_json(self.store.file_structure())
            except Exception as e:
                return self.format_error_response(e)

        # ========== Documents ==========

        @self.mcp.tool(name="fn_get_document")
        def fn_get_document(name: str) -> str:
            """Read an application document.

            Args:
                name: One of settings, trash, tasks, questions
            """
            try:
                return _to_json(self.store.get_document(name))
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="fn_save_document")
        def fn_save_document(name: str, data: str) -> str:
            """Replace an application document.

            Args:
                name: One of settings, trash, tasks, questions
                data: The document as JSON
            """
            try:
                self.store.save_document(name, json.loads(data))
                return f"Saved {name}."
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="fn_clear_document")
        def fn_clear_document(name: str) -> str:
            """Reset an application document to its default (e.g. empty the trash).

            Args:
                name: One of settings, trash, tasks, questions
            """
            try:
                self.store.clear_document(name)
                return f"Cleared {name}."
            except Exception as e:
                return self.format_error_response(e)

        # ========== System ==========

        @self.mcp.tool(name="fn_system")
        def fn_system(action: str) -> str:
            """Store administration.

            Args:
                action: Operation to perform:
                    - "status": Counts, storage root, migration state, metrics
                    - "backup": Write a JSON snapshot under backups/
                    - "migrate": Import a legacy flat store if one is present
                    - "metrics": Per-operation timing and error counters
            """
            try:
                action = action.lower().strip()
                if action == "status":
                    status = self.store.status()
                    status["server_version"] = config.server_version
                    return _to_json(status)
                if action == "backup":
                    path = self.store.create_backup()
                    return f"Backup written: {path.name}"
                if action == "migrate":
                    return _to_json(self.store.migrate().to_dict())
                if action == "metrics":
                    return _to_json(metrics.get_metrics())
                return (
                    f"Unknown action: {action}. "
                    "Valid actions are: status, backup, migrate, metrics"
                )
            except Exception as e:
                return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
