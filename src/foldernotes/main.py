#!/usr/bin/env python
"""Main entry point for the folder notes MCP server."""
import argparse
import atexit
import logging
import os
import sys
from pathlib import Path

from foldernotes.config import config
from foldernotes.exceptions import NoteStoreError
from foldernotes.observability import configure_logging, metrics
from foldernotes.server.mcp_server import FolderNotesMcpServer
from foldernotes.services.note_store import NoteStore


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Folder Notes MCP Server")
    parser.add_argument(
        "--storage-root",
        help="Root directory of the note folder tree",
        type=str,
        default=os.environ.get("FOLDERNOTES_STORAGE_ROOT"),
    )
    parser.add_argument(
        "--no-migrate",
        help="Skip the legacy store migration at startup",
        action="store_true",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("FOLDERNOTES_LOG_LEVEL", "INFO"),
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.storage_root:
        config.storage_root = Path(args.storage_root)
    if args.no_migrate:
        config.migrate_on_startup = False


def _save_metrics_on_exit():
    if metrics.save_metrics():
        logging.getLogger(__name__).info("Metrics saved to disk on shutdown")


def main(argv=None):
    """Run the folder notes MCP server."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to console logging if the log directory is not writable
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")
    atexit.register(_save_metrics_on_exit)

    # An unusable store root is the only fatal startup condition
    try:
        store = NoteStore.from_config(config).initialize()
    except NoteStoreError as e:
        logger.error(f"Cannot open note store: {e}")
        sys.exit(1)

    try:
        logger.info(f"Starting folder notes MCP server on {store.layout.root}")
        server = FolderNotesMcpServer(store=store)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
