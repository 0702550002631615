"""Filesystem storage components for the folder notes store."""
from foldernotes.storage.documents import DocumentStore
from foldernotes.storage.legacy_migrator import LegacyMigrator
from foldernotes.storage.markdown_codec import MarkdownCodec
from foldernotes.storage.reconciler import FolderReconciler
from foldernotes.storage.tree_scanner import TreeScanner

__all__ = [
    "DocumentStore",
    "FolderReconciler",
    "LegacyMigrator",
    "MarkdownCodec",
    "TreeScanner",
]
