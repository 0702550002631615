"""
Folder Notes - a filesystem-backed note store.
Notes are Markdown files with front matter, folders are real directories
carrying a small JSON sidecar with their stable ID. The package keeps the
logical note/folder tree and the physical directory tree in agreement.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("foldernotes")
except PackageNotFoundError:
    __version__ = "0.3.0"
