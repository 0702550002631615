"""Data models for the folder notes store."""
