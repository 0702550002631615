"""Service layer for the folder notes store."""
