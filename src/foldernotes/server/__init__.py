"""Request layer exposing the note store over MCP."""
