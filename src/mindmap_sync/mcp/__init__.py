"""MCP tool server exposing the sync engine over stdio."""
