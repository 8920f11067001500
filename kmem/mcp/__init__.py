"""MCP tool-call layer for kmem."""
