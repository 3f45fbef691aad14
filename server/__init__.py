"""Transport adapters: the HTTP + WebSocket bridge and the MCP tool server."""
