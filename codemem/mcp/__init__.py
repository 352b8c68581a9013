"""MCP tool surface for codemem (FastMCP server, tools, audit trail)."""
