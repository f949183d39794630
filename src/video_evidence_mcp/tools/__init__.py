"""FastMCP tool modules."""
