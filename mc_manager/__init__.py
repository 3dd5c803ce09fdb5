"""Discord bot and MCP tools for supervising a Minecraft server process."""
