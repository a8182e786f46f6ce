"""OAuth bridge to TickTick and the local authorization server.

Submodules are imported directly (``ticktick_mcp.auth.provider`` and so on)
so that importing the package stays free of the FastMCP server stack.
"""
