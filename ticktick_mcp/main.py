"""
Main entry point for the TickTick MCP server.

Builds the shared application context, mounts the local OAuth server that
bridges to TickTick, registers the tools and runs the configured transport.
"""

import asyncio
import sys
import traceback

from fastmcp import FastMCP

from ticktick_mcp.auth.setup import build_http_middleware, setup_custom_routes
from ticktick_mcp.config import get_settings
from ticktick_mcp.core import logger
from ticktick_mcp.core.constants import MCP_PATH
from ticktick_mcp.core.context import (
    AppContext,
    cleanup_global_context,
    initialize_global_context,
)
from ticktick_mcp.tools import register_tools

SERVER_NAME = "TickTick MCP Server"


def create_mcp_server(context: AppContext) -> FastMCP:
    """Create the FastMCP server for an initialized application context."""
    mcp = FastMCP(SERVER_NAME, auth=context.provider)
    setup_custom_routes(mcp)
    register_tools(mcp)
    return mcp


async def main() -> None:
    """
    Main async function to run the MCP server.
    """
    settings = get_settings()
    try:
        logger.info("Main function started")
        logger.debug("Settings: %s", settings.to_dict())

        # Initialize global context ONCE at startup (not per-request)
        context = await initialize_global_context(settings)
        mcp = create_mcp_server(context)
        logger.info("FastMCP server initialized (issuer %s)", context.base_url)

        transport = settings.transport
        logger.info("Transport mode: %s", transport)

        # Flush output before starting server
        sys.stdout.flush()
        sys.stderr.flush()

        if transport in ("http", "streamable-http", "sse"):
            logger.info("Setting up %s server on %s:%s...", transport, settings.host, settings.port)
            await mcp.run_async(
                transport=transport,  # type: ignore[arg-type]
                host=settings.host,
                port=settings.port,
                path=MCP_PATH,
                middleware=build_http_middleware(context.base_url, context.auth_limiter),
            )
        else:
            logger.info("Setting up stdio server...")
            await mcp.run_async(transport="stdio")

    except Exception as e:
        logger.error(f"Error in main function: {e}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        raise
    finally:
        # Cleanup global context on shutdown
        logger.info("Shutting down - cleaning up global context...")
        await cleanup_global_context()


def run() -> None:
    """Console script entry point."""
    try:
        logger.info("Starting main function...")
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
    except Exception as e:
        logger.error(f"Error in main: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
