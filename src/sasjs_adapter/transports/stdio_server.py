# SASjs Python Adapter
# File: transports/stdio_server.py
# Version: v2

"""STDIO entrypoint for the SASjs MCP server.

This is the script behind the ``sasjs-mcp`` console command.

It:

- creates a FastMCP server,
- registers the SASjs tools, and
- runs the built-in stdio transport.
"""

from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from ..tools import tasks


def main() -> None:
    """Synchronous entrypoint for console_scripts."""
    # stdout carries the MCP protocol, so library logging must go to stderr
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    mcp = FastMCP("sasjs-mcp")

    # Register adapter tools (check_session, log_in, request, contexts, ...)
    tasks.register_tools(mcp)

    # Let FastMCP handle stdio + event loop setup.
    mcp.run()


if __name__ == "__main__":
    main()
