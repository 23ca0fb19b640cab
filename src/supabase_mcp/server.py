"""MCP stdio server exposing the Supabase tool registry."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Mapping

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .config import Settings, get_account_name
from .services.cli_runner import CommandRunner
from .services.credentials import CredentialCache
from .tools import ToolContext, ToolRegistry, register_default_tools

logger = logging.getLogger(__name__)


def create_registry(settings: Settings, environ: Mapping[str, str] | None = None) -> ToolRegistry:
    """Compose the bridge once per process: one credential cache shared by every tool."""
    account = get_account_name(environ)
    credentials = CredentialCache()
    runner = CommandRunner(
        credentials,
        executable=settings.cli_path,
        max_output_bytes=settings.max_output_bytes,
        default_timeout=settings.command_timeout,
    )
    registry = ToolRegistry(ToolContext(account=account, runner=runner, credentials=credentials))
    register_default_tools(registry)
    return registry


def _text(payload: dict[str, Any]) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


async def dispatch(registry: ToolRegistry, name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
    """Run one tool call, turning any exception into an error payload for the agent."""
    started = time.perf_counter()
    logger.info(f"Calling tool: {name}")
    try:
        result = await registry.call_tool(name, arguments)
    except Exception as e:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.error(f"Tool {name} failed after {elapsed_ms}ms: {e}")
        return _text({"error": str(e), "tool": name})

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    logger.info(f"Tool {name} completed in {elapsed_ms}ms")
    return _text(result)


def create_server(registry: ToolRegistry) -> Server:
    server: Server = Server(f"supabase-mcp-{registry.context.account}")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        definitions = registry.get_definitions()
        logger.info(f"Listing {len(definitions)} tools")
        return [
            Tool(name=d["name"], description=d["description"], inputSchema=d["input_schema"]) for d in definitions
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        return await dispatch(registry, name, arguments)

    return server


async def serve(registry: ToolRegistry) -> None:
    server = create_server(registry)
    names = registry.list_tools()
    logger.info(f"Registered {len(names)} tools: {', '.join(names)}")
    async with stdio_server() as (read_stream, write_stream):
        logger.info("MCP server started on stdio")
        await server.run(read_stream, write_stream, server.create_initialization_options())
