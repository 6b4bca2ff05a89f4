"""
MCP application: owns the LSP clients and the tool registry and serves the
tools over stdio.
"""

import json
import logging
from typing import Any, Optional

import mcp.types as types
from mcp.server import Server
from mcp.server.stdio import stdio_server

from bridge.manager import LSPManager
from bridge.methods import MethodCatalog
from bridge.registrar import ToolRegistrar
from bridge.selector import DefaultLspSelector
from bridge.tools import ToolManager
from config import Config, resolve_workspace
from core.exceptions import MissingArgumentsError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SERVER_NAME = "lsp-mcp"
RESULT_JSON_INDENT = 2


# =============================================================================
# Tool call adaptation
# =============================================================================


def format_tool_result(result: Any) -> str:
    """Strings pass through; everything else becomes indented JSON."""
    if isinstance(result, str):
        return result
    return json.dumps(result, indent=RESULT_JSON_INDENT, default=str)


async def call_tool_text(
    tool_manager: ToolManager, name: str, arguments: Optional[dict[str, Any]]
) -> str:
    """Invoke a tool for the MCP layer and render its result as text.

    Raises:
        MissingArgumentsError: If the call carried no argument object
        NotFoundError: If no tool has this name
    """
    if arguments is None:
        raise MissingArgumentsError(name)
    return format_tool_result(await tool_manager.call_tool(name, arguments))


def create_server(tool_manager: ToolManager) -> Server:
    """Build an MCP server whose tools are the registry's tools."""
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name=tool.id,
                description=tool.description,
                inputSchema=tool.input_schema,
            )
            for tool in tool_manager.get_tools()
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: Optional[dict[str, Any]]) -> list[types.TextContent]:
        text = await call_tool_text(tool_manager, name, arguments)
        return [types.TextContent(type="text", text=text)]

    sdk_call_tool = server.request_handlers[types.CallToolRequest]

    async def call_tool_requiring_arguments(req: types.CallToolRequest) -> types.ServerResult:
        # The SDK's own handler substitutes {} for absent arguments
        if req.params.arguments is None:
            error = MissingArgumentsError(req.params.name)
            logger.warning("%s", error)
            return types.ServerResult(
                types.CallToolResult(
                    content=[types.TextContent(type="text", text=str(error))],
                    isError=True,
                )
            )
        return await sdk_call_tool(req)

    server.request_handlers[types.CallToolRequest] = call_tool_requiring_arguments
    return server


# =============================================================================
# Application
# =============================================================================


class App:
    """The bridge wired together.

    Use as an async context manager; every LSP client is disposed on exit,
    whatever the exit path.
    """

    def __init__(self, config: Config):
        self.config = config
        self.workspace = resolve_workspace(config)
        self.manager = LSPManager.from_config(config, self.workspace)
        self.catalog = MethodCatalog(config.methods, config.resources_dir)
        self.tool_manager = ToolManager()
        self.registrar = ToolRegistrar(self.tool_manager, self.manager, DefaultLspSelector())
        self.server = create_server(self.tool_manager)

    async def __aenter__(self) -> "App":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    def start(self) -> None:
        """Load the method catalog and register every tool."""
        logger.info("Workspace: %s", self.workspace)
        logger.info("LSPs: %s", ", ".join(client.id for client in self.manager.all()))
        self.registrar.register_all(self.catalog.get_methods())

    async def serve(self) -> None:
        """Serve MCP over stdio until the client disconnects or the task is cancelled."""
        logger.info("Serving %d tools over stdio", len(self.tool_manager.get_tools()))
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )

    async def dispose(self) -> None:
        logger.info("Shutting down LSPs...")
        await self.manager.shutdown_all()
        logger.info("LSPs stopped")
