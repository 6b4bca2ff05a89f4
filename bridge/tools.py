"""
Tool registry: a flat id -> tool map with invoke-by-id semantics.

Knows nothing about LSP; the registrar fills it at startup and the MCP
server reads it.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from core.exceptions import ConfigurationError, NotFoundError
from server.logging_config import log_timing

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Union[Awaitable[Any], Any]]


@dataclass(frozen=True)
class Tool:
    """An externally invokable, schema-described operation."""
    id: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler


class ToolManager:
    """Holds registered tools in registration order."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register_tool(self, tool: Tool) -> None:
        """Add a tool.

        Raises:
            ConfigurationError: If a tool with the same id is already registered
        """
        if tool.id in self._tools:
            raise ConfigurationError(f"Duplicate tool id: {tool.id}")
        self._tools[tool.id] = tool
        logger.debug("Registered tool %s", tool.id)

    def get_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def get_tool(self, tool_id: str) -> Tool | None:
        return self._tools.get(tool_id)

    async def call_tool(self, tool_id: str, args: dict[str, Any]) -> Any:
        """Invoke a tool's handler and return its result.

        Raises:
            NotFoundError: If no tool has this id
        """
        tool = self._tools.get(tool_id)
        if tool is None:
            raise NotFoundError("Tool", tool_id)

        logger.debug("Calling tool %s", tool_id)
        with log_timing(logger, f"Tool {tool_id}"):
            result = tool.handler(args)
            if inspect.isawaitable(result):
                result = await result
        return result
