"""
Tool registrar: turns LSP method descriptors into tools.

Registers two built-in tools (lsp_info, file_contents_to_uri) and one tool
per LSP method. When more than one LSP is configured every method tool gets
an extra "lsp" property so the caller can pick the server explicitly.
"""

from __future__ import annotations

import copy
import json
import logging
import secrets
from typing import Any, Awaitable, Callable, Iterable

from core.exceptions import InvalidArgumentsError

from .lsp import LSPClient
from .manager import LSPManager
from .methods import MEM_URI_SCHEME, LSPMethod, lsp_method_handler, open_file_contents
from .selector import DefaultLspSelector, LspSelector
from .tools import Tool, ToolManager

logger = logging.getLogger(__name__)

LSP_PROPERTY_NAME = "lsp"

# Editor-only plumbing, meaningless to a tool caller
PROGRESS_TOKEN_PROPERTIES = ("workDoneToken", "partialResultToken")

LSP_INFO_TOOL_ID = "lsp_info"
FILE_CONTENTS_TO_URI_TOOL_ID = "file_contents_to_uri"

NOT_STARTED_CAPABILITIES = "LSP not started. Capabilities will be available when started."


class ToolRegistrar:
    """Fills a ToolManager from the configured LSPs and the method catalog."""

    def __init__(
        self,
        tool_manager: ToolManager,
        manager: LSPManager,
        selector: LspSelector | None = None,
        file_opener: Callable[[LSPClient, str, str], Awaitable[None]] = open_file_contents,
    ):
        self.tool_manager = tool_manager
        self.manager = manager
        self.selector = selector or DefaultLspSelector()
        self.file_opener = file_opener

    def register_all(self, methods: Iterable[LSPMethod]) -> None:
        """Register the built-in tools, then one tool per method."""
        self._register_builtin_tools()
        self._register_method_tools(methods)
        logger.info("Registered %d tools", len(self.tool_manager.get_tools()))

    # --- Built-in tools ---

    def _register_builtin_tools(self) -> None:
        self.tool_manager.register_tool(
            Tool(
                id=LSP_INFO_TOOL_ID,
                description=(
                    "Returns information about the the LSP tools available. "
                    "This is useful for debugging which programming languages are supported."
                ),
                input_schema={"type": "object"},
                handler=self._lsp_info,
            )
        )
        self.tool_manager.register_tool(
            Tool(
                id=FILE_CONTENTS_TO_URI_TOOL_ID,
                description=(
                    "Creates a URI given some file contents to be used in the LSP methods "
                    "that require a URI. This is only required if the file is not on the "
                    "filesystem. Otherwise you may pass the file path directly."
                ),
                input_schema={
                    "type": "object",
                    "properties": {
                        "file_contents": {
                            "type": "string",
                            "description": "The contents of the file",
                        },
                        "programming_language": {
                            "type": "string",
                            "description": "The programming language of the file",
                        },
                    },
                    "required": ["file_contents"],
                },
                handler=self._file_contents_to_uri,
            )
        )

    async def _lsp_info(self, args: dict[str, Any]) -> str:
        result = []
        for client in self.manager.all():
            started = client.started
            result.append(
                {
                    "id": client.id,
                    "languages": client.languages,
                    "extensions": client.extensions,
                    "started": True if started else (
                        "Not started. LSP will start automatically when needed, such as "
                        f"when analyzing a file with extensions {', '.join(client.extensions)}."
                    ),
                    "capabilities": client.capabilities if started else NOT_STARTED_CAPABILITIES,
                }
            )
        return json.dumps(result, indent=2)

    async def _file_contents_to_uri(self, args: dict[str, Any]) -> str:
        contents = args.get("file_contents")
        if not isinstance(contents, str):
            raise InvalidArgumentsError(
                FILE_CONTENTS_TO_URI_TOOL_ID, "'file_contents' must be a string"
            )

        language = args.get("programming_language")
        client = None
        if isinstance(language, str) and language:
            client = self.manager.get_by_language(language)
        client = client or self.manager.get_default()

        uri = f"{MEM_URI_SCHEME}{secrets.token_hex(8)}.{client.id}"
        await self.file_opener(client, uri, contents)
        return uri

    # --- Method tools ---

    def _register_method_tools(self, methods: Iterable[LSPMethod]) -> None:
        lsp_property = self._create_lsp_property()

        for method in sorted(methods, key=lambda m: m.id):
            input_schema = copy.deepcopy(method.input_schema)
            properties = input_schema.get("properties")
            if isinstance(properties, dict):
                for name in PROGRESS_TOKEN_PROPERTIES:
                    properties.pop(name, None)

            if lsp_property is not None:
                input_schema.setdefault("properties", {})[LSP_PROPERTY_NAME] = dict(lsp_property)

            self.tool_manager.register_tool(
                Tool(
                    id=method.id.replace("/", "_"),
                    description=method.description,
                    input_schema=input_schema,
                    handler=self._make_method_handler(
                        method.id,
                        LSP_PROPERTY_NAME if lsp_property is not None else None,
                    ),
                )
            )

    def _make_method_handler(
        self, method_id: str, lsp_property_name: str | None
    ) -> Callable[[dict[str, Any]], Awaitable[Any]]:
        async def handler(args: dict[str, Any]) -> Any:
            client = self.selector.select(args, self.manager, lsp_property_name)
            # The selector property is for routing only; the server never sees it
            lsp_args = {k: v for k, v in args.items() if k != lsp_property_name}
            logger.debug("Routing %s to LSP %s", method_id, client.id)
            return await lsp_method_handler(client, method_id, lsp_args, self.file_opener)

        return handler

    def _create_lsp_property(self) -> dict[str, Any] | None:
        clients = self.manager.all()
        if len(clients) <= 1:
            return None

        options = "\n".join(
            f"  {client.id} for the programming languages {', '.join(client.languages)}"
            for client in clients
        )
        return {
            "type": "string",
            "description": f"The LSP to use to execute this method. Options are: {options}",
            "enum": [client.id for client in clients],
        }
