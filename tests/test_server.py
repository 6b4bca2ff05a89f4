"""
Tests for the MCP application layer.
"""

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import mcp.types as types
import pytest

from bridge.tools import Tool, ToolManager
from config import Config
from core.exceptions import MissingArgumentsError, NotFoundError
from server.app import App, call_tool_text, create_server, format_tool_result


def registry(result):
    tool_manager = ToolManager()
    tool_manager.register_tool(
        Tool(
            id="echo",
            description="Echo",
            input_schema={"type": "object", "properties": {"x": {"type": "string"}}},
            handler=AsyncMock(return_value=result),
        )
    )
    return tool_manager


class TestFormatToolResult:
    def test_string_passthrough(self):
        assert format_tool_result("plain") == "plain"

    def test_json_indented(self):
        assert format_tool_result({"a": [1]}) == json.dumps({"a": [1]}, indent=2)

    def test_none(self):
        assert format_tool_result(None) == "null"


class TestCallToolText:
    @pytest.mark.asyncio
    async def test_result_rendered(self):
        text = await call_tool_text(registry({"range": None}), "echo", {"x": "1"})
        assert json.loads(text) == {"range": None}

    @pytest.mark.asyncio
    async def test_missing_arguments(self):
        tool_manager = registry("unused")
        with pytest.raises(MissingArgumentsError, match="echo"):
            await call_tool_text(tool_manager, "echo", None)
        tool_manager.get_tool("echo").handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_arguments_accepted(self):
        assert await call_tool_text(registry("ok"), "echo", {}) == "ok"

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        with pytest.raises(NotFoundError, match="Tool not found: missing"):
            await call_tool_text(registry("ok"), "missing", {})


class TestCreateServer:
    @pytest.mark.asyncio
    async def test_list_tools(self):
        server = create_server(registry("ok"))
        handler = server.request_handlers[types.ListToolsRequest]

        response = await handler(types.ListToolsRequest(method="tools/list"))

        tools = response.root.tools
        assert [tool.name for tool in tools] == ["echo"]
        assert tools[0].description == "Echo"
        assert tools[0].inputSchema["properties"]["x"] == {"type": "string"}

    @pytest.mark.asyncio
    async def test_call_tool_without_arguments_rejected(self):
        tool_manager = registry("unused")
        server = create_server(tool_manager)
        handler = server.request_handlers[types.CallToolRequest]

        response = await handler(
            types.CallToolRequest(
                method="tools/call",
                params=types.CallToolRequestParams(name="echo", arguments=None),
            )
        )

        assert response.root.isError
        assert response.root.content[0].text == "No arguments provided for tool: echo"
        tool_manager.get_tool("echo").handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_call_tool_with_arguments(self):
        tool_manager = registry("ok")
        server = create_server(tool_manager)
        handler = server.request_handlers[types.CallToolRequest]

        response = await handler(
            types.CallToolRequest(
                method="tools/call",
                params=types.CallToolRequestParams(name="echo", arguments={"x": "1"}),
            )
        )

        assert not response.root.isError
        assert response.root.content[0].text == "ok"
        tool_manager.get_tool("echo").handler.assert_awaited_once_with({"x": "1"})


def write_config(temp_dir, server_log, lsp_count=1):
    fake_server = str(Path(__file__).parent / "fixtures" / "fake_lsp_server.py")
    return Config(
        lsps=[
            {
                "id": f"fake{i}",
                "languages": [f"lang{i}"],
                "extensions": [f"ext{i}"],
                "command": sys.executable,
                "args": [fake_server, "--log", str(server_log)],
            }
            for i in range(lsp_count)
        ],
        methods=["textDocument/hover", "textDocument/documentSymbol"],
        workspace=str(temp_dir),
    )


class TestApp:
    """The wired application, backed by the fake LSP server."""

    @pytest.mark.asyncio
    async def test_registers_tools_on_enter(self, temp_dir, server_log):
        async with App(write_config(temp_dir, server_log)) as app:
            ids = [tool.id for tool in app.tool_manager.get_tools()]
        assert ids == [
            "lsp_info",
            "file_contents_to_uri",
            "textDocument_documentSymbol",
            "textDocument_hover",
        ]
        # Nothing is spawned until a tool needs it
        assert not server_log.exists()

    @pytest.mark.asyncio
    async def test_lsp_property_with_two_lsps(self, temp_dir, server_log):
        async with App(write_config(temp_dir, server_log, lsp_count=2)) as app:
            schema = app.tool_manager.get_tool("textDocument_hover").input_schema
        assert schema["properties"]["lsp"]["enum"] == ["fake0", "fake1"]

    @pytest.mark.asyncio
    async def test_tool_call_round_trip(self, temp_dir, server_log):
        source = temp_dir / "main.ext0"
        source.write_text("hello")

        async with App(write_config(temp_dir, server_log)) as app:
            text = await call_tool_text(
                app.tool_manager,
                "textDocument_hover",
                {"textDocument": {"uri": str(source)}, "position": {"line": 0, "character": 0}},
            )
            client = app.manager.get_default()
            assert client.started

        result = json.loads(text)
        assert result["method"] == "textDocument/hover"
        assert result["params"]["textDocument"]["uri"] == source.as_uri()
        # Disposed on exit
        assert not client.started
        log = server_log.read_text()
        assert "notify textDocument/didOpen" in log
        assert "notify exit" in log

    @pytest.mark.asyncio
    async def test_file_contents_to_uri_round_trip(self, temp_dir, server_log):
        async with App(write_config(temp_dir, server_log)) as app:
            uri = await call_tool_text(
                app.tool_manager, "file_contents_to_uri", {"file_contents": "x"}
            )
            text = await call_tool_text(
                app.tool_manager, "textDocument_documentSymbol", {"textDocument": {"uri": uri}}
            )
        assert uri.startswith("mem://") and uri.endswith(".fake0")
        assert json.loads(text)["params"]["textDocument"]["uri"] == uri
