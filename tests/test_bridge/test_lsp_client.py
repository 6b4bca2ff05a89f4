"""Tests for the LSP client lifecycle and JSON-RPC connection."""

import asyncio
import json
from unittest.mock import patch

import pytest

from bridge.lsp import (
    LSPClient,
    LSPInitializationError,
    LSPResponseError,
    LSPServerNotFoundError,
    LSPState,
    LSPTransportError,
    get_language_id,
)


class TestGetLanguageId:
    """Test extension to languageId mapping."""

    def test_known_extensions(self):
        assert get_language_id(".py") == "python"
        assert get_language_id(".ts") == "typescript"
        assert get_language_id(".tsx") == "typescriptreact"

    def test_case_insensitive(self):
        assert get_language_id(".PY") == "python"

    def test_unknown_extension(self):
        assert get_language_id(".unknown") is None
        assert get_language_id("") is None


class TestClientLifecycle:
    """State transitions of a single client."""

    @pytest.mark.asyncio
    async def test_initial_state(self, make_client):
        client = make_client()
        assert client.state is LSPState.NOT_STARTED
        assert client.started is False
        assert client.capabilities is None

    @pytest.mark.asyncio
    async def test_start_reaches_ready(self, make_client, server_log_lines):
        client = make_client()
        try:
            await client.start()
            assert client.state is LSPState.READY
            assert client.started is True
            assert client.capabilities["hoverProvider"] is True
        finally:
            await client.dispose()

        # initialized is sent right after the initialize response
        assert any(line.startswith("notify initialized") for line in server_log_lines())

    @pytest.mark.asyncio
    async def test_start_is_noop_when_ready(self, make_client, server_log_lines):
        client = make_client()
        try:
            await client.start()
            await client.start()
        finally:
            await client.dispose()
        assert server_log_lines().count("spawned") == 1

    @pytest.mark.asyncio
    async def test_concurrent_starts_spawn_once(self, make_client, server_log_lines):
        client = make_client(extra_args=["--init-delay", "0.2"])
        try:
            await asyncio.gather(*(client.start() for _ in range(5)))
            assert client.state is LSPState.READY
        finally:
            await client.dispose()
        assert server_log_lines().count("spawned") == 1

    @pytest.mark.asyncio
    async def test_send_request_starts_lazily(self, make_client):
        client = make_client()
        try:
            result = await client.send_request("test/echo", {"value": 42})
            assert result == {"value": 42}
            assert client.state is LSPState.READY
        finally:
            await client.dispose()

    @pytest.mark.asyncio
    async def test_server_not_found(self, make_client):
        client = make_client()
        with patch("bridge.lsp.shutil.which", return_value=None):
            with pytest.raises(LSPServerNotFoundError):
                await client.start()
        assert client.state is LSPState.FAILED
        assert client.capabilities is None

    @pytest.mark.asyncio
    async def test_initialize_failure_marks_failed(self, make_client):
        client = make_client(extra_args=["--fail-init"])
        with pytest.raises(LSPInitializationError):
            await client.start()
        assert client.state is LSPState.FAILED
        assert client.capabilities is None
        await client.dispose()

    @pytest.mark.asyncio
    async def test_failed_client_starts_fresh_on_next_call(self, make_client, server_log_lines):
        client = make_client()
        try:
            await client.start()
            with pytest.raises(LSPTransportError):
                await client.send_request("test/crash")

            for _ in range(50):
                if client.state is LSPState.FAILED:
                    break
                await asyncio.sleep(0.01)
            assert client.state is LSPState.FAILED
            assert client.capabilities is None

            assert await client.send_request("test/echo", [1]) == [1]
            assert client.state is LSPState.READY
        finally:
            await client.dispose()
        assert server_log_lines().count("spawned") == 2


class TestClientDispose:
    """dispose() is best-effort and idempotent."""

    @pytest.mark.asyncio
    async def test_dispose_never_started(self, make_client, server_log_lines):
        client = make_client()
        await client.dispose()
        assert client.state is LSPState.NOT_STARTED
        assert server_log_lines() == []

    @pytest.mark.asyncio
    async def test_dispose_sends_shutdown_and_exit(self, make_client, server_log_lines):
        client = make_client()
        await client.start()
        await client.dispose()

        assert client.state is LSPState.NOT_STARTED
        assert client.capabilities is None
        assert any(line.startswith("notify exit") for line in server_log_lines())

    @pytest.mark.asyncio
    async def test_dispose_does_not_pass_through_failed(self, make_client, caplog):
        client = make_client()
        await client.start()
        with patch.object(client, "_mark_failed") as mark_failed:
            await client.dispose()

        mark_failed.assert_not_called()
        assert "connection closed" not in caplog.text
        assert client.state is LSPState.NOT_STARTED

    @pytest.mark.asyncio
    async def test_dispose_twice(self, make_client):
        client = make_client()
        await client.start()
        await client.dispose()
        await client.dispose()
        assert client.state is LSPState.NOT_STARTED

    @pytest.mark.asyncio
    async def test_dispose_after_failure(self, make_client):
        client = make_client(extra_args=["--fail-init"])
        with pytest.raises(LSPInitializationError):
            await client.start()
        await client.dispose()
        assert client.state is LSPState.NOT_STARTED


class TestConnection:
    """Request/response correlation over a live connection."""

    @pytest.mark.asyncio
    async def test_error_response_keeps_client_ready(self, make_client):
        client = make_client()
        try:
            with pytest.raises(LSPResponseError) as exc_info:
                await client.send_request("test/error")
            assert exc_info.value.code == -32000
            assert "boom" in str(exc_info.value)
            assert client.state is LSPState.READY
        finally:
            await client.dispose()

    @pytest.mark.asyncio
    async def test_out_of_order_responses(self, make_client):
        client = make_client()
        try:
            await client.start()
            slow = asyncio.create_task(client.send_request("test/slow"))
            await asyncio.sleep(0.05)
            fast = await client.send_request("test/echo", {"n": 1})

            assert fast == {"n": 1}
            assert await asyncio.wait_for(slow, timeout=5) == "slow"
        finally:
            await client.dispose()

    @pytest.mark.asyncio
    async def test_notification_reaches_server(self, make_client, server_log_lines):
        client = make_client()
        try:
            await client.send_notification("test/note", {"a": 1})
            # Round-trip a request so the notification is processed first
            await client.send_request("test/echo", None)
        finally:
            await client.dispose()
        assert f"notify test/note {json.dumps({'a': 1})}" in server_log_lines()

    @pytest.mark.asyncio
    async def test_server_notifications_are_logged(self, make_client):
        # The fake server sends window/logMessage during initialize
        client = make_client()
        with patch.object(client, "_handle_unhandled_notification") as handler:
            try:
                await client.start()
            finally:
                await client.dispose()

        methods = [call.args[0]["method"] for call in handler.call_args_list]
        assert "window/logMessage" in methods

    @pytest.mark.asyncio
    async def test_expected_end_of_stream_is_not_a_failure(self, make_client, caplog):
        client = make_client()
        await client.start()
        connection = client._connection
        try:
            connection.begin_shutdown()
            await connection.send_request("shutdown")
            await connection.send_notification("exit")
            # The server closes its stdout as it exits
            await asyncio.wait_for(connection._response_task, timeout=5)

            assert client.state is LSPState.READY
            assert "connection closed" not in caplog.text
        finally:
            await client.dispose()

    @pytest.mark.asyncio
    async def test_unexpected_end_of_stream_marks_failed(self, make_client):
        client = make_client()
        await client.start()
        connection = client._connection
        try:
            with pytest.raises(LSPTransportError):
                await asyncio.wait_for(connection.send_request("test/crash"), timeout=5)
            await asyncio.wait_for(connection._response_task, timeout=5)
            assert client.state is LSPState.FAILED
        finally:
            await client.dispose()

    @pytest.mark.asyncio
    async def test_server_request_does_not_stall(self, make_client):
        # The fake server asks workspace/configuration during initialize
        client = make_client()
        try:
            await client.start()
            assert await client.send_request("test/echo", "ok") == "ok"
        finally:
            await client.dispose()

    @pytest.mark.asyncio
    async def test_requests_fail_when_server_dies(self, make_client):
        client = make_client()
        try:
            await client.start()
            with pytest.raises(LSPTransportError):
                await asyncio.wait_for(client.send_request("test/crash"), timeout=5)
        finally:
            await client.dispose()

    def test_repr(self):
        client = LSPClient("ts", ["typescript"], ["ts"], "/tmp", "tsserver")
        assert repr(client) == "LSPClient(id='ts', state='not_started')"
