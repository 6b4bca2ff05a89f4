"""
LSP (Language Server Protocol) client implementation.

One LSPClient manages one configured language server: it spawns the
subprocess lazily, performs the initialize handshake and forwards requests
and notifications over a JSON-RPC 2.0 connection on the process's stdio.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import shutil
from enum import Enum
from typing import Any, Callable, Sequence

logger = logging.getLogger(__name__)

# Constants
LSP_SHUTDOWN_TIMEOUT_SECONDS = 2.0
LSP_TERMINATE_TIMEOUT_SECONDS = 2.0
LSP_WRITER_CLOSE_TIMEOUT_SECONDS = 1.0
LSP_EXIT_GRACE_SECONDS = 1.0

# JSON-RPC error code sent back for server-to-client requests
METHOD_NOT_FOUND = -32601

# Extension to language ID mapping for textDocument/didOpen
EXTENSION_TO_LANGUAGE: dict[str, str] = {
    # Python
    ".py": "python",
    ".pyi": "python",
    # TypeScript/JavaScript
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".mts": "typescript",
    ".cts": "typescript",
    # Go
    ".go": "go",
    # Rust
    ".rs": "rust",
    # Java
    ".java": "java",
    # C/C++
    ".c": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".h": "c",
    ".hpp": "cpp",
    # C#
    ".cs": "csharp",
    # Ruby
    ".rb": "ruby",
    # PHP
    ".php": "php",
    # Swift
    ".swift": "swift",
    # Kotlin
    ".kt": "kotlin",
    ".kts": "kotlin",
    # Scala
    ".scala": "scala",
    # Lua
    ".lua": "lua",
    # Zig
    ".zig": "zig",
    # Shell
    ".sh": "shellscript",
    ".bash": "shellscript",
    # Config/Data
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
    ".toml": "toml",
    # Web
    ".html": "html",
    ".css": "css",
    ".vue": "vue",
    ".svelte": "svelte",
    # Documentation
    ".md": "markdown",
}


# --- Exception Classes ---


class LSPError(Exception):
    """Base exception for LSP errors."""
    pass


class LSPTransportError(LSPError):
    """The JSON-RPC stream to the server failed or was closed."""
    pass


class LSPConnectionError(LSPTransportError):
    """Failed to spawn or connect to language server."""
    pass


class LSPServerNotFoundError(LSPConnectionError):
    """Language server binary not found."""
    pass


class LSPInitializationError(LSPTransportError):
    """Server failed to initialize."""
    pass


class LSPResponseError(LSPError):
    """The server answered a request with a JSON-RPC error."""

    def __init__(self, code: int | None, message: str, data: Any = None):
        self.code = code
        self.data = data
        super().__init__(f"LSP error {code}: {message}")


class LSPState(str, Enum):
    """Lifecycle state of an LSPClient."""
    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"


# --- Utility Functions ---


def get_language_id(extension: str) -> str | None:
    """Get LSP language ID from a file extension such as '.py'."""
    return EXTENSION_TO_LANGUAGE.get(extension.lower())


async def terminate_process(process: asyncio.subprocess.Process) -> None:
    """Terminate a subprocess, killing it if it does not exit in time."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
        await asyncio.wait_for(process.wait(), timeout=LSP_TERMINATE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
    except ProcessLookupError:
        pass


# --- LSP Connection (JSON-RPC 2.0 over stdio) ---


class LSPConnection:
    """JSON-RPC 2.0 connection over stdio with Content-Length framing.

    Requests are correlated to responses by id, so any number of requests
    may be in flight and responses may arrive in any order.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        name: str = "lsp",
    ):
        self.process = process
        self.reader = reader
        self.writer = writer
        self.name = name
        self._request_id = 0
        self._pending_requests: dict[int, asyncio.Future[Any]] = {}
        self._unhandled_notification_handler: Callable[[dict], None] | None = None
        self._error_handlers: list[Callable[[Exception], None]] = []
        self._close_handlers: list[Callable[[], None]] = []
        self._response_task: asyncio.Task | None = None
        self._closed = False
        self._shutting_down = False

    @property
    def closed(self) -> bool:
        """True once the connection was closed or the listener stopped."""
        if self._closed:
            return True
        return self._response_task is not None and self._response_task.done()

    def on_unhandled_notification(self, handler: Callable[[dict], None]) -> None:
        """Register a callback for every notification the server sends."""
        self._unhandled_notification_handler = handler

    def on_error(self, handler: Callable[[Exception], None]) -> None:
        """Register a callback for stream read errors."""
        self._error_handlers.append(handler)

    def on_close(self, handler: Callable[[], None]) -> None:
        """Register a callback for the server closing its end of the stream."""
        self._close_handlers.append(handler)

    def begin_shutdown(self) -> None:
        """Mark the coming end of stream as expected.

        After this, the server closing its stdout or breaking the stream no
        longer reaches the error and close callbacks. Pending requests still
        fail.
        """
        self._shutting_down = True

    async def start_response_listener(self) -> None:
        """Start background task to listen for responses."""
        self._response_task = asyncio.create_task(
            self._response_listener(), name=f"lsp-listener-{self.name}"
        )

    async def _response_listener(self) -> None:
        """Background task to read messages and dispatch them."""
        reason = "Connection closed"
        try:
            while not self._closed:
                try:
                    message = await self._read_message()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    if not (self._closed or self._shutting_down):
                        reason = f"Connection error: {e}"
                        self._emit_error(e)
                    break

                if message is None:
                    if not (self._closed or self._shutting_down):
                        reason = "Connection closed by server"
                        self._emit_close()
                    break

                await self._dispatch(message)
        finally:
            self._fail_pending(reason)

    async def _dispatch(self, message: dict) -> None:
        msg_id = message.get("id")
        method = message.get("method")

        if method is None:
            # Response to one of our requests
            future = self._pending_requests.pop(msg_id, None)
            if future is None or future.done():
                logger.debug("[%s] Dropping response for unknown request id %s", self.name, msg_id)
                return
            error = message.get("error")
            if error is not None:
                future.set_exception(
                    LSPResponseError(
                        error.get("code"),
                        error.get("message", "Unknown error"),
                        error.get("data"),
                    )
                )
            else:
                future.set_result(message.get("result"))
        elif msg_id is None:
            if self._unhandled_notification_handler is not None:
                self._unhandled_notification_handler(message)
        else:
            # Server-to-client request; answer so the server does not wait forever
            logger.debug("[%s] Rejecting server request %s", self.name, method)
            try:
                await self._write_message(
                    {
                        "jsonrpc": "2.0",
                        "id": msg_id,
                        "error": {
                            "code": METHOD_NOT_FOUND,
                            "message": f"Unhandled method {method}",
                        },
                    }
                )
            except LSPTransportError as e:
                logger.warning("[%s] Failed to answer server request %s: %s", self.name, method, e)

    def _emit_error(self, error: Exception) -> None:
        for handler in self._error_handlers:
            handler(error)

    def _emit_close(self) -> None:
        for handler in self._close_handlers:
            handler()

    def _fail_pending(self, reason: str) -> None:
        pending = list(self._pending_requests.values())
        self._pending_requests.clear()
        for future in pending:
            if not future.done():
                future.set_exception(LSPTransportError(reason))

    async def _read_message(self) -> dict | None:
        """Read Content-Length framed JSON message from reader."""
        headers: dict[str, str] = {}

        # Read headers until empty line
        while True:
            line = await self.reader.readline()
            if not line:
                return None

            line_str = line.decode("utf-8").strip()
            if not line_str:
                break

            if ":" in line_str:
                key, value = line_str.split(":", 1)
                headers[key.strip().lower()] = value.strip()

        # Read body based on Content-Length
        content_length = int(headers.get("content-length", 0))
        if content_length == 0:
            return None

        body = await self.reader.readexactly(content_length)
        return json.loads(body.decode("utf-8"))

    async def _write_message(self, message: dict) -> None:
        """Write Content-Length framed JSON message to writer."""
        if self._closed:
            raise LSPTransportError("Connection is closed")

        body = json.dumps(message).encode("utf-8")
        header = f"Content-Length: {len(body)}\r\n\r\n".encode("utf-8")
        try:
            self.writer.write(header + body)
            await self.writer.drain()
        except (ConnectionError, RuntimeError) as e:
            raise LSPTransportError(f"Failed to write to LSP server: {e}") from e

    async def send_request(self, method: str, params: Any = None) -> Any:
        """Send JSON-RPC request and await response.

        Args:
            method: LSP method name
            params: Request parameters (omitted from the message when None)

        Returns:
            Response result

        Raises:
            LSPTransportError: If the connection fails before a response arrives
            LSPResponseError: If server returns error
        """
        if self.closed:
            raise LSPTransportError("Connection is closed")

        self._request_id += 1
        request_id = self._request_id

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future

        message: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
        }
        if params is not None:
            message["params"] = params

        try:
            await self._write_message(message)
            return await future
        finally:
            self._pending_requests.pop(request_id, None)

    async def send_notification(self, method: str, params: Any = None) -> None:
        """Send JSON-RPC notification (no response expected).

        Args:
            method: LSP method name
            params: Notification parameters (omitted from the message when None)
        """
        if self.closed:
            raise LSPTransportError("Connection is closed")

        message: dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": method,
        }
        if params is not None:
            message["params"] = params
        await self._write_message(message)

    async def close(self) -> None:
        """Close connection and terminate process.

        Error and close callbacks are not invoked for a deliberate close.
        """
        self._closed = True

        if self._response_task:
            self._response_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._response_task
        self._fail_pending("Connection closed")

        self.writer.close()
        try:
            await asyncio.wait_for(
                self.writer.wait_closed(), timeout=LSP_WRITER_CLOSE_TIMEOUT_SECONDS
            )
        except (asyncio.TimeoutError, ConnectionError, RuntimeError):
            pass

        # A server that got "exit" or saw stdin close usually leaves on its own
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self.process.wait(), timeout=LSP_EXIT_GRACE_SECONDS)

        await terminate_process(self.process)


# --- LSP Client ---


class LSPClient:
    """LSP client for a single configured language server.

    The subprocess is spawned on the first start() or on first use by
    send_request()/send_notification(). Concurrent first calls share one
    start attempt. A failed client is not restarted in the background; the
    next call spawns a fresh process.
    """

    def __init__(
        self,
        id: str,
        languages: Sequence[str],
        extensions: Sequence[str],
        workspace: str,
        command: str,
        args: Sequence[str] | None = None,
    ):
        self.id = id
        self.languages = list(languages)
        self.extensions = list(extensions)
        self.workspace = workspace
        self.command = command
        self.args = list(args or [])
        self.state = LSPState.NOT_STARTED
        self.capabilities: dict[str, Any] | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._connection: LSPConnection | None = None
        self._stderr_task: asyncio.Task | None = None
        self._start_task: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"LSPClient(id={self.id!r}, state={self.state.value!r})"

    @property
    def started(self) -> bool:
        """True once the initialize handshake has completed."""
        return self.state is LSPState.READY

    async def start(self) -> None:
        """Spawn the server and perform the initialize handshake.

        Returns immediately when already ready. While a start is in progress
        every caller awaits the same attempt.

        Raises:
            LSPServerNotFoundError: If the server binary is not found
            LSPConnectionError: If the process cannot be spawned
            LSPInitializationError: If the handshake fails
        """
        if self.state is LSPState.READY:
            return

        if self._start_task is None or self._start_task.done():
            self._start_task = asyncio.create_task(self._start(), name=f"lsp-start-{self.id}")

        # Shielded so one cancelled caller does not abort the shared attempt
        await asyncio.shield(self._start_task)

    async def _start(self) -> None:
        # Release whatever a previous failed attempt left behind
        await self._teardown()

        self.state = LSPState.STARTING
        logger.info("Starting LSP %s: %s", self.id, " ".join([self.command, *self.args]))

        try:
            await self._spawn()
            await self._initialize()
        except asyncio.CancelledError:
            await self._teardown()
            self._mark_failed()
            raise
        except LSPError as e:
            logger.error("Failed to start LSP %s: %s", self.id, e)
            await self._teardown()
            self._mark_failed()
            raise
        except Exception as e:
            logger.error("Failed to start LSP %s: %s", self.id, e)
            await self._teardown()
            self._mark_failed()
            raise LSPInitializationError(f"Failed to start LSP {self.id}: {e}") from e

        self.state = LSPState.READY
        logger.info("LSP %s initialized successfully", self.id)

    async def _spawn(self) -> None:
        if shutil.which(self.command) is None:
            raise LSPServerNotFoundError(
                f"LSP server '{self.command}' not found. "
                f"Please install the language server."
            )

        try:
            process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.workspace,
            )
        except OSError as e:
            raise LSPConnectionError(f"Failed to spawn LSP server '{self.command}': {e}") from e

        self._process = process
        if process.stdin is None or process.stdout is None:
            raise LSPConnectionError("Failed to get process pipes")

        connection = LSPConnection(
            process=process,
            reader=process.stdout,
            writer=process.stdin,
            name=self.id,
        )
        connection.on_error(self._handle_transport_error)
        connection.on_close(self._handle_transport_close)
        connection.on_unhandled_notification(self._handle_unhandled_notification)
        self._connection = connection

        await connection.start_response_listener()

        if process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._drain_stderr(process.stderr))

    async def _initialize(self) -> None:
        """Send initialize request and initialized notification."""
        assert self._connection is not None
        params = {
            "processId": os.getpid(),
            "rootUri": f"file://{self.workspace}",
            "capabilities": {},
        }

        try:
            result = await self._connection.send_request("initialize", params)
            await self._connection.send_notification("initialized", {})
        except LSPError as e:
            raise LSPInitializationError(f"Failed to initialize LSP server {self.id}: {e}") from e

        self.capabilities = (result or {}).get("capabilities", {})
        logger.debug("LSP %s capabilities: %s", self.id, json.dumps(self.capabilities))

    async def _drain_stderr(self, stream: asyncio.StreamReader) -> None:
        """Forward server stderr to the debug log so the pipe never fills up."""
        try:
            async for line in stream:
                logger.debug("[%s stderr] %s", self.id, line.decode("utf-8", errors="replace").rstrip())
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug("Stopped reading stderr of LSP %s: %s", self.id, e)

    def _handle_transport_error(self, error: Exception) -> None:
        logger.error("LSP %s connection error: %s", self.id, error)
        self._kill_process()
        self._mark_failed()

    def _handle_transport_close(self) -> None:
        logger.warning("LSP %s connection closed", self.id)
        self._kill_process()
        self._mark_failed()

    def _handle_unhandled_notification(self, message: dict) -> None:
        logger.debug("LSP %s unhandled notification: %s", self.id, json.dumps(message))

    def _mark_failed(self) -> None:
        self.state = LSPState.FAILED
        self.capabilities = None

    def _kill_process(self) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()

    async def _teardown(self) -> None:
        """Close the transport and reap the subprocess, if any."""
        connection, self._connection = self._connection, None
        process, self._process = self._process, None
        stderr_task, self._stderr_task = self._stderr_task, None

        if connection is not None:
            await connection.close()
        elif process is not None:
            await terminate_process(process)

        if stderr_task is not None:
            stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stderr_task

    def _require_connection(self) -> LSPConnection:
        if self.state is not LSPState.READY or self._connection is None:
            raise LSPTransportError(f"LSP {self.id} is not running")
        return self._connection

    async def send_request(self, method: str, params: Any = None) -> Any:
        """Send a request, starting the server first if needed.

        Returns:
            The server's result, as-is

        Raises:
            LSPTransportError: If the server cannot be started or the stream fails
            LSPResponseError: If the server answers with an error
        """
        if self.state is not LSPState.READY:
            await self.start()
        return await self._require_connection().send_request(method, params)

    async def send_notification(self, method: str, params: Any = None) -> None:
        """Send a notification, starting the server first if needed."""
        if self.state is not LSPState.READY:
            await self.start()
        await self._require_connection().send_notification(method, params)

    async def dispose(self) -> None:
        """Shut the server down and release the subprocess.

        Best-effort: errors are logged, never raised. Safe to call more than
        once and on a client that was never started.
        """
        try:
            start_task, self._start_task = self._start_task, None
            if start_task is not None and not start_task.done():
                start_task.cancel()
                try:
                    await start_task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.debug("Cancelled start of LSP %s ended with: %s", self.id, e)

            connection = self._connection
            if self.state is LSPState.READY and connection is not None:
                connection.begin_shutdown()
                try:
                    await asyncio.wait_for(
                        connection.send_request("shutdown"),
                        timeout=LSP_SHUTDOWN_TIMEOUT_SECONDS,
                    )
                    await connection.send_notification("exit")
                except (LSPError, asyncio.TimeoutError) as e:
                    logger.debug("LSP %s did not shut down cleanly: %s", self.id, e)

            await self._teardown()
        except Exception as e:
            logger.error("Error disposing LSP %s: %s", self.id, e)
        finally:
            self.state = LSPState.NOT_STARTED
            self.capabilities = None
