"""
Core domain exceptions.

These exceptions are transport-agnostic and should be caught by the server
layer to convert into appropriate MCP error responses.
"""


class CoreError(Exception):
    """Base exception for all core errors."""

    pass


class NotFoundError(CoreError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class ConfigurationError(CoreError):
    """Raised when the bridge is configured in a way it cannot run with.

    Zero configured LSPs, duplicate LSP or tool ids, and unreadable config or
    metadata files all end up here. These are fatal at startup.
    """

    pass


class MissingArgumentsError(CoreError):
    """Raised when a tool is invoked without an argument object."""

    def __init__(self, tool_id: str):
        self.tool_id = tool_id
        super().__init__(f"No arguments provided for tool: {tool_id}")


class InvalidArgumentsError(CoreError):
    """Raised when a tool's argument object lacks a field or has the wrong type."""

    def __init__(self, tool_id: str, reason: str):
        self.tool_id = tool_id
        self.reason = reason
        super().__init__(f"Invalid arguments for tool {tool_id}: {reason}")
