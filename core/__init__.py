"""
Core package.

Transport-agnostic exceptions shared by the LSP bridge, the configuration
loader and the MCP server.
"""

from .exceptions import (
    ConfigurationError,
    CoreError,
    InvalidArgumentsError,
    MissingArgumentsError,
    NotFoundError,
)

__all__ = [
    "CoreError",
    "NotFoundError",
    "ConfigurationError",
    "MissingArgumentsError",
    "InvalidArgumentsError",
]
