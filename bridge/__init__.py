"""
LSP bridge: LSP clients, their registry, the method catalog and the tools
built from it.
"""

from .lsp import (
    LSPClient,
    LSPConnection,
    LSPConnectionError,
    LSPError,
    LSPInitializationError,
    LSPResponseError,
    LSPServerNotFoundError,
    LSPState,
    LSPTransportError,
)
from .manager import LSPManager
from .methods import (
    LSPMethod,
    MethodCatalog,
    lsp_method_handler,
    open_file_contents,
    remove_type_unions,
    sanitize_input_schema,
)
from .registrar import LSP_PROPERTY_NAME, ToolRegistrar
from .selector import DefaultLspSelector, LspSelector
from .tools import Tool, ToolManager

__all__ = [
    "LSPClient",
    "LSPConnection",
    "LSPConnectionError",
    "LSPError",
    "LSPInitializationError",
    "LSPResponseError",
    "LSPServerNotFoundError",
    "LSPState",
    "LSPTransportError",
    "LSPManager",
    "LSPMethod",
    "MethodCatalog",
    "lsp_method_handler",
    "open_file_contents",
    "remove_type_unions",
    "sanitize_input_schema",
    "LSP_PROPERTY_NAME",
    "ToolRegistrar",
    "DefaultLspSelector",
    "LspSelector",
    "Tool",
    "ToolManager",
]
