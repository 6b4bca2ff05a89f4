"""
Configuration module for the LSP bridge.

Exports the configuration models and loader functions.
"""

from .loader import (
    get_config_path,
    get_working_directory,
    load_config,
    load_config_file,
    resolve_workspace,
    strip_jsonc_comments,
)
from .lsp_server_config import LSPServerConfig
from .main_config import Config

__all__ = [
    # Config models
    "Config",
    "LSPServerConfig",
    # Loader functions
    "load_config",
    "load_config_file",
    "get_config_path",
    "get_working_directory",
    "resolve_workspace",
    "strip_jsonc_comments",
]
