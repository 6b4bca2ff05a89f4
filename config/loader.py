"""Configuration loading utilities."""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Sequence

from pydantic import ValidationError

from core.exceptions import ConfigurationError

from .main_config import Config

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "LSP_MCP_CONFIG"
WORKING_DIR_ENV = "WORKING_DIR"

# Looked up in the working directory when no path is given
DEFAULT_CONFIG_FILENAMES = ("lsp-mcp.jsonc", "lsp-mcp.json")


def strip_jsonc_comments(content: str) -> str:
    """
    Strip comments from JSONC content to convert to valid JSON.

    Handles:
    - Single-line comments: // comment
    - Multi-line comments: /* comment */

    String literals are left untouched, so URIs such as "file:///tmp" survive.

    Args:
        content: JSONC content string

    Returns:
        JSON string with comments removed
    """
    pattern = re.compile(r'("(?:\\.|[^"\\])*")|//[^\n]*|/\*.*?\*/', re.DOTALL)
    return pattern.sub(lambda m: m.group(1) or "", content)


def load_config_file(path: Path) -> dict[str, Any]:
    """
    Load a config file from the given path.

    Both .json and .jsonc files are accepted; comments are stripped either way.

    Args:
        path: Path to the config file

    Returns:
        Parsed config dictionary

    Raises:
        ConfigurationError: If the file is missing or not valid JSON
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to read config from {path}: {e}") from e

    try:
        data = json.loads(strip_jsonc_comments(content))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {path} must contain a JSON object")
    return data


def load_config(path: Path) -> Config:
    """
    Load and validate the bridge configuration.

    Args:
        path: Path to a JSON/JSONC config file

    Returns:
        Validated Config model

    Raises:
        ConfigurationError: If the file cannot be read or fails validation
    """
    data = load_config_file(path)
    try:
        config = Config(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config in {path}: {e}") from e

    logger.info("Loaded config from %s (%d LSPs)", path, len(config.lsps))
    return config


def get_working_directory() -> str:
    """
    Get the working directory from environment or default to cwd.

    Returns:
        The working directory path as a string
    """
    return os.environ.get(WORKING_DIR_ENV, os.getcwd())


def get_config_path(argv: Sequence[str] | None = None) -> Path:
    """
    Resolve which config file to load.

    Precedence: first command-line argument, then the LSP_MCP_CONFIG
    environment variable, then lsp-mcp.jsonc / lsp-mcp.json in the
    working directory.

    Raises:
        ConfigurationError: If no config file can be found
    """
    if argv:
        return Path(argv[0])

    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)

    working_dir = Path(get_working_directory())
    for filename in DEFAULT_CONFIG_FILENAMES:
        candidate = working_dir / filename
        if candidate.exists():
            return candidate

    raise ConfigurationError(
        f"No config file found. Pass a path, set {CONFIG_PATH_ENV}, "
        f"or create {DEFAULT_CONFIG_FILENAMES[0]} in {working_dir}"
    )


def resolve_workspace(config: Config) -> str:
    """Workspace root for the language servers, as an absolute path."""
    return os.path.abspath(config.workspace or get_working_directory())
