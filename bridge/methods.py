"""
LSP method catalog and request forwarding.

The catalog turns the static LSP metamodel (documentation) and the generated
protocol JSON schema (parameter shapes) into one LSPMethod per invokable
request. The request helpers forward a tool call to a client, opening the
referenced document first so the server sees its current contents.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Mapping
from urllib.parse import unquote, urlparse

import jsonref

from core.exceptions import ConfigurationError

from .lsp import LSPClient, LSPError, get_language_id

logger = logging.getLogger(__name__)

RESOURCES_DIR = Path(__file__).parent / "resources"
META_MODEL_FILENAME = "metaModel.json"
PROTOCOL_SCHEMA_FILENAME = "protocol.schema.json"

MEM_URI_SCHEME = "mem://"
FILE_URI_SCHEME = "file://"

DID_OPEN_METHOD = "textDocument/didOpen"

# LSP requests that are never exposed as tools
TOOL_BLACKLIST = frozenset(
    {
        # Handled by the bridge itself
        "initialize",
        "shutdown",
        # Meaningless outside an editor
        "client/registerCapability",
        "client/unregisterCapability",
    }
)


@dataclass(frozen=True)
class LSPMethod:
    """An LSP request ready to be exposed as a tool."""
    id: str
    description: str
    input_schema: dict[str, Any]


@dataclass(frozen=True)
class _Lookups:
    documentation: dict[str, str]
    method_order: list[str]
    schemas: dict[str, Mapping[str, Any]]


# --- Schema sanitization ---


def remove_type_unions(schema: Mapping[str, Any]) -> dict[str, Any]:
    """Collapse list-valued "type" declarations, recursively.

    A union becomes "string" when that is one of the options, else its first
    option. Applies to every nested property and to array items. Cyclic
    nodes are replaced by a bare object schema. The input is not mutated.
    """
    return _remove_type_unions(schema, frozenset())


def _remove_type_unions(schema: Mapping[str, Any], path: frozenset[int]) -> dict[str, Any]:
    if id(schema) in path:
        return {"type": "object"}
    path = path | {id(schema)}

    result = dict(schema)
    node_type = result.get("type")
    if isinstance(node_type, list):
        if "string" in node_type:
            result["type"] = "string"
        elif node_type:
            result["type"] = node_type[0]
        else:
            del result["type"]

    properties = result.get("properties")
    if isinstance(properties, Mapping):
        result["properties"] = {
            key: _remove_type_unions(value, path) if isinstance(value, Mapping) else value
            for key, value in properties.items()
        }

    items = result.get("items")
    if isinstance(items, Mapping):
        result["items"] = _remove_type_unions(items, path)

    return result


def sanitize_input_schema(params_schema: Mapping[str, Any] | None) -> dict[str, Any]:
    """Make a params schema safe for schema-sensitive tool callers.

    Missing or untyped schemas become {"type": "object"}; type unions are
    collapsed everywhere.
    """
    if not params_schema or not params_schema.get("type"):
        return {"type": "object"}
    return remove_type_unions(params_schema)


# --- Method catalog ---


class MethodCatalog:
    """Loads LSP method metadata once and builds the method list once.

    Attributes:
        allowed_method_ids: Optional allow-list; None means every documented request
        resources_dir: Directory holding metaModel.json and protocol.schema.json
    """

    def __init__(
        self,
        allowed_method_ids: Iterable[str] | None = None,
        resources_dir: Path | str | None = None,
    ):
        self.allowed_method_ids = list(allowed_method_ids) if allowed_method_ids is not None else None
        self.resources_dir = Path(resources_dir) if resources_dir else RESOURCES_DIR
        self._lookups: _Lookups | None = None
        self._methods: list[LSPMethod] | None = None

    def _load_json(self, filename: str) -> Any:
        path = self.resources_dir / filename
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load LSP metadata from {path}: {e}") from e

    def _load_lookups(self) -> _Lookups:
        if self._lookups is not None:
            return self._lookups

        meta_model = self._load_json(META_MODEL_FILENAME)
        requests = meta_model.get("requests", [])

        schema = jsonref.replace_refs(
            self._load_json(PROTOCOL_SCHEMA_FILENAME),
            proxies=False,
            lazy_load=False,
        )
        definitions = schema.get("definitions")
        if not definitions:
            raise ConfigurationError(
                f"No definitions in {self.resources_dir / PROTOCOL_SCHEMA_FILENAME}"
            )

        schemas: dict[str, Mapping[str, Any]] = {}
        for definition in definitions.values():
            method_enum = definition.get("properties", {}).get("method", {}).get("enum")
            if isinstance(method_enum, list) and len(method_enum) == 1:
                schemas[str(method_enum[0])] = definition

        self._lookups = _Lookups(
            documentation={
                request["method"]: request.get("documentation", "") for request in requests
            },
            method_order=[request["method"] for request in requests],
            schemas=schemas,
        )
        logger.debug(
            "Loaded %d documented requests and %d request schemas",
            len(self._lookups.method_order),
            len(schemas),
        )
        return self._lookups

    def describe_method(self, method_id: str) -> str:
        documentation = self._load_lookups().documentation.get(method_id, "")
        return f"method: {method_id}\n{documentation}"

    def get_methods(self) -> list[LSPMethod]:
        """Every exposable LSP request, in metamodel (or allow-list) order.

        Computed on the first call; later calls return the same list.
        """
        if self._methods is not None:
            return self._methods

        lookups = self._load_lookups()
        candidates = self.allowed_method_ids if self.allowed_method_ids is not None else lookups.method_order

        methods: list[LSPMethod] = []
        for method_id in candidates:
            if method_id in TOOL_BLACKLIST:
                continue

            definition = lookups.schemas.get(method_id)
            if not definition or not definition.get("properties"):
                logger.debug("No schema for LSP method %s, skipping", method_id)
                continue

            methods.append(
                LSPMethod(
                    id=method_id,
                    description=self.describe_method(method_id),
                    input_schema=sanitize_input_schema(definition["properties"].get("params")),
                )
            )

        self._methods = methods
        logger.info("Prepared %d LSP methods", len(methods))
        return self._methods


# --- Request forwarding ---


def path_to_file_uri(path: str) -> str:
    """/path/to/file -> file:///path/to/file"""
    return Path(path).as_uri()


def file_uri_to_path(uri: str) -> str:
    """file:///path/to/file -> /path/to/file; anything else is taken as a path."""
    if uri.startswith(FILE_URI_SCHEME):
        return os.path.abspath(unquote(urlparse(uri).path))
    return os.path.abspath(uri)


def read_file(path: str) -> str:
    """Read a document from disk for textDocument/didOpen."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        raise LSPError(f"Failed to read file {path}: {e}") from e


def language_id_for(client: LSPClient, uri: str) -> str:
    """languageId for a document: from its extension, else the client's first language."""
    language_id = get_language_id(os.path.splitext(uri)[1])
    if language_id:
        return language_id
    if client.languages:
        return client.languages[0].lower()
    return "plaintext"


async def open_file_contents(client: LSPClient, uri: str, contents: str) -> None:
    """Tell the server about a document's full contents."""
    await client.send_notification(
        DID_OPEN_METHOD,
        {
            "textDocument": {
                "uri": uri,
                "languageId": language_id_for(client, uri),
                "version": 1,
                "text": contents,
            }
        },
    )


async def open_file(
    client: LSPClient,
    path: str,
    uri: str,
    file_opener: Callable[[LSPClient, str, str], Awaitable[None]] = open_file_contents,
) -> None:
    await file_opener(client, uri, read_file(path))


async def lsp_method_handler(
    client: LSPClient,
    method_id: str,
    args: Mapping[str, Any],
    file_opener: Callable[[LSPClient, str, str], Awaitable[None]] = open_file_contents,
) -> Any:
    """Forward a tool call to the server as an LSP request.

    When args carry a textDocument.uri that is not a mem:// URI, the file is
    read from disk and opened on the server first, and the uri is rewritten
    to its canonical file:// form.

    Returns:
        The server's result, as-is
    """
    lsp_args = dict(args)
    text_document = lsp_args.get("textDocument")
    uri = text_document.get("uri") if isinstance(text_document, Mapping) else None

    if isinstance(uri, str) and uri and not uri.startswith(MEM_URI_SCHEME):
        path = file_uri_to_path(uri)
        canonical_uri = path_to_file_uri(path)
        await open_file(client, path, canonical_uri, file_opener)
        lsp_args["textDocument"] = {**text_document, "uri": canonical_uri}

    return await client.send_request(method_id, lsp_args)
