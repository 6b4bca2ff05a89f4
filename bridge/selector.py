"""
LSP selection: decides which client handles a tool invocation.

Precedence is fixed: an explicit id or language in the selector property,
then the extension of textDocument.uri, then the default client.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from .lsp import LSPClient
from .manager import LSPManager


class LspSelector(Protocol):
    """Strategy for picking a client for one call."""

    def select(
        self,
        args: Mapping[str, Any],
        manager: LSPManager,
        lsp_property_name: str | None = None,
    ) -> LSPClient: ...


class DefaultLspSelector:
    """Explicit id/language beats extension inference beats default."""

    def select(
        self,
        args: Mapping[str, Any],
        manager: LSPManager,
        lsp_property_name: str | None = None,
    ) -> LSPClient:
        client: LSPClient | None = None

        if lsp_property_name:
            explicit = args.get(lsp_property_name)
            if isinstance(explicit, str) and explicit:
                client = manager.get_by_id(explicit) or manager.get_by_language(explicit)

        if client is None:
            uri = extract_uri(args)
            extension = extract_extension(uri) if uri else None
            if extension:
                client = manager.get_by_extension(extension)

        return client or manager.get_default()


def extract_uri(args: Mapping[str, Any]) -> str | None:
    """Return args["textDocument"]["uri"] when it is a string."""
    text_document = args.get("textDocument")
    if not isinstance(text_document, Mapping):
        return None

    uri = text_document.get("uri")
    return uri if isinstance(uri, str) else None


def extract_extension(uri: str) -> str | None:
    """Substring after the last '.', or None when there is none."""
    _, dot, extension = uri.rpartition(".")
    if not dot or not extension:
        return None
    return extension
