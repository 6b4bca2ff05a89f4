"""LSP manager: the configured set of LSP clients and their lookup indices."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from config import Config
from core.exceptions import ConfigurationError

from .lsp import LSPClient

logger = logging.getLogger(__name__)


class LSPManager:
    """Ordered registry of LSP clients with case-insensitive lookups.

    The first client is the default. Indices are built once in the
    constructor and never mutated, so lookups need no locking.
    """

    def __init__(self, clients: Sequence[LSPClient]):
        if not clients:
            raise ConfigurationError("At least one LSP must be configured")

        self._clients = list(clients)
        self._by_id: dict[str, LSPClient] = {}
        self._by_language: dict[str, LSPClient] = {}
        self._by_extension: dict[str, LSPClient] = {}

        for client in self._clients:
            key = client.id.lower()
            if key in self._by_id:
                raise ConfigurationError(f"Duplicate LSP id: {client.id}")
            self._by_id[key] = client

            for language in client.languages:
                self._by_language.setdefault(language.lower(), client)
            for extension in client.extensions:
                self._by_extension.setdefault(_normalize_extension(extension), client)

        # Ids double as extensions for fuzzy lookups; real extensions win
        for client in self._clients:
            self._by_extension.setdefault(client.id.lower(), client)

    @classmethod
    def from_config(cls, config: Config, workspace: str) -> "LSPManager":
        """Create one (not yet started) client per configured LSP."""
        return cls(
            [
                LSPClient(
                    id=lsp.id,
                    languages=lsp.languages,
                    extensions=lsp.extensions,
                    workspace=workspace,
                    command=lsp.command,
                    args=lsp.args,
                )
                for lsp in config.lsps
            ]
        )

    def get_by_id(self, id: str) -> LSPClient | None:
        return self._by_id.get(id.lower())

    def get_by_language(self, language: str) -> LSPClient | None:
        return self._by_language.get(language.lower())

    def get_by_extension(self, extension: str) -> LSPClient | None:
        return self._by_extension.get(_normalize_extension(extension))

    def get_default(self) -> LSPClient:
        """The first configured client."""
        return self._clients[0]

    def all(self) -> list[LSPClient]:
        return list(self._clients)

    def has_multiple(self) -> bool:
        return len(self._clients) > 1

    async def shutdown_all(self) -> None:
        """Dispose every client. Never raises."""
        results = await asyncio.gather(
            *(client.dispose() for client in self._clients),
            return_exceptions=True,
        )
        for client, result in zip(self._clients, results):
            if isinstance(result, BaseException):
                logger.error("Error disposing LSP %s: %s", client.id, result)


def _normalize_extension(extension: str) -> str:
    return extension.lstrip(".").lower()
