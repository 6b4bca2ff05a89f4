"""Main Config model."""

from pydantic import BaseModel, Field

from .lsp_server_config import LSPServerConfig


class Config(BaseModel):
    """Main configuration model."""

    lsps: list[LSPServerConfig] = Field(
        min_length=1,
        description="Language servers in priority order; the first one is the default",
    )
    methods: list[str] | None = Field(
        default=None,
        description="LSP methods to expose as tools (if None, expose all known methods)",
    )
    workspace: str | None = Field(
        default=None,
        description="Workspace root sent to every language server (defaults to the working directory)",
    )
    resources_dir: str | None = Field(
        default=None,
        description="Directory holding metaModel.json and protocol.schema.json overrides",
    )
