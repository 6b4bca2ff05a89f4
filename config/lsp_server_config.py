"""LSPServerConfig model."""

from pydantic import BaseModel, Field, field_validator


class LSPServerConfig(BaseModel):
    """A language server the bridge can spawn and route requests to."""

    id: str = Field(description="Unique identifier of the language server")
    languages: list[str] = Field(
        default_factory=list,
        description="Programming languages handled by this server",
    )
    extensions: list[str] = Field(
        default_factory=list,
        description="File extensions handled by this server (without leading dot)",
    )
    command: str = Field(description="Command to start the language server")
    args: list[str] = Field(default_factory=list, description="Command arguments")

    @field_validator("id", "command")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("extensions")
    @classmethod
    def _strip_leading_dot(cls, value: list[str]) -> list[str]:
        return [ext.lstrip(".") for ext in value]
