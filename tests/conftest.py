"""
Shared pytest fixtures for all tests.
"""
import sys
import tempfile
from pathlib import Path
from typing import Callable, Iterator

import pytest

from bridge.lsp import LSPClient

FAKE_LSP_SERVER = Path(__file__).parent / "fixtures" / "fake_lsp_server.py"


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def server_log(temp_dir: Path) -> Path:
    """File the fake LSP server appends its activity to."""
    return temp_dir / "server.log"


@pytest.fixture
def make_client(temp_dir: Path, server_log: Path) -> Callable[..., LSPClient]:
    """Factory for clients backed by the fake LSP server."""

    def factory(
        id: str = "fake",
        languages: list[str] | None = None,
        extensions: list[str] | None = None,
        extra_args: list[str] | None = None,
    ) -> LSPClient:
        return LSPClient(
            id=id,
            languages=languages if languages is not None else ["python"],
            extensions=extensions if extensions is not None else ["py"],
            workspace=str(temp_dir),
            command=sys.executable,
            args=[str(FAKE_LSP_SERVER), "--log", str(server_log), *(extra_args or [])],
        )

    return factory


def read_log(path: Path) -> list[str]:
    """Lines the fake LSP server has logged so far."""
    if not path.exists():
        return []
    return path.read_text().splitlines()


@pytest.fixture
def server_log_lines(server_log: Path) -> Callable[[], list[str]]:
    return lambda: read_log(server_log)
