"""
LSP-MCP bridge entry point.

Usage: lsp-mcp [CONFIG_PATH]
"""
import asyncio
import logging
import signal
import sys

from config import Config, get_config_path, load_config
from core.exceptions import ConfigurationError
from server.app import App
from server.logging_config import setup_logging

# Initialize logging before anything else
setup_logging()
logger = logging.getLogger(__name__)

# Exit codes
EXIT_OK = 0
EXIT_CONFIG_ERROR = 1


async def run(config: Config) -> None:
    """Serve until stdin closes or SIGTERM/SIGINT arrives, then dispose every LSP."""
    loop = asyncio.get_running_loop()
    serving = asyncio.current_task()
    assert serving is not None

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, serving.cancel)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass

    try:
        async with App(config) as app:
            await app.serve()
    except asyncio.CancelledError:
        logger.info("Shutdown requested")
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass


def main() -> None:
    """Load the configuration and serve MCP over stdio."""
    try:
        config_path = get_config_path(sys.argv[1:])
        config = load_config(config_path)
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(EXIT_CONFIG_ERROR)

    try:
        asyncio.run(run(config))
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(EXIT_CONFIG_ERROR)
    except KeyboardInterrupt:
        logger.info("Interrupted")

    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
