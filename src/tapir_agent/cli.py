"""
Command-line interface for tapir-agent.
"""

import argparse
import logging
import sys
from pathlib import Path

import structlog

from .agent.core import Agent
from .cancel import CancelToken
from .config import Settings
from .display import Display
from .errors import MissingCredentialError, TapirError
from .llm.anthropic import AnthropicTransport
from .terminal import LineEditor
from .tools.registry import create_default_registry

VERSION = "0.1.0"

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def configure_logging(level: str = "WARNING") -> None:
    """Send stdlib logging (and so structlog) to stderr at ``level``."""
    logging.basicConfig(stream=sys.stderr, format="%(message)s", level=level, force=True)


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="tapir",
        description="tapir - a terminal coding agent",
    )
    parser.add_argument("-V", "--version", action="store_true", help="Print version and exit")
    parser.add_argument("-c", "--config", type=Path, help="Path to the JSON config file")
    args = parser.parse_args()

    if args.version:
        print(f"tapir v{VERSION}")
        sys.exit(0)

    configure_logging()
    sys.exit(run(args.config))


def run(config_path: Path | None = None, display: Display | None = None) -> int:
    """Load settings and run the agent; returns the process exit code."""
    display = display or Display()
    display.line(f"tapir v{VERSION}")

    try:
        settings = Settings.load(config_path)
    except ValueError as e:
        display.line(f"error: invalid configuration: {e}")
        return 1
    configure_logging(settings.log_level)

    if not settings.api_key:
        display.line(f"error: {MissingCredentialError()}")
        return 1

    cancel = CancelToken()
    transport = AnthropicTransport(
        settings.api_key,
        settings.api_url,
        on_retry=display.notice,
    )
    editor = LineEditor(history_path=settings.home_dir / "history")
    try:
        agent = Agent(
            settings,
            transport,
            create_default_registry(cancel),
            editor,
            display=display,
            cancel=cancel,
        )
        agent.run()
    except TapirError as e:
        logger.error("Agent stopped", error=str(e))
        display.line(f"error: {e}")
        return 1
    finally:
        editor.save_history()
        transport.close()
    return 0


if __name__ == "__main__":
    main()
