"""Command line entrypoint for the engine API server."""

import argparse
import logging
from collections.abc import Sequence

import structlog
import uvicorn

from knapsack import __version__
from knapsack.config import Settings, get_settings

APP_PATH = "knapsack.api.app:app"


def log_processors(*, json_output: bool) -> list[structlog.typing.Processor]:
    """Processor chain shared by console and JSON output."""
    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        renderer,
    ]


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog from the log level and format settings."""
    settings = settings or get_settings()
    level = logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO)
    structlog.configure(
        processors=log_processors(json_output=settings.log_json),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line overrides for the server settings."""
    parser = argparse.ArgumentParser(prog="knapsack", description="Knapsack automation engine")
    parser.add_argument("--host", help="Interface to bind, overrides KNAPSACK_API_HOST")
    parser.add_argument("--port", type=int, help="Port to bind, overrides KNAPSACK_API_PORT")
    parser.add_argument("--log-level", help="Log level, overrides KNAPSACK_LOG_LEVEL")
    parser.add_argument("--json-logs", action="store_true", help="Write logs as JSON lines")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Copy the options given on the command line onto the settings."""
    if args.host:
        settings.api_host = args.host
    if args.port:
        settings.api_port = args.port
    if args.log_level:
        settings.log_level = args.log_level
    if args.json_logs:
        settings.log_json = True
    return settings


def main(argv: Sequence[str] | None = None) -> None:
    """Run the engine API server."""
    settings = apply_overrides(get_settings(), parse_args(argv))
    configure_logging(settings)

    structlog.get_logger().info(
        "Starting Knapsack engine",
        version=__version__,
        host=settings.api_host,
        port=settings.api_port,
        backend_url=settings.backend_url,
        timezone=settings.timezone,
        signed_in=bool(settings.user_email),
    )
    uvicorn.run(
        APP_PATH,
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
