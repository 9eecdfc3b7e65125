"""CLI entry point for s3authgate."""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from s3authgate.config import load_config
from s3authgate.logging_config import configure_logging
from s3authgate.server import create_app


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="s3authgate",
        description="s3authgate - AWS SigV4 request authentication gate",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("s3authgate.yaml"),
        help="Path to YAML configuration file (default: s3authgate.yaml)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host address to bind to (overrides config)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (overrides config)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config, default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=["text", "json"],
        help="Log format: 'text' (human-readable) or 'json' (structured)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the s3authgate CLI.

    Loads configuration, applies CLI overrides, and starts the gate using
    uvicorn.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)

    # Basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    logger = logging.getLogger("s3authgate")

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    if args.host is not None:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.log_level is not None:
        config.logging.level = args.log_level
    if args.log_format is not None:
        config.logging.format = args.log_format

    configure_logging(level=config.logging.level, fmt=config.logging.format)

    if config.auth.enabled and not config.auth.credentials:
        logger.warning(
            "Auth is enabled but no credentials are configured; every request will be rejected"
        )

    logger.info(
        "Starting s3authgate on %s:%d (auth=%s)",
        config.server.host,
        config.server.port,
        "enabled" if config.auth.enabled else "disabled",
    )

    app = create_app(config)

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
        timeout_graceful_shutdown=config.server.shutdown_timeout,
        timeout_keep_alive=5,
    )


if __name__ == "__main__":
    main()
