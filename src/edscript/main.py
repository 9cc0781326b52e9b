"""
Command line entry point.

Loads the rc file, runs init, then runs each function invocation given on
the command line. Without an editor attached, commands that no registered
handler claims are printed and treated as successful.
"""

import argparse
import logging
import os
import signal
import sys
from typing import Optional

import structlog
from dotenv import load_dotenv

from .core.config import AppConfigLoader
from .core.errors import ConfigError
from .script.interpreter import FunctionOutcome
from .session import Session


logger = structlog.get_logger()


def configure_logging(log_format: str = "console", level: int = logging.INFO) -> None:
    """Configure structured logging."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def trace_command(line: str) -> bool:
    print(line)
    return True


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Load an edbrowse-style rc file and run the functions it defines.",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH"),
        help="Application config, YAML or JSON (default: $CONFIG_PATH).",
    )
    parser.add_argument(
        "--rc",
        default=os.getenv("EBRC_PATH"),
        help="rc file to load (default: $EBRC_PATH, else the configured rc_file).",
    )
    parser.add_argument(
        "--no-init",
        action="store_true",
        help="Do not run the init function after loading.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log every expanded command.",
    )
    parser.add_argument(
        "invocations",
        nargs="*",
        metavar="FUNCTION",
        help='Function invocation, e.g. "greet Alice Bob".',
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    try:
        config = AppConfigLoader().load(args.config)
    except ConfigError as e:
        configure_logging()
        logger.error("app_config_failed", error=str(e))
        return 2

    configure_logging(
        os.getenv("LOG_FORMAT", config.log_format),
        logging.DEBUG if args.debug else logging.INFO,
    )

    session = Session(config, fallback=trace_command)

    def interrupt_handler(signum, frame):
        logger.info("interrupt_received")
        session.interrupt.set()

    previous_handler = signal.signal(signal.SIGINT, interrupt_handler)
    try:
        return run(session, args)
    finally:
        signal.signal(signal.SIGINT, previous_handler)


def run(session: Session, args: argparse.Namespace) -> int:
    try:
        session.reload(args.rc)
    except ConfigError:
        return 2

    session.load_replacements()

    if not args.no_init:
        session.run_init()

    status = 0
    for invocation in args.invocations:
        result = session.run_function(invocation)
        if result.outcome is not FunctionOutcome.SUCCESS:
            status = 1

    return status


if __name__ == "__main__":
    sys.exit(main())
