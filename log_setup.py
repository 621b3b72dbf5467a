"""Logging configuration for the command line."""

import logging
import sys

import colorlog

COLOR_FORMAT = "%(log_color)s%(levelname)-8s%(reset)s %(blue)s%(name)s%(reset)s: %(message)s"
PLAIN_FORMAT = "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: int = logging.INFO, enable_colors: bool = True) -> None:
    """Route all log records to stderr, coloured when stderr is a terminal."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    if enable_colors and sys.stderr.isatty():
        formatter = colorlog.ColoredFormatter(
            COLOR_FORMAT,
            datefmt=DATE_FORMAT,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    else:
        formatter = logging.Formatter(PLAIN_FORMAT, datefmt=DATE_FORMAT)
    handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=[handler], force=True)
    logging.getLogger("PIL").setLevel(logging.WARNING)
