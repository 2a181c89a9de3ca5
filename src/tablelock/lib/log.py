"""Logging setup for the command line tool."""
import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_handler = logging.StreamHandler(sys.stderr)
_handler.setFormatter(logging.Formatter(LOG_FORMAT))


def configure_logging(verbose: bool = False) -> logging.Logger:
    level = logging.DEBUG if verbose else logging.WARNING
    root = logging.getLogger("tablelock")
    root.setLevel(level)
    if _handler not in root.handlers:
        root.addHandler(_handler)
    return root
