import logging
import os

from rich.logging import RichHandler

DEFAULT_NAME = "table"


class PaddedNameFormatter(logging.Formatter):
    """Pads logger names to the widest name seen so far so messages line up."""

    widest_name = 12

    def format(self, record):
        PaddedNameFormatter.widest_name = max(
            PaddedNameFormatter.widest_name, len(record.name)
        )
        record.padded_name = record.name.ljust(PaddedNameFormatter.widest_name)
        return super().format(record)


def _level_from_env() -> int:
    if os.getenv("DEBUG"):
        return logging.DEBUG
    level = getattr(logging, os.getenv("TABLE_LOG_LEVEL", "INFO").upper(), None)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name=None) -> logging.Logger:
    """
    Return a logger that writes through a RichHandler.

    Handlers are attached once per logger name, so modules can call this at
    import time without stacking duplicate output.
    """
    logger = logging.getLogger(name or DEFAULT_NAME)
    level = _level_from_env()
    logger.setLevel(level)

    if not logger.handlers:
        handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        handler.setFormatter(PaddedNameFormatter("[%(padded_name)s]  %(message)s"))
        handler.setLevel(level)
        logger.addHandler(handler)
        logger.propagate = False

    return logger
