"""
Logging setup for the CLI and GUI entry points.

Engine modules only create module-level loggers; handlers are installed here,
once, by whichever front end starts the engine.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

LOG_FILE_NAME = "tpm.log"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_HANDLER_MARK = "_tpm_handler"


def configure_logging(logs_root: Path | None, level: str = "INFO", *, console: bool = True) -> None:
    """
    Install the engine's log handlers on the 'profile_engine' logger.

    Parameters
    ----------
    logs_root:
        Directory for the rotating log file. None disables file logging.
    level:
        Level name such as 'INFO' or 'DEBUG'.
    console:
        If True, also log to stderr.

    Notes
    -----
    Calling this again replaces previously installed handlers instead of
    stacking duplicates.
    """
    root = logging.getLogger("profile_engine")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(_FORMAT)
    if logs_root is not None:
        logs_root.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            logs_root / LOG_FILE_NAME, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_MARK, True)
        root.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(logging.WARNING)
        setattr(stream_handler, _HANDLER_MARK, True)
        root.addHandler(stream_handler)
