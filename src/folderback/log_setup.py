"""Root logger configuration for the command line entry point."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from folderback.config.models import LoggingSettings

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_HANDLER_MARKER = "_folderback_handler"


def configure_logging(settings: LoggingSettings, *, console: Console | None = None) -> None:
    """Attach console (and optional rotating file) handlers to the root logger.

    Calling this again replaces the handlers installed by a previous call.

    Args:
        settings: Logging settings resolved from configuration.
        console: Optional rich console to log to; defaults to stderr.
    """
    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handlers: list[logging.Handler] = [console_handler]

    if settings.file:
        log_file = Path(settings.file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=settings.max_size_mb * 1024 * 1024,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        setattr(handler, _HANDLER_MARKER, True)
        handler.setLevel(level)
        root.addHandler(handler)
    root.setLevel(level)


__all__ = ["configure_logging"]
