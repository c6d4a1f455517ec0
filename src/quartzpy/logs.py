"""Logging setup for applications embedding the scheduler."""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from quartzpy.config import settings

console = Console(stderr=True)


def setup_logging(verbose: bool = False, log_file: str | Path | None = None) -> None:
    """Configure root logging with a rich console handler.

    Args:
        verbose: Log at DEBUG level and include logger names.
        log_file: Also append plain-text records to this file.
    """
    level = logging.DEBUG if verbose else logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    fmt = "%(name)s: %(message)s" if verbose else "%(message)s"

    handlers: list[logging.Handler] = [
        RichHandler(rich_tracebacks=True, console=console, show_path=verbose)
    ]
    if log_file is not None:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
        handlers.append(file_handler)

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)
