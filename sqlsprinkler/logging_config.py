"""Logging setup shared by the CLI and the daemons."""
import logging
import sys
from typing import Optional

from .config import LOG_FILE

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(verbose: bool = False, daemon: bool = False,
                  log_file: Optional[str] = LOG_FILE):
    """
    Configure root logging with a file handler and a stdout handler.

    Args:
        verbose: Log at INFO (DEBUG for daemons)
        daemon: Long-running process; logs INFO even when not verbose
        log_file: Path of the log file, or None for stdout only
    """
    if daemon:
        level = logging.DEBUG if verbose else logging.INFO
    else:
        level = logging.INFO if verbose else logging.WARNING

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)

    # Werkzeug logs every request at INFO
    logging.getLogger("werkzeug").setLevel(logging.WARNING if not verbose else logging.INFO)
