#!/usr/bin/env python3
"""
Main entry point for the sprinkler REST daemon.
Run with: python3 run.py  (same as: sqlsprinkler --daemon)
"""
import sys
import logging

from sqlsprinkler.config import load_settings
from sqlsprinkler.context import build_context
from sqlsprinkler.cli import run_daemon
from sqlsprinkler.logging_config import setup_logging

logger = logging.getLogger(__name__)


def main():
    """Initialize and run the Flask application."""
    settings = load_settings()
    setup_logging(verbose=settings.verbose, daemon=True)
    try:
        context = build_context(settings)
        run_daemon(context, web=True, home_assistant=settings.mqtt_enabled)
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.critical(f"Fatal error starting application: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
