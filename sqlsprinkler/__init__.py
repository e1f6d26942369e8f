"""
Flask application factory for the sprinkler daemon.
"""
import atexit
import logging
from typing import Optional

from flask import Flask

from .config import Settings, load_settings
from .context import SprinklerContext, build_context
from .views import bp as api_bp

logger = logging.getLogger(__name__)

__version__ = "0.1.0"


def create_app(context: Optional[SprinklerContext] = None,
               settings: Optional[Settings] = None,
               register_cleanup: bool = True) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        context: Shared objects to serve; built from settings if omitted
        settings: Configuration used when no context is given
        register_cleanup: Release pins when the interpreter exits

    Returns:
        Configured Flask app instance
    """
    if context is None:
        context = build_context(settings or load_settings())

    app = Flask(__name__)
    app.json.sort_keys = False
    app.extensions["sqlsprinkler"] = context

    app.register_blueprint(api_bp)
    logger.info("[APP] Registered API blueprint")

    if register_cleanup:
        atexit.register(cleanup_on_shutdown, context)

    logger.info("[APP] Application created successfully")
    return app


def cleanup_on_shutdown(context: SprinklerContext):
    """Clean up resources on application shutdown."""
    logger.info("[APP] Application shutting down, cleaning up...")
    try:
        context.shutdown()
        logger.info("[APP] Cleanup complete")
    except Exception as e:
        logger.error(f"[APP] Error during cleanup: {e}", exc_info=True)
