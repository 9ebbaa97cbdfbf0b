"""Flask application factory for the monitoring console API."""

import logging
import os
from flask import Flask

from .config import get_config


def create_app(config=None):
    """Create and configure the Flask application.

    Args:
        config: Optional configuration object or dict

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    # Load configuration
    if config is None:
        config = get_config()

    if isinstance(config, dict):
        app.config.update(config)
    else:
        app.config.from_object(config)

    # Shared store and operator commands
    from common.alert_store import AlertStore
    from sos_alerts.commands import CommandHandler

    app.alert_store = AlertStore(db_path=app.config.get("ALERT_DB_PATH"))
    app.commands = CommandHandler(app.alert_store)

    # Register blueprints
    from .routes.api import api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    return app


def run_dev_server():
    """Run development server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app = create_app()
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 5000)),
        debug=app.config.get("DEBUG", False),
    )


if __name__ == "__main__":
    run_dev_server()
