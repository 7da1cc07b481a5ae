"""Flask application factory for the account notification service."""

import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()  # Load .env file if present (already gitignored)

from flask import Flask, jsonify

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

VERSION = "0.1.0"


def create_app(context=None, testing=False):
    """Create and configure the Flask application.

    ``context`` is the EngineContext shared by the webhook, the API and the
    scheduler; one is built from settings when not given.
    """
    from config.settings import ADMIN_API_KEY, SCHEDULER_ENABLED
    from tracker.context import EngineContext

    app = Flask(__name__)
    app.config["TESTING"] = testing
    app.config["ADMIN_API_KEY"] = ADMIN_API_KEY
    app.json.ensure_ascii = False

    if context is None:
        context = EngineContext.from_settings()
    app.extensions["engine"] = context

    from web.routes.webhook import bp as webhook_bp
    from web.routes.api import bp as api_bp

    app.register_blueprint(webhook_bp)
    app.register_blueprint(api_bp, url_prefix="/api/v1")

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    @app.route("/health")
    def health_check():
        return jsonify({
            "status": "healthy",
            "service": "Account Licence Notifier",
            "version": VERSION,
        }), 200

    # Start scheduler (only in non-testing mode)
    if SCHEDULER_ENABLED and not app.config["TESTING"]:
        from web.scheduler import init_scheduler
        init_scheduler(context)

    return app


def get_engine(app=None):
    """Return the EngineContext attached to the current (or given) app."""
    from flask import current_app
    return (app or current_app).extensions["engine"]
