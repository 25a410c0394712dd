"""Flask application factory for the Backlog sync JSON API."""

import logging

from flask import Flask

from backlog_sync.config import FileConfigProvider
from backlog_sync.permissions import FileOriginPermissions
from backlog_sync.service import IssueSyncService
from backlog_sync.storage import TomlFileStore
from backlog_sync.web.runner import LoopRunner


def create_service() -> IssueSyncService:
    """Build a service wired to the config file and persistent state file."""
    return IssueSyncService(
        FileConfigProvider(),
        permissions=FileOriginPermissions(),
        store=TomlFileStore(),
    )


def create_app(service: IssueSyncService | None = None) -> Flask:
    """Create and configure the Flask application."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    app = Flask(__name__)

    app.config["SECRET_KEY"] = "backlog-sync-local-dev"
    app.extensions["backlog_sync"] = service or create_service()
    app.extensions["backlog_sync_runner"] = LoopRunner()

    from backlog_sync.web.routes import bp
    app.register_blueprint(bp)

    return app
