# backend/orderflow/__init__.py
from __future__ import annotations

import logging
from typing import Mapping, Optional

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: Optional[Mapping] = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app, which builds the engines
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Workflow components, built from config
    from .services.audit_trail import AuditTrail
    from .services.event_store import EventStore
    from .services.reference_service import ReferenceGenerator
    from .services.workflow_service import WorkflowCoordinator, WorkflowPolicy

    event_store = EventStore()
    references = ReferenceGenerator(
        app.config["REFERENCE_PREFIXES"],
        max_attempts=app.config["REFERENCE_MAX_ATTEMPTS"],
    )
    audit_trail = AuditTrail(app.config["TRACKED_FIELDS"], event_store)
    coordinator = WorkflowCoordinator(WorkflowPolicy.from_config(app.config), references, event_store)

    app.extensions["orderflow"] = {
        "event_store": event_store,
        "references": references,
        "audit_trail": audit_trail,
        "coordinator": coordinator,
    }
    audit_trail.install(db.session)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
