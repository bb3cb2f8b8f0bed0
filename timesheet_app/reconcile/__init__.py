"""
Timesheet reconciliation feature package.

Mounts the reconciler blueprint, CLI group and bulk worker when
``RECON_ENABLED`` is on.
"""

from __future__ import annotations

from flask import Flask

from timesheet_app.utils.reconcile import is_reconciler_enabled

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_recon_group, recon_cli
from .pipeline import ApprovalService, ColumnMapStore, NotificationGate, RowReconciliationService
from .views import recon_blueprint

RECONCILER_EXTENSION_KEY = "reconciler"

__all__ = [
    "init_reconciler",
    "RECONCILER_EXTENSION_KEY",
    "get_celery_app",
    "ApprovalService",
    "ColumnMapStore",
    "NotificationGate",
    "RowReconciliationService",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        RECONCILER_EXTENSION_KEY,
        {
            "enabled": False,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    if recon_cli.name in app.cli.commands:
        app.cli.commands.pop(recon_cli.name)
    app.cli.add_command(recon_cli if enabled else get_disabled_recon_group())


def init_reconciler(app: Flask) -> None:
    """
    Conditionally mount the reconciler blueprint, CLI and Celery app.

    State lives in ``app.extensions['reconciler']``.
    """
    enabled = is_reconciler_enabled(app)
    state = _ensure_extension_state(app)
    state["enabled"] = enabled

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Reconciler disabled via RECON_ENABLED flag; skipping registration.")
        return

    ensure_celery_app(app, state)
    if recon_blueprint.name not in app.blueprints:
        app.register_blueprint(recon_blueprint)
    _set_cli(app, enabled=True)
    app.logger.info(
        "Reconciler enabled (fuzzy threshold %.2f, strict sentinels %s)",
        float(app.config.get("RECON_FUZZY_THRESHOLD", 0.7)),
        bool(app.config.get("RECON_STRICT_SENTINELS", False)),
    )
