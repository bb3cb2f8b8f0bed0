"""
Utility helpers for reconciler feature flag and setting lookups.
"""

from __future__ import annotations

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_reconciler_enabled(app=None) -> bool:
    """Return True when the reconciliation blueprint and CLI should be mounted."""
    config = _get_config(app)
    return bool(config.get("RECON_ENABLED", True))

