# config/validation.py

"""
Startup checks for production settings.

Only ``FLASK_ENV=production`` is validated; development and test runs fall
back to the defaults in ``config.base``.
"""

import os
import sys
from typing import List, Tuple

_PLACEHOLDER_SECRETS = {"", "your-secret-key", "your_secret_key", "dev-secret-key-change-in-production"}


def _check_secret_key(errors: List[str]) -> None:
    if os.environ.get("SECRET_KEY", "") in _PLACEHOLDER_SECRETS:
        errors.append(
            "SECRET_KEY must be set to a non-placeholder value in production "
            '(python -c "import secrets; print(secrets.token_hex(32))").'
        )


def _check_database(errors: List[str]) -> None:
    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production (PostgreSQL connection string).")


def _check_fuzzy_threshold(errors: List[str]) -> None:
    raw = os.environ.get("RECON_FUZZY_THRESHOLD")
    if not raw:
        return
    try:
        threshold = float(raw)
    except ValueError:
        threshold = None
    if threshold is None or not 0.0 < threshold < 1.0:
        errors.append("RECON_FUZZY_THRESHOLD must be a number between 0 and 1")


def _check_broker(errors: List[str]) -> None:
    if os.environ.get("CELERY_TASK_ALWAYS_EAGER", "false").lower() == "true":
        return
    broker = os.environ.get("CELERY_BROKER_URL", "")
    if not broker or broker.startswith("memory://"):
        errors.append(
            "CELERY_BROKER_URL must point to a real broker in production "
            "unless CELERY_TASK_ALWAYS_EAGER=true"
        )


_PRODUCTION_CHECKS = (_check_secret_key, _check_database, _check_fuzzy_threshold, _check_broker)


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Run the production checks.

    Returns:
        Tuple of (is_valid, list_of_errors). Non-production environments are
        always valid.
    """
    flask_env = flask_env or os.environ.get("FLASK_ENV", "development")
    if flask_env != "production":
        return True, []

    errors: List[str] = []
    for check in _PRODUCTION_CHECKS:
        check(errors)
    return not errors, errors


def validate_and_exit(flask_env: str = None) -> None:
    """Print every failed check to stderr and exit with status 1."""
    is_valid, errors = validate_environment(flask_env)
    if is_valid:
        return

    lines = ["Refusing to start: production settings are incomplete.", ""]
    lines.extend(f"  {index}. {error}" for index, error in enumerate(errors, 1))
    lines.extend(["", "Check the process environment or the .env file."])
    print("\n".join(lines), file=sys.stderr)
    sys.exit(1)
