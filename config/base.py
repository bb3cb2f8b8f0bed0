# config/base.py
import os

DEFAULT_SPECIAL_SHIFT_NAMES = (
    "qc",
    "job delivery",
    "visit 1",
    "visit 2",
    "visit 3",
    "subcontractor converted to shift hours",
)


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_float(value, default):
    if value is None or str(value).strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_name_list(value, default=()):
    """
    Parse a comma-separated list of names while keeping order and removing duplicates.

    Returns:
        tuple[str, ...]: Lower-cased, whitespace-collapsed names.
    """
    if not value:
        return tuple(default)

    seen = set()
    names = []
    for raw_item in value.split(","):
        item = " ".join(raw_item.split()).lower()
        if not item or item in seen:
            continue
        seen.add(item)
        names.append(item)
    return tuple(names)


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-key-change-in-production"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Reconciliation configuration
    RECON_ENABLED = _coerce_bool(os.environ.get("RECON_ENABLED"), default=True)
    RECON_FUZZY_THRESHOLD = _coerce_float(os.environ.get("RECON_FUZZY_THRESHOLD"), 0.7)
    RECON_CLOSED_STATUS_NAME = os.environ.get("RECON_CLOSED_STATUS_NAME", "Closed Job")
    RECON_OPEN_STATUS_NAME = os.environ.get("RECON_OPEN_STATUS_NAME", "Uploading Shifts")
    RECON_SOLD_STATUS_NAME = os.environ.get("RECON_SOLD_STATUS_NAME", "Sold")
    RECON_STRICT_SENTINELS = _coerce_bool(os.environ.get("RECON_STRICT_SENTINELS"), default=False)
    RECON_SPECIAL_SHIFT_NAMES = _parse_name_list(
        os.environ.get("RECON_SPECIAL_SHIFT_NAMES"),
        default=DEFAULT_SPECIAL_SHIFT_NAMES,
    )
    RECON_PRESERVE_UNCHANGED_APPROVALS = _coerce_bool(
        os.environ.get("RECON_PRESERVE_UNCHANGED_APPROVALS"),
        default=False,
    )
    RECON_LOW_PERFORMANCE_THRESHOLD = _coerce_float(os.environ.get("RECON_LOW_PERFORMANCE_THRESHOLD"), 0.0)
    try:
        RECON_BULK_MAX_WORKERS = max(1, int(os.environ.get("RECON_BULK_MAX_WORKERS", "1")))
    except ValueError:
        RECON_BULK_MAX_WORKERS = 1

    # Celery (bulk reconciliation worker)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "memory://")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "cache+memory://")
    CELERY_TASK_ALWAYS_EAGER = _coerce_bool(os.environ.get("CELERY_TASK_ALWAYS_EAGER"), default=False)


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI format: sqlite:///absolute/path (3 slashes for absolute path)
    db_path = os.path.join(instance_path, "timesheets_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    CELERY_TASK_ALWAYS_EAGER = True


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
