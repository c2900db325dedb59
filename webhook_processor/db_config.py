"""Database URI and engine options per deployment environment."""
import os

from sqlalchemy.pool import QueuePool

DEFAULT_SQLITE_URL = "sqlite:///webhooks.sqlite"

# Checked in order; the first one set wins
DATABASE_URL_VARS = {
    "local": ("LOCAL_DATABASE_URL",),
    "sandbox": ("SANDBOX_DATABASE_URL",),
    "production": ("PRODUCTION_DATABASE_URL", "DATABASE_URL"),
}


def normalize_database_url(url: str) -> str:
    """SQLAlchemy expects postgresql:// rather than the legacy postgres:// scheme."""
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def resolve_database_url(environment: str, environ=None) -> str:
    """
    Pick the database URL for an environment ('local', 'sandbox', 'production').

    Local falls back to a SQLite file; deployed environments must be configured.

    Raises:
        ValueError: sandbox/production without a database URL
    """
    environ = os.environ if environ is None else environ
    names = DATABASE_URL_VARS.get(environment, DATABASE_URL_VARS["local"])

    for name in names:
        if environ.get(name):
            return normalize_database_url(environ[name].strip())

    if environment in ("sandbox", "production"):
        raise ValueError(f"{' or '.join(names)} must be set for the {environment} environment")
    return DEFAULT_SQLITE_URL


def engine_options_for(database_url: str):
    """Pooling options for PostgreSQL; SQLite uses SQLAlchemy's defaults."""
    if not database_url.startswith("postgresql"):
        return None
    return {
        "pool_pre_ping": True,        # Detect and refresh dead connections before use
        "pool_recycle": 280,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 30,
        "poolclass": QueuePool,
        "connect_args": {
            "sslmode": "require",
            "connect_timeout": 10,
            "application_name": "webhook_processor",
            "options": "-c statement_timeout=30000"  # 30s max per SQL statement
        },
    }


def configure_database(app, overrides=None):
    """Set SQLALCHEMY_DATABASE_URI and engine options on the app config.

    The environment comes from the loaded config class (``ENV``). An explicit
    SQLALCHEMY_DATABASE_URI in ``overrides`` wins (used by tests).
    """
    overrides = overrides or {}

    database_uri = overrides.get("SQLALCHEMY_DATABASE_URI")
    if database_uri:
        database_uri = normalize_database_url(database_uri)
    else:
        database_uri = resolve_database_url(app.config.get("ENV", "local"))

    app.config["SQLALCHEMY_DATABASE_URI"] = database_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    engine_options = engine_options_for(database_uri)
    if engine_options:
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
