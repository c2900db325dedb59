"""
Tests for database URL resolution and engine options.
"""
import pytest
from flask import Flask

from webhook_processor.db_config import (
    DEFAULT_SQLITE_URL,
    configure_database,
    engine_options_for,
    normalize_database_url,
    resolve_database_url,
)


class TestNormalizeDatabaseUrl:

    def test_legacy_postgres_scheme_is_rewritten(self):
        assert normalize_database_url("postgres://u:p@db:5432/hooks") == "postgresql://u:p@db:5432/hooks"

    def test_other_urls_untouched(self):
        assert normalize_database_url("sqlite:///webhooks.sqlite") == "sqlite:///webhooks.sqlite"
        assert normalize_database_url("postgresql://db/hooks") == "postgresql://db/hooks"


class TestResolveDatabaseUrl:

    def test_local_defaults_to_sqlite(self):
        assert resolve_database_url("local", environ={}) == DEFAULT_SQLITE_URL

    def test_local_override(self):
        assert resolve_database_url("local", environ={"LOCAL_DATABASE_URL": "sqlite:///other.db"}) == "sqlite:///other.db"

    def test_production_falls_back_to_database_url(self):
        url = resolve_database_url("production", environ={"DATABASE_URL": "postgres://db/hooks"})
        assert url == "postgresql://db/hooks"

    def test_production_prefers_its_own_variable(self):
        environ = {"PRODUCTION_DATABASE_URL": "postgresql://prod/hooks", "DATABASE_URL": "postgresql://other/hooks"}
        assert resolve_database_url("production", environ=environ) == "postgresql://prod/hooks"

    @pytest.mark.parametrize("environment", ["sandbox", "production"])
    def test_deployed_environments_require_a_url(self, environment):
        with pytest.raises(ValueError):
            resolve_database_url(environment, environ={})


class TestConfigureDatabase:

    def test_override_wins_and_sqlite_gets_no_pool_options(self):
        app = Flask(__name__)
        app.config["ENV"] = "production"

        configure_database(app, {"SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:"})

        assert app.config["SQLALCHEMY_DATABASE_URI"] == "sqlite:///:memory:"
        assert "SQLALCHEMY_ENGINE_OPTIONS" not in app.config

    def test_postgres_gets_pool_options(self, monkeypatch):
        monkeypatch.setenv("SANDBOX_DATABASE_URL", "postgres://sandbox/hooks")
        app = Flask(__name__)
        app.config["ENV"] = "sandbox"

        configure_database(app)

        assert app.config["SQLALCHEMY_DATABASE_URI"] == "postgresql://sandbox/hooks"
        options = app.config["SQLALCHEMY_ENGINE_OPTIONS"]
        assert options["pool_pre_ping"] is True
        assert options["connect_args"]["sslmode"] == "require"

    def test_engine_options_only_for_postgres(self):
        assert engine_options_for("sqlite:///webhooks.sqlite") is None
        assert engine_options_for("postgresql://db/hooks")["pool_size"] == 5
