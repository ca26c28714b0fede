"""Tests for settings resolution."""

import pytest

from schemastep.config import (
    DatabaseSettings,
    Settings,
    get_settings,
    load_settings,
    parse_database_url,
    set_settings,
)
from schemastep.errors import ConfigError

ENV_VARS = [
    "SCHEMASTEP_DB_HOST",
    "SCHEMASTEP_DB_PORT",
    "SCHEMASTEP_DB_NAME",
    "SCHEMASTEP_DB_USER",
    "SCHEMASTEP_DB_PASSWORD",
    "SCHEMASTEP_DB_SSLMODE",
    "SCHEMASTEP_MIGRATIONS_TABLE",
    "SCHEMASTEP_MIGRATIONS_DIR",
    "SCHEMASTEP_ENVIRONMENT",
    "SCHEMASTEP_LOG_LEVEL",
    "SCHEMASTEP_DATABASE_URL",
    "DATABASE_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from the real environment and working directory."""
    for var in ENV_VARS:
        # setenv first so teardown also removes values loaded from .env files
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
    monkeypatch.chdir(tmp_path)


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self):
        """Test built-in defaults with no files or variables."""
        settings = load_settings()

        assert settings.database.host == "localhost"
        assert settings.database.port == 5432
        assert settings.database.sslmode == "disable"
        assert settings.migration.table == "schema_migrations"
        assert settings.migration.directory == "migrations"
        assert settings.migration.timezone == "UTC"
        assert settings.environment == "development"

    def test_yaml_file(self, tmp_path):
        """Test values and aliases from the YAML file."""
        path = tmp_path / "db.yaml"
        path.write_text(
            "database:\n"
            "  host: pg.internal\n"
            "  port: 6543\n"
            "  database: shop\n"
            "  username: shop_user\n"
            "migration:\n"
            "  table: migrations\n"
            "  advisory_lock: 'false'\n"
            "environment: staging\n",
            encoding="utf-8",
        )

        settings = load_settings(path)

        assert settings.database.host == "pg.internal"
        assert settings.database.port == 6543
        assert settings.database.name == "shop"
        assert settings.database.user == "shop_user"
        assert settings.migration.table == "migrations"
        assert settings.migration.advisory_lock is False
        assert settings.environment == "staging"

    def test_default_config_path(self, tmp_path):
        """Test that config/database.yaml is read when present."""
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "database.yaml").write_text("database:\n  name: from_default\n")

        assert load_settings().database.name == "from_default"

    def test_missing_explicit_file(self, tmp_path):
        """Test that an explicit path must exist."""
        with pytest.raises(ConfigError):
            load_settings(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        """Test that a non-mapping document is rejected."""
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError):
            load_settings(path)

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        """Test that environment variables beat the YAML file."""
        path = tmp_path / "db.yaml"
        path.write_text("database:\n  host: from_file\n  port: 5432\n")
        monkeypatch.setenv("SCHEMASTEP_DB_HOST", "from_env")
        monkeypatch.setenv("SCHEMASTEP_DB_PORT", "5433")
        monkeypatch.setenv("SCHEMASTEP_ENVIRONMENT", "production")

        settings = load_settings(path)

        assert settings.database.host == "from_env"
        assert settings.database.port == 5433
        assert settings.is_production is True

    def test_invalid_env_port(self, monkeypatch):
        """Test that a non-numeric port is a ConfigError."""
        monkeypatch.setenv("SCHEMASTEP_DB_PORT", "abc")

        with pytest.raises(ConfigError):
            load_settings()

    def test_dotenv_file(self, tmp_path, monkeypatch):
        """Test that .env values are loaded without overriding real variables."""
        (tmp_path / ".env").write_text("SCHEMASTEP_DB_NAME=from_dotenv\nSCHEMASTEP_DB_USER=dotenv_user\n")
        monkeypatch.setenv("SCHEMASTEP_DB_USER", "real_user")

        settings = load_settings()

        assert settings.database.name == "from_dotenv"
        assert settings.database.user == "real_user"

    def test_database_url_wins(self, monkeypatch):
        """Test that DATABASE_URL overrides individual settings."""
        monkeypatch.setenv("SCHEMASTEP_DB_HOST", "ignored")
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p%40ss@h:7000/db?sslmode=require")

        db = load_settings().database

        assert (db.host, db.port, db.name, db.user, db.password, db.sslmode) == (
            "h", 7000, "db", "u", "p@ss", "require",
        )


class TestParseDatabaseUrl:
    """Tests for parse_database_url."""

    def test_rejects_other_schemes(self):
        """Test that non-PostgreSQL URLs are rejected."""
        with pytest.raises(ConfigError):
            parse_database_url("mysql://u:p@h/db")

    def test_partial_url(self):
        """Test that only present parts are returned."""
        assert parse_database_url("postgresql://localhost/app") == {"host": "localhost", "name": "app"}

    def test_invalid_port(self):
        """Test that a non-numeric port is a ConfigError."""
        with pytest.raises(ConfigError, match="port"):
            parse_database_url("postgresql://u:p@h:notaport/app")

    def test_invalid_port_from_environment(self, monkeypatch):
        """Test that load_settings reports a bad DATABASE_URL port as ConfigError."""
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@h:notaport/app")

        with pytest.raises(ConfigError):
            load_settings()


class TestSettings:
    """Tests for Settings helpers."""

    def test_validate_ok(self):
        """Test that a complete config has no problems."""
        settings = Settings(database=DatabaseSettings(name="app", user="app"))
        assert settings.validate() == []

    def test_validate_problems(self):
        """Test that each problem is reported."""
        settings = Settings(database=DatabaseSettings(port=0, sslmode="sometimes"))

        problems = settings.validate()

        assert any("name" in p for p in problems)
        assert any("user" in p for p in problems)
        assert any("port" in p for p in problems)
        assert any("sslmode" in p for p in problems)

    def test_dsn_encodes_credentials(self):
        """Test percent-encoding of user and password."""
        db = DatabaseSettings(host="h", name="app", user="me", password="a:b@c/d")
        assert db.dsn == "postgresql://me:a%3Ab%40c%2Fd@h:5432/app?sslmode=disable"
        assert db.admin_dsn.startswith("postgresql://me:a%3Ab%40c%2Fd@h:5432/postgres")

    def test_redacted(self):
        """Test that the password is masked."""
        settings = Settings(database=DatabaseSettings(password="hunter2"))
        assert settings.redacted()["database"]["password"] == "********"

    def test_is_production(self):
        """Test production detection."""
        assert Settings(environment="prod").is_production
        assert Settings(environment="Production").is_production
        assert not Settings().is_production

    def test_global_settings(self):
        """Test get_settings caching and set_settings override."""
        custom = Settings(environment="staging")
        set_settings(custom)
        assert get_settings() is custom
