# tests/unit/test_config_loader.py
# ------------------------------------------------------------
# Purpose: Unit tests for config/config_loader.py
#          (YAML + ${VAR} substitution + per-mode validation).
# Notes:   Every test writes its own YAML into tmp_path and controls
#          the environment through monkeypatch.
# ------------------------------------------------------------

import pytest

from config.config_loader import (
    build_db_url,
    get_config,
    lookup,
    normalize_db_url,
    validate_config,
)
from linksdeck_migrate.errors import ConfigError


def _write(tmp_path, body):
    path = tmp_path / "cfg.yaml"
    path.write_text(body, encoding="utf-8")
    return str(path)


def test_placeholders_are_substituted_from_the_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("FIREBASE_PROJECT_ID", "linksdeck-prod")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    cfg = get_config(
        path=_write(
            tmp_path,
            "firebase:\n  project_id: ${FIREBASE_PROJECT_ID}\ndatabase:\n  url: ${DATABASE_URL}\n",
        )
    )

    assert lookup(cfg, "firebase.project_id") == "linksdeck-prod"
    # Unset variables stay visible as markers but read as absent.
    assert "MISSING:DATABASE_URL" in cfg["database"]["url"]
    assert lookup(cfg, "database.url") is None


def test_quoted_json_secret_survives_substitution(tmp_path, monkeypatch):
    monkeypatch.setenv("FIREBASE_SERVICE_ACCOUNT_JSON", '{"type": "service_account", "project_id": "p"}')
    cfg = get_config(path=_write(tmp_path, "firebase:\n  service_account_json: '${FIREBASE_SERVICE_ACCOUNT_JSON}'\n"))

    assert cfg["firebase"]["service_account_json"] == '{"type": "service_account", "project_id": "p"}'


def test_defaults_are_filled_in(tmp_path):
    cfg = get_config(path=_write(tmp_path, "log_level: debug\npaths:\n  export_file: ./x.json\n"))

    assert cfg["log_level"] == "DEBUG"
    assert cfg["db_schema"] == "public"
    assert cfg["paths"]["export_file"] == "./x.json"
    assert cfg["paths"]["transformed_file"] == "./tmp/transformed.json"
    assert cfg["paths"]["markdown_report"] == ""


def test_missing_or_broken_files_raise_config_error(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        get_config(path=str(tmp_path / "nope.yaml"))

    with pytest.raises(ConfigError):
        get_config(path=_write(tmp_path, "a: [unclosed\n"))

    with pytest.raises(ConfigError, match="mapping"):
        get_config(path=_write(tmp_path, "- just\n- a list\n"))


def test_validation_depends_on_the_mode(tmp_path, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    cfg = get_config(path=_write(tmp_path, "firebase:\n  project_id: demo\ndatabase:\n  url: ${DATABASE_URL}\n"))

    # Export and transform do not need a database.
    validate_config(cfg, "export")
    validate_config(cfg, "transform")
    for mode in ("import", "verify", "all"):
        with pytest.raises(ConfigError, match="database.url"):
            validate_config(cfg, mode)
    with pytest.raises(ConfigError, match="invalid mode"):
        validate_config(cfg, "rollback")


def test_validation_lists_every_missing_key(tmp_path):
    cfg = get_config(path=_write(tmp_path, "environment: dev\n"))

    with pytest.raises(ConfigError) as exc:
        validate_config(cfg, "all")
    assert "firebase.project_id" in str(exc.value)
    assert "database.url" in str(exc.value)


def test_build_db_url_prefers_url_then_parts():
    assert build_db_url({"database": {"url": "postgres://a:b@h:1/d"}}) == "postgresql+psycopg2://a:b@h:1/d"

    parts = {"database": {"user": "app", "password": "pw", "host": "db", "port": 5432, "name": "linksdeck"}}
    assert build_db_url(parts) == "postgresql+psycopg2://app:pw@db:5432/linksdeck"

    # One unresolved part -> no URL at all.
    parts["database"]["password"] = "<MISSING:DB_PASSWORD>"
    assert build_db_url(parts) == ""


def test_normalize_db_url_leaves_other_schemes_alone():
    assert normalize_db_url("postgresql://x/y") == "postgresql+psycopg2://x/y"
    assert normalize_db_url("sqlite:///tmp/x.db") == "sqlite:///tmp/x.db"
