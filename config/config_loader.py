# =========================================
# File: config/config_loader.py
# Purpose: Load YAML config (dev/prod), substitute ${ENV_VARS}, validate, and expose helpers
# =========================================

import os                      # Used to read ENV to pick dev/prod and to resolve ${VAR} placeholders
import re                      # Used to find and replace ${VAR} patterns inside YAML text
from typing import Any, Dict, List, Optional

import yaml                    # Safe YAML parsing (install: PyYAML)

from linksdeck_migrate.errors import ConfigError

CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))
MISSING_MARKER = "<MISSING:"

# Stage -> dotted keys that must resolve to a real value
REQUIRED_BY_MODE = {
    "export": ["firebase.project_id"],
    "transform": [],
    "import": ["database.url"],
    "verify": ["database.url"],
    "all": ["firebase.project_id", "database.url"],
}

DEFAULT_PATHS = {
    "export_file": "./tmp/firestore-export.json",
    "transformed_file": "./tmp/transformed.json",
    "verify_report": "./tmp/verify-report.json",
    "markdown_report": "",
}


def _substitute_env_placeholders(yaml_text: str) -> str:
    """
    Replace ${VAR} placeholders in YAML text with their environment variable values.
    If an env var is missing, mark it as <MISSING:VAR> so validation can point at it.
    """
    pattern = re.compile(r"\$\{([^}^{]+)\}")
    def repl(match):
        var_name = match.group(1)
        return os.getenv(var_name, f"{MISSING_MARKER}{var_name}>")
    return pattern.sub(repl, yaml_text)


def _load_yaml_file(path: str) -> Dict[str, Any]:
    """
    Read a YAML file from disk, perform ${VAR} substitution, and parse it to a dict.
    """
    if not os.path.exists(path):
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()

    substituted = _substitute_env_placeholders(raw)

    try:
        cfg = yaml.safe_load(substituted) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML parsing error in {path}: {e}") from e

    if not isinstance(cfg, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return cfg


def is_missing(value: Any) -> bool:
    """Empty, None, or an unresolved ${VAR} placeholder."""
    return value in (None, "") or MISSING_MARKER in str(value)


def lookup(cfg: Dict[str, Any], dotted_key: str) -> Any:
    """cfg['a']['b'] for 'a.b'; None when any level is absent. Placeholders count as absent."""
    node: Any = cfg
    for part in dotted_key.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return None if is_missing(node) else node


def _apply_defaults(cfg: Dict[str, Any]) -> Dict[str, Any]:
    cfg.setdefault("environment", os.getenv("ENV", "dev"))
    cfg["log_level"] = str(cfg.get("log_level") or "INFO").upper()
    cfg.setdefault("db_schema", "public")
    cfg["database"] = cfg.get("database") or {}
    cfg["firebase"] = cfg.get("firebase") or {}
    paths = cfg.get("paths") or {}
    cfg["paths"] = {k: paths.get(k) or v for k, v in DEFAULT_PATHS.items()}
    return cfg


def validate_config(cfg: Dict[str, Any], mode: str) -> None:
    """
    Validate the keys a given pipeline mode needs; raise ConfigError listing all offenders.
    """
    if mode not in REQUIRED_BY_MODE:
        raise ConfigError(f"invalid mode: {mode}")

    missing: List[str] = []
    for key in REQUIRED_BY_MODE[mode]:
        if key == "database.url":
            if not build_db_url(cfg):
                missing.append("database.url (or database.host/port/name/user/password)")
        elif lookup(cfg, key) is None:
            missing.append(key)
    if missing:
        raise ConfigError(f"Missing/invalid config keys for mode '{mode}': {', '.join(missing)}")


def get_config(env: Optional[str] = None, path: Optional[str] = None) -> Dict[str, Any]:
    """
    Public API: pick env from ENV (default 'dev'), load config/{env}.yaml, fill defaults.
    Mode-specific validation happens later via validate_config().
    """
    env = (env or os.getenv("ENV", "dev")).lower()
    path = path or os.path.join(CONFIG_DIR, f"{env}.yaml")
    cfg = _load_yaml_file(path)
    cfg.setdefault("environment", env)
    return _apply_defaults(cfg)


def normalize_db_url(url: str) -> str:
    """postgres:// and postgresql:// URLs get the psycopg2 driver SQLAlchemy expects."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg2://" + url[len(prefix):]
    return url


def build_db_url(cfg: Dict[str, Any]) -> str:
    """
    Helper to build a SQLAlchemy-friendly URL from cfg.
    database.url wins; otherwise compose it from host/port/name/user/password.
    Returns '' when neither form is complete.
    """
    url = lookup(cfg, "database.url")
    if url:
        return normalize_db_url(str(url))

    db = cfg.get("database") or {}
    parts = [db.get(k) for k in ("user", "password", "host", "port", "name")]
    if any(is_missing(p) for p in parts):
        return ""
    user, pwd, host, port, name = parts
    return f"postgresql+psycopg2://{user}:{pwd}@{host}:{port}/{name}"
