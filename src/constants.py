"""Constants used in the project."""

import logging
import os
from enum import Enum
from typing import Any, Dict, Optional


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    LOCK_STALE = 3
    UNSATISFIABLE = 4
    INTEGRITY_ERROR = 5
    LOCK_FORMAT_ERROR = 6
    BUDGET_EXCEEDED = 7


class ExtrasPolicy(Enum):
    """How to combine differing extras requested for one package.

    Args:
        Enum (string): Policy name as used in config files.
    """

    UNION = "union"
    STRICT = "strict"


def _default_cache_dir() -> str:
    base = os.environ.get("XDG_CACHE_HOME") or os.path.join(os.path.expanduser("~"), ".cache")
    return os.path.join(base, "lockwright")


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    INDEX_URL = "https://pypi.org/pypi/"
    CACHE_DIR = _default_cache_dir()
    LOCK_FILE = "lockwright.lock"
    INSTALL_RECORD_FILE = "lockwright-installed.json"
    REQUIREMENTS_FILE = "requirements.txt"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    HTTP_MAX_CONCURRENCY = 8
    INDEX_CACHE_TTL_SEC = 600

    # Resolver tunables
    RESOLVER_MAX_STEPS = 100000
    RESOLVER_PREFETCH_WIDTH = 4
    RESOLVER_ALLOW_PRERELEASES = False
    EXTRAS_POLICY = ExtrasPolicy.UNION.value

    # Cache tunables
    CACHE_RETENTION_DAYS = 30

    CONFIG_ENV_VAR = "LOCKWRIGHT_CONFIG"
    DEFAULT_CONFIG_PATHS = [
        "lockwright.yml",
        "lockwright.yaml",
        os.path.join("~", ".config", "lockwright", "config.yml"),
    ]


# YAML section/key -> Constants attribute
_CONFIG_KEYS = {
    ("index", "url"): "INDEX_URL",
    ("http", "timeout"): "REQUEST_TIMEOUT",
    ("http", "retries"): "HTTP_RETRY_MAX",
    ("http", "max_concurrency"): "HTTP_MAX_CONCURRENCY",
    ("http", "index_ttl"): "INDEX_CACHE_TTL_SEC",
    ("cache", "dir"): "CACHE_DIR",
    ("cache", "retention_days"): "CACHE_RETENTION_DAYS",
    ("resolver", "max_steps"): "RESOLVER_MAX_STEPS",
    ("resolver", "prefetch_width"): "RESOLVER_PREFETCH_WIDTH",
    ("resolver", "allow_prereleases"): "RESOLVER_ALLOW_PRERELEASES",
    ("resolver", "extras_policy"): "EXTRAS_POLICY",
    ("lock", "file"): "LOCK_FILE",
    ("logging", "format"): "LOG_FORMAT",
}

# Environment overrides, applied after the YAML file
_ENV_KEYS = {
    "LOCKWRIGHT_INDEX_URL": ("INDEX_URL", str),
    "LOCKWRIGHT_CACHE_DIR": ("CACHE_DIR", str),
    "LOCKWRIGHT_TIMEOUT": ("REQUEST_TIMEOUT", float),
    "LOCKWRIGHT_MAX_STEPS": ("RESOLVER_MAX_STEPS", int),
    "LOCKWRIGHT_RETENTION_DAYS": ("CACHE_RETENTION_DAYS", int),
    "LOCKWRIGHT_LOG_FORMAT": ("LOG_FORMAT", str),
}


def _find_config_file() -> Optional[str]:
    explicit = os.environ.get(Constants.CONFIG_ENV_VAR)
    if explicit:
        return os.path.expanduser(explicit)
    for candidate in Constants.DEFAULT_CONFIG_PATHS:
        path = os.path.expanduser(candidate)
        if os.path.isfile(path):
            return path
    return None


def _load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the YAML configuration file, returning an empty dict when absent."""
    path = path or _find_config_file()
    if not path or not os.path.isfile(path):
        return {}
    import yaml  # pylint: disable=import-outside-toplevel

    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        logging.getLogger(__name__).warning("Ignoring unreadable config %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logging.getLogger(__name__).warning("Ignoring config %s: top level must be a mapping", path)
        return {}
    return data


def apply_config(cfg: Dict[str, Any]) -> None:
    """Apply a parsed config mapping onto Constants."""
    for (section, key), attr in _CONFIG_KEYS.items():
        block = cfg.get(section)
        if isinstance(block, dict) and key in block and block[key] is not None:
            value = block[key]
            if attr == "CACHE_DIR":
                value = os.path.expanduser(str(value))
            setattr(Constants, attr, value)


def apply_env_overrides(environ: Optional[Dict[str, str]] = None) -> None:
    """Apply LOCKWRIGHT_* environment variables onto Constants."""
    environ = os.environ if environ is None else environ
    for var, (attr, conv) in _ENV_KEYS.items():
        raw = environ.get(var)
        if raw is None or not raw.strip():
            continue
        try:
            setattr(Constants, attr, conv(raw.strip()))
        except ValueError:
            logging.getLogger(__name__).warning("Ignoring invalid %s=%r", var, raw)


def load_settings(path: Optional[str] = None) -> None:
    """Load config file then environment overrides onto Constants."""
    apply_config(_load_yaml_config(path))
    apply_env_overrides()
