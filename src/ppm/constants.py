"""Constants used in the project."""

import logging
import os
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    EXIT_WARNINGS = 3
    RESOLUTION_ERROR = 4


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    PPM_VERSION = "0.1.0"

    REGISTRY_URL_NPM = "https://registry.npmjs.org"
    REGISTRY_URL_PYPI = "https://pypi.org"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    HTTP_CACHE_TTL_SEC = 300
    USER_AGENT = "ppm/0.1.0"

    # Project and store layout
    STORE_DIR_NAME = ".ppm-store"
    STORE_ROOT: Optional[str] = None  # Overrides ~/.ppm-store when set
    PROJECT_DIR_NAME = ".ppm"
    LOCK_FILE_NAME = "ppm.lock"
    STORE_METADATA_FILE = "metadata.json"

    # Resolution
    MAX_RESOLUTION_DEPTH = 10

    # Downloads
    MAX_CONCURRENT_DOWNLOADS = 4
    DOWNLOAD_CACHE_SIZE_MB = 100
    DOWNLOAD_CACHE_TTL_SEC = 3600
    DOWNLOAD_CHUNK_SIZE = 64 * 1024

    # Store
    REGISTRY_CACHE_TTL_SEC = 3600
    MAX_STORE_SIZE = 5 * 1024 * 1024 * 1024
    CLEANUP_THRESHOLD_DAYS = 30

    ENV_CONFIG = "PPM_CONFIG"
    ENV_STORE_DIR = "PPM_STORE_DIR"
    ENV_LOG_LEVEL = "PPM_LOG_LEVEL"


# Config section -> {yaml key: Constants attribute}
_CONFIG_KEYS: Dict[str, Dict[str, str]] = {
    "store": {
        "root": "STORE_ROOT",
        "max_size": "MAX_STORE_SIZE",
        "registry_cache_ttl": "REGISTRY_CACHE_TTL_SEC",
        "cleanup_threshold_days": "CLEANUP_THRESHOLD_DAYS",
    },
    "download": {
        "max_concurrent": "MAX_CONCURRENT_DOWNLOADS",
        "cache_size_mb": "DOWNLOAD_CACHE_SIZE_MB",
        "cache_ttl": "DOWNLOAD_CACHE_TTL_SEC",
        "chunk_size": "DOWNLOAD_CHUNK_SIZE",
    },
    "resolution": {
        "max_depth": "MAX_RESOLUTION_DEPTH",
    },
    "registry": {
        "npm": "REGISTRY_URL_NPM",
        "pypi": "REGISTRY_URL_PYPI",
    },
    "http": {
        "timeout": "REQUEST_TIMEOUT",
        "retries": "HTTP_RETRY_MAX",
        "cache_ttl": "HTTP_CACHE_TTL_SEC",
    },
}


def _config_candidates() -> list:
    """Return config file locations in priority order."""
    paths = []
    env_path = os.environ.get(Constants.ENV_CONFIG)
    if env_path:
        paths.append(env_path)
    paths.append(os.path.join(os.getcwd(), "ppm.yml"))
    paths.append(os.path.join(os.path.expanduser("~"), ".config", "ppm", "ppm.yml"))
    paths.append(os.path.join(os.path.expanduser("~"), ".ppm.yml"))
    return paths


def _load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the first available YAML config file.

    Args:
        path: Explicit config path; default locations are searched when omitted.

    Returns:
        dict: Parsed configuration, or an empty dict when nothing usable is found.
    """
    import yaml  # pylint: disable=import-outside-toplevel

    candidates = [path] if path else _config_candidates()
    for candidate in candidates:
        if not candidate or not os.path.isfile(candidate):
            continue
        try:
            with open(candidate, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Ignoring unreadable config %s: %s", candidate, exc)
            return {}
        if isinstance(data, dict):
            return data
        logger.warning("Ignoring config %s: top level is not a mapping", candidate)
        return {}
    return {}


def apply_config(cfg: Dict[str, Any]) -> None:
    """Overlay known configuration keys onto Constants.

    Args:
        cfg: Mapping as returned by _load_yaml_config(); unknown keys are ignored.
    """
    for section, keys in _CONFIG_KEYS.items():
        values = cfg.get(section)
        if not isinstance(values, dict):
            continue
        for key, attr in keys.items():
            if key in values and values[key] is not None:
                value = values[key]
                if attr.startswith("REGISTRY_URL_") and isinstance(value, str):
                    value = value.rstrip("/")
                setattr(Constants, attr, value)

    store_dir = os.environ.get(Constants.ENV_STORE_DIR)
    if store_dir:
        Constants.STORE_ROOT = store_dir


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load YAML configuration and apply it to Constants."""
    cfg = _load_yaml_config(path)
    apply_config(cfg)
    return cfg
