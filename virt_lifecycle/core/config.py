import os
import yaml
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

# --- Base app settings ---
CONFIG_FILE = os.getenv("CONFIG_FILE", "config.yaml")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
APP_NAME = os.getenv("APP_NAME", "Virt Lifecycle API")
APP_VERSION = os.getenv("APP_VERSION", "0.1.0")

DEFAULT_WAIT_SECONDS = 60.0
DEFAULT_WATCH_INTERVAL = 60.0

# Initialize logger early (before setup_logging is called)
logger = logging.getLogger(APP_NAME)
if not logger.handlers:
    logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s: %(message)s")


def load_yaml_config(path: Optional[str] = None) -> dict:
    """Load global YAML configuration (app + hypervisors + watchers)."""
    config_path = path or CONFIG_FILE
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
            logger.info("Loaded configuration from %s", config_path)
            return data
    except FileNotFoundError:
        logger.warning("Configuration file not found: %s", config_path)
        return {}
    except yaml.YAMLError as e:
        logger.error("Error parsing YAML config (%s): %s", config_path, e)
        return {}


@dataclass(frozen=True)
class WaitSettings:
    """Exponential backoff used while polling a domain for a target state."""

    initial_interval: float = 0.1
    max_interval: float = 2.0
    factor: float = 2.0
    default_timeout: float = DEFAULT_WAIT_SECONDS


@dataclass(frozen=True)
class WatcherSettings:
    hypervisor: str
    domain: str
    interval: float = DEFAULT_WATCH_INTERVAL


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric configuration value %r", value)
        return default


def load_wait_settings(data: Optional[Dict[str, Any]] = None) -> WaitSettings:
    section = (data if data is not None else CONFIG_YAML).get("wait", {}) or {}
    defaults = WaitSettings()

    initial = _as_float(section.get("initial_interval"), defaults.initial_interval)
    if initial <= 0:
        logger.warning("wait.initial_interval must be positive; using %s", defaults.initial_interval)
        initial = defaults.initial_interval
    factor = _as_float(section.get("factor"), defaults.factor)
    if factor < 1:
        logger.warning("wait.factor must be at least 1; using %s", defaults.factor)
        factor = defaults.factor
    maximum = _as_float(section.get("max_interval"), defaults.max_interval)
    if maximum < initial:
        logger.warning("wait.max_interval %s is below initial_interval; using %s", maximum, initial)
        maximum = initial

    return WaitSettings(
        initial_interval=initial,
        max_interval=maximum,
        factor=factor,
        default_timeout=_as_float(section.get("timeout"), defaults.default_timeout),
    )


def load_watcher_settings(data: Optional[Dict[str, Any]] = None) -> List[WatcherSettings]:
    entries = (data if data is not None else CONFIG_YAML).get("watchers", []) or []
    watchers: List[WatcherSettings] = []
    for entry in entries:
        hypervisor = entry.get("hypervisor")
        domain = entry.get("domain")
        if not hypervisor or not domain:
            logger.warning("Invalid watcher entry (needs hypervisor and domain): %s", entry)
            continue
        watchers.append(
            WatcherSettings(
                hypervisor=hypervisor,
                domain=domain,
                interval=_as_float(entry.get("interval"), DEFAULT_WATCH_INTERVAL),
            )
        )
    return watchers


# --- Load YAML and derive app settings ---
CONFIG_YAML = load_yaml_config()

# --- Extract CORS settings ---
CORS_CONFIG = CONFIG_YAML.get("cors", {})
CORS_ORIGINS = CORS_CONFIG.get("allow_origins", [])
CORS_ALLOW_CREDENTIALS = CORS_CONFIG.get("allow_credentials", True)
CORS_ALLOW_METHODS = CORS_CONFIG.get("allow_methods", ["*"])
CORS_ALLOW_HEADERS = CORS_CONFIG.get("allow_headers", ["*"])

# Confirm loaded config summary
logger.debug(
    "CORS_ORIGINS=%s, hypervisors=%d, watchers=%d",
    CORS_ORIGINS,
    len(CONFIG_YAML.get("hypervisors", []) or []),
    len(CONFIG_YAML.get("watchers", []) or []),
)
