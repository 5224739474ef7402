"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables and a YAML file
(~/.reelcall/config.yaml). Nested YAML mappings are flattened to dotted keys,
so ``retry: {create: {max_retries: 4}}`` is read as ``retry.create.max_retries``.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from reelcall.domain.models.monitoring import HealthThresholds
from reelcall.domain.models.retry import RetryPolicy, policy_for_operation

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".reelcall"
DEFAULT_CONFIG_FILE = Path(os.environ.get("REELCALL_CONFIG_FILE", DEFAULT_CONFIG_DIR / "config.yaml"))
ENV_FILE_NAME = ".env"
ENV_PREFIX = "REELCALL_"

DEFAULT_API_BASE_URL = "https://api.replicate.com/v1"
DEFAULT_API_TIMEOUT_SECONDS = 60.0
DEFAULT_METRICS_DIR = DEFAULT_CONFIG_DIR / "metrics"
DEFAULT_RETENTION_DAYS = 30
DEFAULT_REFRESH_INTERVAL_SECONDS = 60.0

_RETRY_FIELD_TYPES = {
    "max_retries": int,
    "base_delay_ms": int,
    "max_delay_ms": int,
    "backoff_multiplier": float,
    "jitter_factor": float,
}
_THRESHOLD_FIELDS = (
    "min_success_rate",
    "critical_success_rate",
    "max_avg_response_time_ms",
    "critical_response_time_ms",
)

# --- Module-level configuration store ---
_config: Dict[str, Any] = {}
_overrides: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def _flatten(mapping: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in mapping.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


def load_configuration(
    config_file: Path = DEFAULT_CONFIG_FILE,
    env_file: Optional[Path] = None,
    force: bool = False,
) -> None:
    """Loads configuration from the .env file and the YAML file.

    Priority order (highest to lowest):
    1. Test configuration / set_config overrides
    2. Environment variables
    3. .env file
    4. YAML configuration file
    5. Default values passed to get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a mapping.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no file found).")

    _loaded = True


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def _coerce_env(value: str) -> Any:
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        return float(value) if '.' in value else int(value)
    except ValueError:
        return value


def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value by key.

    Environment variables are looked up as ``KEY`` upper-cased and as
    ``REELCALL_`` plus the key with dots replaced by underscores.

    Args:
        key: The configuration key, e.g. 'retry.create.max_retries'.
        default: Default value if the key is not found.

    Returns:
        The configuration value.
    """
    if key in _test_config:
        return _test_config[key]
    if key in _overrides:
        return _overrides[key]

    for env_key in (key.upper(), ENV_PREFIX + key.upper().replace('.', '_')):
        if env_key in os.environ:
            return _coerce_env(os.environ[env_key])

    if key in _config:
        return _config[key]

    logger.debug(f"Config key '{key}' not found. Returning default: {default}")
    return default


def set_config(key: str, value: Any) -> None:
    """Overrides a configuration value for the rest of the process."""
    logger.debug(f"Setting config: {key} = {value}")
    _overrides[key] = value


def _as_float(key: str, default: float) -> float:
    value = get_config(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Config '{key}' is not a number ({value!r}); using {default}")
        return default


def _as_int(key: str, default: int) -> int:
    value = get_config(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Config '{key}' is not an integer ({value!r}); using {default}")
        return default


# --- Convenience Functions ---

def get_api_token() -> Optional[str]:
    """Gets the generation API token (REELCALL_API_TOKEN, REPLICATE_API_TOKEN, api.token)."""
    token = (
        get_config('REELCALL_API_TOKEN')
        or get_config('REPLICATE_API_TOKEN')
        or get_config('api.token')
    )
    return str(token) if token else None


def get_api_base_url() -> str:
    return str(get_config('api.base_url', DEFAULT_API_BASE_URL))


def get_api_timeout() -> float:
    """Per-request timeout in seconds."""
    return _as_float('api.timeout', DEFAULT_API_TIMEOUT_SECONDS)


def get_retry_policy(operation: str) -> RetryPolicy:
    """Builds the retry policy for an operation category from ``retry.<operation>.*``.

    Unset fields keep the built-in values for that category.
    """
    base = policy_for_operation(operation)
    try:
        overrides = {}
        for name, cast in _RETRY_FIELD_TYPES.items():
            value = get_config(f'retry.{operation}.{name}')
            if value is not None:
                overrides[name] = cast(value)
        return base.with_overrides(**overrides)
    except (TypeError, ValueError) as e:
        logger.error(f"Invalid retry configuration for '{operation}': {e}. Using built-in policy.")
        return base


def get_health_thresholds() -> HealthThresholds:
    """Builds HealthThresholds from ``health.*`` keys."""
    defaults = HealthThresholds()
    values = {name: _as_float(f'health.{name}', getattr(defaults, name)) for name in _THRESHOLD_FIELDS}
    try:
        return HealthThresholds(**values)
    except ValueError as e:
        logger.error(f"Invalid health thresholds {values}: {e}. Using defaults.")
        return defaults


def get_metrics_dir() -> str:
    return str(get_config('metrics.dir', str(DEFAULT_METRICS_DIR)))


def get_metrics_retention_days() -> int:
    return _as_int('metrics.retention_days', DEFAULT_RETENTION_DAYS)


def get_health_refresh_interval() -> float:
    """Seconds between background health snapshot refreshes."""
    return _as_float('health.refresh_interval', DEFAULT_REFRESH_INTERVAL_SECONDS)


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Set configuration values for testing purposes.

    These values override every other source until clear_test_config().

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values and set_config overrides."""
    _test_config.clear()
    _overrides.clear()
    logger.debug("Cleared testing configuration")


# Load configuration when the module is imported
load_configuration()
