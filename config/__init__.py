"""
Configuration loading utilities for Observatory.

Loads the YAML config, expands ${VAR} placeholders from the environment
(.env is honored), and validates everything up front. Any problem is a
ConfigError: the process must not start pollers with bad configuration.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import yaml
from dotenv import load_dotenv

from config.settings import (
    AlertingSettings,
    BackoffSettings,
    ChainConfig,
    DatadogSettings,
    LoggingSettings,
    MonitorSettings,
    ObservatoryConfig,
)
from core.constants import (
    VALIDATOR_ADDRESS_HEX_LENGTH,
    ErrorCode,
    SigningSourceType,
    SinkType,
)
from core.exceptions import ConfigError


CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG_PATH = CONFIG_DIR / "observatory.yaml"

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_HEX_PATTERN = re.compile(rf"^[0-9A-F]{{{VALIDATOR_ADDRESS_HEX_LENGTH}}}$")

# Monitor keys a chain entry may override
CHAIN_OVERRIDE_KEYS = frozenset({
    "poll_interval_seconds",
    "query_timeout_seconds",
    "miss_threshold",
    "signing_source",
})


def load_yaml(path: Path) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed YAML as dict
    """
    if not path.exists():
        raise ConfigError(
            f"Config file not found: {path}",
            code=ErrorCode.CONFIG_NOT_FOUND,
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")

    return data


def expand_env(value: Any) -> Any:
    """
    Recursively expand ${VAR} placeholders in strings.

    Unset variables expand to an empty string.
    """
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.getenv(m.group(1), ""), value)
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    return value


def load_config(
    path: Optional[Path] = None,
    env_file: Optional[Path] = None,
) -> ObservatoryConfig:
    """
    Load and validate Observatory configuration.

    Args:
        path: YAML config path (default: config/observatory.yaml)
        env_file: Optional .env file (default: search from cwd)

    Returns:
        Validated ObservatoryConfig

    Raises:
        ConfigError: If the file is missing or any value is invalid
    """
    load_dotenv(dotenv_path=env_file)

    raw = load_yaml(Path(path) if path else DEFAULT_CONFIG_PATH)
    return parse_config(expand_env(raw))


def parse_config(data: Dict[str, Any]) -> ObservatoryConfig:
    """Build ObservatoryConfig from an already-loaded mapping."""
    monitor = _parse_monitor(data.get("monitor") or {})
    alerting = _parse_alerting(data.get("alerting") or {})
    logging_settings = _parse_logging(data.get("logging") or {})

    chains_data = data.get("chains")
    if not chains_data:
        raise ConfigError("At least one chain must be configured under 'chains'")
    if not isinstance(chains_data, list):
        raise ConfigError("'chains' must be a list")

    chains = tuple(_parse_chain(item, i) for i, item in enumerate(chains_data))

    seen: set[str] = set()
    for chain in chains:
        if chain.id in seen:
            raise ConfigError(f"Duplicate chain id: {chain.id}")
        seen.add(chain.id)

    return ObservatoryConfig(
        chains=chains,
        monitor=monitor,
        alerting=alerting,
        logging=logging_settings,
    )


def normalize_validator_address(address: Any) -> str:
    """Validate a hex consensus address and normalize it to upper case."""
    if not isinstance(address, str):
        raise ConfigError(f"validator_addr must be a string, got {type(address).__name__}")

    normalized = address.strip().upper()
    if normalized.startswith("0X"):
        normalized = normalized[2:]

    if not _HEX_PATTERN.match(normalized):
        raise ConfigError(
            f"validator_addr must be {VALIDATOR_ADDRESS_HEX_LENGTH} hex characters: {address!r}"
        )
    return normalized


def validate_rpc_url(url: Any) -> str:
    """Ensure an RPC URL is a well-formed http(s) URL."""
    if not isinstance(url, str) or not url.strip():
        raise ConfigError(f"RPC URL must be a non-empty string: {url!r}")

    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"RPC URL must be http(s) with a host: {url!r}")

    return url.strip().rstrip("/")


# =============================================================================
# SECTION PARSERS
# =============================================================================

def _parse_chain(item: Any, position: int) -> ChainConfig:
    if not isinstance(item, dict):
        raise ConfigError(f"chains[{position}] must be a mapping")

    chain_id = item.get("id")
    if not isinstance(chain_id, str) or not chain_id.strip():
        raise ConfigError(f"chains[{position}].id must be a non-empty string")
    chain_id = chain_id.strip()

    rpc_urls = item.get("rpc_urls")
    if not rpc_urls or not isinstance(rpc_urls, list):
        raise ConfigError(f"[{chain_id}] rpc_urls must be a non-empty list")

    urls = tuple(validate_rpc_url(url) for url in rpc_urls)
    if len(set(urls)) != len(urls):
        raise ConfigError(f"[{chain_id}] rpc_urls contains duplicates")

    overrides: Dict[str, Any] = {}
    for key in CHAIN_OVERRIDE_KEYS:
        if key in item:
            overrides[key] = item[key]

    if overrides:
        # Reuse monitor validation for the override values
        checked = _parse_monitor(overrides)
        overrides = {key: getattr(checked, key) for key in overrides}

    unknown = set(item) - {"id", "validator_addr", "rpc_urls"} - CHAIN_OVERRIDE_KEYS
    if unknown:
        raise ConfigError(f"[{chain_id}] unknown keys: {sorted(unknown)}")

    return ChainConfig(
        id=chain_id,
        validator_addr=normalize_validator_address(item.get("validator_addr")),
        rpc_urls=urls,
        overrides=overrides,
    )


def _parse_monitor(data: Dict[str, Any]) -> MonitorSettings:
    defaults = MonitorSettings()
    backoff_data = data.get("backoff") or {}
    default_backoff = BackoffSettings()

    backoff = BackoffSettings(
        base_seconds=_positive(backoff_data, "base_seconds", default_backoff.base_seconds),
        exponent_cap=_int_at_least(backoff_data, "exponent_cap", default_backoff.exponent_cap, 0),
        max_seconds=_positive(backoff_data, "max_seconds", default_backoff.max_seconds),
    )

    return MonitorSettings(
        poll_interval_seconds=_positive(data, "poll_interval_seconds", defaults.poll_interval_seconds),
        query_timeout_seconds=_positive(data, "query_timeout_seconds", defaults.query_timeout_seconds),
        miss_threshold=_int_at_least(data, "miss_threshold", defaults.miss_threshold, 1),
        signing_source=_enum(data, "signing_source", SigningSourceType, defaults.signing_source),
        restart_delay_seconds=_non_negative(data, "restart_delay_seconds", defaults.restart_delay_seconds),
        shutdown_grace_seconds=_non_negative(data, "shutdown_grace_seconds", defaults.shutdown_grace_seconds),
        status_log_every=_int_at_least(data, "status_log_every", defaults.status_log_every, 0),
        backoff=backoff,
    )


def _parse_alerting(data: Dict[str, Any]) -> AlertingSettings:
    defaults = AlertingSettings()
    sink = _enum(data, "sink", SinkType, defaults.sink)

    datadog = None
    dd_data = data.get("datadog")
    if dd_data:
        if not isinstance(dd_data, dict):
            raise ConfigError("alerting.datadog must be a mapping")
        api_key = dd_data.get("api_key") or os.getenv("DD_API_KEY", "")
        tags = dd_data.get("tags") or {}
        if not isinstance(tags, dict):
            raise ConfigError("alerting.datadog.tags must be a mapping")
        datadog = DatadogSettings(
            api_key=api_key,
            site=dd_data.get("site", "datadoghq.com"),
            notify_handle=dd_data.get("notify_handle", "@pagerduty"),
            tags={str(k): str(v) for k, v in tags.items()},
        )

    if sink == SinkType.DATADOG and (datadog is None or not datadog.api_key):
        raise ConfigError("alerting.sink=datadog requires alerting.datadog.api_key (or DD_API_KEY)")

    return AlertingSettings(
        sink=sink,
        max_attempts=_int_at_least(data, "max_attempts", defaults.max_attempts, 1),
        base_delay_seconds=_non_negative(data, "base_delay_seconds", defaults.base_delay_seconds),
        max_delay_seconds=_non_negative(data, "max_delay_seconds", defaults.max_delay_seconds),
        datadog=datadog,
    )


def _parse_logging(data: Dict[str, Any]) -> LoggingSettings:
    level = str(data.get("level", "INFO")).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        raise ConfigError(f"logging.level must be DEBUG, INFO, WARNING or ERROR: {level!r}")

    return LoggingSettings(
        level=level,
        json=bool(data.get("json", True)),
        file=data.get("file") or None,
    )


# =============================================================================
# VALUE CHECKS
# =============================================================================

def _number(data: Dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    return float(value)


def _positive(data: Dict[str, Any], key: str, default: float) -> float:
    value = _number(data, key, default)
    if value <= 0:
        raise ConfigError(f"{key} must be > 0, got {value}")
    return value


def _non_negative(data: Dict[str, Any], key: str, default: float) -> float:
    value = _number(data, key, default)
    if value < 0:
        raise ConfigError(f"{key} must be >= 0, got {value}")
    return value


def _int_at_least(data: Dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {value}")
    return value


def _enum(data: Dict[str, Any], key: str, enum_cls, default):
    value = data.get(key, default)
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"{key} must be one of: {allowed} (got {value!r})") from None
