"""
Process configuration read from environment variables.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .compliance.fallback import DEFAULT_FALLBACK_API
from .engine.policy import SecurityPolicy, parse_country_list, parse_list

logger = logging.getLogger(__name__)

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


@dataclass
class Settings:
    policy: SecurityPolicy = field(default_factory=SecurityPolicy)
    db_path: Optional[str] = None
    fallback_api: str = DEFAULT_FALLBACK_API
    fallback_timeout: float = 5.0
    redis_url: Optional[str] = None
    db_watch: bool = True
    db_reload_debounce: float = 5.0
    db_poll_interval: float = 2.0
    db_retain_on_failure: bool = True
    single_flight: bool = False
    app_version: str = "unknown"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = None) -> "Settings":
        env = os.environ if environ is None else environ
        defaults = SecurityPolicy()

        policy = SecurityPolicy(
            ignore_local_ips=_get_bool(env, "IGNORE_LOCAL_IPS", defaults.ignore_local_ips),
            block_unknown=_get_bool(env, "BLOCK_UNKNOWN", defaults.block_unknown),
            blocked_countries=(
                parse_country_list(env["BLOCKED_COUNTRIES"]) if env.get("BLOCKED_COUNTRIES")
                else defaults.blocked_countries
            ),
            allowed_countries=(
                parse_country_list(env["ALLOWED_COUNTRIES"]) if env.get("ALLOWED_COUNTRIES")
                else defaults.allowed_countries
            ),
            local_ip_ranges=(
                tuple(parse_list(env["LOCAL_IPS"])) if env.get("LOCAL_IPS") else defaults.local_ip_ranges
            ),
        )
        return cls(
            policy=policy,
            db_path=env.get("DB_PATH") or None,
            fallback_api=env.get("FALLBACK_API") or DEFAULT_FALLBACK_API,
            fallback_timeout=_get_float(env, "FALLBACK_TIMEOUT_SECONDS", 5.0),
            redis_url=env.get("REDIS_URL") or None,
            db_watch=_get_bool(env, "DB_WATCH", True),
            db_reload_debounce=_get_float(env, "DB_RELOAD_DEBOUNCE_SECONDS", 5.0),
            db_poll_interval=_get_float(env, "DB_POLL_INTERVAL_SECONDS", 2.0),
            db_retain_on_failure=_get_bool(env, "DB_RETAIN_ON_RELOAD_FAILURE", True),
            single_flight=_get_bool(env, "SINGLE_FLIGHT", False),
            app_version=env.get("APP_VERSION", "unknown"),
        )


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    value = env.get(key)
    if not value:
        return default
    if value.strip().lower() in _TRUE:
        return True
    if value.strip().lower() in _FALSE:
        return False
    logger.warning(f"Invalid boolean for {key}: {value!r}, using default {default}")
    return default


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    value = env.get(key)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid number for {key}: {value!r}, using default {default}")
        return default
