"""
Security policy model and per-request override merging.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_IP_RANGES: Tuple[str, ...] = (
    "127.0.0.0/8",     # localhost
    "10.0.0.0/8",      # private
    "172.16.0.0/12",   # private
    "192.168.0.0/16",  # private
)


@dataclass(frozen=True)
class SecurityPolicy:
    ignore_local_ips: bool = True
    local_ip_ranges: Tuple[str, ...] = DEFAULT_LOCAL_IP_RANGES
    block_unknown: bool = True
    allowed_countries: FrozenSet[str] = field(default_factory=frozenset)
    blocked_countries: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "local_ip_ranges", tuple(self.local_ip_ranges))
        object.__setattr__(self, "allowed_countries", normalize_countries(self.allowed_countries))
        object.__setattr__(self, "blocked_countries", normalize_countries(self.blocked_countries))

    def describe(self) -> str:
        return (
            f"BlockUnknown={self.block_unknown}, IgnoreLocalIps={self.ignore_local_ips}, "
            f"BlockedCountries=[{','.join(sorted(self.blocked_countries))}], "
            f"AllowedCountries=[{','.join(sorted(self.allowed_countries))}], "
            f"LocalIps=[{','.join(self.local_ip_ranges)}]"
        )


@dataclass(frozen=True)
class PolicyOverride:
    """
    Raw per-request overrides. None means the field was not supplied;
    an empty string was supplied and clears the corresponding list.
    """
    blocked_countries: Optional[str] = None
    allowed_countries: Optional[str] = None
    local_ip_ranges: Optional[str] = None
    block_unknown: Optional[bool] = None
    ignore_local_ips: Optional[bool] = None

    def is_empty(self) -> bool:
        return (
            self.blocked_countries is None
            and self.allowed_countries is None
            and self.local_ip_ranges is None
            and self.block_unknown is None
            and self.ignore_local_ips is None
        )


def normalize_countries(codes: Iterable[str]) -> FrozenSet[str]:
    return frozenset(code.strip().upper() for code in codes if code and code.strip())


def parse_list(raw: str) -> List[str]:
    """Comma-split, trim and drop empty tokens."""
    return [token.strip() for token in raw.split(",") if token.strip()]


def parse_country_list(raw: str) -> FrozenSet[str]:
    return frozenset(token.upper() for token in parse_list(raw))


class PolicyOverrideResolver:
    def merge(self, base: SecurityPolicy, override: Optional[PolicyOverride]) -> SecurityPolicy:
        """
        Build the effective policy for one request.
        Returns base itself when nothing is overridden.
        """
        if override is None or override.is_empty():
            return base

        policy = SecurityPolicy(
            block_unknown=override.block_unknown if override.block_unknown is not None else base.block_unknown,
            ignore_local_ips=(
                override.ignore_local_ips if override.ignore_local_ips is not None else base.ignore_local_ips
            ),
            blocked_countries=(
                parse_country_list(override.blocked_countries)
                if override.blocked_countries is not None else base.blocked_countries
            ),
            allowed_countries=(
                parse_country_list(override.allowed_countries)
                if override.allowed_countries is not None else base.allowed_countries
            ),
            local_ip_ranges=(
                tuple(parse_list(override.local_ip_ranges))
                if override.local_ip_ranges is not None else base.local_ip_ranges
            ),
        )
        logger.debug(f"Using query-based security options: {policy.describe()}")
        return policy
