"""
Access decision engine: local-address bypass, country resolution, then
blocklist/allowlist precedence.
"""
import ipaddress
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..compliance.cidr import CidrMatcher
from ..compliance.resolver import CountryResolver
from ..observability.metrics import GeoFilterMetrics
from .policy import SecurityPolicy

logger = logging.getLogger(__name__)


class CountryKind(Enum):
    COUNTRY = "country"
    LOCAL = "local"
    UNKNOWN = "unknown"
    ABSENT = "absent"


@dataclass(frozen=True)
class Country:
    kind: CountryKind
    code: Optional[str] = None

    @classmethod
    def of(cls, code: str) -> "Country":
        return cls(CountryKind.COUNTRY, code.upper())

    @property
    def label(self) -> Optional[str]:
        if self.kind is CountryKind.COUNTRY:
            return self.code
        if self.kind is CountryKind.LOCAL:
            return "LOCAL"
        if self.kind is CountryKind.UNKNOWN:
            return "UNKNOWN"
        return None


LOCAL = Country(CountryKind.LOCAL)
UNKNOWN = Country(CountryKind.UNKNOWN)
ABSENT = Country(CountryKind.ABSENT)


class DecisionReason(str, Enum):
    NO_IP = "no-ip"
    LOCAL_IP = "local-ip"
    UNKNOWN_COUNTRY = "unknown-country"
    IN_BLOCKLIST = "in-blocklist"
    NOT_IN_ALLOWLIST = "not-in-allowlist"
    GEO_ALLOWED = "geo-allowed"
    SYSTEM_ERROR = "system-error"


@dataclass(frozen=True)
class DecisionRecord:
    is_blocked: bool
    country: Country
    reason: DecisionReason
    host: Optional[str] = None
    uri: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def country_code(self) -> Optional[str]:
        return self.country.label

    @property
    def access(self) -> str:
        return "blocked" if self.is_blocked else "allowed"


class AccessPolicyEvaluator:
    def __init__(self, resolver: CountryResolver, metrics: GeoFilterMetrics, matcher: CidrMatcher = None):
        self.resolver = resolver
        self.metrics = metrics
        self.matcher = matcher or CidrMatcher()

    def evaluate(
        self,
        ip: Optional[str],
        policy: SecurityPolicy,
        host: Optional[str] = None,
        uri: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> DecisionRecord:
        def decision(is_blocked: bool, country: Country, reason: DecisionReason) -> DecisionRecord:
            return DecisionRecord(is_blocked, country, reason, host, uri, user_agent)

        if not _is_ip_literal(ip):
            return decision(policy.block_unknown, ABSENT, DecisionReason.NO_IP)
        ip = ip.strip()

        if policy.ignore_local_ips and self.matcher.is_local(ip, policy.local_ip_ranges):
            return decision(False, LOCAL, DecisionReason.LOCAL_IP)

        country_code = self.resolver.resolve(ip)
        if not country_code:
            return decision(policy.block_unknown, UNKNOWN, DecisionReason.UNKNOWN_COUNTRY)
        country = Country.of(country_code)

        # blocklist is checked first, so a code in both lists is blocked
        if policy.blocked_countries and country.code in policy.blocked_countries:
            return decision(True, country, DecisionReason.IN_BLOCKLIST)
        if policy.allowed_countries and country.code not in policy.allowed_countries:
            return decision(True, country, DecisionReason.NOT_IN_ALLOWLIST)
        return decision(False, country, DecisionReason.GEO_ALLOWED)

    def decide(
        self,
        ip: Optional[str],
        policy: SecurityPolicy,
        host: Optional[str] = None,
        uri: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> DecisionRecord:
        """
        Request boundary around evaluate(). Never raises: on an internal error
        the request is blocked when policy.block_unknown is set, else allowed.
        """
        try:
            record = self.evaluate(ip, policy, host, uri, user_agent)
        except Exception as e:
            logger.exception(f"Error during request validation for IP={ip}: {e}")
            self.metrics.record_decision("error", "unknown", DecisionReason.SYSTEM_ERROR.value)
            return DecisionRecord(policy.block_unknown, ABSENT, DecisionReason.SYSTEM_ERROR, host, uri, user_agent)

        self.metrics.record_decision(record.access, record.country_code or "unknown", record.reason.value)
        if record.is_blocked:
            logger.warning(f"Request blocked: IP={ip}, Country={record.country_code}, Reason={record.reason.value}")
        else:
            logger.debug(f"Request allowed: IP={ip}, Country={record.country_code}")
        return record


def _is_ip_literal(ip: Optional[str]) -> bool:
    if ip is None or not ip.strip():
        return False
    try:
        ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    return True
