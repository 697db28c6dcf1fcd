"""
CIDR range matching for local-address detection.
"""
import ipaddress
import logging
from enum import Enum
from typing import Iterable

logger = logging.getLogger(__name__)


class CidrMatch(Enum):
    MATCH = "match"
    NO_MATCH = "no_match"
    MALFORMED = "malformed"


class CidrMatcher:
    """
    Byte-wise prefix comparison of an address against a `network/prefix` range.
    Stateless; one instance can be shared by every request thread.
    """

    def check(self, address: str, cidr_range: str) -> CidrMatch:
        parts = cidr_range.split("/")
        if len(parts) != 2:
            return CidrMatch.MALFORMED
        prefix_text = parts[1].strip()
        if not (prefix_text.isascii() and prefix_text.isdigit()):
            return CidrMatch.MALFORMED
        try:
            network = ipaddress.ip_address(parts[0].strip())
            prefix = int(prefix_text)
            ip = ipaddress.ip_address(address.strip())
        except ValueError:
            return CidrMatch.MALFORMED

        if network.version != ip.version:
            return CidrMatch.NO_MATCH
        network_bytes = network.packed
        ip_bytes = ip.packed
        if prefix < 0 or prefix > len(network_bytes) * 8:
            return CidrMatch.MALFORMED

        full_bytes, remainder = divmod(prefix, 8)
        if network_bytes[:full_bytes] != ip_bytes[:full_bytes]:
            return CidrMatch.NO_MATCH
        if remainder:
            mask = (0xFF << (8 - remainder)) & 0xFF
            if (network_bytes[full_bytes] & mask) != (ip_bytes[full_bytes] & mask):
                return CidrMatch.NO_MATCH
        return CidrMatch.MATCH

    def matches(self, address: str, cidr_range: str) -> bool:
        """Return True if address falls inside cidr_range. Never raises."""
        try:
            result = self.check(address, cidr_range)
        except (AttributeError, TypeError):
            result = CidrMatch.MALFORMED
        if result is CidrMatch.MALFORMED:
            logger.debug(f"Malformed CIDR check: address={address!r}, range={cidr_range!r}")
        return result is CidrMatch.MATCH

    def is_local(self, address: str, ranges: Iterable[str]) -> bool:
        return any(self.matches(address, cidr_range) for cidr_range in ranges)
