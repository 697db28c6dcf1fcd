"""
Remote country lookup used when the local MaxMind database has no answer.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests

from ..observability.metrics import GeoFilterMetrics

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_API = "https://get.geojs.io/v1/ip/country/{0}"
PLACEHOLDER = "{0}"
USER_AGENT = "geofilter/1.0"


class FallbackOutcome(Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    HTTP_ERROR = "http_error"
    TIMEOUT = "timeout"
    EXCEPTION = "exception"
    CONFIG_ERROR = "config_error"


@dataclass(frozen=True)
class FallbackResult:
    outcome: FallbackOutcome
    country_code: Optional[str] = None


class FallbackLookupClient:
    def __init__(
        self,
        metrics: GeoFilterMetrics,
        url_template: str = DEFAULT_FALLBACK_API,
        timeout: float = 5.0,
        session: requests.Session = None,
    ):
        self.metrics = metrics
        self.url_template = url_template
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    def fetch(self, ip: str) -> FallbackResult:
        """
        Query the fallback endpoint once and report what happened.
        Every failure category is logged and counted separately.
        """
        if self.url_template.count(PLACEHOLDER) != 1:
            logger.error(f"FallbackApi URL must contain exactly one {PLACEHOLDER} placeholder for IP address")
            return self._finish(FallbackOutcome.CONFIG_ERROR)

        url = self.url_template.replace(PLACEHOLDER, ip)
        try:
            resp = self.session.get(url, timeout=self.timeout)
            if not 200 <= resp.status_code < 300:
                logger.warning(f"Geo API returned non-success status for IP {ip}: {resp.status_code}")
                return self._finish(FallbackOutcome.HTTP_ERROR)

            country_code = (resp.text or "").strip()
            if not country_code or country_code.lower() == "nil":
                return self._finish(FallbackOutcome.EMPTY)

            logger.debug(f"Geo API returned country code for IP {ip}: {country_code}")
            return self._finish(FallbackOutcome.SUCCESS, country_code.upper())
        except requests.exceptions.Timeout:
            logger.warning(f"Geo API timeout for IP {ip}")
            return self._finish(FallbackOutcome.TIMEOUT)
        except Exception as e:
            logger.exception(f"Error calling geo API for IP {ip}: {e}")
            return self._finish(FallbackOutcome.EXCEPTION)

    def lookup(self, ip: str) -> Optional[str]:
        return self.fetch(ip).country_code

    def close(self):
        self.session.close()

    def _finish(self, outcome: FallbackOutcome, country_code: Optional[str] = None) -> FallbackResult:
        self.metrics.record_fallback(outcome.value)
        return FallbackResult(outcome, country_code)
