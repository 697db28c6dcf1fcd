"""
Cache-aside country resolution: local MaxMind database first, remote API second.
"""
import ipaddress
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

import redis

from .fallback import FallbackLookupClient
from .geoip import LocalDatabaseManager
from ..observability.metrics import GeoFilterMetrics

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 24 * 60 * 60


class MemoryCache:
    """In-process TTL cache, safe for concurrent threads."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0):
        self._data: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            expires_at, value = item
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def setex(self, key: str, ttl: int, value: str):
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            self._data[key] = (now + ttl, value)

    def _sweep(self, now: float):
        expired = [key for key, (expires_at, _) in self._data.items() if now >= expires_at]
        for key in expired:
            del self._data[key]
        self._next_sweep = now + self.sweep_interval
        if expired:
            logger.debug(f"Evicted {len(expired)} expired cache entries")

    def __len__(self):
        with self._lock:
            return len(self._data)


class RedisCache:
    """
    Shared cache backed by Redis; expiry handled by the server.
    Redis errors degrade to a cache miss so lookups keep working during an outage.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.Redis.from_url(url, decode_responses=True, socket_connect_timeout=2))

    def get(self, key: str) -> Optional[str]:
        try:
            return self.redis.get(key)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            return None

    def setex(self, key: str, ttl: int, value: str):
        try:
            self.redis.setex(key, ttl, value)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Redis setex failed for {key}: {e}")


class CountryResolver:
    def __init__(
        self,
        local_db: LocalDatabaseManager,
        fallback: FallbackLookupClient,
        metrics: GeoFilterMetrics,
        cache=None,
        cache_ttl: int = CACHE_TTL_SECONDS,
        single_flight: bool = False,
    ):
        self.local_db = local_db
        self.fallback = fallback
        self.metrics = metrics
        self.cache = cache if cache is not None else MemoryCache()
        self.cache_ttl = cache_ttl
        self.single_flight = single_flight
        self._inflight: Dict[str, list] = {}  # ip -> [lock, waiters]
        self._inflight_lock = threading.Lock()

    def resolve(self, ip: str) -> Optional[str]:
        """
        Return the ISO country code for ip, or None if neither source knows it.
        Only positive answers are cached. Raises ValueError unless ip is an address literal.
        """
        ipaddress.ip_address(ip)
        cache_key = f"geo_{ip}"
        cached = self.cache.get(cache_key)
        if cached:
            logger.debug(f"Country code for IP {ip} found in cache: {cached}")
            self.metrics.cache_hits.inc()
            return cached

        self.metrics.cache_misses.inc()
        if not self.single_flight:
            return self._lookup_and_store(ip, cache_key)

        key_lock = self._acquire_key_lock(ip)
        try:
            with key_lock:
                # another caller may have filled the cache while we waited
                cached = self.cache.get(cache_key)
                if cached:
                    return cached
                return self._lookup_and_store(ip, cache_key)
        finally:
            self._release_key_lock(ip)

    def _lookup_and_store(self, ip: str, cache_key: str) -> Optional[str]:
        country_code = self.local_db.lookup(ip)
        if not country_code:
            country_code = self.fallback.lookup(ip)

        if country_code:
            self.cache.setex(cache_key, self.cache_ttl, country_code)
            logger.debug(f"Cached country code for IP {ip}: {country_code}")
            return country_code
        return None

    def _acquire_key_lock(self, ip: str) -> threading.Lock:
        with self._inflight_lock:
            entry = self._inflight.get(ip)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._inflight[ip] = entry
            entry[1] += 1
            return entry[0]

    def _release_key_lock(self, ip: str):
        with self._inflight_lock:
            entry = self._inflight[ip]
            entry[1] -= 1
            if entry[1] == 0:
                del self._inflight[ip]
