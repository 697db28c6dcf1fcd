"""
GeoIP lookups against a hot-reloadable MaxMind country database.
"""
import ipaddress
import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

import geoip2.database
import geoip2.errors

from ..observability.metrics import GeoFilterMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseHandle:
    reader: geoip2.database.Reader
    loaded_at: datetime
    path: str


class HandleCell:
    """Atomic reference cell. The lock only guards reading and replacing the reference."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handle: Optional[DatabaseHandle] = None

    def get(self) -> Optional[DatabaseHandle]:
        with self._lock:
            return self._handle

    def swap(self, handle: Optional[DatabaseHandle]) -> Optional[DatabaseHandle]:
        with self._lock:
            previous, self._handle = self._handle, handle
            return previous


class LocalDatabaseManager:
    def __init__(
        self,
        db_path: Optional[str],
        metrics: GeoFilterMetrics,
        retain_on_failure: bool = True,
        reader_factory: Callable[[str], geoip2.database.Reader] = geoip2.database.Reader,
    ):
        self.db_path = db_path
        self.metrics = metrics
        self.retain_on_failure = retain_on_failure
        self.reader_factory = reader_factory
        self._cell = HandleCell()
        self._watcher: Optional["DatabaseWatcher"] = None

    @property
    def is_ready(self) -> bool:
        return self._cell.get() is not None

    @property
    def loaded_at(self) -> Optional[datetime]:
        handle = self._cell.get()
        return handle.loaded_at if handle else None

    def metadata(self) -> Optional[dict]:
        handle = self._cell.get()
        if handle is None:
            return None
        meta = handle.reader.metadata()
        return {
            "database_type": meta.database_type,
            "build_epoch": meta.build_epoch,
            "path": handle.path,
            "loaded_at": handle.loaded_at.isoformat(),
        }

    def reload(self) -> bool:
        """
        Open the database at db_path and swap it in.
        Returns True if a new handle is live afterwards.
        """
        if not self.db_path or not os.path.isfile(self.db_path):
            logger.warning(f"MaxMind database not found at path: {self.db_path}")
            return False

        try:
            reader = self.reader_factory(self.db_path)
        except Exception as e:
            logger.error(f"Failed to load MaxMind database from {self.db_path}: {e}")
            if not self.retain_on_failure:
                self._release(self._cell.swap(None))
            elif self.is_ready:
                logger.warning("Keeping previously loaded MaxMind database")
            return False

        handle = DatabaseHandle(reader=reader, loaded_at=datetime.now(timezone.utc), path=self.db_path)
        self._release(self._cell.swap(handle))
        self.metrics.database_load_time.set(handle.loaded_at.timestamp())

        logger.info(f"MaxMind database loaded successfully from {self.db_path}")
        try:
            meta = reader.metadata()
            logger.info(f"Database metadata: Type: {meta.database_type}, Build: {meta.build_epoch}")
        except Exception as e:
            logger.warning(f"Could not read MaxMind database metadata: {e}")
        return True

    def lookup(self, ip: str) -> Optional[str]:
        try:
            ipaddress.ip_address(ip)
        except ValueError:
            self.metrics.record_maxmind("invalid_ip")
            return None

        handle = self._cell.get()
        if handle is None:
            self.metrics.record_maxmind("no_database")
            return None

        try:
            response = handle.reader.country(ip)
        except geoip2.errors.AddressNotFoundError:
            self.metrics.record_maxmind("not_found")
            return None
        except Exception as e:
            logger.error(f"Error looking up country for IP {ip}: {e}")
            self.metrics.record_maxmind("error")
            return None

        country_code = response.country.iso_code
        if not country_code:
            self.metrics.record_maxmind("not_found")
            return None
        self.metrics.record_maxmind("success")
        return country_code.upper()

    def start_watching(self, poll_interval: float = 2.0, debounce: float = 5.0) -> Optional["DatabaseWatcher"]:
        if not self.db_path:
            return None
        if self._watcher is None:
            self._watcher = DatabaseWatcher(self, poll_interval=poll_interval, debounce=debounce)
            self._watcher.start()
            logger.info(f"File watcher setup for MaxMind database: {self.db_path}")
        return self._watcher

    def close(self):
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        self._release(self._cell.swap(None))

    @staticmethod
    def _release(handle: Optional[DatabaseHandle]):
        if handle is None:
            return
        try:
            handle.reader.close()
        except Exception as e:
            logger.warning(f"Error closing MaxMind reader for {handle.path}: {e}")


Signature = Optional[Tuple[float, int]]


class DatabaseWatcher(threading.Thread):
    """
    Polls the database file and reloads once its (mtime, size) has been
    stable for `debounce` seconds after a change, so a multi-step file
    replace is never read half-written.
    """
    def __init__(self, manager: LocalDatabaseManager, poll_interval: float = 2.0, debounce: float = 5.0,
                 clock: Callable[[], float] = None):
        super().__init__(name="geofilter-db-watcher", daemon=True)
        self.manager = manager
        self.poll_interval = poll_interval
        self.debounce = debounce
        self._clock = clock or time.monotonic
        self._stop_event = threading.Event()
        self._last_signature: Signature = self._signature()
        self._deadline: Optional[float] = None

    def run(self):
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.poll()
            except Exception as e:
                logger.error(f"Error during database reload: {e}")

    def poll(self) -> bool:
        """One reconciliation step. Returns True if a reload was triggered."""
        signature = self._signature()
        now = self._clock()
        if signature != self._last_signature:
            if self._deadline is None:
                logger.info("MaxMind database file changed, reloading...")
            self._last_signature = signature
            self._deadline = now + self.debounce
            return False
        if self._deadline is not None and now >= self._deadline:
            self._deadline = None
            self.manager.reload()
            return True
        return False

    def stop(self, timeout: float = None):
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)

    def _signature(self) -> Signature:
        try:
            stat = os.stat(self.manager.db_path)
        except OSError:
            return None
        return (stat.st_mtime, stat.st_size)
