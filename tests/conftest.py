"""
Pytest fixtures for GeoFilter tests.

Provides:
- A metrics collector bound to a fresh Prometheus registry per test
- Fake MaxMind readers (no .mmdb file needed)
- Stub country sources for the resolver and evaluator
- A FastAPI app wired with fakes
"""

import os
import sys
from types import SimpleNamespace
from unittest.mock import Mock

import geoip2.errors
import pytest
from prometheus_client import CollectorRegistry

# Add the project root to the Python path
project_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_dir not in sys.path:
    sys.path.insert(0, project_dir)

from geofilter.compliance.fallback import FallbackLookupClient
from geofilter.compliance.geoip import LocalDatabaseManager
from geofilter.compliance.resolver import CountryResolver, MemoryCache
from geofilter.config import Settings
from geofilter.engine.evaluator import AccessPolicyEvaluator
from geofilter.observability.metrics import GeoFilterMetrics


# ============================================================================
# Metrics
# ============================================================================

@pytest.fixture
def metrics():
    return GeoFilterMetrics(CollectorRegistry())


@pytest.fixture
def sample(metrics):
    """Read a metric value from the test registry (0 when never recorded)."""
    def _sample(name, **labels):
        value = metrics.registry.get_sample_value(name, labels or None)
        return value or 0.0
    return _sample


# ============================================================================
# MaxMind fakes
# ============================================================================

class FakeReader:
    """Stands in for geoip2.database.Reader."""

    def __init__(self, countries=None, database_type="GeoLite2-Country", build_epoch=1700000000):
        self.countries = countries or {}
        self.closed = False
        self._meta = SimpleNamespace(database_type=database_type, build_epoch=build_epoch)

    def country(self, ip):
        if ip not in self.countries:
            raise geoip2.errors.AddressNotFoundError(f"{ip} not found")
        return SimpleNamespace(country=SimpleNamespace(iso_code=self.countries[ip]))

    def metadata(self):
        return self._meta

    def close(self):
        self.closed = True


@pytest.fixture
def fake_reader():
    return FakeReader


@pytest.fixture
def db_file(tmp_path):
    path = tmp_path / "GeoLite2-Country.mmdb"
    path.write_bytes(b"fake-mmdb")
    return str(path)


@pytest.fixture
def make_local_db(metrics, db_file):
    """Build a LocalDatabaseManager whose reader factory hands out FakeReaders."""
    def _make(countries=None, path=db_file, **kwargs):
        readers = []

        def factory(p):
            reader = FakeReader(countries)
            readers.append(reader)
            return reader

        manager = LocalDatabaseManager(path, metrics, reader_factory=factory, **kwargs)
        manager.readers = readers
        return manager
    return _make


# ============================================================================
# Resolver / evaluator
# ============================================================================

@pytest.fixture
def local_db():
    source = Mock(spec=LocalDatabaseManager)
    source.lookup.return_value = None
    source.is_ready = False
    return source


@pytest.fixture
def fallback():
    source = Mock(spec=FallbackLookupClient)
    source.lookup.return_value = None
    return source


@pytest.fixture
def resolver(local_db, fallback, metrics):
    return CountryResolver(local_db, fallback, metrics, cache=MemoryCache())


@pytest.fixture
def evaluator(resolver, metrics):
    return AccessPolicyEvaluator(resolver, metrics)


# ============================================================================
# FastAPI app
# ============================================================================

@pytest.fixture
def app_factory(metrics, fallback, make_local_db):
    from geofilter.main import create_app

    def _create(countries=None, settings=None):
        settings = settings or Settings(db_watch=False)
        local = make_local_db(countries)
        return create_app(
            settings=settings,
            metrics=metrics,
            local_db=local,
            fallback=fallback,
            cache=MemoryCache(),
            configure_logging=False,
        )
    return _create
