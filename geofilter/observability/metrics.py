"""
Prometheus metrics for monitoring.
"""
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Request, Response


class GeoFilterMetrics:
    """
    Counters for the access-decision path, bound to one registry.
    Components receive an instance instead of touching module-level collectors,
    so each test (or app) can use its own CollectorRegistry.
    """
    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self.requests_total = Counter(
            'geofilter_requests_total', 'Total validation requests',
            ['result', 'country', 'reason'], registry=self.registry
        )
        self.request_duration = Histogram(
            'geofilter_request_duration_seconds', 'Request processing time', registry=self.registry
        )
        self.cache_hits = Counter(
            'geofilter_cache_hits_total', 'Cache hits for geo lookups', registry=self.registry
        )
        self.cache_misses = Counter(
            'geofilter_cache_misses_total', 'Cache misses for geo lookups', registry=self.registry
        )
        self.geo_api_calls = Counter(
            'geofilter_geo_api_calls_total', 'External geo API calls', ['result'], registry=self.registry
        )
        self.maxmind_lookups = Counter(
            'geofilter_maxmind_lookups_total', 'MaxMind database lookups', ['result'], registry=self.registry
        )
        self.database_load_time = Gauge(
            'geofilter_maxmind_database_load_timestamp', 'Last database load time', registry=self.registry
        )

    def record_decision(self, result: str, country: str, reason: str):
        self.requests_total.labels(result=result, country=country, reason=reason).inc()

    def record_fallback(self, result: str):
        self.geo_api_calls.labels(result=result).inc()

    def record_maxmind(self, result: str):
        self.maxmind_lookups.labels(result=result).inc()

    def export(self) -> bytes:
        return generate_latest(self.registry)


metrics_router = APIRouter()

@metrics_router.get("/metrics")
def get_metrics(request: Request):
    """Prometheus metrics endpoint."""
    metrics: GeoFilterMetrics = request.app.state.metrics
    return Response(content=metrics.export(), media_type=CONTENT_TYPE_LATEST)
