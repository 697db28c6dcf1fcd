"""
OpenTelemetry tracing setup.
"""
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
import os

def setup_tracing(app) -> bool:
    if not os.getenv("ENABLE_TRACING", "false").lower() == "true":
        return False
    provider = TracerProvider(
        resource=Resource.create({SERVICE_NAME: "geofilter"})
    )
    processor = BatchSpanProcessor(
        OTLPSpanExporter(endpoint=os.getenv("OTLP_ENDPOINT", "http://jaeger:4317"), insecure=True)
    )
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
    return True
