"""
LevelUp Observability (OpenTelemetry)

Enabled via environment variables:
- LEVELUP_OTEL_ENABLED=true
- LEVELUP_OTEL_SERVICE_NAME=levelup-api
- LEVELUP_OTEL_EXPORTER=console|otlp
- LEVELUP_OTEL_OTLP_ENDPOINT=https://... (only if exporter=otlp)
- LEVELUP_OTEL_EXCLUDED_URLS=health (comma separated, not traced)

The opentelemetry packages are the `otel` extra; without them tracing stays off.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from levelup.config import LEVELUP_VERSION

logger = logging.getLogger(__name__)

# The global tracer provider can only be set once per process.
_provider_installed = False


def _bool_env(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class OtelSettings:
    enabled: bool = False
    service_name: str = "levelup-api"
    exporter: str = "console"
    otlp_endpoint: Optional[str] = None
    excluded_urls: str = "health"

    @classmethod
    def from_env(cls) -> "OtelSettings":
        return cls(
            enabled=_bool_env("LEVELUP_OTEL_ENABLED", False),
            service_name=os.environ.get("LEVELUP_OTEL_SERVICE_NAME", "levelup-api"),
            exporter=os.environ.get("LEVELUP_OTEL_EXPORTER", "console").strip().lower(),
            otlp_endpoint=os.environ.get("LEVELUP_OTEL_OTLP_ENDPOINT") or None,
            excluded_urls=os.environ.get("LEVELUP_OTEL_EXCLUDED_URLS", "health"),
        )


def otel_enabled() -> bool:
    return OtelSettings.from_env().enabled


def _span_exporter(settings: OtelSettings):
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter

    if settings.exporter != "otlp":
        return ConsoleSpanExporter()
    try:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.warning("OTLP exporter not installed, spans go to the console")
        return ConsoleSpanExporter()
    if settings.otlp_endpoint:
        return OTLPSpanExporter(endpoint=settings.otlp_endpoint)
    return OTLPSpanExporter()


def configure_observability(settings: Optional[OtelSettings] = None) -> bool:
    """Install a tracer provider for the API process. Returns True when tracing is on."""
    global _provider_installed
    settings = settings or OtelSettings.from_env()
    if not settings.enabled:
        return False
    if _provider_installed:
        return True

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.warning("LEVELUP_OTEL_ENABLED is set but opentelemetry-sdk is not installed")
        return False

    provider = TracerProvider(resource=Resource.create({
        "service.name": settings.service_name,
        "service.version": LEVELUP_VERSION,
    }))
    provider.add_span_processor(BatchSpanProcessor(_span_exporter(settings)))
    trace.set_tracer_provider(provider)
    _provider_installed = True
    logger.info("tracing enabled (%s exporter) for %s", settings.exporter, settings.service_name)
    return True


def instrument_app(app, settings: Optional[OtelSettings] = None) -> bool:
    settings = settings or OtelSettings.from_env()
    if not settings.enabled:
        return False
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.instrumentation.logging import LoggingInstrumentor
    except ImportError:
        return False

    LoggingInstrumentor().instrument(set_logging_format=True)
    FastAPIInstrumentor.instrument_app(app, excluded_urls=settings.excluded_urls)
    return True
