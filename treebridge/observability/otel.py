"""OpenTelemetry + Prometheus fallback wiring for treebridge."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from treebridge import config

logger = logging.getLogger("treebridge.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_inbound_counter: Any | None = None
_outbound_counter: Any | None = None
_session_counter: Any | None = None

_prom_enabled = False
_prom_inbound_counter: Any | None = None
_prom_outbound_counter: Any | None = None
_prom_session_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(**extra: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in extra.items()}


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _inbound_counter, _outbound_counter, _session_counter
    global _prom_enabled, _prom_inbound_counter, _prom_outbound_counter, _prom_session_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (TREEBRIDGE_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "treebridge"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "treebridge",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("treebridge")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("treebridge")

    _inbound_counter = meter.create_counter(
        "treebridge_inbound_writes_total",
        unit="1",
        description="Editor changes applied to disk, by result",
    )
    _outbound_counter = meter.create_counter(
        "treebridge_outbound_changes_total",
        unit="1",
        description="Filesystem changes queued for the editor",
    )
    _session_counter = meter.create_counter(
        "treebridge_session_events_total",
        unit="1",
        description="Session lifecycle transitions",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_inbound_counter = Counter(
                "treebridge_inbound_writes_total",
                "Editor changes applied to disk, by result",
                ["result", "change_type"],
            )
            _prom_outbound_counter = Counter(
                "treebridge_outbound_changes_total",
                "Filesystem changes queued for the editor",
                ["change_type"],
            )
            _prom_session_counter = Counter(
                "treebridge_session_events_total",
                "Session lifecycle transitions",
                ["event"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrument failed: %s", exc)
    for provider in (_meter_provider, _trace_provider):
        try:
            if provider is not None:
                provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_inbound_write(result: str, change_type: str = "write", *, session_id: str = "") -> None:
    labels = {
        "result": result or "unknown",
        "change_type": change_type or "unknown",
        "session_id": session_id or "unknown",
    }
    if _enabled and _inbound_counter is not None:
        _inbound_counter.add(1, labels)
    if _prom_enabled and _prom_inbound_counter is not None:
        _prom_inbound_counter.labels(**_prom_labels(result=result, change_type=change_type)).inc()


def record_outbound_change(change_type: str, *, session_id: str = "") -> None:
    labels = {
        "change_type": change_type or "unknown",
        "session_id": session_id or "unknown",
    }
    if _enabled and _outbound_counter is not None:
        _outbound_counter.add(1, labels)
    if _prom_enabled and _prom_outbound_counter is not None:
        _prom_outbound_counter.labels(**_prom_labels(change_type=change_type)).inc()


def record_session_event(event: str) -> None:
    if _enabled and _session_counter is not None:
        _session_counter.add(1, {"event": event or "unknown"})
    if _prom_enabled and _prom_session_counter is not None:
        _prom_session_counter.labels(**_prom_labels(event=event)).inc()
