"""OpenTelemetry + Prometheus fallback wiring for agentwatch."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from agentwatch import config

logger = logging.getLogger("agentwatch.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None

_scan_counter: Any | None = None
_scan_latency_hist: Any | None = None
_parse_failure_counter: Any | None = None
_zombie_repair_counter: Any | None = None

_prom_enabled = False
_prom_scan_counter: Any | None = None
_prom_scan_latency_hist: Any | None = None
_prom_parse_failure_counter: Any | None = None
_prom_zombie_repair_counter: Any | None = None


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


def is_enabled() -> bool:
    return _enabled or _prom_enabled


def initialize() -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider
    global _scan_counter, _scan_latency_hist, _parse_failure_counter, _zombie_repair_counter
    global _prom_enabled
    global _prom_scan_counter, _prom_scan_latency_hist, _prom_parse_failure_counter, _prom_zombie_repair_counter

    if _initialized:
        return
    _initialized = True

    if not config.OTEL_ENABLED:
        logger.debug("OpenTelemetry disabled (AGENTWATCH_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
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
    service_name = config.OTEL_SERVICE_NAME or "agentwatch"

    resource = Resource.create({"service.name": service_name, "service.namespace": "agentwatch"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("agentwatch")

    _scan_counter = meter.create_counter(
        "agentwatch_scans_total",
        unit="1",
        description="Count of job discovery scans by tier",
    )
    _scan_latency_hist = meter.create_histogram(
        "agentwatch_scan_latency_ms",
        unit="ms",
        description="Latency of job discovery scans",
    )
    _parse_failure_counter = meter.create_counter(
        "agentwatch_parse_failures_total",
        unit="1",
        description="Count of unreadable or unparseable inputs",
    )
    _zombie_repair_counter = meter.create_counter(
        "agentwatch_zombie_repairs_total",
        unit="1",
        description="Zombie job repairs by outcome",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("agentwatch")
    _enabled = True

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_scan_counter = Counter(
                "agentwatch_scans_total",
                "Count of job discovery scans by tier",
                ["tier"],
            )
            _prom_scan_latency_hist = Histogram(
                "agentwatch_scan_latency_ms",
                "Latency of job discovery scans",
                ["tier"],
            )
            _prom_parse_failure_counter = Counter(
                "agentwatch_parse_failures_total",
                "Count of unreadable or unparseable inputs",
                ["source"],
            )
            _prom_zombie_repair_counter = Counter(
                "agentwatch_zombie_repairs_total",
                "Zombie job repairs by outcome",
                ["result"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except (ImportError, OSError) as exc:
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown() -> None:
    global _enabled
    if not _initialized:
        return
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
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


def record_scan(tier: str, duration_ms: float) -> None:
    labels = {"tier": tier or "unknown"}
    if _enabled and _scan_counter is not None:
        _scan_counter.add(1, labels)
    if _enabled and _scan_latency_hist is not None:
        _scan_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_scan_counter is not None:
        _prom_scan_counter.labels(**labels).inc()
    if _prom_enabled and _prom_scan_latency_hist is not None:
        _prom_scan_latency_hist.labels(**labels).observe(max(0.0, float(duration_ms)))


def record_parse_failure(source: str) -> None:
    labels = {"source": source or "unknown"}
    if _enabled and _parse_failure_counter is not None:
        _parse_failure_counter.add(1, labels)
    if _prom_enabled and _prom_parse_failure_counter is not None:
        _prom_parse_failure_counter.labels(**labels).inc()


def record_zombie_repair(updated: int, failed: int, *, dry_run: bool = False) -> None:
    if dry_run:
        return
    for result, count in (("updated", updated), ("failed", failed)):
        safe_count = max(0, int(count))
        if safe_count == 0:
            continue
        if _enabled and _zombie_repair_counter is not None:
            _zombie_repair_counter.add(safe_count, {"result": result})
        if _prom_enabled and _prom_zombie_repair_counter is not None:
            _prom_zombie_repair_counter.labels(result=result).inc(safe_count)
