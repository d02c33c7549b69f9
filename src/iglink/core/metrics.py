"""OpenTelemetry metrics instruments for the Instagram linking flow.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter instance around.

Initialization
--------------
Call ``init_metrics(service_name)`` once during app startup.  When
OTEL_EXPORTER_OTLP_ENDPOINT is not set, the global no-op MeterProvider is
used and all recordings are silent no-ops.

Instruments
-----------
  iglink.callback.outcomes                Counter  (label: outcome)
      Terminal callback outcomes: ``success`` or a failure reason.

  iglink.webhook.subscription_failures    Counter
      Best-effort webhook subscriptions that failed after a successful link.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "iglink"


def init_metrics(service_name: str) -> metrics.Meter:
    """Initialize OpenTelemetry metrics for the service.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a real MeterProvider
    with a periodic OTLP gRPC exporter (requires the ``otel`` extra).
    Otherwise the global no-op MeterProvider is used.
    """
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    # Import SDK/exporter only when needed to avoid hard dependency at import time
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    exporter = OTLPMetricExporter(endpoint=endpoint)
    reader = PeriodicExportingMetricReader(exporter, export_interval_millis=15_000)
    provider = MeterProvider(resource=resource, metric_readers=[reader])

    metrics.set_meter_provider(provider)
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    """Return a Meter from the current global provider."""
    return metrics.get_meter(_METER_NAME)


def _callback_outcomes() -> metrics.Counter:
    return get_meter().create_counter(
        name="iglink.callback.outcomes",
        description="Terminal outcomes of the Instagram OAuth callback",
        unit="callbacks",
    )


def _webhook_subscription_failures() -> metrics.Counter:
    return get_meter().create_counter(
        name="iglink.webhook.subscription_failures",
        description="Best-effort webhook subscriptions that failed after linking",
        unit="failures",
    )


def record_callback_outcome(outcome: str) -> None:
    """Count one terminal callback outcome (``success`` or a failure reason)."""
    _callback_outcomes().add(1, {"outcome": outcome})


def record_webhook_failure() -> None:
    _webhook_subscription_failures().add(1)
