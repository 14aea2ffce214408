"""Prometheus counters exported on ``/metrics``."""
from __future__ import annotations

from prometheus_client import Counter, Gauge

from .config import get_settings

_namespace = get_settings().prometheus_namespace

API_ERRORS = Counter("api_errors_total", "Total unhandled API errors", namespace=_namespace)
QUEUE_LENGTH = Gauge("queue_length", "Number of pending status-check jobs", namespace=_namespace)
WEBHOOK_EVENTS = Counter(
    "webhook_events_total",
    "Payment webhook deliveries by event type and outcome",
    ["event_type", "outcome"],
    namespace=_namespace,
)
CREDITS_DEBITED = Counter("credits_debited_total", "Credits charged for transcriptions", namespace=_namespace)
CREDITS_PURCHASED = Counter("credits_purchased_total", "Credits added by payments", namespace=_namespace)
TRANSCRIPTIONS_STARTED = Counter(
    "transcriptions_started_total",
    "Transcription jobs submitted to the provider",
    ["source"],
    namespace=_namespace,
)
