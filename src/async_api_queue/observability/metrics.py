# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Prometheus metrics for the async API queue.

Metrics are declared once at module level (prometheus_client registers them
in the default registry on creation) and recorded through QueueMetrics, which
binds the ``queue`` label to a queue's key prefix.

Label Best Practices:
    The only label is ``queue`` (the key prefix, categorical).
    NEVER label by request id: it is unique per request (unbounded!).

Usage:
    >>> metrics = QueueMetrics("billing:")
    >>> metrics.record_admission(in_flight=3)
    >>> metrics.record_rejection()
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge

logger = logging.getLogger(__name__)

METRIC_PREFIX = "async_api_queue"
"""Prefix for all Prometheus metrics in this library."""

ADMISSIONS_TOTAL = Counter(
    f"{METRIC_PREFIX}_admissions_total",
    "Requests admitted by the admission check",
    ["queue"],
)
REJECTIONS_TOTAL = Counter(
    f"{METRIC_PREFIX}_rejections_total",
    "Requests rejected because the queue was full",
    ["queue"],
)
COMPLETIONS_TOTAL = Counter(
    f"{METRIC_PREFIX}_completions_total",
    "Requests marked done by this process",
    ["queue"],
)
REMOVALS_TOTAL = Counter(
    f"{METRIC_PREFIX}_removals_total",
    "Slots explicitly removed by this process",
    ["queue", "state"],
)
IN_FLIGHT = Gauge(
    f"{METRIC_PREFIX}_in_flight",
    "Last in-flight count observed by this process",
    ["queue"],
)


class QueueMetrics:
    """Records queue events for one key prefix. No-op when disabled."""

    def __init__(self, queue_label: str, enabled: bool = True):
        self.queue_label = queue_label
        self.enabled = enabled

    def record_admission(self, in_flight: int | None = None) -> None:
        if not self.enabled:
            return
        ADMISSIONS_TOTAL.labels(queue=self.queue_label).inc()
        if in_flight is not None:
            self.observe_in_flight(in_flight)

    def record_rejection(self) -> None:
        if self.enabled:
            REJECTIONS_TOTAL.labels(queue=self.queue_label).inc()

    def record_completion(self) -> None:
        if self.enabled:
            COMPLETIONS_TOTAL.labels(queue=self.queue_label).inc()

    def record_removal(self, state: str) -> None:
        if self.enabled:
            REMOVALS_TOTAL.labels(queue=self.queue_label, state=state).inc()

    def observe_in_flight(self, in_flight: int) -> None:
        if self.enabled:
            IN_FLIGHT.labels(queue=self.queue_label).set(in_flight)
