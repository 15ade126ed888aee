# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Observability for the async API queue.

Classes:
    QueueMetrics: Records admissions, rejections, completions and removals.

Constants:
    METRIC_PREFIX and the module-level Prometheus metric objects.
"""

from .metrics import (
    ADMISSIONS_TOTAL,
    COMPLETIONS_TOTAL,
    IN_FLIGHT,
    METRIC_PREFIX,
    REJECTIONS_TOTAL,
    REMOVALS_TOTAL,
    QueueMetrics,
)

__all__ = [
    "ADMISSIONS_TOTAL",
    "COMPLETIONS_TOTAL",
    "IN_FLIGHT",
    "METRIC_PREFIX",
    "REJECTIONS_TOTAL",
    "REMOVALS_TOTAL",
    "QueueMetrics",
]
