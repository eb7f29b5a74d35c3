"""
Prometheus metrics collection for the procurement workflow.

Provides observability into workflow actions, offer intake and evaluations.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Gauge, Histogram

# ============================================================================
# Workflow Action Metrics
# ============================================================================

action_duration_seconds = Histogram(
    "procurement_action_duration_seconds",
    "Duration of workflow action processing in seconds",
    ["action"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

actions_processed_total = Counter(
    "procurement_actions_processed_total",
    "Total number of workflow actions processed",
    ["action", "status"],  # status: success, rejected, failure
)

status_transitions_total = Counter(
    "procurement_status_transitions_total",
    "Total number of applied request status transitions",
    ["from_status", "to_status"],
)

requests_by_status = Gauge(
    "procurement_requests_by_status",
    "Number of service requests per status (as seen by the dashboard projection)",
    ["status"],
)

# ============================================================================
# Offer & Evaluation Metrics
# ============================================================================

offers_submitted_total = Counter(
    "procurement_offers_submitted_total",
    "Total number of offers accepted by the offer registry",
)

offer_rejections_total = Counter(
    "procurement_offer_rejections_total",
    "Total number of offers refused by the offer registry",
    ["reason"],  # reason: not_open, quota, provider_limit
)

evaluations_saved_total = Counter(
    "procurement_evaluations_saved_total",
    "Total number of evaluation documents saved",
)

# ============================================================================
# Notification Metrics
# ============================================================================

event_emit_failures_total = Counter(
    "procurement_event_emit_failures_total",
    "Total number of domain events the notification collaborator failed to take",
    ["event_type"],
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_action(action: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to track workflow action duration and outcome.

    Rejections raised as ProcurementError count as "rejected", anything else
    as "failure".

    Args:
        action: Name of the workflow action being processed
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            from service_procurement.kernel.errors import ProcurementError

            start = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except ProcurementError:
                status = "rejected"
                raise
            except Exception:
                status = "failure"
                raise
            finally:
                duration = time.perf_counter() - start
                action_duration_seconds.labels(action=action).observe(duration)
                actions_processed_total.labels(action=action, status=status).inc()

        return wrapper

    return decorator
