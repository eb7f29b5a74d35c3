"""
Kernel - shared infrastructure for the procurement workflow

Errors, ids, clock, event envelope, logging, retry, metrics, the in-process
event bus and the workflow policy. Nothing in the kernel knows about request
statuses or offers.
"""

from service_procurement.kernel.errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    OfferNotFound,
    ProcurementError,
    QuotaExceeded,
    RequestNotFound,
    RequestNotOpen,
    StatusConflict,
    ValidationError,
)
from service_procurement.kernel.events import Event
from service_procurement.kernel.ids import IdFactory, generate_id
from service_procurement.kernel.policy import WorkflowPolicy
from service_procurement.kernel.time import ManualTimeProvider, RealTimeProvider, TimeProvider

__all__ = [
    # IDs
    "IdFactory",
    "generate_id",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "ManualTimeProvider",
    # Events
    "Event",
    # Policy
    "WorkflowPolicy",
    # Errors
    "ProcurementError",
    "Forbidden",
    "InvalidTransition",
    "RequestNotOpen",
    "QuotaExceeded",
    "NotFound",
    "RequestNotFound",
    "OfferNotFound",
    "ValidationError",
    "Conflict",
    "StatusConflict",
]
