"""
Custom exceptions for the service procurement workflow

Every rejected action names the rule it violated (current status, required
role, quota numbers) so callers can render an actionable message instead of a
generic failure. All errors are recoverable at the call level.
"""

from typing import Any


class ProcurementError(Exception):
    """Base exception for all service procurement errors"""

    code = "procurement_error"

    def details(self) -> dict[str, Any]:
        """Structured attributes describing the violated rule"""
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Render as a caller-facing error document"""
        return {"error": self.code, "message": str(self), "details": self.details()}


class Forbidden(ProcurementError):
    """
    Raised when a role or ownership check fails

    Raised before any storage access, so a denial never leaves a partial write.
    """

    code = "forbidden"

    def __init__(
        self,
        action: str,
        role: str,
        allowed_roles: list[str] | None = None,
        reason: str = "",
    ) -> None:
        self.action = action
        self.role = role
        self.allowed_roles = allowed_roles or []
        self.reason = reason
        message = reason or (
            f"Role {role} may not perform {action} "
            f"(allowed: {', '.join(self.allowed_roles) or 'none'})"
        )
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "role": self.role,
            "allowed_roles": self.allowed_roles,
        }


class InvalidTransition(ProcurementError):
    """
    Raised when a status precondition fails

    Names both the current status and the status the action tried to reach.
    """

    code = "invalid_transition"

    def __init__(
        self,
        request_id: str,
        current_status: str,
        attempted_status: str,
        action: str = "",
        reason: str = "",
    ) -> None:
        self.request_id = request_id
        self.current_status = current_status
        self.attempted_status = attempted_status
        self.action = action
        self.reason = reason
        message = (
            f"Request {request_id} is {current_status}; "
            f"cannot move to {attempted_status}"
        )
        if action:
            message += f" via {action}"
        if reason:
            message += f" - {reason}"
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "current_status": self.current_status,
            "attempted_status": self.attempted_status,
            "action": self.action,
        }


class RequestNotOpen(ProcurementError):
    """Raised when an offer targets a request that is not BIDDING"""

    code = "request_not_open"

    def __init__(self, request_id: str, current_status: str) -> None:
        self.request_id = request_id
        self.current_status = current_status
        super().__init__(
            f"Request {request_id} is {current_status}, must be BIDDING to accept offers"
        )

    def details(self) -> dict[str, Any]:
        return {"request_id": self.request_id, "current_status": self.current_status}


class QuotaExceeded(ProcurementError):
    """Raised when an offer would exceed the request's offer quota"""

    code = "quota_exceeded"

    def __init__(self, request_id: str, max_offers: int, current_count: int) -> None:
        self.request_id = request_id
        self.max_offers = max_offers
        self.current_count = current_count
        super().__init__(
            f"Request {request_id} already holds {current_count} of "
            f"{max_offers} allowed offers"
        )

    def details(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "max_offers": self.max_offers,
            "current_count": self.current_count,
        }


class NotFound(ProcurementError):
    """Base class for unknown ids"""

    code = "not_found"


class RequestNotFound(NotFound):
    """Raised when a service request does not exist"""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Service request {request_id} not found")

    def details(self) -> dict[str, Any]:
        return {"request_id": self.request_id}


class OfferNotFound(NotFound):
    """Raised when an offer does not exist or belongs to another request"""

    def __init__(self, offer_id: str, request_id: str | None = None) -> None:
        self.offer_id = offer_id
        self.request_id = request_id
        if request_id:
            message = f"Offer {offer_id} not found for request {request_id}"
        else:
            message = f"Offer {offer_id} not found"
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"offer_id": self.offer_id, "request_id": self.request_id}


class ValidationError(ProcurementError):
    """Raised on malformed input (negative weights, non-numeric scores, ...)"""

    code = "validation_error"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"field": self.field}


class Conflict(ProcurementError):
    """
    Raised when an atomic write cannot be completed after the allowed retries

    Caller should reload the request and retry with a fresh expected status.
    """

    code = "conflict"

    def __init__(self, request_id: str, message: str = "") -> None:
        self.request_id = request_id
        super().__init__(
            message or f"Concurrent write on request {request_id} could not be resolved"
        )

    def details(self) -> dict[str, Any]:
        return {"request_id": self.request_id}


class StatusConflict(ProcurementError):
    """
    Raised by stores when compare-and-set finds a different status

    The orchestrator translates this into InvalidTransition against the
    status that is now stored.
    """

    code = "status_conflict"

    def __init__(self, request_id: str, expected_status: str, actual_status: str) -> None:
        self.request_id = request_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"Request {request_id} status mismatch: "
            f"expected {expected_status}, got {actual_status}"
        )

    def details(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "expected_status": self.expected_status,
            "actual_status": self.actual_status,
        }
