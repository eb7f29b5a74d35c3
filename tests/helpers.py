"""
Test Helper Functions - Builders

Provides reusable builders for actors, requests and offers, plus a driver
that walks a request through the lifecycle to a wanted status. Follows the
Builder pattern for test clarity.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from service_procurement.orchestrator import WorkflowOrchestrator
from service_procurement.procurement.commands import CreateServiceRequest, SubmitOffer
from service_procurement.procurement.models import (
    Actor,
    Offer,
    RequestStatus,
    ServiceRequest,
)

T0 = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def make_actor(username: str, role: str) -> Actor:
    """Builder for actors (user_id mirrors the username)"""
    return Actor(user_id=f"u-{username}", username=username, role=role)


def make_request(
    request_id: str = "r1",
    status: RequestStatus = RequestStatus.DRAFT,
    created_by: str = "pm.alice",
    **overrides: Any,
) -> ServiceRequest:
    """
    Builder for ServiceRequest models used by pure-function tests

    Example:
        >>> request = make_request(status=RequestStatus.BIDDING,
        ...                        bidding_started_at=T0, bidding_round=1)
    """
    data: dict[str, Any] = {
        "request_id": request_id,
        "created_by": created_by,
        "created_at": T0,
        "updated_at": T0,
        "title": "Java backend team",
        "status": status,
    }
    data.update(overrides)
    return ServiceRequest(**data)


def make_offer(
    offer_id: str,
    request_id: str = "r1",
    provider_username: str = "sp.acme",
    price: str = "50000",
    bidding_round: int = 1,
    submitted_at: datetime = T0,
    **overrides: Any,
) -> Offer:
    """Builder for Offer models"""
    return Offer(
        offer_id=offer_id,
        request_id=request_id,
        provider_username=provider_username,
        price=Decimal(price),
        bidding_round=bidding_round,
        submitted_at=submitted_at,
        **overrides,
    )


def create_command(title: str = "Java backend team", **overrides: Any) -> CreateServiceRequest:
    """Builder for CreateServiceRequest commands"""
    return CreateServiceRequest(title=title, **overrides)


def offer_command(price: str = "50000", **overrides: Any) -> SubmitOffer:
    """Builder for SubmitOffer commands"""
    return SubmitOffer(price=Decimal(price), **overrides)


def request_in_status(
    orchestrator: WorkflowOrchestrator,
    pm: Actor,
    rp: Actor,
    status: RequestStatus,
    **create_overrides: Any,
) -> ServiceRequest:
    """
    Create a request and drive it forward to DRAFT, IN_REVIEW, REJECTED,
    APPROVED_FOR_SUBMISSION or BIDDING

    Args:
        orchestrator: Orchestrator under test
        pm: Owning project manager
        rp: Resource planner used for the review step
        status: Wanted status
        **create_overrides: Fields for CreateServiceRequest

    Returns:
        The request as stored after the last step
    """
    request = orchestrator.create_request(pm, create_command(**create_overrides))
    if status == RequestStatus.DRAFT:
        return request

    request = orchestrator.submit_for_review(pm, request.request_id)
    if status == RequestStatus.IN_REVIEW:
        return request
    if status == RequestStatus.REJECTED:
        return orchestrator.rp_reject(rp, request.request_id, reason="Budget not approved")

    request = orchestrator.rp_approve(rp, request.request_id)
    if status == RequestStatus.APPROVED_FOR_SUBMISSION:
        return request

    request = orchestrator.submit_for_bidding(pm, request.request_id)
    if status == RequestStatus.BIDDING:
        return request

    raise ValueError(f"request_in_status cannot reach {status}")
