"""
Request Lifecycle State Machine

Pure transition planning: given a request, an action and the acting identity,
decide whether the transition is valid and compute the exact patch to write.
Nothing here touches storage; the orchestrator applies a plan through a single
compare-and-set on the expected status, so a plan is either written whole or
not at all.

Transition table:
    submit-for-review   DRAFT                    → IN_REVIEW
    rp-approve          IN_REVIEW                → APPROVED_FOR_SUBMISSION
    rp-reject           IN_REVIEW                → REJECTED
    submit-for-bidding  APPROVED_FOR_SUBMISSION  → BIDDING
    close-bidding       BIDDING                  → BID_EVALUATION   (quota reached)
    rp-recommend-offer  BIDDING | BID_EVALUATION → RECOMMENDED
    send-to-po          RECOMMENDED              → SENT_TO_PO
    order               SENT_TO_PO               → ORDERED
    reactivate          EXPIRED | REJECTED       → DRAFT
    expire              BIDDING                  → EXPIRED          (window elapsed)
"""

from datetime import datetime, timedelta
from typing import Any, NamedTuple

from service_procurement.kernel.errors import InvalidTransition
from service_procurement.kernel.policy import WorkflowPolicy
from service_procurement.procurement.models import (
    TRAIL_FIELDS,
    Actor,
    RequestStatus,
    ServiceRequest,
)

# System-driven steps (no acting user)
CLOSE_BIDDING = "close-bidding"
EXPIRE = "expire"


class TransitionRule(NamedTuple):
    from_statuses: frozenset[RequestStatus]
    to_status: RequestStatus
    event_type: str


TRANSITION_RULES: dict[str, TransitionRule] = {
    "submit-for-review": TransitionRule(
        frozenset({RequestStatus.DRAFT}), RequestStatus.IN_REVIEW, "RequestSubmitted"
    ),
    "rp-approve": TransitionRule(
        frozenset({RequestStatus.IN_REVIEW}),
        RequestStatus.APPROVED_FOR_SUBMISSION,
        "RequestApproved",
    ),
    "rp-reject": TransitionRule(
        frozenset({RequestStatus.IN_REVIEW}), RequestStatus.REJECTED, "RequestRejected"
    ),
    "submit-for-bidding": TransitionRule(
        frozenset({RequestStatus.APPROVED_FOR_SUBMISSION}),
        RequestStatus.BIDDING,
        "BiddingStarted",
    ),
    CLOSE_BIDDING: TransitionRule(
        frozenset({RequestStatus.BIDDING}), RequestStatus.BID_EVALUATION, "BiddingClosed"
    ),
    "rp-recommend-offer": TransitionRule(
        frozenset({RequestStatus.BIDDING, RequestStatus.BID_EVALUATION}),
        RequestStatus.RECOMMENDED,
        "OfferRecommended",
    ),
    "send-to-po": TransitionRule(
        frozenset({RequestStatus.RECOMMENDED}), RequestStatus.SENT_TO_PO, "SentToPO"
    ),
    "order": TransitionRule(
        frozenset({RequestStatus.SENT_TO_PO}), RequestStatus.ORDERED, "Ordered"
    ),
    "reactivate": TransitionRule(
        frozenset({RequestStatus.EXPIRED, RequestStatus.REJECTED}),
        RequestStatus.DRAFT,
        "Reactivated",
    ),
    EXPIRE: TransitionRule(
        frozenset({RequestStatus.BIDDING}), RequestStatus.EXPIRED, "Expired"
    ),
}


class TransitionPlan(NamedTuple):
    """A validated transition ready to be applied by compare-and-set"""

    action: str
    expected_status: RequestStatus
    target_status: RequestStatus
    event_type: str
    patch: dict[str, Any]


def allowed_actions(status: RequestStatus) -> list[str]:
    """Actions (including system steps) whose precondition holds for the status"""
    return [
        action for action, rule in TRANSITION_RULES.items() if status in rule.from_statuses
    ]


def bidding_deadline(request: ServiceRequest) -> datetime | None:
    """End of the bidding window (None until bidding started)"""
    if request.bidding_started_at is None:
        return None
    return request.bidding_started_at + timedelta(days=request.bidding_cycle_days)


def is_bidding_window_elapsed(request: ServiceRequest, now: datetime) -> bool:
    """
    True when a BIDDING request's window has strictly passed

    An offer arriving exactly at the deadline is still inside the window.
    """
    if request.status != RequestStatus.BIDDING:
        return False
    deadline = bidding_deadline(request)
    return deadline is not None and now > deadline


def _check_precondition(request: ServiceRequest, action: str) -> TransitionRule:
    rule = TRANSITION_RULES[action]
    if request.status not in rule.from_statuses:
        allowed = ", ".join(sorted(s.value for s in rule.from_statuses))
        raise InvalidTransition(
            request_id=request.request_id,
            current_status=request.status.value,
            attempted_status=rule.to_status.value,
            action=action,
            reason=f"requires status {allowed}",
        )
    return rule


def plan_transition(
    request: ServiceRequest,
    action: str,
    now: datetime,
    actor: Actor | None = None,
    *,
    reason: str | None = None,
    offer_id: str | None = None,
    order_id: str | None = None,
) -> TransitionPlan:
    """
    Validate a transition and compute its audit patch

    Role and ownership are checked by the permission model before this is
    called; this function only owns status preconditions.

    Args:
        request: Current request state
        action: Key of TRANSITION_RULES
        now: Current time from the injected clock
        actor: Acting identity (None for system steps)
        reason: Rejection reason (rp-reject)
        offer_id: Recommended offer (rp-recommend-offer) or ordered offer (order)
        order_id: Order reference (order)

    Returns:
        TransitionPlan with the patch to write

    Raises:
        InvalidTransition: If the status precondition (or an action-specific
            precondition such as the ordered offer) does not hold
    """
    rule = _check_precondition(request, action)
    username = actor.username if actor else None

    patch: dict[str, Any] = {"status": rule.to_status, "updated_at": now}

    if action == "submit-for-review":
        patch.update(submitted_at=now, submitted_by=username)

    elif action == "rp-approve":
        patch.update(rp_approved_at=now, rp_approved_by=username)

    elif action == "rp-reject":
        patch.update(
            rp_rejected_at=now,
            rp_rejected_by=username,
            rp_rejection_reason=(reason or "").strip() or None,
        )

    elif action == "submit-for-bidding":
        patch.update(
            bidding_started_at=now,
            bidding_started_by=username,
            bidding_round=request.bidding_round + 1,
        )

    elif action == CLOSE_BIDDING:
        patch.update(bid_evaluation_at=now)

    elif action == "rp-recommend-offer":
        if not offer_id:
            raise InvalidTransition(
                request.request_id,
                request.status.value,
                rule.to_status.value,
                action=action,
                reason="an offer must be selected",
            )
        patch.update(
            recommended_offer_id=offer_id, recommended_at=now, recommended_by=username
        )

    elif action == "send-to-po":
        if not request.recommended_offer_id:
            raise InvalidTransition(
                request.request_id,
                request.status.value,
                rule.to_status.value,
                action=action,
                reason="no recommended offer set",
            )
        patch.update(sent_to_po_at=now, sent_to_po_by=username)

    elif action == "order":
        if not offer_id or offer_id != request.recommended_offer_id:
            raise InvalidTransition(
                request.request_id,
                request.status.value,
                rule.to_status.value,
                action=action,
                reason=(
                    f"offer {offer_id or '<none>'} is not the recommended offer "
                    f"{request.recommended_offer_id}"
                ),
            )
        patch.update(ordered_at=now, ordered_by=username, order_id=order_id)

    elif action == "reactivate":
        patch.update({field: None for field in TRAIL_FIELDS})
        patch.update(
            recommended_offer_id=None, reactivated_at=now, reactivated_by=username
        )

    elif action == EXPIRE:
        patch.update(expired_at=now)

    return TransitionPlan(
        action=action,
        expected_status=request.status,
        target_status=rule.to_status,
        event_type=rule.event_type,
        patch=patch,
    )


def plan_window_elapsed(
    request: ServiceRequest,
    now: datetime,
    offers_count: int,
    policy: WorkflowPolicy,
) -> TransitionPlan | None:
    """
    Decide what an elapsed bidding window does to the request

    Returns:
        None while the window is open (or the request is not BIDDING);
        an EXPIRE plan, or a CLOSE_BIDDING plan when the policy evaluates
        requests that already hold offers
    """
    if not is_bidding_window_elapsed(request, now):
        return None
    if policy.window_elapsed_action == "EVALUATE_IF_OFFERS" and offers_count > 0:
        return plan_transition(request, CLOSE_BIDDING, now)
    return plan_transition(request, EXPIRE, now)


def quota_reached(request: ServiceRequest, offers_count: int) -> bool:
    """True when a quota is set and the current round has filled it"""
    return request.has_offer_quota() and offers_count >= request.max_offers
