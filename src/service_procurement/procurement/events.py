"""
Service Procurement Events

Events are immutable facts about what happened to a request. Each workflow
action emits exactly one; the payload models below define what each event
carries inside the kernel Event envelope.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


# ============================================================================
# Request Form Events
# ============================================================================


class RequestCreated(BaseModel):
    """Service request drafted by its project manager"""

    title: str = Field(..., description="Request title")
    type: str = Field(..., description="Engagement type")
    created_by: str = Field(..., description="Owning PM")
    max_offers: int = Field(..., description="Offer quota (<= 0 = unlimited)")
    bidding_cycle_days: int = Field(..., description="Bidding window in days")


class RequestUpdated(BaseModel):
    """DRAFT request fields changed by the owner"""

    changed_fields: list[str] = Field(..., description="Names of changed fields")


class RequestDeleted(BaseModel):
    """DRAFT request removed by the owner"""

    title: str = Field(..., description="Title of the removed request")
    deleted_by: str = Field(..., description="Owner who deleted it")


# ============================================================================
# Lifecycle Events
# ============================================================================


class RequestSubmitted(BaseModel):
    """Request sent to resource planning for review"""

    submitted_at: datetime
    submitted_by: str


class RequestApproved(BaseModel):
    """RP approved the request for bidding"""

    rp_approved_at: datetime
    rp_approved_by: str


class RequestRejected(BaseModel):
    """RP rejected the request"""

    rp_rejected_at: datetime
    rp_rejected_by: str
    rp_rejection_reason: str | None = None


class BiddingStarted(BaseModel):
    """Request opened for provider offers"""

    bidding_started_at: datetime
    bidding_started_by: str
    bidding_round: int = Field(..., description="Round opened by this action")
    deadline: datetime = Field(..., description="Window end (inclusive)")
    max_offers: int = Field(..., description="Offer quota for the round")


class OfferSubmitted(BaseModel):
    """
    Provider offer appended to a BIDDING request

    bidding_closed is True when this offer filled the quota and moved the
    request to BID_EVALUATION.
    """

    offer_id: str
    provider_username: str
    provider_name: str = ""
    price: Decimal
    currency: str
    bidding_round: int
    offers_count: int = Field(..., description="Offers in the round after insertion")
    bidding_closed: bool = False


class BiddingClosed(BaseModel):
    """Bidding window closed into evaluation (elapsed window with offers)"""

    bid_evaluation_at: datetime
    offers_count: int
    trigger: str = Field(..., description="quota_reached or window_elapsed")


class EvaluationSaved(BaseModel):
    """RP evaluation upserted"""

    evaluated_by: str
    bidding_round: int
    weights: dict[str, float]
    recommended_offer_id: str | None = None
    top_offer_id: str | None = None
    offers_count: int


class OfferRecommended(BaseModel):
    """RP recommended one offer"""

    recommended_offer_id: str
    recommended_at: datetime
    recommended_by: str


class SentToPO(BaseModel):
    """Owner forwarded the recommendation to procurement"""

    recommended_offer_id: str
    sent_to_po_at: datetime
    sent_to_po_by: str


class Ordered(BaseModel):
    """Procurement officer placed the order"""

    offer_id: str
    order_id: str
    ordered_at: datetime
    ordered_by: str


class Reactivated(BaseModel):
    """EXPIRED or REJECTED request returned to DRAFT"""

    previous_status: str
    reactivated_at: datetime
    reactivated_by: str


class Expired(BaseModel):
    """Bidding window elapsed without reaching evaluation"""

    expired_at: datetime
    deadline: datetime
    offers_count: int


EVENT_PAYLOADS: dict[str, type[BaseModel]] = {
    "RequestCreated": RequestCreated,
    "RequestUpdated": RequestUpdated,
    "RequestDeleted": RequestDeleted,
    "RequestSubmitted": RequestSubmitted,
    "RequestApproved": RequestApproved,
    "RequestRejected": RequestRejected,
    "BiddingStarted": BiddingStarted,
    "OfferSubmitted": OfferSubmitted,
    "BiddingClosed": BiddingClosed,
    "EvaluationSaved": EvaluationSaved,
    "OfferRecommended": OfferRecommended,
    "SentToPO": SentToPO,
    "Ordered": Ordered,
    "Reactivated": Reactivated,
    "Expired": Expired,
}


def build_payload(event_type: str, **data: Any) -> dict[str, Any]:
    """Validate payload data against its event model and serialize it"""
    model = EVENT_PAYLOADS[event_type]
    return model(**data).model_dump(mode="json")
