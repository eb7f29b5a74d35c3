"""
Service Procurement Domain Models

Service requests raised by project managers, offers submitted by service
providers, and the resource planner's weighted evaluation of those offers.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class RequestStatus(str, Enum):
    """
    Service request lifecycle states

    Finite state machine:
    DRAFT → IN_REVIEW → APPROVED_FOR_SUBMISSION → BIDDING → BID_EVALUATION
          → RECOMMENDED → SENT_TO_PO → ORDERED
    IN_REVIEW → REJECTED, BIDDING → EXPIRED, EXPIRED/REJECTED → DRAFT (reactivate)
    """

    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    APPROVED_FOR_SUBMISSION = "APPROVED_FOR_SUBMISSION"
    BIDDING = "BIDDING"
    BID_EVALUATION = "BID_EVALUATION"
    RECOMMENDED = "RECOMMENDED"
    SENT_TO_PO = "SENT_TO_PO"
    ORDERED = "ORDERED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class RequestType(str, Enum):
    """Kind of engagement a request asks for"""

    SINGLE = "SINGLE"
    MULTI = "MULTI"
    TEAM = "TEAM"
    WORK_CONTRACT = "WORK_CONTRACT"


class Role(str, Enum):
    """Actor roles supplied by the identity provider"""

    PROJECT_MANAGER = "PROJECT_MANAGER"
    RESOURCE_PLANNER = "RESOURCE_PLANNER"
    PROCUREMENT_OFFICER = "PROCUREMENT_OFFICER"
    SERVICE_PROVIDER = "SERVICE_PROVIDER"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"


class Actor(BaseModel):
    """
    Identity of the caller for one workflow action

    Supplied by the external auth collaborator; never authenticated here.
    """

    user_id: str = Field(..., description="Stable user identifier")
    username: str = Field(..., description="Login name (used for ownership)")
    role: Role = Field(..., description="Role the user acts in")

    model_config = {"frozen": True}

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v: Any) -> Any:
        """Accept 'resource planner' / 'Resource_Planner' spellings"""
        if isinstance(v, str):
            return v.strip().upper().replace(" ", "_")
        return v

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Username cannot be empty")
        return v.strip()


class RoleDemand(BaseModel):
    """One row of requested (or provided) staffing"""

    role_name: str = Field(..., description="Requested role, e.g. 'Backend Developer'")
    domain: str | None = Field(default=None, description="Business or technical domain")
    technology: str | None = Field(default=None, description="Main technology")
    experience_level: str | None = Field(
        default=None, description="JUNIOR, MID, SENIOR, LEAD, EXPERT"
    )
    man_days: int | None = Field(default=None, ge=0, description="Effort in man-days")
    onsite_days: int | None = Field(default=None, ge=0, description="Days on site")
    number_of_employees: int | None = Field(
        default=None, ge=0, description="Headcount for this row"
    )
    required_competencies: list[str] = Field(
        default_factory=list, description="Competencies required for the role"
    )

    @field_validator("role_name")
    @classmethod
    def validate_role_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Role name cannot be empty")
        return v.strip()

    @field_validator("experience_level")
    @classmethod
    def normalize_experience_level(cls, v: str | None) -> str | None:
        return v.strip().upper() if v else v


class LanguageRequirement(BaseModel):
    """Required language with CEFR level"""

    language: str = Field(..., description="Language name")
    level: str = Field(default="B2", description="CEFR level (A1..C2)")

    @field_validator("language")
    @classmethod
    def validate_language(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Language cannot be empty")
        return v.strip()

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.strip().upper() if v and v.strip() else "B2"


# Audit fields cleared by reactivate (everything from submitted_at onward)
TRAIL_FIELDS = (
    "submitted_at",
    "submitted_by",
    "rp_approved_at",
    "rp_approved_by",
    "rp_rejected_at",
    "rp_rejected_by",
    "rp_rejection_reason",
    "bidding_started_at",
    "bidding_started_by",
    "bid_evaluation_at",
    "recommended_at",
    "recommended_by",
    "sent_to_po_at",
    "sent_to_po_by",
    "ordered_at",
    "ordered_by",
    "order_id",
    "expired_at",
    "reactivated_at",
    "reactivated_by",
)


class ServiceRequest(BaseModel):
    """
    Service request aggregate

    `status` is the single source of truth for control flow; the timestamp
    fields are an audit trail only.
    """

    request_id: str = Field(..., description="Unique request identifier")
    created_by: str = Field(..., description="Owning PM username (immutable)")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime | None = Field(default=None, description="Last write timestamp")

    title: str = Field(..., description="Request title")
    type: RequestType = Field(default=RequestType.SINGLE, description="Engagement type")
    roles: list[RoleDemand] = Field(default_factory=list, description="Role demand rows")
    required_languages: list[LanguageRequirement] = Field(
        default_factory=list, description="Required languages with level"
    )
    must_have_criteria: list[str] = Field(default_factory=list)
    nice_to_have_criteria: list[str] = Field(default_factory=list)
    max_offers: int = Field(default=0, description="Offer quota (<= 0 means unlimited)")
    max_accepted_offers: int | None = Field(default=None, ge=0)
    bidding_cycle_days: int = Field(default=7, ge=1, description="Bidding window in days")

    project_id: str | None = None
    project_name: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    performance_location: str | None = None
    task_description: str = ""
    further_information: str = ""

    status: RequestStatus = Field(default=RequestStatus.DRAFT)
    recommended_offer_id: str | None = None
    revision: int = Field(default=1, ge=1, description="Incremented on every write")
    bidding_round: int = Field(
        default=0, ge=0, description="Incremented on every submit-for-bidding"
    )

    # Audit trail
    submitted_at: datetime | None = None
    submitted_by: str | None = None
    rp_approved_at: datetime | None = None
    rp_approved_by: str | None = None
    rp_rejected_at: datetime | None = None
    rp_rejected_by: str | None = None
    rp_rejection_reason: str | None = None
    bidding_started_at: datetime | None = None
    bidding_started_by: str | None = None
    bid_evaluation_at: datetime | None = None
    recommended_at: datetime | None = None
    recommended_by: str | None = None
    sent_to_po_at: datetime | None = None
    sent_to_po_by: str | None = None
    ordered_at: datetime | None = None
    ordered_by: str | None = None
    order_id: str | None = None
    expired_at: datetime | None = None
    reactivated_at: datetime | None = None
    reactivated_by: str | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Request title cannot be empty")
        return v.strip()

    def is_owned_by(self, username: str) -> bool:
        return self.created_by == username

    def has_offer_quota(self) -> bool:
        return self.max_offers > 0

    def audit_trail(self) -> dict[str, Any]:
        """Non-empty audit fields in lifecycle order"""
        return {
            name: getattr(self, name)
            for name in TRAIL_FIELDS
            if getattr(self, name) is not None
        }


class Offer(BaseModel):
    """
    Supplier bid against a BIDDING request

    Write-once: never edited or deleted after insertion.
    """

    offer_id: str = Field(..., description="Unique offer identifier")
    request_id: str = Field(..., description="Parent request (immutable)")
    bidding_round: int = Field(default=1, ge=1, description="Round the offer belongs to")
    provider_username: str = Field(..., description="Submitting provider login")
    provider_name: str = Field(default="", description="Provider company name")

    price: Decimal = Field(..., ge=0, description="Total offered price")
    currency: str = Field(default="EUR", description="ISO currency code")
    delivery_days: int | None = Field(default=None, ge=0)
    delivery_risk: str = Field(default="", description="LOW, MEDIUM, HIGH, ...")
    roles_provided: list[RoleDemand] = Field(default_factory=list)
    notes: str = ""

    offer_title: str | None = None
    evaluation_summary: str | None = None
    submitted_at: datetime = Field(..., description="Submission timestamp")
    command_id: str | None = Field(default=None, description="Idempotency key of the submission")

    model_config = {"frozen": True}

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("Currency must be a 3-letter code")
        return v

    @field_validator("delivery_risk")
    @classmethod
    def normalize_delivery_risk(cls, v: str) -> str:
        return (v or "").strip().upper()


class EvaluationWeights(BaseModel):
    """Raw criterion weights (not required to sum to 1)"""

    price: float = Field(default=0.6, ge=0)
    delivery: float = Field(default=0.25, ge=0)
    quality: float = Field(default=0.15, ge=0)

    model_config = {"frozen": True}

    def total(self) -> float:
        return self.price + self.delivery + self.quality


class EvaluationRow(BaseModel):
    """
    One scored offer inside an evaluation

    Carries a frozen commercial snapshot so historical evaluations stay
    interpretable whatever happens to the live offer record.
    """

    offer_id: str
    rank: int = Field(..., ge=1, description="1-based position in the ranking")

    provider_username: str = ""
    provider_name: str = ""
    offer_title: str | None = None
    price: Decimal | None = None
    currency: str = "EUR"
    delivery_days: int | None = None
    delivery_risk: str = ""

    score_price: float = Field(..., ge=0, le=10)
    score_delivery: float = Field(..., ge=0, le=10)
    score_quality: float = Field(..., ge=0, le=10)
    total_score: float = Field(..., description="Derived; recomputed on every save")
    notes: str = ""


class Evaluation(BaseModel):
    """
    The RP's evaluation document for one request

    Upserted per (request_id, evaluator_role); each save replaces it.
    """

    request_id: str
    evaluator_role: Role = Role.RESOURCE_PLANNER
    evaluated_by: str
    bidding_round: int = Field(default=1, ge=1)
    weights: EvaluationWeights
    comment: str = ""
    recommended_offer_id: str | None = None
    offers: list[EvaluationRow] = Field(default_factory=list)
    saved_at: datetime

    def top_offer_id(self) -> str | None:
        """Highest-ranked offer (not necessarily the recommendation)"""
        return self.offers[0].offer_id if self.offers else None
