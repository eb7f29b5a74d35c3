"""
Service Procurement Commands

Commands express intentions to change a request. Field-level shape is checked
here by pydantic; business rules (criteria limits, dates, quota) are checked
by the invariants module when the orchestrator handles the command.
"""

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from service_procurement.procurement.models import RequestType, RoleDemand


class LanguageSpec(BaseModel):
    """Required language; a missing level takes the policy default"""

    language: str = Field(..., description="Language name")
    level: str | None = Field(default=None, description="CEFR level (A1..C2)")


class CreateServiceRequest(BaseModel):
    """
    Draft a new service request

    The caller becomes the immutable owner. bidding_cycle_days falls back to
    the policy default when omitted.
    """

    title: str = Field(..., description="Request title")
    type: RequestType = Field(default=RequestType.SINGLE, description="Engagement type")
    roles: list[RoleDemand] = Field(default_factory=list, description="Role demand rows")
    required_languages: list[LanguageSpec] = Field(default_factory=list)
    must_have_criteria: list[str] = Field(default_factory=list)
    nice_to_have_criteria: list[str] = Field(default_factory=list)
    max_offers: int = Field(default=0, description="Offer quota (<= 0 = unlimited)")
    max_accepted_offers: int | None = Field(default=None)
    bidding_cycle_days: int | None = Field(default=None, description="Bidding window")

    project_id: str | None = None
    project_name: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    performance_location: str | None = None
    task_description: str = ""
    further_information: str = ""


class UpdateServiceRequest(BaseModel):
    """
    Change fields of a DRAFT request

    Only fields explicitly set are applied (model_fields_set).
    """

    title: str | None = None
    type: RequestType | None = None
    roles: list[RoleDemand] | None = None
    required_languages: list[LanguageSpec] | None = None
    must_have_criteria: list[str] | None = None
    nice_to_have_criteria: list[str] | None = None
    max_offers: int | None = None
    max_accepted_offers: int | None = None
    bidding_cycle_days: int | None = None

    project_id: str | None = None
    project_name: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    performance_location: str | None = None
    task_description: str | None = None
    further_information: str | None = None

    def changes(self) -> dict[str, Any]:
        """Explicitly set fields only"""
        return {name: getattr(self, name) for name in self.model_fields_set}


class SubmitOffer(BaseModel):
    """Provider bid against a BIDDING request"""

    price: Decimal = Field(..., ge=0, description="Total offered price")
    currency: str = Field(default="EUR", description="ISO currency code")
    delivery_days: int | None = Field(default=None, ge=0)
    delivery_risk: str = Field(default="", description="LOW, MEDIUM, HIGH, ...")
    provider_name: str = Field(default="", description="Provider company name")
    roles_provided: list[RoleDemand] = Field(default_factory=list)
    notes: str = ""
    offer_title: str | None = None
    evaluation_summary: str | None = None


class OfferScoreSpec(BaseModel):
    """
    RP sub-scores for one offer

    Values are clamped into [0, 10] by the engine; non-numeric input is
    rejected there with a ValidationError naming the field.
    """

    offer_id: str = Field(..., description="Scored offer")
    price: Any = Field(default=0, description="Price score")
    delivery: Any = Field(default=0, description="Delivery score")
    quality: Any = Field(default=0, description="Quality score")
    notes: str = ""


class SaveEvaluation(BaseModel):
    """
    Upsert the RP evaluation of a request

    total_score is never accepted; it is recomputed on every save.
    """

    weights: dict[str, Any] | None = Field(
        default=None, description="Raw weights for price/delivery/quality"
    )
    comment: str = ""
    recommended_offer_id: str | None = None
    offers: list[OfferScoreSpec] = Field(default_factory=list)

    def scores_by_offer(self) -> dict[str, OfferScoreSpec]:
        """Scores keyed by offer id (last row wins on duplicates)"""
        return {row.offer_id: row for row in self.offers}
