"""
Workflow Policy - configurable business rules of the procurement workflow

Deployments differ on some rules (multiple offers per provider, what an
elapsed bidding window does to a request holding offers), so they are policy
fields here rather than hard-coded.
"""

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class WorkflowPolicy(BaseModel):
    """
    Workflow configuration parameters

    The defaults follow the transition table and the request form:
    a 7-day bidding cycle, at most 3 must-have and 5 nice-to-have criteria,
    and RP weights of 0.6 / 0.25 / 0.15 for price / delivery / quality.
    """

    policy_version: str = Field(
        default="1.0",
        description="Policy version for tracking changes over time",
    )

    # Request form
    default_bidding_cycle_days: int = Field(
        default=7,
        ge=1,
        le=365,
        description="Bidding window length used when a request does not set one",
    )

    max_must_have_criteria: int = Field(
        default=3,
        ge=0,
        description="Maximum number of must-have criteria per request",
    )

    max_nice_to_have_criteria: int = Field(
        default=5,
        ge=0,
        description="Maximum number of nice-to-have criteria per request",
    )

    default_language_level: str = Field(
        default="B2",
        description="CEFR level assumed when a required language has no level",
    )

    # Offer intake
    allow_multiple_offers_per_provider: bool = Field(
        default=True,
        description="Whether one provider may submit several offers per bidding round",
    )

    max_offers_per_provider: int | None = Field(
        default=None,
        ge=1,
        description="Cap on offers per provider per round (None = no cap)",
    )

    # Bidding window
    window_elapsed_action: Literal["EXPIRE", "EVALUATE_IF_OFFERS"] = Field(
        default="EXPIRE",
        description=(
            "What an elapsed bidding window does: EXPIRE always expires the request, "
            "EVALUATE_IF_OFFERS moves it to BID_EVALUATION when it holds offers"
        ),
    )

    # Evaluation
    default_weights: dict[str, float] = Field(
        default={"price": 0.6, "delivery": 0.25, "quality": 0.15},
        description="Weights proposed for a new evaluation",
    )

    evaluation_statuses: list[str] = Field(
        default=["BIDDING", "BID_EVALUATION"],
        description="Request statuses in which the RP may save an evaluation",
    )

    total_score_decimals: int = Field(
        default=4,
        ge=0,
        le=10,
        description="Decimal places kept when persisting total scores",
    )

    model_config = {
        "frozen": True,
        "extra": "forbid",
        "json_schema_extra": {
            "description": "Configurable business rules of the procurement workflow"
        },
    }

    @field_validator("default_weights")
    @classmethod
    def validate_default_weights(cls, v: dict[str, float]) -> dict[str, float]:
        """Validate default weights cover the three criteria and are non-negative"""
        missing = {"price", "delivery", "quality"} - set(v)
        if missing:
            raise ValueError(f"Default weights missing: {sorted(missing)}")
        if any(w < 0 for w in v.values()):
            raise ValueError("Default weights must be non-negative")
        return v

    def provider_offer_limit(self) -> int | None:
        """
        Effective per-provider offer cap for one bidding round

        Returns:
            1 when multiple offers are disallowed, the configured cap otherwise
            (None = unlimited)
        """
        if not self.allow_multiple_offers_per_provider:
            return 1
        return self.max_offers_per_provider

    @classmethod
    def from_json_file(cls, path: str | Path) -> "WorkflowPolicy":
        """Load a policy from a JSON document (unknown keys are rejected)"""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.model_validate(data)
