"""
Service Request Invariants

Pure validation functions that enforce the request form rules.
All raise ValidationError naming the offending field, so the orchestrator can
reject a command before anything is written.
"""

from datetime import date
from typing import Any

from service_procurement.kernel.errors import OfferNotFound, ValidationError
from service_procurement.kernel.policy import WorkflowPolicy
from service_procurement.procurement.models import (
    LanguageRequirement,
    Offer,
    RoleDemand,
    ServiceRequest,
)


# ============================================================================
# Request Form Validation
# ============================================================================


def validate_title(title: str | None) -> str:
    """
    Validate request title is non-empty

    Returns:
        Stripped title

    Raises:
        ValidationError: If title missing or blank
    """
    if title is None or not str(title).strip():
        raise ValidationError("Request title cannot be empty", field="title")
    return str(title).strip()


def validate_criteria_limits(
    must_have: list[str], nice_to_have: list[str], policy: WorkflowPolicy
) -> None:
    """
    Validate criteria lists stay within the form limits

    Args:
        must_have: Must-have criteria
        nice_to_have: Nice-to-have criteria
        policy: Workflow policy holding the limits

    Raises:
        ValidationError: If either list is too long or holds blank entries
    """
    if len(must_have) > policy.max_must_have_criteria:
        raise ValidationError(
            f"At most {policy.max_must_have_criteria} must-have criteria allowed, "
            f"got {len(must_have)}",
            field="must_have_criteria",
        )
    if len(nice_to_have) > policy.max_nice_to_have_criteria:
        raise ValidationError(
            f"At most {policy.max_nice_to_have_criteria} nice-to-have criteria "
            f"allowed, got {len(nice_to_have)}",
            field="nice_to_have_criteria",
        )
    for field_name, criteria in (
        ("must_have_criteria", must_have),
        ("nice_to_have_criteria", nice_to_have),
    ):
        if any(not str(c).strip() for c in criteria):
            raise ValidationError("Criteria cannot be blank", field=field_name)


def validate_date_range(start_date: date | None, end_date: date | None) -> None:
    """
    Validate the engagement period is not inverted

    Raises:
        ValidationError: If end_date is before start_date
    """
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ValidationError(
            f"End date {end_date} is before start date {start_date}",
            field="end_date",
        )


def validate_bidding_cycle_days(days: int) -> None:
    """
    Validate bidding window length

    Raises:
        ValidationError: If days < 1
    """
    if days < 1:
        raise ValidationError(
            f"Bidding cycle must be at least 1 day, got {days}",
            field="bidding_cycle_days",
        )


def validate_offer_quota(max_offers: int, max_accepted_offers: int | None) -> None:
    """
    Validate the offer quota pair

    max_offers <= 0 means unlimited. With a positive quota, max_accepted_offers
    cannot exceed it.

    Raises:
        ValidationError: If max_accepted_offers exceeds a positive max_offers
    """
    if max_accepted_offers is not None and max_accepted_offers < 0:
        raise ValidationError(
            "Max accepted offers cannot be negative", field="max_accepted_offers"
        )
    if max_offers > 0 and max_accepted_offers is not None and max_accepted_offers > max_offers:
        raise ValidationError(
            f"Max accepted offers ({max_accepted_offers}) exceeds max offers ({max_offers})",
            field="max_accepted_offers",
        )


def apply_language_defaults(
    languages: list[Any], policy: WorkflowPolicy
) -> list[LanguageRequirement]:
    """Build language requirements, filling blank levels with the policy default"""
    result = []
    for lang in languages:
        data = lang if isinstance(lang, dict) else lang.model_dump()
        if not str(data.get("language") or "").strip():
            raise ValidationError("Language cannot be empty", field="required_languages")
        level = data.get("level") or policy.default_language_level
        result.append(LanguageRequirement(language=data.get("language", ""), level=level))
    return result


def validate_request_fields(fields: dict[str, Any], policy: WorkflowPolicy) -> None:
    """
    Validate a full set of request form fields

    Used for both create (all fields) and update (merged current + changes).

    Raises:
        ValidationError: On the first violated rule
    """
    validate_title(fields.get("title"))
    validate_criteria_limits(
        list(fields.get("must_have_criteria") or []),
        list(fields.get("nice_to_have_criteria") or []),
        policy,
    )
    validate_date_range(fields.get("start_date"), fields.get("end_date"))
    validate_bidding_cycle_days(int(fields.get("bidding_cycle_days", 1)))
    validate_offer_quota(
        int(fields.get("max_offers") or 0), fields.get("max_accepted_offers")
    )
    for row in fields.get("roles") or []:
        if isinstance(row, RoleDemand):
            continue
        if not isinstance(row, dict) or not str(row.get("role_name", "")).strip():
            raise ValidationError("Every role row needs a role name", field="roles")


# ============================================================================
# Offer & Evaluation Validation
# ============================================================================


def validate_offer_belongs_to_request(
    offer: Offer | None, offer_id: str, request: ServiceRequest
) -> Offer:
    """
    Validate an offer exists and was submitted against this request

    Returns:
        The offer

    Raises:
        OfferNotFound: If the offer is missing or belongs to another request
    """
    if offer is None or offer.request_id != request.request_id:
        raise OfferNotFound(offer_id, request.request_id)
    return offer
