"""
Offer Evaluation & Ranking Engine

Weighted multi-criteria scoring of offers. Pure and deterministic.

Each offer gets three sub-scores in [0, 10] (price, delivery, quality). Raw
weights are normalized by their sum, so 3/1/1 and 0.6/0.2/0.2 rank identically.
Ranking uses full-precision totals; only the persisted total is rounded.
The engine never picks the recommendation: the resource planner's choice is
carried through untouched.
"""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, NamedTuple

from service_procurement.kernel.errors import OfferNotFound, ValidationError
from service_procurement.procurement.models import (
    Evaluation,
    EvaluationRow,
    EvaluationWeights,
    Offer,
    Role,
)

SCORE_MIN = 0.0
SCORE_MAX = 10.0
CRITERIA = ("price", "delivery", "quality")


class OfferScores(NamedTuple):
    """Clamped sub-scores for one offer"""

    price: float = 0.0
    delivery: float = 0.0
    quality: float = 0.0
    notes: str = ""


class RankedOffer(NamedTuple):
    offer: Offer
    scores: OfferScores
    total: float


def clamp_score(value: Any, field: str = "score") -> float:
    """
    Clamp a sub-score into [0, 10]

    None counts as 0. Numeric strings are accepted.

    Raises:
        ValidationError: If the value is not a number or is NaN
    """
    if value is None:
        return SCORE_MIN
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)
    if math.isnan(number):
        raise ValidationError(f"{field} must be a number, got NaN", field=field)
    return max(SCORE_MIN, min(SCORE_MAX, number))


def coerce_weights(
    raw: EvaluationWeights | Mapping[str, Any] | None,
    default: Mapping[str, float] | None = None,
) -> EvaluationWeights:
    """
    Build validated weights from caller input

    Missing criteria fall back to the default weights.

    Raises:
        ValidationError: If a weight is non-numeric, NaN, infinite or negative
    """
    if isinstance(raw, EvaluationWeights):
        return raw

    base = dict(default or EvaluationWeights().model_dump())
    values: dict[str, float] = {}
    for name in CRITERIA:
        value = (raw or {}).get(name, base.get(name))
        if isinstance(value, bool):
            raise ValidationError(f"Weight {name} must be a number", field=f"weights.{name}")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError(
                f"Weight {name} must be a number, got {value!r}", field=f"weights.{name}"
            )
        if not math.isfinite(number):
            raise ValidationError(
                f"Weight {name} must be finite, got {number}", field=f"weights.{name}"
            )
        if number < 0:
            raise ValidationError(
                f"Weight {name} must be non-negative, got {number}",
                field=f"weights.{name}",
            )
        values[name] = number
    return EvaluationWeights(**values)


def normalize_weights(weights: EvaluationWeights) -> tuple[float, float, float]:
    """
    Normalize weights by their sum

    A zero sum is treated as 1, so all-zero weights give a total of 0
    for every offer instead of dividing by zero.
    """
    total = weights.total()
    if total <= 0:
        total = 1.0
    return (weights.price / total, weights.delivery / total, weights.quality / total)


def compute_total_score(scores: OfferScores, weights: EvaluationWeights) -> float:
    """
    Full-precision weighted total

    Example:
        >>> round_total(compute_total_score(OfferScores(8, 7, 9), EvaluationWeights()))
        7.9
    """
    wp, wd, wq = normalize_weights(weights)
    return scores.price * wp + scores.delivery * wd + scores.quality * wq


def round_total(total: float, decimals: int = 4) -> float:
    """Round half-up on the exact binary value (matches JavaScript toFixed)"""
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(total).quantize(quantum, rounding=ROUND_HALF_UP))


def coerce_scores(raw: OfferScores | Mapping[str, Any] | Any | None) -> OfferScores:
    """
    Clamp caller-supplied scores for one offer

    Accepts an OfferScores, a mapping with price/delivery/quality/notes keys,
    or any object exposing those attributes.
    """
    if raw is None:
        return OfferScores()
    if isinstance(raw, OfferScores):
        source: Mapping[str, Any] = raw._asdict()
    elif isinstance(raw, Mapping):
        source = raw
    else:
        source = {
            name: getattr(raw, name, None) for name in (*CRITERIA, "notes")
        }
    return OfferScores(
        price=clamp_score(source.get("price"), "score_price"),
        delivery=clamp_score(source.get("delivery"), "score_delivery"),
        quality=clamp_score(source.get("quality"), "score_quality"),
        notes=str(source.get("notes") or ""),
    )


def rank_offers(
    offers: list[Offer],
    scores: Mapping[str, Any],
    weights: EvaluationWeights,
) -> list[RankedOffer]:
    """
    Score and rank offers

    Offers without submitted scores default to 0/0/0. Sorting is stable, so
    tied totals keep the given (submission) order.

    Args:
        offers: Offers of the request, in submission order
        scores: Mapping offer_id -> scores for that offer
        weights: Criterion weights

    Returns:
        RankedOffer list, best first

    Raises:
        ValidationError: If scores reference an offer not in `offers`,
            or a score is non-numeric
    """
    known = {offer.offer_id for offer in offers}
    unknown = sorted(set(scores) - known)
    if unknown:
        raise ValidationError(
            f"Scores submitted for unknown offers: {', '.join(unknown)}",
            field="offers",
        )

    ranked = []
    for offer in offers:
        offer_scores = coerce_scores(scores.get(offer.offer_id))
        ranked.append(
            RankedOffer(offer, offer_scores, compute_total_score(offer_scores, weights))
        )
    ranked.sort(key=lambda r: r.total, reverse=True)
    return ranked


def build_evaluation_rows(
    ranked: list[RankedOffer], decimals: int = 4
) -> list[EvaluationRow]:
    """Turn a ranking into persisted rows with a frozen commercial snapshot"""
    rows = []
    for position, item in enumerate(ranked, start=1):
        offer = item.offer
        rows.append(
            EvaluationRow(
                offer_id=offer.offer_id,
                rank=position,
                provider_username=offer.provider_username,
                provider_name=offer.provider_name,
                offer_title=offer.offer_title,
                price=offer.price,
                currency=offer.currency,
                delivery_days=offer.delivery_days,
                delivery_risk=offer.delivery_risk,
                score_price=item.scores.price,
                score_delivery=item.scores.delivery,
                score_quality=item.scores.quality,
                total_score=round_total(item.total, decimals),
                notes=item.scores.notes,
            )
        )
    return rows


def build_evaluation(
    *,
    request_id: str,
    bidding_round: int,
    offers: list[Offer],
    scores: Mapping[str, Any],
    weights: EvaluationWeights,
    evaluated_by: str,
    saved_at: Any,
    comment: str = "",
    recommended_offer_id: str | None = None,
    decimals: int = 4,
) -> Evaluation:
    """
    Compute a complete evaluation document

    Totals are always recomputed here; any total supplied by a caller is
    ignored. The recommendation is kept as given.

    Raises:
        ValidationError: On bad scores or scores for unknown offers
        OfferNotFound: If recommended_offer_id is not one of `offers`
    """
    recommended = (recommended_offer_id or "").strip() or None
    if recommended is not None and recommended not in {o.offer_id for o in offers}:
        raise OfferNotFound(recommended, request_id)

    ranked = rank_offers(offers, scores, weights)
    return Evaluation(
        request_id=request_id,
        evaluator_role=Role.RESOURCE_PLANNER,
        evaluated_by=evaluated_by,
        bidding_round=max(bidding_round, 1),
        weights=weights,
        comment=comment,
        recommended_offer_id=recommended,
        offers=build_evaluation_rows(ranked, decimals),
        saved_at=saved_at,
    )
