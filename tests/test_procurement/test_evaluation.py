"""
Evaluation Engine Tests

Tests for weighted scoring: clamping, weight normalization, rounding, stable
ranking and evaluation document assembly.
"""

import pytest

from service_procurement.kernel.errors import OfferNotFound, ValidationError
from service_procurement.procurement.evaluation import (
    OfferScores,
    build_evaluation,
    clamp_score,
    coerce_scores,
    coerce_weights,
    compute_total_score,
    normalize_weights,
    rank_offers,
    round_total,
)
from service_procurement.procurement.models import EvaluationWeights
from tests.helpers import T0, make_offer


@pytest.fixture
def offers():
    return [
        make_offer("o1", provider_username="sp.acme", price="50000"),
        make_offer("o2", provider_username="sp.globex", price="42000"),
        make_offer("o3", provider_username="sp.initech", price="61000"),
    ]


class TestScores:
    @pytest.mark.parametrize(
        "raw,expected",
        [(None, 0.0), (5, 5.0), ("7.5", 7.5), (-3, 0.0), (12, 10.0), (10, 10.0)],
    )
    def test_clamp_score(self, raw, expected):
        assert clamp_score(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", float("nan"), True, [1]])
    def test_non_numeric_scores_rejected(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            clamp_score(raw, "score_quality")
        assert exc_info.value.field == "score_quality"

    def test_coerce_scores_from_mapping_and_object(self):
        class Row:
            price = 11
            delivery = "4"
            quality = None
            notes = "fast"

        assert coerce_scores({"price": 8, "delivery": 7, "quality": 9}) == OfferScores(8, 7, 9)
        assert coerce_scores(Row()) == OfferScores(10.0, 4.0, 0.0, "fast")
        assert coerce_scores(None) == OfferScores()


class TestWeights:
    def test_defaults_fill_missing_criteria(self):
        weights = coerce_weights({"price": 1}, {"price": 0.6, "delivery": 0.25, "quality": 0.15})
        assert weights == EvaluationWeights(price=1, delivery=0.25, quality=0.15)

    @pytest.mark.parametrize(
        "raw", [{"price": -1}, {"delivery": float("inf")}, {"quality": "heavy"}, {"price": False}]
    )
    def test_invalid_weights_rejected(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            coerce_weights(raw)
        assert exc_info.value.field.startswith("weights.")

    def test_normalization_is_scale_free(self):
        a = normalize_weights(EvaluationWeights(price=3, delivery=1, quality=1))
        b = normalize_weights(EvaluationWeights(price=0.6, delivery=0.2, quality=0.2))
        assert a == pytest.approx(b)

    def test_zero_weights_give_zero_total(self):
        zero = EvaluationWeights(price=0, delivery=0, quality=0)
        assert compute_total_score(OfferScores(8, 7, 9), zero) == 0.0


class TestTotals:
    def test_default_weights_example(self):
        total = compute_total_score(OfferScores(8, 7, 9), EvaluationWeights())
        assert total == pytest.approx(7.9)
        assert round_total(total) == 7.9

    def test_round_half_up_on_exact_value(self):
        # Both are exact in binary, where round() would go to even
        assert round_total(0.125, 2) == 0.13
        assert round_total(2.5, 0) == 3.0
        assert round_total(0.123456, 4) == 0.1235


class TestRanking:
    def test_rank_descending(self, offers):
        scores = {
            "o1": {"price": 5, "delivery": 5, "quality": 5},
            "o2": {"price": 9, "delivery": 8, "quality": 7},
            "o3": {"price": 2, "delivery": 9, "quality": 9},
        }

        ranked = rank_offers(offers, scores, EvaluationWeights())

        assert [r.offer.offer_id for r in ranked] == ["o2", "o1", "o3"]

    def test_missing_scores_count_as_zero(self, offers):
        ranked = rank_offers(offers, {"o3": {"price": 1}}, EvaluationWeights())

        assert ranked[0].offer.offer_id == "o3"
        assert [r.total for r in ranked[1:]] == [0.0, 0.0]

    def test_ties_keep_submission_order(self, offers):
        same = {"price": 6, "delivery": 6, "quality": 6}
        ranked = rank_offers(offers, {"o1": same, "o2": same, "o3": same}, EvaluationWeights())

        assert [r.offer.offer_id for r in ranked] == ["o1", "o2", "o3"]

    def test_scores_for_unknown_offer_rejected(self, offers):
        with pytest.raises(ValidationError) as exc_info:
            rank_offers(offers, {"o9": {"price": 5}}, EvaluationWeights())
        assert "o9" in str(exc_info.value)

    def test_ranking_is_idempotent(self, offers):
        scores = {"o1": {"price": 7}, "o2": {"delivery": 7}, "o3": {"quality": 7}}
        first = rank_offers(offers, scores, EvaluationWeights())
        second = rank_offers(offers, scores, EvaluationWeights())
        assert first == second


class TestBuildEvaluation:
    def test_rows_carry_rank_total_and_snapshot(self, offers):
        evaluation = build_evaluation(
            request_id="r1",
            bidding_round=1,
            offers=offers,
            scores={"o2": {"price": 8, "delivery": 7, "quality": 9, "notes": "solid"}},
            weights=EvaluationWeights(),
            evaluated_by="rp.bob",
            saved_at=T0,
            comment="Globex is cheapest",
            recommended_offer_id="o1",
        )

        top = evaluation.offers[0]
        assert top.offer_id == "o2"
        assert top.rank == 1
        assert top.total_score == 7.9
        assert top.provider_username == "sp.globex"
        assert str(top.price) == "42000"
        assert top.notes == "solid"
        assert [row.rank for row in evaluation.offers] == [1, 2, 3]
        # The planner's choice is kept even when it is not the top offer
        assert evaluation.recommended_offer_id == "o1"
        assert evaluation.top_offer_id() == "o2"

    def test_recommended_offer_must_be_in_round(self, offers):
        with pytest.raises(OfferNotFound):
            build_evaluation(
                request_id="r1",
                bidding_round=1,
                offers=offers,
                scores={},
                weights=EvaluationWeights(),
                evaluated_by="rp.bob",
                saved_at=T0,
                recommended_offer_id="o-unknown",
            )

    def test_empty_round(self):
        evaluation = build_evaluation(
            request_id="r1",
            bidding_round=1,
            offers=[],
            scores={},
            weights=EvaluationWeights(),
            evaluated_by="rp.bob",
            saved_at=T0,
        )
        assert evaluation.offers == []
        assert evaluation.top_offer_id() is None
