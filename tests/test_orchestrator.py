"""
Workflow Orchestrator Tests

End-to-end tests of the procurement workflow through its façade: the happy
path from draft to order, rejected actions leaving state untouched, bidding
window expiry, idempotent retries and racing callers.

Fun fact: Compare-and-swap was introduced as a hardware instruction on the
IBM System/370 in 1970 - the same single-step "check then write" protects
every status change here.
"""

import threading

import pytest

from service_procurement.kernel.errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    OfferNotFound,
    QuotaExceeded,
    RequestNotFound,
    RequestNotOpen,
    ValidationError,
)
from service_procurement.kernel.ids import SequentialIdFactory
from service_procurement.kernel.metrics import event_emit_failures_total
from service_procurement.kernel.policy import WorkflowPolicy
from service_procurement.orchestrator import WorkflowOrchestrator, create_workflow
from service_procurement.procurement.commands import (
    OfferScoreSpec,
    SaveEvaluation,
    UpdateServiceRequest,
)
from service_procurement.procurement.models import RequestStatus, Role
from service_procurement.procurement.store import InMemoryWorkflowStore
from tests.helpers import create_command, make_actor, offer_command, request_in_status


@pytest.fixture
def events(workflow):
    """Every event the orchestrator emits, in order"""
    received = []
    workflow.bus.subscribe_all(received.append)
    return received


@pytest.fixture
def bidding_request(orchestrator, pm, rp):
    return request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING, max_offers=3)


def event_types(events):
    return [e.event_type for e in events]


# =============================================================================
# Happy Path
# =============================================================================


def test_full_lifecycle_from_draft_to_order(workflow, orchestrator, events, pm, rp, po, sp, sp2):
    request = orchestrator.create_request(
        pm,
        create_command(
            "Kotlin backend team",
            max_offers=3,
            must_have_criteria=["Kotlin", "Spring"],
            required_languages=[{"language": "German"}],
        ),
    )
    assert request.status == RequestStatus.DRAFT
    assert request.created_by == "pm.alice"
    assert request.bidding_cycle_days == 7
    assert request.required_languages[0].level == "B2"

    rid = request.request_id
    assert orchestrator.submit_for_review(pm, rid).status == RequestStatus.IN_REVIEW
    assert orchestrator.rp_approve(rp, rid).status == RequestStatus.APPROVED_FOR_SUBMISSION
    bidding = orchestrator.submit_for_bidding(pm, rid)
    assert bidding.status == RequestStatus.BIDDING
    assert bidding.bidding_round == 1

    first = orchestrator.submit_offer(sp, rid, offer_command("50000"))
    second = orchestrator.submit_offer(sp2, rid, offer_command("42000"))
    third = orchestrator.submit_offer(sp, rid, offer_command("47000"))
    assert [first.offers_count, second.offers_count, third.offers_count] == [1, 2, 3]
    assert second.request.status == RequestStatus.BIDDING
    assert third.request.status == RequestStatus.BID_EVALUATION
    assert third.request.bid_evaluation_at is not None

    with pytest.raises(QuotaExceeded) as exc_info:
        orchestrator.submit_offer(sp2, rid, offer_command("1"))
    assert exc_info.value.max_offers == 3
    assert len(orchestrator.list_offers(rp, rid)) == 3

    evaluation = orchestrator.save_evaluation(
        rp,
        rid,
        SaveEvaluation(
            offers=[
                OfferScoreSpec(offer_id=first.offer.offer_id, price=5, delivery=9, quality=9),
                OfferScoreSpec(offer_id=second.offer.offer_id, price=8, delivery=7, quality=9),
            ],
            recommended_offer_id=second.offer.offer_id,
        ),
    )
    assert evaluation.offers[0].offer_id == second.offer.offer_id
    assert evaluation.offers[0].total_score == 7.9
    assert evaluation.offers[-1].offer_id == third.offer.offer_id
    assert orchestrator.get_request(pm, rid).status == RequestStatus.BID_EVALUATION

    recommended = orchestrator.rp_recommend_offer(rp, rid, second.offer.offer_id)
    assert recommended.status == RequestStatus.RECOMMENDED
    assert recommended.recommended_offer_id == second.offer.offer_id
    assert recommended.recommended_by == "rp.bob"

    sent = orchestrator.send_to_po(pm, rid)
    assert sent.status == RequestStatus.SENT_TO_PO

    ordered = orchestrator.order(po, rid, second.offer.offer_id, order_id="PO-2025-001")
    assert ordered.status == RequestStatus.ORDERED
    assert ordered.order_id == "PO-2025-001"
    assert ordered.ordered_by == "po.dave"

    assert event_types(events) == [
        "RequestCreated",
        "RequestSubmitted",
        "RequestApproved",
        "BiddingStarted",
        "OfferSubmitted",
        "OfferSubmitted",
        "OfferSubmitted",
        "EvaluationSaved",
        "OfferRecommended",
        "SentToPO",
        "Ordered",
    ]
    assert events[6].payload["bidding_closed"] is True
    assert all(e.owner_username == "pm.alice" for e in events)
    assert workflow.dashboard.by_status(RequestStatus.ORDERED) == [rid]
    assert {n["event_type"] for n in workflow.inbox.list_for(po)} == {"SentToPO"}


def test_each_write_bumps_revision(orchestrator, events, pm, rp):
    request = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING)

    assert request.revision == 4
    assert [e.revision for e in events] == [1, 2, 3, 4]


def test_unlimited_quota_never_closes_bidding(orchestrator, pm, rp, sp):
    request = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING, max_offers=0)

    for _ in range(5):
        result = orchestrator.submit_offer(sp, request.request_id, offer_command())

    assert result.offers_count == 5
    assert result.request.status == RequestStatus.BIDDING


def test_order_id_generated_when_omitted(orchestrator, bidding_request, pm, rp, po, sp):
    rid = bidding_request.request_id
    offer = orchestrator.submit_offer(sp, rid, offer_command()).offer
    orchestrator.rp_recommend_offer(rp, rid, offer.offer_id)
    orchestrator.send_to_po(pm, rid)

    ordered = orchestrator.order(po, rid, offer.offer_id)

    assert ordered.order_id.startswith("id-")


# =============================================================================
# Rejected Actions
# =============================================================================


def test_invalid_transition_leaves_request_unchanged(orchestrator, events, pm, rp):
    request = orchestrator.create_request(pm, create_command())
    before = len(events)

    with pytest.raises(InvalidTransition) as exc_info:
        orchestrator.rp_recommend_offer(rp, request.request_id, "o1")

    assert exc_info.value.current_status == "DRAFT"
    assert exc_info.value.attempted_status == "RECOMMENDED"
    stored = orchestrator.get_request(pm, request.request_id)
    assert stored.status == RequestStatus.DRAFT
    assert stored.revision == request.revision
    assert len(events) == before


def test_wrong_role_is_forbidden(orchestrator, pm, rp, sp):
    request = request_in_status(orchestrator, pm, rp, RequestStatus.IN_REVIEW)

    with pytest.raises(Forbidden):
        orchestrator.rp_approve(pm, request.request_id)
    with pytest.raises(Forbidden):
        orchestrator.create_request(rp, create_command())
    with pytest.raises(Forbidden):
        orchestrator.submit_offer(pm, request.request_id, offer_command())


def test_only_owner_drives_own_request(orchestrator, pm, other_pm, rp):
    request = orchestrator.create_request(pm, create_command())

    with pytest.raises(Forbidden):
        orchestrator.submit_for_review(other_pm, request.request_id)
    with pytest.raises(Forbidden):
        orchestrator.update_request(other_pm, request.request_id, UpdateServiceRequest(title="Mine"))


def test_unknown_request(orchestrator, pm):
    with pytest.raises(RequestNotFound):
        orchestrator.submit_for_review(pm, "does-not-exist")


def test_offer_on_request_not_bidding(orchestrator, pm, rp, sp):
    request = request_in_status(orchestrator, pm, rp, RequestStatus.APPROVED_FOR_SUBMISSION)

    with pytest.raises(RequestNotOpen):
        orchestrator.submit_offer(sp, request.request_id, offer_command())


def test_order_must_use_recommended_offer(orchestrator, bidding_request, pm, rp, po, sp, sp2):
    rid = bidding_request.request_id
    chosen = orchestrator.submit_offer(sp, rid, offer_command()).offer
    other = orchestrator.submit_offer(sp2, rid, offer_command()).offer
    orchestrator.rp_recommend_offer(rp, rid, chosen.offer_id)
    orchestrator.send_to_po(pm, rid)

    with pytest.raises(InvalidTransition):
        orchestrator.order(po, rid, other.offer_id)

    assert orchestrator.get_request(po, rid).status == RequestStatus.SENT_TO_PO


def test_recommend_unknown_or_foreign_offer(orchestrator, pm, rp, sp):
    first = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING)
    second = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING)
    foreign = orchestrator.submit_offer(sp, second.request_id, offer_command()).offer

    with pytest.raises(OfferNotFound):
        orchestrator.rp_recommend_offer(rp, first.request_id, "no-such-offer")
    with pytest.raises(OfferNotFound):
        orchestrator.rp_recommend_offer(rp, first.request_id, foreign.offer_id)


# =============================================================================
# Drafting
# =============================================================================


def test_update_draft(orchestrator, events, pm):
    request = orchestrator.create_request(pm, create_command())

    updated = orchestrator.update_request(
        pm, request.request_id, UpdateServiceRequest(title="Renamed", max_offers=5)
    )

    assert updated.title == "Renamed"
    assert updated.max_offers == 5
    assert updated.revision == 2
    assert events[-1].event_type == "RequestUpdated"
    assert events[-1].payload["changed_fields"] == ["max_offers", "title"]


def test_update_rules(orchestrator, pm, rp):
    request = orchestrator.create_request(pm, create_command())

    with pytest.raises(ValidationError):
        orchestrator.update_request(pm, request.request_id, UpdateServiceRequest())
    with pytest.raises(ValidationError):
        orchestrator.update_request(
            pm,
            request.request_id,
            UpdateServiceRequest(must_have_criteria=["a", "b", "c", "d"]),
        )

    orchestrator.submit_for_review(pm, request.request_id)
    with pytest.raises(InvalidTransition):
        orchestrator.update_request(pm, request.request_id, UpdateServiceRequest(title="Late"))


def test_create_validates_form(orchestrator, pm):
    with pytest.raises(ValidationError) as exc_info:
        orchestrator.create_request(
            pm, create_command(nice_to_have_criteria=["1", "2", "3", "4", "5", "6"])
        )
    assert exc_info.value.field == "nice_to_have_criteria"

    with pytest.raises(ValidationError):
        orchestrator.create_request(pm, create_command(bidding_cycle_days=0))


def test_delete_draft_only(workflow, orchestrator, events, pm, rp):
    draft = orchestrator.create_request(pm, create_command())
    in_review = request_in_status(orchestrator, pm, rp, RequestStatus.IN_REVIEW)

    orchestrator.delete_request(pm, draft.request_id)

    with pytest.raises(RequestNotFound):
        orchestrator.get_request(pm, draft.request_id)
    assert events[-1].event_type == "RequestDeleted"
    assert draft.request_id not in workflow.dashboard.requests
    with pytest.raises(InvalidTransition):
        orchestrator.delete_request(pm, in_review.request_id)


def test_list_requests_by_status(orchestrator, pm, rp, admin):
    draft = orchestrator.create_request(pm, create_command("A"))
    review = request_in_status(orchestrator, pm, rp, RequestStatus.IN_REVIEW)

    assert [r.request_id for r in orchestrator.list_requests(admin)] == [
        draft.request_id,
        review.request_id,
    ]
    in_review = orchestrator.list_requests(rp, status=RequestStatus.IN_REVIEW)
    assert [r.request_id for r in in_review] == [review.request_id]


# =============================================================================
# Rejection and Reactivation
# =============================================================================


def test_reject_then_reactivate_clears_trail(orchestrator, events, pm, rp):
    rejected = request_in_status(orchestrator, pm, rp, RequestStatus.REJECTED)
    assert rejected.rp_rejection_reason == "Budget not approved"
    assert events[-1].payload["rp_rejection_reason"] == "Budget not approved"

    draft = orchestrator.reactivate(pm, rejected.request_id)

    assert draft.status == RequestStatus.DRAFT
    assert draft.submitted_at is None
    assert draft.rp_rejected_by is None
    assert draft.rp_rejection_reason is None
    assert draft.reactivated_by == "pm.alice"
    assert events[-1].payload["previous_status"] == "REJECTED"


def test_reactivated_request_bids_in_a_fresh_round(orchestrator, test_time, pm, rp, sp):
    request = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING)
    rid = request.request_id
    old_offer = orchestrator.submit_offer(sp, rid, offer_command()).offer

    test_time.advance_days(8)
    assert orchestrator.get_request(pm, rid).status == RequestStatus.EXPIRED

    orchestrator.reactivate(pm, rid)
    orchestrator.submit_for_review(pm, rid)
    orchestrator.rp_approve(rp, rid)
    reopened = orchestrator.submit_for_bidding(pm, rid)

    assert reopened.bidding_round == 2
    assert orchestrator.list_offers(rp, rid) == []
    assert len(orchestrator.list_offers(rp, rid, all_rounds=True)) == 1
    with pytest.raises(OfferNotFound):
        orchestrator.rp_recommend_offer(rp, rid, old_offer.offer_id)


def test_reactivate_requires_expired_or_rejected(orchestrator, pm):
    request = orchestrator.create_request(pm, create_command())
    with pytest.raises(InvalidTransition):
        orchestrator.reactivate(pm, request.request_id)


# =============================================================================
# Bidding Window
# =============================================================================


def test_lazy_expiry_on_read(orchestrator, events, test_time, pm, rp, sp):
    request = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING)
    rid = request.request_id

    test_time.advance_days(7)
    assert orchestrator.get_request(pm, rid).status == RequestStatus.BIDDING

    test_time.advance_seconds(1)
    expired = orchestrator.get_request(pm, rid)

    assert expired.status == RequestStatus.EXPIRED
    assert expired.expired_at == test_time.now()
    assert events[-1].event_type == "Expired"
    assert events[-1].actor_username is None

    with pytest.raises(RequestNotOpen):
        orchestrator.submit_offer(sp, rid, offer_command())
    # Expiry is applied once
    orchestrator.get_request(pm, rid)
    assert event_types(events).count("Expired") == 1


def test_offer_after_deadline_expires_request(orchestrator, test_time, pm, rp, sp):
    request = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING)
    test_time.advance_days(10)

    with pytest.raises(RequestNotOpen):
        orchestrator.submit_offer(sp, request.request_id, offer_command())

    assert orchestrator.get_request(pm, request.request_id).status == RequestStatus.EXPIRED


def test_tick_expires_elapsed_requests_only(orchestrator, test_time, pm, rp):
    old = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING)
    test_time.advance_days(3)
    fresh = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING)
    test_time.advance_days(5)

    result = orchestrator.tick()

    assert result.inspected_count == 2
    assert result.expired_request_ids == [old.request_id]
    assert orchestrator.get_request(pm, fresh.request_id).status == RequestStatus.BIDDING
    assert orchestrator.tick().expired_request_ids == []


def test_expire_if_due(orchestrator, test_time, pm, rp):
    request = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING)
    test_time.advance_days(8)

    assert orchestrator.expire_if_due(request.request_id).status == RequestStatus.EXPIRED


def test_elapsed_window_with_offers_can_go_to_evaluation(store, test_time, pm, rp, sp):
    orchestrator = WorkflowOrchestrator(
        store,
        time_provider=test_time,
        policy=WorkflowPolicy(window_elapsed_action="EVALUATE_IF_OFFERS"),
    )
    with_offer = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING)
    empty = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING)
    orchestrator.submit_offer(sp, with_offer.request_id, offer_command())
    test_time.advance_days(8)

    result = orchestrator.tick()

    assert result.closed_request_ids == [with_offer.request_id]
    assert result.expired_request_ids == [empty.request_id]


# =============================================================================
# Evaluation
# =============================================================================


def test_evaluation_only_while_bidding_or_evaluating(orchestrator, pm, rp):
    request = request_in_status(orchestrator, pm, rp, RequestStatus.APPROVED_FOR_SUBMISSION)

    with pytest.raises(InvalidTransition):
        orchestrator.save_evaluation(rp, request.request_id, SaveEvaluation())


def test_evaluation_is_replaced_and_does_not_move_status(
    orchestrator, bidding_request, rp, sp, sp2
):
    rid = bidding_request.request_id
    a = orchestrator.submit_offer(sp, rid, offer_command()).offer
    b = orchestrator.submit_offer(sp2, rid, offer_command()).offer

    orchestrator.save_evaluation(
        rp, rid, SaveEvaluation(offers=[OfferScoreSpec(offer_id=a.offer_id, price=9)])
    )
    second = orchestrator.save_evaluation(
        rp,
        rid,
        SaveEvaluation(
            weights={"price": 0, "delivery": 0, "quality": 1},
            offers=[OfferScoreSpec(offer_id=b.offer_id, quality=15)],
            comment="Quality matters most",
        ),
    )

    stored = orchestrator.get_evaluation(rp, rid)
    assert stored == second
    assert stored.offers[0].offer_id == b.offer_id
    assert stored.offers[0].score_quality == 10.0
    assert stored.offers[0].total_score == 10.0
    assert stored.comment == "Quality matters most"
    assert orchestrator.get_request(rp, rid).status == RequestStatus.BIDDING


def test_evaluation_input_errors(orchestrator, bidding_request, rp, sp):
    rid = bidding_request.request_id
    offer = orchestrator.submit_offer(sp, rid, offer_command()).offer

    with pytest.raises(ValidationError):
        orchestrator.save_evaluation(rp, rid, SaveEvaluation(weights={"price": -1}))
    with pytest.raises(ValidationError):
        orchestrator.save_evaluation(
            rp, rid, SaveEvaluation(offers=[OfferScoreSpec(offer_id=offer.offer_id, price="x")])
        )
    with pytest.raises(ValidationError):
        orchestrator.save_evaluation(
            rp, rid, SaveEvaluation(offers=[OfferScoreSpec(offer_id="ghost", price=1)])
        )
    with pytest.raises(OfferNotFound):
        orchestrator.save_evaluation(rp, rid, SaveEvaluation(recommended_offer_id="ghost"))
    assert orchestrator.get_evaluation(rp, rid) is None


def test_preview_does_not_save(orchestrator, bidding_request, rp, admin, pm, sp):
    rid = bidding_request.request_id
    offer = orchestrator.submit_offer(sp, rid, offer_command()).offer

    rows = orchestrator.preview_ranking(
        admin, rid, scores={offer.offer_id: {"price": 8, "delivery": 7, "quality": 9}}
    )

    assert rows[0].total_score == 7.9
    assert orchestrator.get_evaluation(rp, rid) is None
    with pytest.raises(Forbidden):
        orchestrator.preview_ranking(pm, rid)


def test_offer_visibility_through_orchestrator(orchestrator, bidding_request, pm, other_pm, sp, sp2):
    rid = bidding_request.request_id
    orchestrator.submit_offer(sp, rid, offer_command())
    orchestrator.submit_offer(sp2, rid, offer_command())

    assert len(orchestrator.list_offers(pm, rid)) == 2
    assert [o.provider_username for o in orchestrator.list_offers(sp2, rid)] == ["sp.globex"]
    with pytest.raises(Forbidden):
        orchestrator.list_offers(other_pm, rid)


# =============================================================================
# Notifications
# =============================================================================


class BrokenNotifier:
    def emit(self, event) -> None:
        raise ConnectionError("notification service down")


def test_emit_failure_does_not_undo_transition(store, test_time, pm):
    orchestrator = WorkflowOrchestrator(store, notifier=BrokenNotifier(), time_provider=test_time)
    failures = event_emit_failures_total.labels(event_type="RequestSubmitted")
    before = failures._value.get()

    request = orchestrator.create_request(pm, create_command())
    submitted = orchestrator.submit_for_review(pm, request.request_id)

    assert submitted.status == RequestStatus.IN_REVIEW
    assert store.load_request(request.request_id).status == RequestStatus.IN_REVIEW
    assert failures._value.get() == before + 1


def test_orchestrator_without_notifier(store, test_time, pm):
    orchestrator = WorkflowOrchestrator(store, time_provider=test_time)
    request = orchestrator.create_request(pm, create_command())
    assert orchestrator.submit_for_review(pm, request.request_id).status == RequestStatus.IN_REVIEW


class StatusWritesLockedStore(InMemoryWorkflowStore):
    """Every standalone status write fails as if the database stayed busy"""

    def compare_and_set_status(self, request_id, expected_status, patch, command=None):
        raise Conflict(request_id, "Database busy, write not applied")


def test_quota_close_does_not_need_a_separate_status_write(test_time, pm, rp, sp):
    scratch = WorkflowOrchestrator(InMemoryWorkflowStore(), time_provider=test_time)
    opened = request_in_status(scratch, pm, rp, RequestStatus.BIDDING, max_offers=1)
    store = StatusWritesLockedStore()
    request = store.insert_request(opened)
    orchestrator = WorkflowOrchestrator(store, time_provider=test_time)

    result = orchestrator.submit_offer(sp, request.request_id, offer_command())

    assert result.request.status == RequestStatus.BID_EVALUATION
    assert len(store.list_offers(request.request_id)) == 1
    test_time.advance_days(8)
    assert orchestrator.get_request(rp, request.request_id).status == RequestStatus.BID_EVALUATION


# =============================================================================
# Idempotent Retries
# =============================================================================


def test_replayed_transition_returns_current_state(orchestrator, events, pm):
    request = orchestrator.create_request(pm, create_command(), command_id="cmd-create")
    again = orchestrator.create_request(pm, create_command(), command_id="cmd-create")
    assert again.request_id == request.request_id

    first = orchestrator.submit_for_review(pm, request.request_id, command_id="cmd-submit")
    retry = orchestrator.submit_for_review(pm, request.request_id, command_id="cmd-submit")

    assert retry.status == RequestStatus.IN_REVIEW
    assert retry.revision == first.revision
    assert event_types(events).count("RequestSubmitted") == 1
    assert event_types(events).count("RequestCreated") == 1


def test_replayed_offer_is_not_inserted_twice(orchestrator, bidding_request, rp, sp):
    rid = bidding_request.request_id

    first = orchestrator.submit_offer(sp, rid, offer_command(), command_id="cmd-offer")
    retry = orchestrator.submit_offer(sp, rid, offer_command(), command_id="cmd-offer")

    assert retry.offer.offer_id == first.offer.offer_id
    assert retry.offers_count == 1
    assert len(orchestrator.list_offers(rp, rid)) == 1


def test_replayed_delete_is_noop(orchestrator, pm):
    request = orchestrator.create_request(pm, create_command())
    orchestrator.delete_request(pm, request.request_id, command_id="cmd-del")
    orchestrator.delete_request(pm, request.request_id, command_id="cmd-del")


def test_command_id_reused_for_another_action_is_rejected(orchestrator, events, pm, rp):
    request = orchestrator.create_request(pm, create_command())
    orchestrator.submit_for_review(pm, request.request_id, command_id="c-1")

    with pytest.raises(ValidationError):
        orchestrator.rp_approve(rp, request.request_id, command_id="c-1")

    assert orchestrator.get_request(rp, request.request_id).status == RequestStatus.IN_REVIEW
    approved = orchestrator.rp_approve(rp, request.request_id, command_id="c-2")
    assert approved.status == RequestStatus.APPROVED_FOR_SUBMISSION
    assert event_types(events).count("RequestApproved") == 1


def test_replay_checks_permissions_first(orchestrator, pm, rp, sp):
    request = request_in_status(orchestrator, pm, rp, RequestStatus.IN_REVIEW)
    orchestrator.rp_approve(rp, request.request_id, command_id="c-approve")

    with pytest.raises(Forbidden):
        orchestrator.rp_approve(sp, request.request_id, command_id="c-approve")
    with pytest.raises(Forbidden):
        orchestrator.submit_for_bidding(sp, request.request_id, command_id="c-approve")


def test_replay_by_another_caller_is_rejected(orchestrator, pm, rp):
    other_rp = make_actor("rp.carol", Role.RESOURCE_PLANNER.value)
    request = request_in_status(orchestrator, pm, rp, RequestStatus.IN_REVIEW)
    orchestrator.rp_approve(rp, request.request_id, command_id="c-approve")

    with pytest.raises(ValidationError):
        orchestrator.rp_approve(other_rp, request.request_id, command_id="c-approve")


def test_command_id_bound_to_its_request(orchestrator, pm):
    first = orchestrator.create_request(pm, create_command())
    second = orchestrator.create_request(pm, create_command("Second"))
    orchestrator.submit_for_review(pm, first.request_id, command_id="c-submit")

    with pytest.raises(ValidationError):
        orchestrator.submit_for_review(pm, second.request_id, command_id="c-submit")
    assert orchestrator.get_request(pm, second.request_id).status == RequestStatus.DRAFT


# =============================================================================
# Races
# =============================================================================


def test_concurrent_recommendations_have_one_winner(orchestrator, bidding_request, rp, sp, sp2):
    rid = bidding_request.request_id
    offers = [
        orchestrator.submit_offer(sp, rid, offer_command()).offer,
        orchestrator.submit_offer(sp2, rid, offer_command()).offer,
    ]
    outcomes = []
    lock = threading.Lock()
    barrier = threading.Barrier(6)

    def recommend(offer_id: str) -> None:
        barrier.wait()
        try:
            orchestrator.rp_recommend_offer(rp, rid, offer_id)
            result = "won"
        except InvalidTransition:
            result = "lost"
        with lock:
            outcomes.append((result, offer_id))

    threads = [
        threading.Thread(target=recommend, args=(offers[i % 2].offer_id,)) for i in range(6)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [offer_id for result, offer_id in outcomes if result == "won"]
    assert len(winners) == 1
    assert len(outcomes) == 6
    stored = orchestrator.get_request(rp, rid)
    assert stored.status == RequestStatus.RECOMMENDED
    assert stored.recommended_offer_id == winners[0]


def test_racing_last_slot_offers(pm, rp, test_time):
    workflow = create_workflow(
        InMemoryWorkflowStore(), time_provider=test_time, id_factory=SequentialIdFactory("x")
    )
    orchestrator = workflow.orchestrator
    request = request_in_status(orchestrator, pm, rp, RequestStatus.BIDDING, max_offers=2)
    outcomes = []
    lock = threading.Lock()
    barrier = threading.Barrier(5)

    def submit(i: int) -> None:
        provider = make_actor(f"sp.{i}", Role.SERVICE_PROVIDER.value)
        barrier.wait()
        try:
            orchestrator.submit_offer(provider, request.request_id, offer_command())
            result = "accepted"
        except (QuotaExceeded, RequestNotOpen):
            result = "refused"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=submit, args=(i,)) for i in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("accepted") == 2
    assert len(orchestrator.list_offers(rp, request.request_id)) == 2
    assert orchestrator.get_request(rp, request.request_id).status == RequestStatus.BID_EVALUATION
