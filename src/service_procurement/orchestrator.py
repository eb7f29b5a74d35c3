"""
Workflow Orchestrator - main façade of the procurement workflow

One method per external action. Each action checks permissions, refreshes an
elapsed bidding window, applies its transition through a single
compare-and-set on the expected status, and emits exactly one domain event.

Example:
    >>> from service_procurement import WorkflowOrchestrator
    >>> from service_procurement.procurement.store import InMemoryWorkflowStore
    >>> workflow = WorkflowOrchestrator(InMemoryWorkflowStore())
    >>> request = workflow.create_request(pm, CreateServiceRequest(title="Java team"))
    >>> workflow.submit_for_review(pm, request.request_id)
    >>> workflow.rp_approve(rp, request.request_id)
    >>> workflow.submit_for_bidding(pm, request.request_id)
"""

from datetime import datetime
from typing import Any, NamedTuple, Protocol

from pydantic import ValidationError as PydanticValidationError

from service_procurement.kernel.bus import InProcessBus
from service_procurement.kernel.errors import (
    InvalidTransition,
    OfferNotFound,
    RequestNotFound,
    StatusConflict,
    ValidationError,
)
from service_procurement.kernel.events import Event, create_event
from service_procurement.kernel.ids import IdFactory, default_id_factory
from service_procurement.kernel.logging import LogOperation, get_logger
from service_procurement.kernel.metrics import (
    evaluations_saved_total,
    event_emit_failures_total,
    status_transitions_total,
    track_action,
)
from service_procurement.kernel.policy import WorkflowPolicy
from service_procurement.kernel.tick import TickResult
from service_procurement.kernel.time import RealTimeProvider, TimeProvider
from service_procurement.procurement.commands import (
    CreateServiceRequest,
    SaveEvaluation,
    SubmitOffer,
    UpdateServiceRequest,
)
from service_procurement.procurement.evaluation import (
    build_evaluation,
    build_evaluation_rows,
    coerce_weights,
    rank_offers,
)
from service_procurement.procurement.events import build_payload
from service_procurement.procurement.invariants import (
    apply_language_defaults,
    validate_offer_belongs_to_request,
    validate_request_fields,
)
from service_procurement.procurement.lifecycle import (
    CLOSE_BIDDING,
    TransitionPlan,
    bidding_deadline,
    plan_transition,
    plan_window_elapsed,
)
from service_procurement.procurement.models import (
    Actor,
    Evaluation,
    EvaluationRow,
    Offer,
    RequestStatus,
    Role,
    ServiceRequest,
)
from service_procurement.procurement.offers import OfferRegistry
from service_procurement.procurement.permissions import WorkflowAction, require_permission
from service_procurement.procurement.projections import NotificationInbox, RequestDashboard
from service_procurement.procurement.store import AppliedCommand, CommandStamp, WorkflowStore

logger = get_logger(__name__)


class EventSink(Protocol):
    """Notification collaborator"""

    def emit(self, event: Event) -> None:
        ...


class SubmittedOffer(NamedTuple):
    """Result of submit_offer"""

    request: ServiceRequest
    offer: Offer
    offers_count: int


class WorkflowOrchestrator:
    """
    Service procurement workflow façade

    Provides the workflow operations:
    - Request drafting (create, update, delete, view)
    - Review and bidding (submit, approve, reject, open bidding)
    - Offer intake and listing
    - Evaluation (preview, save, view) and recommendation
    - Hand-over to procurement and ordering
    - Reactivation and bidding-window expiry (lazy and via tick)
    """

    def __init__(
        self,
        store: WorkflowStore,
        notifier: EventSink | None = None,
        time_provider: TimeProvider | None = None,
        policy: WorkflowPolicy | None = None,
        id_factory: IdFactory | None = None,
    ) -> None:
        """
        Initialize the orchestrator

        Args:
            store: Persistence collaborator with atomic primitives
            notifier: Event sink (events are dropped if None)
            time_provider: Clock (uses real time if None)
            policy: Workflow policy (uses defaults if None)
            id_factory: Id generator (UUIDv7-like if None)
        """
        self.store = store
        self.notifier = notifier
        self.time_provider = time_provider or RealTimeProvider()
        self.policy = policy or WorkflowPolicy()
        self.id_factory = id_factory or default_id_factory
        self.offers = OfferRegistry(store, self.policy, self.time_provider, self.id_factory)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return self.time_provider.now()

    def _load(self, request_id: str) -> ServiceRequest:
        request = self.store.load_request(request_id)
        if request is None:
            raise RequestNotFound(request_id)
        return request

    @staticmethod
    def _stamp(
        command_id: str | None, action: WorkflowAction, actor: Actor
    ) -> CommandStamp | None:
        if not command_id:
            return None
        return CommandStamp(command_id, action.value, actor.username, actor.role.value)

    def _applied_command(
        self, stamp: CommandStamp | None, request_id: str | None = None
    ) -> AppliedCommand | None:
        """
        Ledger entry when this exact command was already applied, else None

        Callers check permissions first, so a replay never bypasses them.

        Raises:
            ValidationError: The command id was used for another action,
                caller or request
        """
        if stamp is None:
            return None
        applied = self.store.load_command(stamp.command_id)
        if applied is None:
            return None
        if not applied.matches(stamp) or (
            request_id is not None and applied.request_id != request_id
        ):
            raise ValidationError(
                f"Command {stamp.command_id} was already used for another action",
                field="command_id",
            )
        logger.info(
            "Command already applied, returning current state",
            command_id=stamp.command_id,
            action=stamp.action,
        )
        return applied

    def _replayed_request(
        self, stamp: CommandStamp | None, request_id: str | None = None
    ) -> ServiceRequest | None:
        """Current request if this exact command was already applied, else None"""
        applied = self._applied_command(stamp, request_id)
        if applied is None:
            return None
        return self._load(applied.request_id)

    def _emit(
        self,
        event_type: str,
        request_id: str,
        revision: int,
        payload: dict[str, Any],
        actor: Actor | None = None,
        owner: str | None = None,
        command_id: str | None = None,
    ) -> Event:
        """Build an event and hand it to the notifier; failures are logged only"""
        event = create_event(
            event_id=self.id_factory.generate(),
            event_type=event_type,
            request_id=request_id,
            occurred_at=self._now(),
            command_id=command_id or self.id_factory.generate(),
            revision=revision,
            actor_username=actor.username if actor else None,
            actor_role=actor.role.value if actor else None,
            owner_username=owner,
            payload=payload,
        )
        if self.notifier is None:
            return event
        try:
            self.notifier.emit(event)
        except Exception as e:
            event_emit_failures_total.labels(event_type=event_type).inc()
            logger.error(
                "Event emission failed",
                event_type=event_type,
                event_id=event.event_id,
                request_id=request_id,
                error=str(e),
            )
        return event

    def _write(
        self,
        plan: TransitionPlan,
        request: ServiceRequest,
        stamp: CommandStamp | None = None,
    ) -> ServiceRequest:
        """
        Apply a plan by compare-and-set

        A lost race surfaces as InvalidTransition against the status that is
        now stored.
        """
        try:
            updated = self.store.compare_and_set_status(
                request.request_id, plan.expected_status, plan.patch, stamp
            )
        except StatusConflict as e:
            raise InvalidTransition(
                request_id=request.request_id,
                current_status=e.actual_status,
                attempted_status=plan.target_status.value,
                action=plan.action,
                reason="status changed concurrently",
            ) from e
        status_transitions_total.labels(
            from_status=plan.expected_status.value, to_status=plan.target_status.value
        ).inc()
        logger.info(
            "Request status changed",
            request_id=request.request_id,
            from_status=plan.expected_status.value,
            to_status=plan.target_status.value,
            revision=updated.revision,
        )
        return updated

    def _transition(
        self,
        plan: TransitionPlan,
        request: ServiceRequest,
        actor: Actor | None,
        payload: dict[str, Any],
        stamp: CommandStamp | None = None,
    ) -> tuple[ServiceRequest, Event]:
        updated = self._write(plan, request, stamp)
        event = self._emit(
            plan.event_type,
            updated.request_id,
            updated.revision,
            build_payload(plan.event_type, **payload),
            actor=actor,
            owner=updated.created_by,
            command_id=stamp.command_id if stamp else None,
        )
        return updated, event

    def _apply_window(self, request: ServiceRequest) -> tuple[ServiceRequest, Event | None]:
        """Expire (or close) a BIDDING request whose window elapsed"""
        if request.status != RequestStatus.BIDDING:
            return request, None
        now = self._now()
        offers_count = self.offers.count_current_round(request)
        plan = plan_window_elapsed(request, now, offers_count, self.policy)
        if plan is None:
            return request, None

        if plan.action == CLOSE_BIDDING:
            payload = {
                "bid_evaluation_at": now,
                "offers_count": offers_count,
                "trigger": "window_elapsed",
            }
        else:
            payload = {
                "expired_at": now,
                "deadline": bidding_deadline(request),
                "offers_count": offers_count,
            }
        try:
            return self._transition(plan, request, None, payload)
        except InvalidTransition:
            # Another caller already moved it on
            return self._load(request.request_id), None

    def _refresh(self, request: ServiceRequest) -> ServiceRequest:
        return self._apply_window(request)[0]

    @staticmethod
    def _build_request(data: dict[str, Any]) -> ServiceRequest:
        try:
            return ServiceRequest.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(f"{field}: {first.get('msg')}", field=field or None) from e

    # ------------------------------------------------------------------
    # Request drafting
    # ------------------------------------------------------------------

    @track_action("create_request")
    def create_request(
        self,
        actor: Actor,
        command: CreateServiceRequest,
        command_id: str | None = None,
    ) -> ServiceRequest:
        """
        Draft a new service request owned by the calling PM

        Raises:
            Forbidden: Caller is not a project manager
            ValidationError: Form rules violated (criteria limits, dates, ...)
        """
        with LogOperation(logger, "create_request", actor=actor.username, title=command.title):
            require_permission(actor, WorkflowAction.CREATE_REQUEST)
            stamp = self._stamp(command_id, WorkflowAction.CREATE_REQUEST, actor)
            replayed = self._replayed_request(stamp)
            if replayed is not None:
                return replayed

            now = self._now()
            data = command.model_dump()
            if data["bidding_cycle_days"] is None:
                data["bidding_cycle_days"] = self.policy.default_bidding_cycle_days
            data["required_languages"] = apply_language_defaults(
                command.required_languages, self.policy
            )
            validate_request_fields(data, self.policy)

            request = self._build_request(
                {
                    **data,
                    "request_id": self.id_factory.generate(),
                    "created_by": actor.username,
                    "created_at": now,
                    "updated_at": now,
                    "status": RequestStatus.DRAFT,
                }
            )
            request = self.store.insert_request(request, stamp)
            self._emit(
                "RequestCreated",
                request.request_id,
                request.revision,
                build_payload(
                    "RequestCreated",
                    title=request.title,
                    type=request.type.value,
                    created_by=request.created_by,
                    max_offers=request.max_offers,
                    bidding_cycle_days=request.bidding_cycle_days,
                ),
                actor=actor,
                owner=request.created_by,
                command_id=command_id,
            )
            return request

    @track_action("update_request")
    def update_request(
        self,
        actor: Actor,
        request_id: str,
        command: UpdateServiceRequest,
        command_id: str | None = None,
    ) -> ServiceRequest:
        """
        Change fields of a DRAFT request (owner only)

        Raises:
            Forbidden: Caller is not the owning PM
            InvalidTransition: Request is not DRAFT
            ValidationError: No changes given or form rules violated
        """
        with LogOperation(logger, "update_request", request_id=request_id, actor=actor.username):
            request = self._load(request_id)
            require_permission(actor, WorkflowAction.EDIT_REQUEST, request)
            stamp = self._stamp(command_id, WorkflowAction.EDIT_REQUEST, actor)
            replayed = self._replayed_request(stamp, request_id)
            if replayed is not None:
                return replayed

            if request.status != RequestStatus.DRAFT:
                raise InvalidTransition(
                    request_id,
                    request.status.value,
                    RequestStatus.DRAFT.value,
                    action=WorkflowAction.EDIT_REQUEST.value,
                    reason="request fields are editable only in DRAFT",
                )

            changes = command.changes()
            if not changes:
                raise ValidationError("No fields to update")
            if "required_languages" in changes:
                changes["required_languages"] = apply_language_defaults(
                    command.required_languages or [], self.policy
                )

            merged = {**request.model_dump(), **changes}
            validate_request_fields(merged, self.policy)
            self._build_request(merged)

            patch = {**changes, "updated_at": self._now()}
            try:
                updated = self.store.compare_and_set_status(
                    request_id, RequestStatus.DRAFT, patch, stamp
                )
            except StatusConflict as e:
                raise InvalidTransition(
                    request_id,
                    e.actual_status,
                    RequestStatus.DRAFT.value,
                    action=WorkflowAction.EDIT_REQUEST.value,
                    reason="request left DRAFT concurrently",
                ) from e

            self._emit(
                "RequestUpdated",
                request_id,
                updated.revision,
                build_payload("RequestUpdated", changed_fields=sorted(changes)),
                actor=actor,
                owner=updated.created_by,
                command_id=command_id,
            )
            return updated

    @track_action("delete_request")
    def delete_request(
        self, actor: Actor, request_id: str, command_id: str | None = None
    ) -> None:
        """
        Remove a DRAFT request (owner only)

        Raises:
            Forbidden: Caller is not the owning PM
            InvalidTransition: Request is not DRAFT
        """
        with LogOperation(logger, "delete_request", request_id=request_id, actor=actor.username):
            stamp = self._stamp(command_id, WorkflowAction.DELETE_REQUEST, actor)
            request = self.store.load_request(request_id)
            if request is not None:
                require_permission(actor, WorkflowAction.DELETE_REQUEST, request)
            # A replayed delete finds the request gone; the ledger names its owner
            if self._applied_command(stamp, request_id) is not None:
                return
            if request is None:
                raise RequestNotFound(request_id)

            if request.status != RequestStatus.DRAFT:
                raise InvalidTransition(
                    request_id,
                    request.status.value,
                    "DELETED",
                    action=WorkflowAction.DELETE_REQUEST.value,
                    reason="only DRAFT requests can be deleted",
                )
            try:
                self.store.delete_request(request_id, RequestStatus.DRAFT, stamp)
            except StatusConflict as e:
                raise InvalidTransition(
                    request_id,
                    e.actual_status,
                    "DELETED",
                    action=WorkflowAction.DELETE_REQUEST.value,
                    reason="request left DRAFT concurrently",
                ) from e

            self._emit(
                "RequestDeleted",
                request_id,
                0,
                build_payload("RequestDeleted", title=request.title, deleted_by=actor.username),
                actor=actor,
                owner=request.created_by,
                command_id=command_id,
            )

    def get_request(self, actor: Actor, request_id: str) -> ServiceRequest:
        """
        Load one request, applying an elapsed bidding window first

        Raises:
            RequestNotFound: Unknown request id
        """
        request = self._load(request_id)
        require_permission(actor, WorkflowAction.VIEW_REQUEST, request)
        return self._refresh(request)

    def list_requests(
        self, actor: Actor, status: RequestStatus | None = None
    ) -> list[ServiceRequest]:
        """List requests (optionally by status) after refreshing bidding windows"""
        require_permission(actor, WorkflowAction.VIEW_REQUEST)
        requests = [self._refresh(r) for r in self.store.list_requests()]
        if status is None:
            return requests
        return [r for r in requests if r.status == RequestStatus(status)]

    # ------------------------------------------------------------------
    # Review and bidding
    # ------------------------------------------------------------------

    def _simple_transition(
        self,
        operation: str,
        action: WorkflowAction,
        actor: Actor,
        request_id: str,
        command_id: str | None,
        payload_fields: tuple[str, ...],
        **details: Any,
    ) -> ServiceRequest:
        with LogOperation(logger, operation, request_id=request_id, actor=actor.username):
            request = self._load(request_id)
            require_permission(actor, action, request)
            stamp = self._stamp(command_id, action, actor)
            replayed = self._replayed_request(stamp, request_id)
            if replayed is not None:
                return replayed

            request = self._refresh(request)
            plan = plan_transition(request, action.value, self._now(), actor, **details)
            payload = {name: plan.patch.get(name) for name in payload_fields}
            updated, _ = self._transition(plan, request, actor, payload, stamp)
            return updated

    @track_action("submit_for_review")
    def submit_for_review(
        self, actor: Actor, request_id: str, command_id: str | None = None
    ) -> ServiceRequest:
        """DRAFT → IN_REVIEW (owner)"""
        return self._simple_transition(
            "submit_for_review",
            WorkflowAction.SUBMIT_FOR_REVIEW,
            actor,
            request_id,
            command_id,
            ("submitted_at", "submitted_by"),
        )

    @track_action("rp_approve")
    def rp_approve(
        self, actor: Actor, request_id: str, command_id: str | None = None
    ) -> ServiceRequest:
        """IN_REVIEW → APPROVED_FOR_SUBMISSION (resource planner)"""
        return self._simple_transition(
            "rp_approve",
            WorkflowAction.RP_APPROVE,
            actor,
            request_id,
            command_id,
            ("rp_approved_at", "rp_approved_by"),
        )

    @track_action("rp_reject")
    def rp_reject(
        self,
        actor: Actor,
        request_id: str,
        reason: str | None = None,
        command_id: str | None = None,
    ) -> ServiceRequest:
        """IN_REVIEW → REJECTED (resource planner)"""
        return self._simple_transition(
            "rp_reject",
            WorkflowAction.RP_REJECT,
            actor,
            request_id,
            command_id,
            ("rp_rejected_at", "rp_rejected_by", "rp_rejection_reason"),
            reason=reason,
        )

    @track_action("submit_for_bidding")
    def submit_for_bidding(
        self, actor: Actor, request_id: str, command_id: str | None = None
    ) -> ServiceRequest:
        """
        APPROVED_FOR_SUBMISSION → BIDDING (owner)

        Opens a new bidding round of bidding_cycle_days.
        """
        with LogOperation(logger, "submit_for_bidding", request_id=request_id, actor=actor.username):
            request = self._load(request_id)
            require_permission(actor, WorkflowAction.SUBMIT_FOR_BIDDING, request)
            stamp = self._stamp(command_id, WorkflowAction.SUBMIT_FOR_BIDDING, actor)
            replayed = self._replayed_request(stamp, request_id)
            if replayed is not None:
                return replayed

            plan = plan_transition(
                request, WorkflowAction.SUBMIT_FOR_BIDDING.value, self._now(), actor
            )
            updated = self._write(plan, request, stamp)
            self._emit(
                plan.event_type,
                request_id,
                updated.revision,
                build_payload(
                    plan.event_type,
                    bidding_started_at=updated.bidding_started_at,
                    bidding_started_by=updated.bidding_started_by,
                    bidding_round=updated.bidding_round,
                    deadline=bidding_deadline(updated),
                    max_offers=updated.max_offers,
                ),
                actor=actor,
                owner=updated.created_by,
                command_id=command_id,
            )
            return updated

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    @track_action("submit_offer")
    def submit_offer(
        self,
        actor: Actor,
        request_id: str,
        command: SubmitOffer,
        command_id: str | None = None,
    ) -> SubmittedOffer:
        """
        Append a provider offer; closes bidding when the quota fills

        Raises:
            Forbidden: Caller is not a service provider, or per-provider cap hit
            RequestNotOpen: Request is not BIDDING (or its window elapsed)
            QuotaExceeded: Round already holds max_offers offers
        """
        with LogOperation(
            logger, "submit_offer", request_id=request_id, actor=actor.username, price=command.price
        ):
            request = self._load(request_id)
            require_permission(actor, WorkflowAction.SUBMIT_OFFER, request)
            stamp = self._stamp(command_id, WorkflowAction.SUBMIT_OFFER, actor)
            if self._applied_command(stamp, request_id) is not None:
                offers = self.store.list_offers(request_id)
                offer = next((o for o in offers if o.command_id == command_id), None)
                if offer is None:
                    raise ValidationError(
                        f"Command {command_id} was already used for another action",
                        field="command_id",
                    )
                count = sum(1 for o in offers if o.bidding_round == offer.bidding_round)
                return SubmittedOffer(request, offer, count)

            request = self._refresh(request)
            receipt = self.offers.submit(request, actor, command, stamp)
            request = receipt.request
            if receipt.bidding_closed:
                status_transitions_total.labels(
                    from_status=RequestStatus.BIDDING.value,
                    to_status=RequestStatus.BID_EVALUATION.value,
                ).inc()
                logger.info(
                    "Request status changed",
                    request_id=request_id,
                    from_status=RequestStatus.BIDDING.value,
                    to_status=request.status.value,
                    revision=request.revision,
                    trigger="quota_reached",
                )

            self._emit(
                "OfferSubmitted",
                request_id,
                request.revision,
                build_payload(
                    "OfferSubmitted",
                    offer_id=receipt.offer.offer_id,
                    provider_username=receipt.offer.provider_username,
                    provider_name=receipt.offer.provider_name,
                    price=receipt.offer.price,
                    currency=receipt.offer.currency,
                    bidding_round=receipt.offer.bidding_round,
                    offers_count=receipt.offers_count,
                    bidding_closed=receipt.bidding_closed,
                ),
                actor=actor,
                owner=request.created_by,
                command_id=command_id,
            )
            return SubmittedOffer(request, receipt.offer, receipt.offers_count)

    def list_offers(
        self, actor: Actor, request_id: str, all_rounds: bool = False
    ) -> list[Offer]:
        """
        Offers visible to the actor, in submission order

        Service providers see only their own offers; a PM only those of
        requests they own.
        """
        request = self._load(request_id)
        require_permission(actor, WorkflowAction.LIST_OFFERS, request)
        request = self._refresh(request)
        return self.offers.list_visible(request, actor, all_rounds=all_rounds)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def preview_ranking(
        self,
        actor: Actor,
        request_id: str,
        weights: dict[str, Any] | None = None,
        scores: dict[str, Any] | None = None,
    ) -> list[EvaluationRow]:
        """Rank the current round's offers without saving anything"""
        request = self._load(request_id)
        require_permission(actor, WorkflowAction.VIEW_EVALUATION, request)
        request = self._refresh(request)
        offers = self.store.list_offers(request_id, max(request.bidding_round, 1))
        ranked = rank_offers(
            offers, scores or {}, coerce_weights(weights, self.policy.default_weights)
        )
        return build_evaluation_rows(ranked, self.policy.total_score_decimals)

    @track_action("save_evaluation")
    def save_evaluation(
        self,
        actor: Actor,
        request_id: str,
        command: SaveEvaluation,
        command_id: str | None = None,
    ) -> Evaluation:
        """
        Upsert the RP evaluation (last writer wins)

        Totals are recomputed from the sub-scores; the recommended offer is
        stored as chosen, with no status change.

        Raises:
            InvalidTransition: Request not in an evaluation status
            ValidationError: Bad weights or scores
            OfferNotFound: Recommended offer not part of the round
        """
        with LogOperation(logger, "save_evaluation", request_id=request_id, actor=actor.username):
            request = self._load(request_id)
            require_permission(actor, WorkflowAction.SAVE_EVALUATION, request)
            stamp = self._stamp(command_id, WorkflowAction.SAVE_EVALUATION, actor)
            if self._applied_command(stamp, request_id) is not None:
                existing = self.store.load_evaluation(request_id, Role.RESOURCE_PLANNER)
                if existing is not None:
                    return existing

            request = self._refresh(request)
            if request.status.value not in self.policy.evaluation_statuses:
                raise InvalidTransition(
                    request_id,
                    request.status.value,
                    request.status.value,
                    action=WorkflowAction.SAVE_EVALUATION.value,
                    reason=(
                        "evaluations can be saved only in "
                        + ", ".join(self.policy.evaluation_statuses)
                    ),
                )

            offers = self.store.list_offers(request_id, request.bidding_round)
            evaluation = build_evaluation(
                request_id=request_id,
                bidding_round=request.bidding_round,
                offers=offers,
                scores=command.scores_by_offer(),
                weights=coerce_weights(command.weights, self.policy.default_weights),
                evaluated_by=actor.username,
                saved_at=self._now(),
                comment=command.comment,
                recommended_offer_id=command.recommended_offer_id,
                decimals=self.policy.total_score_decimals,
            )
            evaluation = self.store.upsert_evaluation(
                request_id, Role.RESOURCE_PLANNER, evaluation, stamp
            )
            evaluations_saved_total.inc()

            self._emit(
                "EvaluationSaved",
                request_id,
                request.revision,
                build_payload(
                    "EvaluationSaved",
                    evaluated_by=actor.username,
                    bidding_round=evaluation.bidding_round,
                    weights=evaluation.weights.model_dump(),
                    recommended_offer_id=evaluation.recommended_offer_id,
                    top_offer_id=evaluation.top_offer_id(),
                    offers_count=len(evaluation.offers),
                ),
                actor=actor,
                owner=request.created_by,
                command_id=command_id,
            )
            return evaluation

    def get_evaluation(self, actor: Actor, request_id: str) -> Evaluation | None:
        """Saved RP evaluation of the request (None if never saved)"""
        request = self._load(request_id)
        require_permission(actor, WorkflowAction.VIEW_EVALUATION, request)
        return self.store.load_evaluation(request_id, Role.RESOURCE_PLANNER)

    @track_action("rp_recommend_offer")
    def rp_recommend_offer(
        self,
        actor: Actor,
        request_id: str,
        offer_id: str,
        command_id: str | None = None,
    ) -> ServiceRequest:
        """
        BIDDING | BID_EVALUATION → RECOMMENDED (resource planner)

        Raises:
            InvalidTransition: Wrong status (or lost a concurrent race)
            OfferNotFound: Offer unknown, of another request, or of an older round
        """
        with LogOperation(
            logger, "rp_recommend_offer", request_id=request_id, offer_id=offer_id, actor=actor.username
        ):
            request = self._load(request_id)
            require_permission(actor, WorkflowAction.RP_RECOMMEND_OFFER, request)
            stamp = self._stamp(command_id, WorkflowAction.RP_RECOMMEND_OFFER, actor)
            replayed = self._replayed_request(stamp, request_id)
            if replayed is not None:
                return replayed

            request = self._refresh(request)
            plan = plan_transition(
                request, WorkflowAction.RP_RECOMMEND_OFFER.value, self._now(), actor, offer_id=offer_id
            )
            offer = validate_offer_belongs_to_request(
                self.store.get_offer(offer_id), offer_id, request
            )
            if offer.bidding_round != request.bidding_round:
                raise OfferNotFound(offer_id, request_id)

            updated, _ = self._transition(
                plan,
                request,
                actor,
                {
                    "recommended_offer_id": offer_id,
                    "recommended_at": plan.patch["recommended_at"],
                    "recommended_by": actor.username,
                },
                stamp,
            )
            return updated

    # ------------------------------------------------------------------
    # Procurement
    # ------------------------------------------------------------------

    @track_action("send_to_po")
    def send_to_po(
        self, actor: Actor, request_id: str, command_id: str | None = None
    ) -> ServiceRequest:
        """RECOMMENDED → SENT_TO_PO (owner)"""
        with LogOperation(logger, "send_to_po", request_id=request_id, actor=actor.username):
            request = self._load(request_id)
            require_permission(actor, WorkflowAction.SEND_TO_PO, request)
            stamp = self._stamp(command_id, WorkflowAction.SEND_TO_PO, actor)
            replayed = self._replayed_request(stamp, request_id)
            if replayed is not None:
                return replayed

            plan = plan_transition(request, WorkflowAction.SEND_TO_PO.value, self._now(), actor)
            updated, _ = self._transition(
                plan,
                request,
                actor,
                {
                    "recommended_offer_id": request.recommended_offer_id,
                    "sent_to_po_at": plan.patch["sent_to_po_at"],
                    "sent_to_po_by": actor.username,
                },
                stamp,
            )
            return updated

    @track_action("order")
    def order(
        self,
        actor: Actor,
        request_id: str,
        offer_id: str,
        order_id: str | None = None,
        command_id: str | None = None,
    ) -> ServiceRequest:
        """
        SENT_TO_PO → ORDERED (procurement officer)

        Raises:
            InvalidTransition: Wrong status, or offer_id is not the recommended offer
        """
        with LogOperation(
            logger, "order", request_id=request_id, offer_id=offer_id, actor=actor.username
        ):
            request = self._load(request_id)
            require_permission(actor, WorkflowAction.ORDER, request)
            stamp = self._stamp(command_id, WorkflowAction.ORDER, actor)
            replayed = self._replayed_request(stamp, request_id)
            if replayed is not None:
                return replayed

            order_ref = order_id or self.id_factory.generate()
            plan = plan_transition(
                request,
                WorkflowAction.ORDER.value,
                self._now(),
                actor,
                offer_id=offer_id,
                order_id=order_ref,
            )
            updated, _ = self._transition(
                plan,
                request,
                actor,
                {
                    "offer_id": offer_id,
                    "order_id": order_ref,
                    "ordered_at": plan.patch["ordered_at"],
                    "ordered_by": actor.username,
                },
                stamp,
            )
            return updated

    # ------------------------------------------------------------------
    # Reactivation and expiry
    # ------------------------------------------------------------------

    @track_action("reactivate")
    def reactivate(
        self, actor: Actor, request_id: str, command_id: str | None = None
    ) -> ServiceRequest:
        """
        EXPIRED | REJECTED → DRAFT (owner)

        Clears the audit trail from submitted_at onward and the recommendation.
        """
        with LogOperation(logger, "reactivate", request_id=request_id, actor=actor.username):
            request = self._load(request_id)
            require_permission(actor, WorkflowAction.REACTIVATE, request)
            stamp = self._stamp(command_id, WorkflowAction.REACTIVATE, actor)
            replayed = self._replayed_request(stamp, request_id)
            if replayed is not None:
                return replayed

            request = self._refresh(request)
            plan = plan_transition(request, WorkflowAction.REACTIVATE.value, self._now(), actor)
            updated, _ = self._transition(
                plan,
                request,
                actor,
                {
                    "previous_status": request.status.value,
                    "reactivated_at": plan.patch["reactivated_at"],
                    "reactivated_by": actor.username,
                },
                stamp,
            )
            return updated

    def expire_if_due(self, request_id: str) -> ServiceRequest:
        """Apply an elapsed bidding window to one request (system action)"""
        return self._refresh(self._load(request_id))

    def tick(self) -> TickResult:
        """
        Sweep every BIDDING request and apply elapsed windows

        Intended to be called periodically by an external scheduler; the
        same rule also runs lazily on every action touching a request.
        """
        tick_at = self._now()
        with LogOperation(logger, "tick", tick_at=tick_at.isoformat()):
            bidding = self.store.list_requests(RequestStatus.BIDDING)
            events = []
            for request in bidding:
                _, event = self._apply_window(request)
                if event is not None:
                    events.append(event)
            result = TickResult(
                tick_id=self.id_factory.generate(),
                tick_at=tick_at,
                triggered_events=events,
                inspected_count=len(bidding),
            )
            logger.info("Tick completed", summary=result.summary())
            return result


class Workflow(NamedTuple):
    """An orchestrator wired to an in-process bus and its projections"""

    orchestrator: WorkflowOrchestrator
    bus: InProcessBus
    inbox: NotificationInbox
    dashboard: RequestDashboard


def create_workflow(
    store: WorkflowStore,
    time_provider: TimeProvider | None = None,
    policy: WorkflowPolicy | None = None,
    id_factory: IdFactory | None = None,
) -> Workflow:
    """
    Build an orchestrator with the notification inbox and status dashboard
    subscribed to its events

    The dashboard is seeded from the store so counts survive restarts.
    """
    bus = InProcessBus()
    inbox = NotificationInbox()
    dashboard = RequestDashboard()
    dashboard.seed(store.list_requests())
    bus.subscribe_all(inbox.apply_event)
    bus.subscribe_all(dashboard.apply_event)
    orchestrator = WorkflowOrchestrator(
        store,
        notifier=bus,
        time_provider=time_provider,
        policy=policy,
        id_factory=id_factory,
    )
    return Workflow(orchestrator, bus, inbox, dashboard)
