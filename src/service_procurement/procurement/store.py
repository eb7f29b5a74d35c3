"""
Workflow Store - persistence seam of the procurement workflow

The orchestrator only talks to storage through the atomic primitives of
WorkflowStore. Every status change is a single compare-and-set keyed on the
expected status, and offer insertion is a single compare-and-increment that
also closes bidding when the offer fills the quota, so two racing actions can
never both succeed.

InMemoryWorkflowStore is the reference adapter used by tests and embedding
code; SQLiteWorkflowStore (sqlite_store.py) persists to disk.
"""

import threading
from typing import Any, NamedTuple, Protocol

from service_procurement.kernel.errors import (
    Conflict,
    Forbidden,
    QuotaExceeded,
    RequestNotFound,
    RequestNotOpen,
    StatusConflict,
)
from service_procurement.procurement.lifecycle import is_bidding_window_elapsed
from service_procurement.procurement.models import (
    Evaluation,
    Offer,
    RequestStatus,
    Role,
    ServiceRequest,
)


class CommandStamp(NamedTuple):
    """Idempotency key together with the action and caller it was issued for"""

    command_id: str
    action: str
    actor_username: str
    actor_role: str


class AppliedCommand(NamedTuple):
    """Ledger entry of a command that changed a request"""

    request_id: str
    action: str
    actor_username: str
    actor_role: str

    def matches(self, stamp: CommandStamp) -> bool:
        return (self.action, self.actor_username, self.actor_role) == (
            stamp.action,
            stamp.actor_username,
            stamp.actor_role,
        )


class OfferInsertion(NamedTuple):
    """Outcome of an accepted offer: the round's new count and the request after it"""

    offers_count: int
    request: ServiceRequest
    bidding_closed: bool


class WorkflowStore(Protocol):
    """Atomic persistence primitives required by the orchestrator"""

    def insert_request(
        self, request: ServiceRequest, command: CommandStamp | None = None
    ) -> ServiceRequest:
        ...

    def load_request(self, request_id: str) -> ServiceRequest | None:
        ...

    def compare_and_set_status(
        self,
        request_id: str,
        expected_status: RequestStatus,
        patch: dict[str, Any],
        command: CommandStamp | None = None,
    ) -> ServiceRequest:
        ...

    def delete_request(
        self,
        request_id: str,
        expected_status: RequestStatus,
        command: CommandStamp | None = None,
    ) -> None:
        ...

    def list_requests(self, status: RequestStatus | None = None) -> list[ServiceRequest]:
        ...

    def list_offers(
        self, request_id: str, bidding_round: int | None = None
    ) -> list[Offer]:
        ...

    def get_offer(self, offer_id: str) -> Offer | None:
        ...

    def insert_offer_if_under_quota(
        self,
        offer: Offer,
        max_offers: int,
        max_per_provider: int | None = None,
        command: CommandStamp | None = None,
        close_patch: dict[str, Any] | None = None,
    ) -> OfferInsertion:
        ...

    def upsert_evaluation(
        self,
        request_id: str,
        role: Role,
        evaluation: Evaluation,
        command: CommandStamp | None = None,
    ) -> Evaluation:
        ...

    def load_evaluation(self, request_id: str, role: Role) -> Evaluation | None:
        ...

    def was_command_applied(self, command_id: str) -> bool:
        ...

    def load_command(self, command_id: str) -> AppliedCommand | None:
        ...


def apply_patch(request: ServiceRequest, patch: dict[str, Any]) -> ServiceRequest:
    """
    Return a new request with the patch applied and the revision bumped

    The patch is validated through the model, so a bad value never reaches
    storage.
    """
    data = request.model_dump()
    data.update(patch)
    data["revision"] = request.revision + 1
    return ServiceRequest.model_validate(data)


def check_offer_admissible(
    request: ServiceRequest,
    offer: Offer,
    round_offers: list[Offer],
    max_offers: int,
    max_per_provider: int | None,
) -> None:
    """
    Check the offer preconditions against the current stored state

    Called by stores inside their critical section, so the checks and the
    insert form one atomic step.

    A full current round reports QuotaExceeded even after the request moved
    on to BID_EVALUATION.

    Raises:
        RequestNotOpen: Request not BIDDING, round closed, or window elapsed
        QuotaExceeded: Round already holds max_offers offers
        Forbidden: Provider reached its per-round offer cap
    """
    if offer.bidding_round != request.bidding_round:
        raise RequestNotOpen(request.request_id, request.status.value)

    if max_offers > 0 and len(round_offers) >= max_offers:
        raise QuotaExceeded(request.request_id, max_offers, len(round_offers))

    if request.status != RequestStatus.BIDDING:
        raise RequestNotOpen(request.request_id, request.status.value)

    if is_bidding_window_elapsed(request, offer.submitted_at):
        raise RequestNotOpen(request.request_id, "BIDDING (window elapsed)")

    if max_per_provider is not None:
        own = sum(1 for o in round_offers if o.provider_username == offer.provider_username)
        if own >= max_per_provider:
            raise Forbidden(
                action="submit-offer",
                role=Role.SERVICE_PROVIDER.value,
                allowed_roles=[Role.SERVICE_PROVIDER.value],
                reason=(
                    f"Provider {offer.provider_username} already submitted {own} of "
                    f"{max_per_provider} allowed offers for request {request.request_id}"
                ),
            )


def close_on_full_quota(
    request: ServiceRequest,
    offers_count: int,
    max_offers: int,
    close_patch: dict[str, Any] | None,
) -> ServiceRequest | None:
    """
    Closed request when this offer filled the round, else None

    Stores call this in the same critical section as the offer insert, so an
    accepted offer and the close to BID_EVALUATION are written together.
    """
    if close_patch is None or max_offers <= 0 or offers_count < max_offers:
        return None
    return apply_patch(request, close_patch)


class InMemoryWorkflowStore:
    """
    Thread-safe in-memory implementation of WorkflowStore

    One lock serializes every primitive; models are copied on the way in and
    out so callers can never mutate stored state.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._requests: dict[str, ServiceRequest] = {}
        self._offers: dict[str, Offer] = {}
        self._offers_by_request: dict[str, list[str]] = {}
        self._evaluations: dict[tuple[str, str], Evaluation] = {}
        self._commands: dict[str, AppliedCommand] = {}

    def _record_command(self, command: CommandStamp | None, request_id: str) -> None:
        if command is not None:
            self._commands.setdefault(
                command.command_id,
                AppliedCommand(
                    request_id, command.action, command.actor_username, command.actor_role
                ),
            )

    def insert_request(
        self, request: ServiceRequest, command: CommandStamp | None = None
    ) -> ServiceRequest:
        with self._lock:
            if request.request_id in self._requests:
                raise Conflict(
                    request.request_id, f"Request {request.request_id} already exists"
                )
            self._requests[request.request_id] = request.model_copy(deep=True)
            self._offers_by_request.setdefault(request.request_id, [])
            self._record_command(command, request.request_id)
            return request.model_copy(deep=True)

    def load_request(self, request_id: str) -> ServiceRequest | None:
        with self._lock:
            request = self._requests.get(request_id)
            return request.model_copy(deep=True) if request else None

    def compare_and_set_status(
        self,
        request_id: str,
        expected_status: RequestStatus,
        patch: dict[str, Any],
        command: CommandStamp | None = None,
    ) -> ServiceRequest:
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise RequestNotFound(request_id)
            if current.status != expected_status:
                raise StatusConflict(
                    request_id, RequestStatus(expected_status).value, current.status.value
                )
            updated = apply_patch(current, patch)
            self._requests[request_id] = updated
            self._record_command(command, request_id)
            return updated.model_copy(deep=True)

    def delete_request(
        self,
        request_id: str,
        expected_status: RequestStatus,
        command: CommandStamp | None = None,
    ) -> None:
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise RequestNotFound(request_id)
            if current.status != expected_status:
                raise StatusConflict(
                    request_id, RequestStatus(expected_status).value, current.status.value
                )
            del self._requests[request_id]
            for offer_id in self._offers_by_request.pop(request_id, []):
                self._offers.pop(offer_id, None)
            for key in [k for k in self._evaluations if k[0] == request_id]:
                del self._evaluations[key]
            self._record_command(command, request_id)

    def list_requests(self, status: RequestStatus | None = None) -> list[ServiceRequest]:
        with self._lock:
            requests = [
                r.model_copy(deep=True)
                for r in self._requests.values()
                if status is None or r.status == status
            ]
        return sorted(requests, key=lambda r: (r.created_at, r.request_id))

    def list_offers(
        self, request_id: str, bidding_round: int | None = None
    ) -> list[Offer]:
        with self._lock:
            return [
                self._offers[offer_id]
                for offer_id in self._offers_by_request.get(request_id, [])
                if bidding_round is None
                or self._offers[offer_id].bidding_round == bidding_round
            ]

    def get_offer(self, offer_id: str) -> Offer | None:
        with self._lock:
            return self._offers.get(offer_id)

    def insert_offer_if_under_quota(
        self,
        offer: Offer,
        max_offers: int,
        max_per_provider: int | None = None,
        command: CommandStamp | None = None,
        close_patch: dict[str, Any] | None = None,
    ) -> OfferInsertion:
        with self._lock:
            request = self._requests.get(offer.request_id)
            if request is None:
                raise RequestNotFound(offer.request_id)
            round_offers = self.list_offers(offer.request_id, offer.bidding_round)
            check_offer_admissible(request, offer, round_offers, max_offers, max_per_provider)
            count = len(round_offers) + 1
            closed = close_on_full_quota(request, count, max_offers, close_patch)

            self._offers[offer.offer_id] = offer
            self._offers_by_request.setdefault(offer.request_id, []).append(offer.offer_id)
            if closed is not None:
                self._requests[offer.request_id] = closed
            self._record_command(command, offer.request_id)
            return OfferInsertion(
                count, (closed or request).model_copy(deep=True), closed is not None
            )

    def upsert_evaluation(
        self,
        request_id: str,
        role: Role,
        evaluation: Evaluation,
        command: CommandStamp | None = None,
    ) -> Evaluation:
        with self._lock:
            if request_id not in self._requests:
                raise RequestNotFound(request_id)
            self._evaluations[(request_id, Role(role).value)] = evaluation.model_copy(deep=True)
            self._record_command(command, request_id)
            return evaluation.model_copy(deep=True)

    def load_evaluation(self, request_id: str, role: Role) -> Evaluation | None:
        with self._lock:
            evaluation = self._evaluations.get((request_id, Role(role).value))
            return evaluation.model_copy(deep=True) if evaluation else None

    def was_command_applied(self, command_id: str) -> bool:
        with self._lock:
            return command_id in self._commands

    def load_command(self, command_id: str) -> AppliedCommand | None:
        """Ledger entry of an applied command (None if unknown)"""
        with self._lock:
            return self._commands.get(command_id)
