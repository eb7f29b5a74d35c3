"""
Offer Registry

Accepts provider offers against BIDDING requests and answers who may see
which offers. The window, quota and per-provider checks run inside the
store's atomic insert. When an offer fills the quota, the same insert moves the
request to BID_EVALUATION.
"""

from typing import NamedTuple

from service_procurement.kernel.errors import Forbidden, QuotaExceeded, RequestNotOpen
from service_procurement.kernel.ids import IdFactory, default_id_factory
from service_procurement.kernel.logging import get_logger
from service_procurement.kernel.metrics import offer_rejections_total, offers_submitted_total
from service_procurement.kernel.policy import WorkflowPolicy
from service_procurement.kernel.time import TimeProvider
from service_procurement.procurement.commands import SubmitOffer
from service_procurement.procurement.lifecycle import (
    CLOSE_BIDDING,
    plan_transition,
    quota_reached,
)
from service_procurement.procurement.models import (
    Actor,
    Offer,
    RequestStatus,
    ServiceRequest,
)
from service_procurement.procurement.permissions import can_see_all_offers
from service_procurement.procurement.store import CommandStamp, WorkflowStore

logger = get_logger(__name__)


class OfferReceipt(NamedTuple):
    """Result of one accepted offer"""

    offer: Offer
    offers_count: int
    request: ServiceRequest
    bidding_closed: bool


class OfferRegistry:
    """
    Append-only offer intake for one store

    Offers are write-once: there is no edit or delete path.
    """

    def __init__(
        self,
        store: WorkflowStore,
        policy: WorkflowPolicy,
        time_provider: TimeProvider,
        id_factory: IdFactory = default_id_factory,
    ) -> None:
        self.store = store
        self.policy = policy
        self.time_provider = time_provider
        self.id_factory = id_factory

    def submit(
        self,
        request: ServiceRequest,
        actor: Actor,
        command: SubmitOffer,
        stamp: CommandStamp | None = None,
    ) -> OfferReceipt:
        """
        Append an offer to the request's current bidding round

        Args:
            request: Request as last loaded (status re-checked atomically)
            actor: Submitting service provider
            command: Offer contents
            stamp: Optional idempotency key with its action and caller

        Returns:
            OfferReceipt with the stored offer, the round's new count and the
            request as left by the insert (closed when the quota filled)

        Raises:
            RequestNotOpen: Request is not accepting offers
            QuotaExceeded: Round already full
            Forbidden: Provider reached its per-round cap
        """
        if request.status != RequestStatus.BIDDING:
            count = self.count_current_round(request)
            if request.status == RequestStatus.BID_EVALUATION and quota_reached(request, count):
                offer_rejections_total.labels(reason="quota").inc()
                raise QuotaExceeded(request.request_id, request.max_offers, count)
            offer_rejections_total.labels(reason="not_open").inc()
            raise RequestNotOpen(request.request_id, request.status.value)

        offer = Offer(
            offer_id=self.id_factory.generate(),
            request_id=request.request_id,
            bidding_round=max(request.bidding_round, 1),
            provider_username=actor.username,
            provider_name=command.provider_name or actor.username,
            price=command.price,
            currency=command.currency,
            delivery_days=command.delivery_days,
            delivery_risk=command.delivery_risk,
            roles_provided=command.roles_provided,
            notes=command.notes,
            offer_title=command.offer_title,
            evaluation_summary=command.evaluation_summary,
            submitted_at=self.time_provider.now(),
            command_id=stamp.command_id if stamp else None,
        )
        close_patch = None
        if request.has_offer_quota():
            close_patch = plan_transition(request, CLOSE_BIDDING, offer.submitted_at).patch

        try:
            inserted = self.store.insert_offer_if_under_quota(
                offer,
                max_offers=request.max_offers,
                max_per_provider=self.policy.provider_offer_limit(),
                command=stamp,
                close_patch=close_patch,
            )
        except RequestNotOpen:
            offer_rejections_total.labels(reason="not_open").inc()
            raise
        except QuotaExceeded:
            offer_rejections_total.labels(reason="quota").inc()
            raise
        except Forbidden:
            offer_rejections_total.labels(reason="provider_limit").inc()
            raise

        offers_submitted_total.inc()
        logger.info(
            "Offer accepted",
            request_id=request.request_id,
            offer_id=offer.offer_id,
            provider=actor.username,
            offers_count=inserted.offers_count,
            max_offers=request.max_offers,
            bidding_closed=inserted.bidding_closed,
        )
        return OfferReceipt(
            offer, inserted.offers_count, inserted.request, inserted.bidding_closed
        )

    def count_current_round(self, request: ServiceRequest) -> int:
        """Offers in the request's current bidding round"""
        if request.bidding_round < 1:
            return 0
        return len(self.store.list_offers(request.request_id, request.bidding_round))

    def list_visible(
        self,
        request: ServiceRequest,
        actor: Actor,
        all_rounds: bool = False,
    ) -> list[Offer]:
        """
        Offers the actor may see, in submission order

        Service providers only ever see their own offers. By default only the
        current bidding round is returned.
        """
        bidding_round = None if all_rounds else max(request.bidding_round, 1)
        offers = self.store.list_offers(request.request_id, bidding_round)
        if can_see_all_offers(actor):
            return offers
        return [o for o in offers if o.provider_username == actor.username]
