"""
Service Procurement Projections

Read models fed from emitted events: the per-user notification inbox and the
status dashboard. Both subscribe to the in-process bus; neither is consulted
for workflow decisions, which always read the store.
"""

from collections import Counter
from typing import Any

from service_procurement.kernel.events import Event
from service_procurement.kernel.metrics import requests_by_status
from service_procurement.procurement.models import (
    Actor,
    RequestStatus,
    Role,
    ServiceRequest,
)

OWNER = "owner"

# Who hears about each event: role names and/or the request OWNER
NOTIFICATION_ROUTES: dict[str, tuple[str, ...]] = {
    "RequestSubmitted": (Role.RESOURCE_PLANNER.value,),
    "RequestApproved": (OWNER,),
    "RequestRejected": (OWNER,),
    "BiddingStarted": (Role.SERVICE_PROVIDER.value,),
    "OfferSubmitted": (OWNER, Role.RESOURCE_PLANNER.value),
    "BiddingClosed": (OWNER, Role.RESOURCE_PLANNER.value),
    "OfferRecommended": (OWNER,),
    "SentToPO": (Role.PROCUREMENT_OFFICER.value,),
    "Ordered": (OWNER, Role.RESOURCE_PLANNER.value),
    "Expired": (OWNER,),
}

NOTIFICATION_TITLES: dict[str, str] = {
    "RequestSubmitted": "Request awaiting review",
    "RequestApproved": "Request approved",
    "RequestRejected": "Request rejected",
    "BiddingStarted": "New request open for bidding",
    "OfferSubmitted": "New offer received",
    "BiddingClosed": "Bidding closed",
    "OfferRecommended": "Offer recommended",
    "SentToPO": "Recommendation sent to procurement",
    "Ordered": "Order placed",
    "Expired": "Bidding window expired",
}

# Status a request is in after the event
EVENT_STATUS: dict[str, RequestStatus] = {
    "RequestCreated": RequestStatus.DRAFT,
    "RequestSubmitted": RequestStatus.IN_REVIEW,
    "RequestApproved": RequestStatus.APPROVED_FOR_SUBMISSION,
    "RequestRejected": RequestStatus.REJECTED,
    "BiddingStarted": RequestStatus.BIDDING,
    "BiddingClosed": RequestStatus.BID_EVALUATION,
    "OfferRecommended": RequestStatus.RECOMMENDED,
    "SentToPO": RequestStatus.SENT_TO_PO,
    "Ordered": RequestStatus.ORDERED,
    "Reactivated": RequestStatus.DRAFT,
    "Expired": RequestStatus.EXPIRED,
}


class NotificationInbox:
    """
    Notification inbox projection

    Fans each event out to the roles and owner listed in NOTIFICATION_ROUTES.
    Role notifications are shared: one read flag per recipient key.
    """

    def __init__(self) -> None:
        self.notifications: list[dict[str, Any]] = []

    def apply_event(self, event: Event) -> None:
        """
        Apply event to update projection

        Args:
            event: Event to apply
        """
        routes = NOTIFICATION_ROUTES.get(event.event_type)
        if not routes:
            return

        for route in routes:
            if route == OWNER:
                if not event.owner_username:
                    continue
                recipient = f"user:{event.owner_username}"
            else:
                recipient = f"role:{route}"
            self.notifications.append(
                {
                    "notification_id": f"{event.event_id}:{recipient}",
                    "recipient": recipient,
                    "event_type": event.event_type,
                    "request_id": event.request_id,
                    "title": NOTIFICATION_TITLES[event.event_type],
                    "message": self._message(event),
                    "created_at": event.occurred_at,
                    "read": False,
                }
            )

    @staticmethod
    def _message(event: Event) -> str:
        payload = event.payload
        if event.event_type == "RequestRejected" and payload.get("rp_rejection_reason"):
            return f"Request {event.request_id} rejected: {payload['rp_rejection_reason']}"
        if event.event_type == "OfferSubmitted":
            return (
                f"Offer {payload.get('offer_id')} from {payload.get('provider_username')} "
                f"on request {event.request_id}"
            )
        if event.event_type == "Ordered":
            return f"Request {event.request_id} ordered as {payload.get('order_id')}"
        actor = f" by {event.actor_username}" if event.actor_username else ""
        return f"Request {event.request_id}: {event.event_type}{actor}"

    @staticmethod
    def _recipients(actor: Actor) -> set[str]:
        return {f"user:{actor.username}", f"role:{actor.role.value}"}

    def list_for(self, actor: Actor, unread_only: bool = False) -> list[dict[str, Any]]:
        """Notifications addressed to the actor, newest first"""
        keys = self._recipients(actor)
        items = [
            n
            for n in self.notifications
            if n["recipient"] in keys and (not unread_only or not n["read"])
        ]
        return sorted(items, key=lambda n: n["created_at"], reverse=True)

    def unread_count(self, actor: Actor) -> int:
        return len(self.list_for(actor, unread_only=True))

    def mark_read(self, notification_id: str) -> bool:
        """Mark one notification read; False if unknown"""
        for n in self.notifications:
            if n["notification_id"] == notification_id:
                n["read"] = True
                return True
        return False

    def mark_all_read(self, actor: Actor) -> int:
        """Mark every unread notification of the actor read; returns how many"""
        unread = self.list_for(actor, unread_only=True)
        for n in unread:
            n["read"] = True
        return len(unread)


class RequestDashboard:
    """
    Status dashboard projection

    Tracks the current status of every request and keeps the
    requests_by_status gauge in step with it.
    """

    def __init__(self) -> None:
        self.requests: dict[str, dict[str, Any]] = {}

    def seed(self, requests: list[ServiceRequest]) -> None:
        """Initialize from stored requests (e.g. at process start)"""
        for request in requests:
            self.requests[request.request_id] = {
                "request_id": request.request_id,
                "title": request.title,
                "owner": request.created_by,
                "status": request.status,
                "updated_at": request.updated_at or request.created_at,
            }
        self._publish_gauge()

    def apply_event(self, event: Event) -> None:
        """
        Apply event to update projection

        Args:
            event: Event to apply
        """
        if event.event_type == "RequestDeleted":
            self.requests.pop(event.request_id, None)
        elif event.event_type == "RequestCreated":
            self.requests[event.request_id] = {
                "request_id": event.request_id,
                "title": event.payload.get("title", ""),
                "owner": event.owner_username,
                "status": RequestStatus.DRAFT,
                "updated_at": event.occurred_at,
            }
        elif event.event_type == "OfferSubmitted" and event.payload.get("bidding_closed"):
            self._set_status(event, RequestStatus.BID_EVALUATION)
        elif event.event_type in EVENT_STATUS:
            self._set_status(event, EVENT_STATUS[event.event_type])
        else:
            return
        self._publish_gauge()

    def _set_status(self, event: Event, status: RequestStatus) -> None:
        entry = self.requests.setdefault(
            event.request_id,
            {"request_id": event.request_id, "title": "", "owner": event.owner_username},
        )
        entry["status"] = status
        entry["updated_at"] = event.occurred_at

    def _publish_gauge(self) -> None:
        counts = self.counts()
        for status in RequestStatus:
            requests_by_status.labels(status=status.value).set(counts.get(status.value, 0))

    def counts(self) -> dict[str, int]:
        """Number of requests per status value"""
        return dict(Counter(entry["status"].value for entry in self.requests.values()))

    def by_status(self, status: RequestStatus) -> list[str]:
        """Request ids currently in the status"""
        return sorted(
            rid for rid, entry in self.requests.items() if entry["status"] == status
        )
