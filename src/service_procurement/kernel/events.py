"""
Domain event envelope

Every workflow operation emits exactly one event describing what happened to a
service request. Events are handed to the notification collaborator, which
fans them out to inboxes, dashboards or external systems.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Event(BaseModel):
    """
    Base event class - all domain events travel in this envelope

    Events are:
    - Immutable (never modified after creation)
    - Timestamped (occurred_at comes from the injected clock)
    - Tied to a request revision (the revision written by the operation)
    - Tagged with the command_id that produced them (idempotency key)
    """

    event_id: str = Field(
        ...,
        description="Unique event identifier (UUIDv7 for time-ordering)",
    )

    event_type: str = Field(
        ...,
        description="Specific event type: 'RequestSubmitted', 'Ordered', etc.",
    )

    request_id: str = Field(
        ...,
        description="Service request the event belongs to",
    )

    occurred_at: datetime = Field(
        ...,
        description="UTC timestamp when event occurred",
    )

    actor_username: str | None = Field(
        default=None,
        description="Username of the acting user (None for system events)",
    )

    actor_role: str | None = Field(
        default=None,
        description="Role the actor acted in (None for system events)",
    )

    owner_username: str | None = Field(
        default=None,
        description="Username of the PM who owns the request",
    )

    command_id: str = Field(
        ...,
        description="ID of the command that caused this event (idempotency key)",
    )

    payload: dict = Field(
        default_factory=dict,
        description="Event-specific data (must be JSON-serializable)",
    )

    revision: int = Field(
        default=0,
        description="Request revision after this event (0 for deleted requests)",
        ge=0,
    )

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "event_id": "01908e9a-3b87-7000-8000-123456789abc",
                    "event_type": "RequestSubmitted",
                    "request_id": "01908e9a-0000-7000-8000-000000000001",
                    "occurred_at": "2025-01-15T10:30:00Z",
                    "actor_username": "pm.alice",
                    "actor_role": "PROJECT_MANAGER",
                    "owner_username": "pm.alice",
                    "command_id": "cmd-123",
                    "payload": {"status": "IN_REVIEW"},
                    "revision": 2,
                }
            ]
        },
    }


def create_event(
    *,
    event_id: str,
    event_type: str,
    request_id: str,
    occurred_at: datetime,
    command_id: str,
    revision: int = 0,
    actor_username: str | None = None,
    actor_role: str | None = None,
    owner_username: str | None = None,
    payload: dict | None = None,
) -> Event:
    """
    Factory function for creating events with all required fields
    """
    return Event(
        event_id=event_id,
        event_type=event_type,
        request_id=request_id,
        occurred_at=occurred_at,
        actor_username=actor_username,
        actor_role=actor_role,
        owner_username=owner_username,
        command_id=command_id,
        payload=payload or {},
        revision=revision,
    )
