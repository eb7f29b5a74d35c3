"""
Tick result - outcome of one scheduled bidding-window sweep

An external scheduler calls WorkflowOrchestrator.tick() periodically; the
orchestrator expires (or closes) every BIDDING request whose window elapsed and
reports what it did here.
"""

from datetime import datetime

from service_procurement.kernel.events import Event


class TickResult:
    """
    Result of a tick evaluation

    Contains the events produced by the sweep and the requests it touched.
    """

    def __init__(
        self,
        tick_id: str,
        tick_at: datetime,
        triggered_events: list[Event],
        inspected_count: int,
    ):
        self.tick_id = tick_id
        self.tick_at = tick_at
        self.triggered_events = triggered_events
        self.inspected_count = inspected_count

    @property
    def expired_request_ids(self) -> list[str]:
        return [e.request_id for e in self.triggered_events if e.event_type == "Expired"]

    @property
    def closed_request_ids(self) -> list[str]:
        """Requests moved to BID_EVALUATION because their window elapsed"""
        return [
            e.request_id
            for e in self.triggered_events
            if e.event_type == "BiddingClosed"
        ]

    def summary(self) -> str:
        """Human-readable summary of tick result"""
        return " | ".join(
            [
                f"Tick {self.tick_id} at {self.tick_at.isoformat()}",
                f"Inspected: {self.inspected_count}",
                f"Expired: {len(self.expired_request_ids)}",
                f"Closed for evaluation: {len(self.closed_request_ids)}",
            ]
        )
