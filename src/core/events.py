"""
Status Event Bus - in-process pub/sub for node and run status updates

Status updates arrive from several independent sources (the run lifecycle,
inbound trigger deliveries, direct node invocations). Each is published as a
StatusEvent; subscribers filter by source.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Set, Callable, Awaitable, Iterable

from .types import EventSource, NodeID, RunID, RunStatus
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class StatusEvent:
    """One status update; partial results are merged, never replaced"""
    source: EventSource
    run_id: Optional[RunID]
    run_status: RunStatus
    executed_node_ids: List[NodeID] = field(default_factory=list)
    current_node_id: Optional[NodeID] = None
    results: Dict[NodeID, Any] = field(default_factory=dict)
    related_node_ids: List[NodeID] = field(default_factory=list)  # Direct successors of a delivered trigger
    workflow_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.run_status in (RunStatus.COMPLETED, RunStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source.value,
            'run_id': self.run_id,
            'run_status': self.run_status.value,
            'executed_node_ids': list(self.executed_node_ids),
            'current_node_id': self.current_node_id,
            'results': self.results,
            'related_node_ids': list(self.related_node_ids),
            'workflow_id': self.workflow_id,
            'timestamp': self.timestamp.isoformat(),
        }


# Type for event handlers
StatusHandler = Callable[[StatusEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to status events"""
    id: str
    sources: Set[EventSource]
    handler: StatusHandler
    filter_workflow: Optional[str] = None  # Only receive events for this workflow


class StatusEventBus:
    """
    Async pub/sub bus for status events

    Handlers for one event run concurrently; a failing handler is logged and
    does not stop the others.

    Example:
        bus = StatusEventBus()

        async def on_status(event: StatusEvent):
            print(event.run_status)

        sub_id = bus.subscribe([EventSource.RUN_LIFECYCLE], on_status)
        await bus.publish(StatusEvent(EventSource.RUN_LIFECYCLE, "run-1", RunStatus.RUNNING))
        bus.unsubscribe(sub_id)
    """

    def __init__(self, max_history: int = 500):
        self._subscriptions: Dict[str, Subscription] = {}
        self._history: List[StatusEvent] = []
        self._max_history = max_history
        self._subscription_counter = 0

    def subscribe(
        self,
        sources: Iterable[EventSource],
        handler: StatusHandler,
        filter_workflow: Optional[str] = None
    ) -> str:
        """
        Subscribe to status events

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            sources=set(sources),
            handler=handler,
            filter_workflow=filter_workflow,
        )
        logger.debug(f"Subscription {sub_id} registered for {[s.value for s in sources]}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: StatusEvent) -> None:
        """Deliver an event to every matching subscriber"""
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = [
            sub.handler for sub in list(self._subscriptions.values())
            if self._matches(sub, event)
        ]
        if not handlers:
            return

        results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    f"Status handler failed for {event.source.value} event: {result}",
                    exc_info=result,
                )

    def history(self, run_id: Optional[RunID] = None, limit: int = 100) -> List[StatusEvent]:
        events = self._history
        if run_id is not None:
            events = [e for e in events if e.run_id == run_id]
        return events[-limit:]

    @staticmethod
    def _matches(subscription: Subscription, event: StatusEvent) -> bool:
        if event.source not in subscription.sources:
            return False
        if subscription.filter_workflow and event.workflow_id != subscription.filter_workflow:
            return False
        return True
