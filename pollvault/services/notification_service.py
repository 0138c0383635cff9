"""
Outbound notification trigger.

Delivery (email, webhooks) lives outside this service. The dispatcher
only announces that something happened; listeners registered with
`subscribe` receive every event. A failing listener is logged and never
propagates into the operation that triggered it.
"""
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

# Event names
STATUS_CHANGED = "hackathon.status_changed"
SUBMISSIONS_LOCKED = "hackathon.submissions_locked"
RESULTS_COMMITTED = "hackathon.results_committed"
TOKENS_ISSUED = "poll.tokens_issued"
JUDGE_ADDED = "poll.judge_added"

Listener = Callable[[str, Dict[str, Any]], None]


class NotificationDispatcher:
    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self, event: str, data: Dict[str, Any]) -> None:
        logger.info(f"Notification {event}: {data}")
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception:
                logger.exception(f"Notification listener failed for {event}")


dispatcher = NotificationDispatcher()
