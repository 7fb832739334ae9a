"""
Progress Notifier
In-process publish/subscribe channel for operation progress events.
"""

import logging
import threading
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

GLOBAL_TOPIC = "import-progress"

Subscriber = Callable[[Dict[str, Any]], None]


def job_topic(operation_id: int) -> str:
    """Topic carrying the events of one operation."""
    return f"{GLOBAL_TOPIC}/{operation_id}"


class ProgressNotifier:
    """
    Publishes progress events to per-operation and global topics.

    Delivery is synchronous and in publish order, so one subscriber sees
    the events of an operation in the order they were produced. A failing
    subscriber is logged and does not affect other subscribers or the
    publishing job.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for a topic.

        Returns:
            Function that removes the subscription
        """
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def publish(self, topic: str, event: Dict[str, Any]) -> int:
        """Deliver an event to every subscriber of a topic. Returns the delivery count."""
        with self._lock:
            callbacks = list(self._subscribers.get(topic, []))

        delivered = 0
        for callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Progress subscriber failed on {topic}: {e}", exc_info=True)
        return delivered

    def notify_progress(self, event: Dict[str, Any]) -> None:
        """Publish a progress event to its operation topic and the global topic."""
        self.publish(job_topic(event["operationId"]), event)
        self.publish(GLOBAL_TOPIC, event)
