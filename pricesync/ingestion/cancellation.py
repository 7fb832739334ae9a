"""
Cooperative Cancellation
Tokens polled by running jobs, and a registry to cancel them by operation id.
"""

import logging
import threading
from typing import Dict, Optional

from pricesync.ingestion.errors import CancellationSignal

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Shared stop flag for one operation.

    Setting the flag never interrupts work in progress; the job decides
    where it polls (between batches or between rows).
    """

    def __init__(self, operation_id: Optional[int] = None):
        self.operation_id = operation_id
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationSignal(self.operation_id)


class CancellationRegistry:
    """Tokens of running operations, keyed by operation id."""

    def __init__(self):
        self._tokens: Dict[int, CancellationToken] = {}
        self._lock = threading.Lock()

    def register(self, operation_id: int) -> CancellationToken:
        with self._lock:
            token = self._tokens.get(operation_id)
            if token is None:
                token = CancellationToken(operation_id)
                self._tokens[operation_id] = token
            return token

    def cancel(self, operation_id: int) -> bool:
        """Request cancellation. Returns False if the operation is not running here."""
        with self._lock:
            token = self._tokens.get(operation_id)
        if token is None:
            return False
        token.cancel()
        logger.info(f"Cancellation requested for operation {operation_id}")
        return True

    def release(self, operation_id: int) -> None:
        with self._lock:
            self._tokens.pop(operation_id, None)


cancellation_registry = CancellationRegistry()
