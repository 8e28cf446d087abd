"""
Engine-wide reentrancy guard.

One guard is shared by every guarded operation of a provider. Entering while
it is held fails immediately; there is no waiting or queueing.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from ..exceptions import ReentrancyError

logger = logging.getLogger(__name__)


class ReentrancyGuard:
    """
    Non-blocking mutual-exclusion token.

    The flag covers nested calls on the same thread (a borrower callback
    calling back into the provider); the underlying lock makes the check and
    set atomic when separate threads race for the guard.
    """

    def __init__(self, name: str = "flash_loan_provider"):
        self.name = name
        self._lock = threading.Lock()
        self._holder: str | None = None

    @property
    def held(self) -> bool:
        return self._holder is not None

    @property
    def holder(self) -> str | None:
        """Operation currently holding the guard."""
        return self._holder

    def acquire(self, operation: str) -> None:
        if not self._lock.acquire(blocking=False):
            self._reject(operation)
        self._holder = operation

    def release(self) -> None:
        if self._holder is None:
            return
        self._holder = None
        self._lock.release()

    @contextmanager
    def hold(self, operation: str) -> Iterator[None]:
        """Hold the guard for the duration of ``operation``."""
        self.acquire(operation)
        try:
            yield
        finally:
            self.release()

    def _reject(self, operation: str) -> None:
        logger.warning(
            "Reentrant call rejected",
            extra={
                "event": "guard.reentrancy_blocked",
                "guard": self.name,
                "operation": operation,
                "holder": self._holder,
            },
        )
        raise ReentrancyError(
            f"{self.name} is locked: {operation} attempted during {self._holder}",
            details={"operation": operation, "holder": self._holder},
        )
