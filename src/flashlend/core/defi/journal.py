"""
State journal providing all-or-nothing invocations.

Participants expose ``snapshot()`` / ``restore()``. A transaction snapshots
every participant on entry; if the body raises, every participant is restored
and the exception propagates unchanged. Audit events emitted inside a
transaction are buffered and only published when the outermost transaction
commits. Nested transactions behave as savepoints. An open transaction belongs
to the thread that opened it; other threads are rejected until it closes.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol

from ..exceptions import InvalidArgumentError, ReentrancyError
from .events import AuditEvent, AuditLog

logger = logging.getLogger(__name__)


class JournalParticipant(Protocol):
    def snapshot(self) -> dict[str, Any]:
        ...

    def restore(self, snapshot: dict[str, Any]) -> None:
        ...


@dataclass
class StateJournal:
    """Checkpoint/rollback coordinator for protocol state."""

    audit_log: AuditLog = field(default_factory=AuditLog)
    _participants: dict[str, JournalParticipant] = field(default_factory=dict)
    _savepoints: list[dict[str, dict[str, Any]]] = field(default_factory=list)
    _pending_events: list[AuditEvent] = field(default_factory=list)
    _owner: int | None = field(default=None, init=False)
    _owner_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def register(self, name: str, participant: JournalParticipant) -> None:
        if self._savepoints:
            raise InvalidArgumentError("Cannot register participants inside a transaction")
        self._participants[name] = participant

    @property
    def participants(self) -> list[str]:
        return list(self._participants)

    @property
    def in_transaction(self) -> bool:
        return bool(self._savepoints)

    @property
    def depth(self) -> int:
        return len(self._savepoints)

    def checkpoint(self) -> dict[str, dict[str, Any]]:
        return {name: p.snapshot() for name, p in self._participants.items()}

    def rollback_to(self, savepoint: dict[str, dict[str, Any]]) -> None:
        for name, participant in self._participants.items():
            participant.restore(savepoint[name])

    def emit(self, event: AuditEvent) -> None:
        """Publish now, or on commit if a transaction is open."""
        if self._savepoints:
            self._pending_events.append(event)
        else:
            self.audit_log.publish(event)

    @contextmanager
    def transaction(self, label: str = "") -> Iterator["StateJournal"]:
        """
        Run the body atomically.

        Usage:
            with journal.transaction("withdraw_fees"):
                ledger.withdraw_fees(asset)
                tokens.transfer(...)
        """
        self._claim(label)
        try:
            savepoint = self.checkpoint()
        except BaseException:
            self._release()
            raise
        event_mark = len(self._pending_events)
        self._savepoints.append(savepoint)

        try:
            yield self
        except BaseException as exc:
            self._savepoints.pop()
            try:
                self.rollback_to(savepoint)
                del self._pending_events[event_mark:]
            finally:
                self._release()
            logger.warning(
                "Transaction reverted",
                extra={
                    "event": "journal.reverted",
                    "label": label,
                    "depth": len(self._savepoints),
                    "error_type": type(exc).__name__,
                },
            )
            raise

        self._savepoints.pop()
        if self._savepoints:
            return

        events, self._pending_events = self._pending_events, []
        self._release()
        logger.debug(
            "Transaction committed",
            extra={"event": "journal.committed", "label": label, "events": len(events)},
        )
        for event in events:
            self.audit_log.publish(event)

    def _claim(self, label: str) -> None:
        current = threading.get_ident()
        with self._owner_lock:
            if self._owner is not None and self._owner != current:
                logger.warning(
                    "Transaction rejected from another thread",
                    extra={"event": "journal.cross_thread_rejected", "label": label},
                )
                raise ReentrancyError(
                    f"Journal busy: {label} attempted while another thread holds a transaction",
                    details={"operation": label},
                )
            self._owner = current

    def _release(self) -> None:
        with self._owner_lock:
            if not self._savepoints:
                self._owner = None
