"""
Audit events for the flash-loan protocol.

Every successful state-changing operation produces exactly one event. Events
are buffered by the state journal while an invocation is in flight and are
only published here once the invocation commits, so reverted attempts never
appear in the audit trail.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from .loan_parameters import LoanParameters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """Base record for audit events."""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["event"] = self.name
        return payload

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class LoanExecuted(AuditEvent):
    caller: str
    asset: str
    amount: int
    premium: int
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class AssetListed(AuditEvent):
    asset: str
    params: LoanParameters


@dataclass(frozen=True)
class AssetDelisted(AuditEvent):
    asset: str


@dataclass(frozen=True)
class CallerAuthorized(AuditEvent):
    caller: str


@dataclass(frozen=True)
class CallerRevoked(AuditEvent):
    caller: str


@dataclass(frozen=True)
class FeesWithdrawn(AuditEvent):
    asset: str
    amount: int


@dataclass(frozen=True)
class ParametersUpdated(AuditEvent):
    asset: str
    params: LoanParameters


@dataclass(frozen=True)
class LiquidityDeposited(AuditEvent):
    asset: str
    amount: int
    source: str


@dataclass(frozen=True)
class LiquidityWithdrawn(AuditEvent):
    asset: str
    amount: int
    recipient: str


EventSubscriber = Callable[[AuditEvent], None]


@dataclass
class AuditLog:
    """
    Append-only history of committed protocol events.

    Subscribers are notified in registration order after the event has been
    recorded. A failing subscriber is logged and does not affect the already
    committed operation or the remaining subscribers.
    """

    history: list[AuditEvent] = field(default_factory=list)
    max_history_size: int = 10_000
    _subscribers: list[EventSubscriber] = field(default_factory=list)

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: EventSubscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def publish(self, event: AuditEvent) -> None:
        self.history.append(event)
        if len(self.history) > self.max_history_size:
            self.history = self.history[-self.max_history_size:]

        logger.info(
            "Audit event",
            extra={"event": f"audit.{event.name}", "payload": event.to_dict()},
        )

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as exc:
                logger.error(
                    "Audit subscriber failed: %s - %s",
                    type(exc).__name__,
                    str(exc),
                    extra={
                        "event": "audit.subscriber_failed",
                        "audit_event": event.name,
                        "error_type": type(exc).__name__,
                    },
                )

    def events_of(self, event_type: type[AuditEvent]) -> list[AuditEvent]:
        """Return recorded events of a given type, oldest first."""
        return [e for e in self.history if isinstance(e, event_type)]
