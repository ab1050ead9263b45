from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional

from routeaudit.domain.models import utc_now_iso
from routeaudit.errors import AuditCancelledError
from routeaudit.orchestrator.context import Phase

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    AUDIT_START = "audit:start"
    PHASE_COMPLETE = "phase:complete"
    PHASE_ERROR = "phase:error"
    PROGRESS = "progress"
    AUDIT_COMPLETE = "audit:complete"
    AUDIT_ERROR = "audit:error"


@dataclass(frozen=True)
class AuditEvent:
    type: EventType
    phase: Optional[Phase] = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)


Listener = Callable[[AuditEvent], None]


class EventSink:
    """
    Fan-out of audit events to caller-supplied callbacks.

    Delivery is synchronous and fire-and-forget: a listener that raises is
    logged and skipped, and the audit carries on.
    """

    def __init__(self, listeners: Iterable[Listener] = ()) -> None:
        self._listeners: list[Listener] = list(listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, type: EventType, phase: Optional[Phase] = None, **payload: Any) -> AuditEvent:
        event = AuditEvent(type=type, phase=phase, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Audit event listener failed on %s", type.value)
        return event


class CancellationToken:
    """Checked by the orchestrator before each phase starts."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, next_phase: Phase) -> None:
        if self._event.is_set():
            raise AuditCancelledError(next_phase)
