from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from patientflow.infrastructure.db.models_sqlalchemy import utc_now
from patientflow.infrastructure.db.repositories.audit_repo import AuditLogRepository
from patientflow.infrastructure.db.session import session_scope

logger = logging.getLogger(__name__)

VISIT_TRANSITION = "visit.transition"
PATIENT_REGISTERED = "patient.registered"
PATIENT_UPDATED = "patient.updated"
TRIAGE_RECORDED = "triage.recorded"
QUEUE_ENTRY_CHANGED = "queue.entry_changed"
ADMISSION_REQUESTED = "admission.requested"
ADMISSION_CANCELLED = "admission.cancelled"
BED_ASSIGNED = "bed.assigned"
BED_STATUS_CHANGED = "bed.status_changed"

WILDCARD = "*"


@dataclass(frozen=True)
class DomainEvent:
    name: str
    entity_type: str
    entity_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    actor: str | None = None
    occurred_at: datetime = field(default_factory=utc_now)


Subscriber = Callable[[DomainEvent], None]


class EventBus:
    """In-process publish/subscribe for committed changes.

    Publishing is fire-and-forget: a failing subscriber is logged and the
    remaining subscribers still run.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscriber]] = {}

    def subscribe(self, event_name: str, handler: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(event_name, []).append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(event_name, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            handlers = list(self._subscribers.get(event.name, ())) + list(self._subscribers.get(WILDCARD, ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                logger.exception("Event subscriber failed for %s", event.name)


class AuditTrailSubscriber:
    """Persists every published event into ``audit_log``."""

    def __init__(
        self,
        audit_repo: AuditLogRepository | None = None,
        session_factory: Callable = session_scope,
    ) -> None:
        self.audit_repo = audit_repo or AuditLogRepository()
        self.session_factory = session_factory

    def attach(self, bus: EventBus) -> Callable[[], None]:
        return bus.subscribe(WILDCARD, self)

    def __call__(self, event: DomainEvent) -> None:
        with self.session_factory() as session:
            self.audit_repo.add_event(
                session,
                actor=event.actor,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                action=event.name,
                payload_json=json.dumps(event.payload, ensure_ascii=False, default=str),
            )
