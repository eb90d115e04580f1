# therapy_center/audit.py
# Services hand AuditEvents to a sink; the default one just logs them.

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from sqlmodel import SQLModel

logger = logging.getLogger("therapy_center.audit")


@dataclass(frozen=True)
class AuditEvent:
    tenant_id: str
    actor_id: Optional[int]
    action: str  # CREATE, UPDATE, DELETE or CANCEL
    entity: str
    entity_id: Optional[int]
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    extra: dict[str, Any] = field(default_factory=dict)


AuditSink = Callable[[AuditEvent], None]


def snapshot(row: Optional[SQLModel]) -> Optional[dict[str, Any]]:
    if row is None:
        return None
    return row.model_dump(mode="json")


def log_audit_event(event: AuditEvent) -> None:
    logger.info(
        f"{event.action} {event.entity}#{event.entity_id} by user {event.actor_id} "
        f"(tenant {event.tenant_id})",
        extra={"audit": event},
    )
