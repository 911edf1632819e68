from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import Session

from booking.models import AuditEvent
from booking.services.audit_policy import sanitize_metadata


def record_event(
    session: Session,
    *,
    tenant_id: Optional[str],
    actor_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str],
    timestamp: datetime,
    metadata: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
) -> AuditEvent:
    event = AuditEvent(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata_json=sanitize_metadata(resource_type, action, metadata),
        context=context or {},
        timestamp=timestamp,
    )
    session.add(event)
    return event
