import uuid
from typing import Any

from sqlalchemy.orm import Session

from rosterhub.models.audit_event import AuditEvent
from rosterhub.models.user import User


def log_event(
    *,
    db: Session,
    actor: User | None,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    metadata: dict[str, Any] | None = None,
):
    """Adds the event to the session; the caller commits with its own unit of work."""
    event = AuditEvent(
        actor_user_id=actor.id if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        event_metadata=metadata,
    )
    db.add(event)
    return event
