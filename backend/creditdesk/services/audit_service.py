# Overview: Security event logging for authorization outcomes.

from ..extensions import db
from ..models import SecurityEvent
from ..time_utils import utcnow


def log_security_event(
    user_id: str | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    business_id: int | None = None,
    commit: bool = True,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    event_type examples:
    - SYSTEM_CODE_REJECTED
    - APPROVAL_DENIED
    - MEMBER_APPROVED
    - MEMBER_REJECTED
    - ROLE_DEACTIVATED

    With commit=False the event joins the caller's transaction and is
    persisted (or rolled back) together with it.
    """
    event = SecurityEvent(
        user_id=user_id,
        business_id=business_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    if commit:
        db.session.commit()
    else:
        db.session.flush()

    return event


def list_security_events(business_id: int, event_type: str | None = None, limit: int = 100) -> list[SecurityEvent]:
    query = db.session.query(SecurityEvent).filter_by(business_id=business_id)
    if event_type:
        query = query.filter_by(event_type=event_type)
    return query.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit).all()
