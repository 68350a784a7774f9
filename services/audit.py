from extensions import db
from models import AuditEvent

AUDIT_LIST_LIMIT = 1000


def record_audit_event(category, action, payload=None, session=None):
    """Stores one audit event and commits it."""
    session = session or db.session
    event = AuditEvent(category=category, action=action, payload=payload or {})
    session.add(event)
    session.commit()
    return event


def list_audit_events(category=None, limit=AUDIT_LIST_LIMIT, session=None):
    """Newest-first audit events, optionally restricted to one category ('all' means no filter)."""
    session = session or db.session
    query = session.query(AuditEvent)
    if category and category != 'all':
        query = query.filter(AuditEvent.category == category)
    return query.order_by(AuditEvent.ts.desc()).limit(limit).all()
