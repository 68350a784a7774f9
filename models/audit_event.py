import uuid
from extensions import db
from utils.helpers import utcnow, isoformat_utc


class AuditEvent(db.Model):
    """An operator-visible audit entry, e.g. one per unblacklist batch."""
    __tablename__ = 'audit_events'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    ts = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    category = db.Column(db.String(64), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False)
    payload = db.Column(db.JSON, nullable=True)

    def to_dict(self):
        data = dict(self.payload or {})
        data.update({
            'id': self.id,
            'ts': isoformat_utc(self.ts),
            'category': self.category,
            'action': self.action,
        })
        return data

    def __repr__(self):
        return f'<AuditEvent {self.category}/{self.action} @ {self.ts}>'
