import uuid
from extensions import db
from utils.helpers import utcnow, isoformat_utc

# Bumped whenever the persisted shape of ledger rows changes.
SCHEMA_VERSION = 1


def _new_record_id():
    return str(uuid.uuid4())


class SuppressionRecord(db.Model):
    """
    One observation in the suppression ledger: a zone seen excluded at the provider for a campaign.

    Records are created by the sync orchestrator only, have their `verified` flags refreshed by the
    verify orchestrator, and are soft-reverted (never deleted) by the revert orchestrator. Among
    non-reverted records, (campaign_id, zone_id) is unique; the partial index below backs the
    dedup pass performed during sync.
    """
    __tablename__ = 'suppression_records'

    # Monotonic insertion counter; the ledger lists records by seq descending (newest first).
    seq = db.Column(db.Integer, primary_key=True, autoincrement=True)
    # Opaque public id exposed over HTTP.
    id = db.Column(db.String(36), unique=True, nullable=False, default=_new_record_id, index=True)

    # Campaign reference as resolved at write time (normally the provider's numeric id).
    campaign_id = db.Column(db.String(255), nullable=False, index=True)
    zone_id = db.Column(db.String(255), nullable=False, index=True)
    provider = db.Column(db.String(64), nullable=False)
    observed_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    # --- Lifecycle flags ---
    synced = db.Column(db.Boolean, nullable=False, default=True)
    verified = db.Column(db.Boolean, nullable=False, default=False)
    verified_at = db.Column(db.DateTime, nullable=True)
    # `reverted` means an unsuppression was requested; `revert_confirmed` means the provider acknowledged it.
    reverted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    reverted_at = db.Column(db.DateTime, nullable=True)
    revert_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    revert_message = db.Column(db.String(512), nullable=True)

    # Optimistic concurrency counter, maintained by the SQLAlchemy mapper.
    version = db.Column(db.Integer, nullable=False)
    schema_version = db.Column(db.Integer, nullable=False, default=SCHEMA_VERSION)

    __table_args__ = (
        db.Index(
            'uq_active_suppression',
            'campaign_id', 'zone_id',
            unique=True,
            sqlite_where=reverted == db.false(),
            postgresql_where=reverted == db.false(),
        ),
    )

    __mapper_args__ = {'version_id_col': version}

    @property
    def dedup_key(self):
        return (self.campaign_id, self.zone_id)

    def to_dict(self):
        return {
            'id': self.id,
            'campaignId': self.campaign_id,
            'zoneId': self.zone_id,
            'provider': self.provider,
            'observedAt': isoformat_utc(self.observed_at),
            'synced': self.synced,
            'verified': self.verified,
            'verifiedAt': isoformat_utc(self.verified_at),
            'reverted': self.reverted,
            'revertedAt': isoformat_utc(self.reverted_at),
            'revertConfirmed': self.revert_confirmed,
            'revertMessage': self.revert_message,
        }

    def __repr__(self):
        state = 'reverted' if self.reverted else ('verified' if self.verified else 'unverified')
        return f'<SuppressionRecord {self.id} campaign={self.campaign_id} zone={self.zone_id} {state}>'
