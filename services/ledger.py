"""
Suppression ledger: the durable, append-mostly record of zones observed excluded at the provider.

Writes are per-record. Inserts rely on the partial unique index over non-reverted
(campaign_id, zone_id) so a concurrent sync cannot create a duplicate; flag updates rely on the
mapper's version column and are re-applied on top of fresh rows when another writer got there
first. Nothing here deletes a record.
"""
import logging

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from extensions import db
from models import SuppressionRecord, SCHEMA_VERSION
from utils.helpers import utcnow

logger = logging.getLogger(__name__)

# Flags that verify and revert are allowed to change.
MUTABLE_FIELDS = (
    'verified', 'verified_at',
    'reverted', 'reverted_at',
    'revert_confirmed', 'revert_message',
)


class LedgerConflictError(Exception):
    """Raised when a flag update keeps losing to concurrent writers."""


class SuppressionLedger:

    def __init__(self, provider, session=None, conflict_retries=3):
        self.provider = provider
        self.session = session or db.session
        self.conflict_retries = conflict_retries

    def _query(self):
        return self.session.query(SuppressionRecord)

    def list_all(self, include_reverted=True):
        """All records, newest first."""
        query = self._query()
        if not include_reverted:
            query = query.filter(SuppressionRecord.reverted.is_(False))
        return query.order_by(SuppressionRecord.seq.desc()).all()

    def list_active(self):
        return self.list_all(include_reverted=False)

    def active_keys(self):
        """(campaign_id, zone_id) pairs of every non-reverted record; the sync dedup set."""
        rows = (self.session.query(SuppressionRecord.campaign_id, SuppressionRecord.zone_id)
                .filter(SuppressionRecord.reverted.is_(False)).all())
        return {(campaign_id, zone_id) for campaign_id, zone_id in rows}

    def get_many(self, record_ids):
        if not record_ids:
            return []
        return self._query().filter(SuppressionRecord.id.in_(list(record_ids))).all()

    def new_record(self, campaign_id, zone_id, observed_at=None, verified=True):
        """Builds (without persisting) a record freshly observed at the provider."""
        now = observed_at or utcnow()
        return SuppressionRecord(
            campaign_id=str(campaign_id),
            zone_id=str(zone_id),
            provider=self.provider,
            observed_at=now,
            synced=True,
            verified=verified,
            verified_at=now if verified else None,
            reverted=False,
            revert_confirmed=False,
            schema_version=SCHEMA_VERSION,
        )

    def append(self, records):
        """
        Inserts a batch of new records and returns the ones actually stored.

        The batch is written in one transaction. If it collides with a non-reverted record
        written concurrently, it is replayed one savepoint per record and the colliding rows
        are dropped.
        """
        records = list(records)
        if not records:
            return []
        try:
            self.session.add_all(records)
            self.session.commit()
            return records
        except IntegrityError:
            self.session.rollback()
            logger.warning('Ledger batch of %s collided with concurrent writes; inserting record by record.', len(records))

        stored = []
        for original in records:
            # Fresh instances: the rolled-back ones may still carry keys assigned by the failed flush.
            record = self._copy(original)
            try:
                with self.session.begin_nested():
                    self.session.add(record)
                stored.append(record)
            except IntegrityError:
                logger.info('Skipping duplicate ledger record campaign=%s zone=%s', record.campaign_id, record.zone_id)
        self.session.commit()
        return stored

    def _copy(self, record):
        copy = self.new_record(record.campaign_id, record.zone_id, observed_at=record.observed_at,
                               verified=bool(record.verified))
        copy.verified_at = record.verified_at
        copy.provider = record.provider or self.provider
        return copy

    @staticmethod
    def _pending_changes(record):
        state = inspect(record)
        changes = {}
        for name in MUTABLE_FIELDS:
            if state.attrs[name].history.has_changes():
                changes[name] = getattr(record, name)
        return changes

    def replace_all(self, records):
        """
        Persists the mutated flags of the given records.

        Only fields that actually changed are written. On a version conflict the changes are
        re-applied to freshly loaded rows, up to `conflict_retries` times.
        """
        records = list(records)
        pending = {}
        for record in records:
            changes = self._pending_changes(record)
            if changes:
                pending[record.id] = changes
        if not pending:
            self.session.commit()
            return 0

        attempt = 0
        while True:
            try:
                self.session.commit()
                return len(pending)
            except StaleDataError:
                self.session.rollback()
                attempt += 1
                if attempt > self.conflict_retries:
                    raise LedgerConflictError(
                        f'Ledger update of {len(pending)} records lost to concurrent writers {attempt} times')
                logger.info('Ledger version conflict; re-applying %s record updates (attempt %s)', len(pending), attempt)
                for fresh in self.get_many(pending.keys()):
                    for name, value in pending[fresh.id].items():
                        setattr(fresh, name, value)
