"""
Revert (unblacklist): ask the provider to lift zone exclusions, then soft-revert the ledger.

The ledger is marked reverted whatever the remote outcome: `reverted` records that an
unsuppression was requested, `revert_confirmed` that the provider acknowledged it. Without a
provider token every item is a dry-run acknowledgement and is never marked confirmed. Verify is
what later confirms or refutes the provider's state.
"""
import logging
from dataclasses import dataclass, field
from typing import List

from services.audit import record_audit_event
from services.campaign_resolver import CampaignRef, Mapped, Ignored
from utils.helpers import utcnow

logger = logging.getLogger(__name__)

DRY_RUN_MESSAGE = 'Dry-run: no provider token configured; zone was not removed at the provider.'


@dataclass
class RevertItemResult:
    campaign_id: str
    zone_id: str
    ok: bool
    message: str
    dry_run: bool = False
    confirmed: bool = False
    provider_campaign_id: str = None
    record_ids: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            'campaignId': self.campaign_id,
            'zoneId': self.zone_id,
            'ok': self.ok,
            'message': self.message,
            'dryRun': self.dry_run,
            'confirmed': self.confirmed,
            'providerCampaignId': self.provider_campaign_id,
            'recordIds': self.record_ids,
        }


@dataclass
class RevertResult:
    results: List[RevertItemResult] = field(default_factory=list)
    audit_event_id: str = None

    def to_dict(self):
        return {'ok': True, 'results': [item.to_dict() for item in self.results],
                'auditEventId': self.audit_event_id}


class RevertOrchestrator:

    def __init__(self, gateway, ledger, resolver, clock=utcnow, audit=record_audit_event):
        self.gateway = gateway
        self.ledger = ledger
        self.resolver = resolver
        self.clock = clock
        self.audit = audit

    def _remote_remove(self, campaign_id, zone_id):
        if not self.gateway.is_configured:
            return RevertItemResult(campaign_id, zone_id, ok=True, message=DRY_RUN_MESSAGE, dry_run=True)
        resolution = self.resolver.resolve(CampaignRef(id=campaign_id))
        if isinstance(resolution, Ignored):
            return RevertItemResult(campaign_id, zone_id, ok=False,
                                    message=f'Campaign {campaign_id} is marked ignored; provider not called.')
        if not isinstance(resolution, Mapped):
            return RevertItemResult(campaign_id, zone_id, ok=False,
                                    message=f'Cannot resolve provider campaign: {resolution.reason}')
        response = self.gateway.remove_exclusion(resolution.provider_id, zone_id)
        return RevertItemResult(campaign_id, zone_id, ok=response.ok,
                                message=response.message or response.error or '',
                                confirmed=response.ok, provider_campaign_id=resolution.provider_id)

    def _matching_records(self, active, item, outcome):
        record_id = item.get('id')
        if record_id:
            return [r for r in active if r.id == str(record_id)]
        campaign_ids = {outcome.campaign_id}
        if outcome.provider_campaign_id:
            campaign_ids.add(outcome.provider_campaign_id)
        return [r for r in active if r.campaign_id in campaign_ids and r.zone_id == outcome.zone_id]

    def revert(self, record_refs) -> RevertResult:
        result = RevertResult()
        active = self.ledger.list_active() # Reverted records are history; never touched again.
        changed = []
        now = self.clock() # One timestamp for the whole batch.

        for item in record_refs:
            campaign_id = str(item.get('campaignId'))
            zone_id = str(item.get('zoneId'))
            outcome = self._remote_remove(campaign_id, zone_id) # Provider call, or a dry-run acknowledgement.
            if not outcome.ok:
                logger.warning('Unblacklist of zone %s for campaign %s failed: %s', zone_id, campaign_id, outcome.message)

            for record in self._matching_records(active, item, outcome):
                if record.reverted: # Same record named twice in one batch.
                    continue
                record.reverted = True
                record.reverted_at = now
                record.revert_confirmed = outcome.confirmed
                record.revert_message = (outcome.message or '')[:512] # Column width.
                outcome.record_ids.append(record.id)
                changed.append(record)
            result.results.append(outcome)

        dry_run = any(item.dry_run for item in result.results)
        ledger_error = None
        try:
            self.ledger.replace_all(changed)
        except Exception as exc:
            ledger_error = str(exc) or exc.__class__.__name__
            self.ledger.session.rollback() # Leave the session usable for the audit write.
            logger.error('Unblacklist ledger update failed after provider calls: %s', ledger_error)
            raise
        finally:
            # Provider removals already happened, so the batch is audited even when the ledger write fails.
            event = self.audit('optimizer', 'unblacklist', {
                'items': [item.to_dict() for item in result.results],
                'dryRun': dry_run,
                'recordsReverted': 0 if ledger_error else len(changed),
                'ledgerError': ledger_error,
            })
        result.audit_event_id = getattr(event, 'id', None)
        logger.info('Unblacklist processed %s items, %s ledger records reverted%s',
                    len(result.results), len(changed), ' (dry run)' if dry_run else '')
        return result
