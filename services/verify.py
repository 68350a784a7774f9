"""
Verify: re-check ledger records against the provider's live exclusions.

Records are grouped by provider campaign; each campaign is fetched once and every record's
`verified` flag is set by set membership. A campaign whose fetch fails is skipped, leaving its
records untouched, so a transient provider error never reads as "zone no longer excluded".
Every campaign in the batch gets a diagnostics entry shaped like Sync's.
"""
import logging
from dataclasses import dataclass, field
from typing import List

from services.campaign_resolver import CampaignRef, Mapped
from services.provider_gateway import GatewayResult, MISSING_TOKEN
from services.worker_pool import map_bounded
from utils.helpers import utcnow

logger = logging.getLogger(__name__)


@dataclass
class VerifyResult:
    campaigns_processed: int = 0
    campaigns_skipped: int = 0
    campaigns_total: int = 0
    entries_checked: int = 0
    verified_true: int = 0
    verified_false: int = 0
    unconfigured: bool = False
    diagnostics: List[dict] = field(default_factory=list)

    def to_dict(self):
        if self.unconfigured:
            return {
                'ok': False,
                'error': MISSING_TOKEN,
                'message': 'PROVIDER_API_TOKEN is not set on the server; cannot verify against provider.',
            }
        return {
            'ok': True,
            'campaigns': {
                'processed': self.campaigns_processed,
                'skipped': self.campaigns_skipped,
                'total': self.campaigns_total,
            },
            'entries': {
                'checked': self.entries_checked,
                'verifiedTrue': self.verified_true,
                'verifiedFalse': self.verified_false,
            },
            'diagnostics': self.diagnostics,
        }


def select_records(records, record_refs=None, aliases=None):
    """
    Picks the non-reverted records a verify request targets.

    A ref with an `id` matches that record only; otherwise it matches on campaignId, and on
    zoneId too when one is given. `aliases` maps a ref's campaignId to every campaign id it
    stands for (itself plus the resolved provider id), since ledger rows hold the provider id.
    No refs means every non-reverted record.
    """
    active = [r for r in records if not r.reverted]
    if not record_refs:
        return active
    aliases = aliases or {}
    selected = []
    for record in active:
        for ref in record_refs:
            ref_id = ref.get('id')
            if ref_id:
                if record.id == str(ref_id):
                    break
                continue
            campaign_id = str(ref.get('campaignId', ''))
            if record.campaign_id not in aliases.get(campaign_id, {campaign_id}):
                continue
            zone_id = ref.get('zoneId')
            if zone_id is None or str(zone_id) == record.zone_id:
                break
        else:
            continue
        selected.append(record)
    return selected


class VerifyOrchestrator:

    def __init__(self, gateway, ledger, resolver, max_workers=4, clock=utcnow):
        self.gateway = gateway
        self.ledger = ledger
        self.resolver = resolver
        self.max_workers = max_workers
        self.clock = clock

    def _fetch(self, provider_id):
        try:
            return self.gateway.fetch_excluded_zones(provider_id)
        except Exception as exc:
            logger.error('Unexpected error verifying campaign %s', provider_id, exc_info=True)
            return GatewayResult.failure(str(exc))

    def _aliases(self, record_refs):
        """campaignId -> {campaignId, resolved provider id} for refs that address a campaign."""
        aliases = {}
        for ref in record_refs or []:
            if ref.get('id') or ref.get('campaignId') in (None, ''):
                continue
            campaign_id = str(ref['campaignId'])
            if campaign_id in aliases:
                continue
            ids = {campaign_id}
            resolution = self.resolver.resolve(CampaignRef(id=campaign_id))
            if isinstance(resolution, Mapped):
                ids.add(resolution.provider_id) # Ledger rows are keyed by provider id.
            aliases[campaign_id] = ids
        return aliases

    def verify(self, record_refs=None, cancel_event=None) -> VerifyResult:
        result = VerifyResult()
        if not self.gateway.is_configured:
            logger.warning('Verify requested but the provider is not configured.')
            result.unconfigured = True
            return result

        targets = select_records(self.ledger.list_all(), record_refs, self._aliases(record_refs))

        groups = {} # provider id -> records to check against that campaign's exclusions
        order = [] # provider ids in first-seen order, for stable diagnostics
        unresolved = {} # stored campaign id -> Unmapped/Ignored outcome
        for record in targets:
            if record.campaign_id in unresolved:
                continue
            resolution = self.resolver.resolve(CampaignRef(id=record.campaign_id))
            if not isinstance(resolution, Mapped):
                unresolved[record.campaign_id] = resolution
                continue
            if resolution.provider_id not in groups:
                groups[resolution.provider_id] = []
                order.append(resolution.provider_id)
            groups[resolution.provider_id].append(record)

        for campaign_id, resolution in unresolved.items():
            result.diagnostics.append({
                'campaignId': campaign_id, 'providerCampaignId': None, 'fetched': None, 'status': None,
                'error': 'unresolved', 'detail': getattr(resolution, 'reason', 'campaign is marked ignored'),
            })

        fetched = map_bounded(self._fetch, order, max_workers=self.max_workers, cancel_event=cancel_event)

        # Campaigns that cannot be resolved count as skipped, like failed fetches.
        result.campaigns_total = len(order) + len(unresolved)
        result.campaigns_skipped = len(unresolved)
        changed = []
        now = self.clock() # One timestamp for the whole batch.
        for provider_id in order:
            records = groups[provider_id]
            response = fetched.get(provider_id)
            diagnostic = {'campaignId': records[0].campaign_id, 'providerCampaignId': provider_id}
            if response is None: # Never ran: the batch was cancelled first.
                result.campaigns_skipped += 1
                diagnostic.update({'fetched': None, 'status': None, 'error': 'cancelled'})
                result.diagnostics.append(diagnostic)
                continue
            diagnostic.update({
                'fetched': len(response.zones) if response.ok else None,
                'status': response.http_status,
            })
            if response.strategy:
                diagnostic['strategy'] = response.strategy
            if not response.ok:
                result.campaigns_skipped += 1
                diagnostic['error'] = response.error # Already truncated by the gateway.
                result.diagnostics.append(diagnostic)
                logger.warning('Verify skipped campaign %s: %s (status %s)',
                               provider_id, response.error, response.http_status)
                continue

            result.campaigns_processed += 1
            excluded = set(response.zones)
            for record in records:
                present = record.zone_id in excluded
                record.verified = present
                record.verified_at = now
                result.entries_checked += 1
                if present:
                    result.verified_true += 1
                else:
                    result.verified_false += 1
                changed.append(record)
            diagnostic['checked'] = len(records)
            result.diagnostics.append(diagnostic)

        if unresolved:
            logger.warning('Verify could not resolve a provider campaign for %s: %s',
                           len(unresolved), ', '.join(sorted(unresolved)))
        self.ledger.replace_all(changed) # Only flags that actually changed are written.
        logger.info('Verify finished: %s processed, %s skipped, %s checked (%s true / %s false)',
                    result.campaigns_processed, result.campaigns_skipped, result.entries_checked,
                    result.verified_true, result.verified_false)
        return result
