"""
Sync: import the provider's current zone exclusions into the suppression ledger.

For each resolved provider campaign the excluded zones are fetched (concurrently, bounded) and
every zone not already held by a non-reverted record becomes a new record, verified by
construction. Per-campaign failures become diagnostics; they never abort the batch. Re-running
against an unchanged provider adds nothing.
"""
import logging
from dataclasses import dataclass, field
from typing import List

from services.campaign_resolver import CampaignRef
from services.provider_gateway import GatewayResult
from services.reporting_client import ReportingUnavailable
from services.worker_pool import map_bounded
from utils.helpers import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    resolved_count: int = 0
    added_count: int = 0
    diagnostics: List[dict] = field(default_factory=list)
    ignored: List[str] = field(default_factory=list)
    added: list = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self):
        return {
            'ok': True,
            'campaigns': self.resolved_count,
            'added': self.added_count,
            'dryRun': self.dry_run,
            'ignored': self.ignored,
            'diagnostics': self.diagnostics,
        }


class SyncOrchestrator:

    def __init__(self, gateway, ledger, resolver, reporting_client=None, max_workers=4, clock=utcnow):
        self.gateway = gateway
        self.ledger = ledger
        self.resolver = resolver
        self.reporting_client = reporting_client
        self.max_workers = max_workers
        self.clock = clock

    def _candidate_refs(self, campaign_refs, date_range, result):
        if campaign_refs:
            return [CampaignRef.coerce(ref) for ref in campaign_refs]
        if self.reporting_client is None:
            result.diagnostics.append({'campaignId': None, 'fetched': None, 'status': None,
                                       'error': 'reporting_unavailable: no reporting client configured'})
            return []
        try:
            return self.reporting_client.list_campaigns(date_range)
        except ReportingUnavailable as exc:
            logger.warning('Sync could not list campaigns for %s: %s', date_range, exc)
            result.diagnostics.append({'campaignId': None, 'fetched': None, 'status': None,
                                       'error': f'reporting_unavailable: {exc}'})
            return []

    def _fetch(self, provider_id):
        try:
            return self.gateway.fetch_excluded_zones(provider_id)
        except Exception as exc:
            logger.error('Unexpected error fetching exclusions for campaign %s', provider_id, exc_info=True)
            return GatewayResult.failure(str(exc))

    def sync(self, campaign_refs=None, date_range=None, dry_run=False, cancel_event=None) -> SyncResult:
        result = SyncResult(dry_run=dry_run)
        refs = self._candidate_refs(campaign_refs, date_range, result)

        batch = self.resolver.resolve_many(refs)
        result.resolved_count = len(batch.provider_ids)
        result.ignored = [ref.id for ref in batch.ignored]
        for ref, unmapped in batch.unresolved:
            result.diagnostics.append({'campaignId': ref.id, 'campaignName': ref.name, 'fetched': None,
                                       'status': None, 'error': 'unresolved', 'detail': unmapped.reason})

        seen = self.ledger.active_keys() # (campaign_id, zone_id) of every non-reverted record.
        fetched = map_bounded(self._fetch, batch.provider_ids, max_workers=self.max_workers,
                              cancel_event=cancel_event)

        new_records = []
        now = self.clock() # One timestamp for the whole batch.
        for provider_id in batch.provider_ids:
            local_ids = [ref.id for ref in batch.refs_by_provider[provider_id]]
            response = fetched.get(provider_id)
            diagnostic = {'campaignId': local_ids[0], 'providerCampaignId': provider_id}
            if len(local_ids) > 1:
                diagnostic['localCampaignIds'] = local_ids
            if response is None: # Never ran: the batch was cancelled first.
                diagnostic.update({'fetched': None, 'status': None, 'error': 'cancelled'})
                result.diagnostics.append(diagnostic)
                continue
            diagnostic.update({
                'fetched': len(response.zones) if response.ok else None,
                'status': response.http_status,
            })
            if response.error:
                diagnostic['error'] = response.error
            if response.strategy:
                diagnostic['strategy'] = response.strategy
            result.diagnostics.append(diagnostic)
            if not response.ok:
                continue
            for zone_id in response.zones:
                key = (provider_id, zone_id)
                if key in seen:
                    continue
                seen.add(key) # Also dedups zones repeated within one response.
                new_records.append(self.ledger.new_record(provider_id, zone_id, observed_at=now))

        if dry_run:
            result.added = new_records # Reported, not written.
        else:
            result.added = self.ledger.append(new_records) # Rows a concurrent sync already wrote are dropped.
        result.added_count = len(result.added)
        logger.info('Sync finished: %s campaigns resolved, %s new ledger records%s',
                    result.resolved_count, result.added_count, ' (dry run)' if dry_run else '')
        return result
