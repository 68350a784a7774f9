import logging
from urllib.parse import urljoin

import requests

from services.campaign_resolver import CampaignRef
from utils.helpers import truncate

logger = logging.getLogger(__name__)


class ReportingUnavailable(Exception):
    """The reporting service is not configured or did not return a usable campaign list."""


class ReportingClient:
    """Reads the campaign set for a date range from the reporting dashboard endpoint."""

    def __init__(self, base_url, dashboard_path='/api/voluum-dashboard', timeout=10.0, session=None):
        self.base_url = base_url
        self.dashboard_path = dashboard_path
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config, session=None):
        return cls(
            base_url=config.get('REPORTING_BASE_URL'),
            dashboard_path=config.get('REPORTING_DASHBOARD_PATH', '/api/voluum-dashboard'),
            timeout=config.get('REPORTING_TIMEOUT_SECONDS', 10.0),
            session=session,
        )

    @property
    def is_configured(self):
        return bool(self.base_url)

    def fetch_dashboard(self, date_range):
        if not self.is_configured:
            raise ReportingUnavailable('REPORTING_BASE_URL is not set')
        url = urljoin(self.base_url.rstrip('/') + '/', self.dashboard_path.lstrip('/'))
        try:
            response = self.session.get(url, params={'dateRange': date_range}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ReportingUnavailable(f'reporting request failed: {exc}') from exc
        if not response.ok:
            raise ReportingUnavailable(f'reporting returned {response.status_code}: {truncate(response.text)}')
        try:
            return response.json()
        except ValueError as exc:
            raise ReportingUnavailable('reporting returned invalid JSON') from exc

    def list_campaigns(self, date_range):
        """Unique campaign references (id + name) present in the dashboard for `date_range`."""
        dashboard = self.fetch_dashboard(date_range)
        campaigns = dashboard.get('campaigns') if isinstance(dashboard, dict) else None
        refs = []
        seen = set()
        for campaign in campaigns or []:
            if not isinstance(campaign, dict) or campaign.get('id') in (None, ''):
                continue
            ref = CampaignRef.coerce(campaign)
            if ref.id in seen:
                continue
            seen.add(ref.id)
            refs.append(ref)
        logger.info('Reporting listed %s campaigns for %s', len(refs), date_range)
        return refs
