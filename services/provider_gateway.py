"""
Gateway to the ad network's zone exclusion ("blacklist") resource.

Every call is a single attempt with an explicit timeout. Failures never raise out of the
gateway: they come back as a GatewayResult so batch orchestrators can record per-campaign
diagnostics and carry on. A missing token or base URL is reported as `unconfigured`, which
callers must keep apart from `error` (the provider answered badly or not at all).
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional
from urllib.parse import quote

import requests

from services.zone_extraction import extract_zone_ids
from utils.helpers import truncate

logger = logging.getLogger(__name__)

STATUS_OK = 'ok'
STATUS_UNCONFIGURED = 'unconfigured'
STATUS_ERROR = 'error'

MISSING_TOKEN = 'missing_token'
ERROR_SNIPPET_LENGTH = 200
PROBE_SNIPPET_LENGTH = 16384

_VERSION_IN_BASE = re.compile(r'/v\d+(?:$|/)')
_VERSION_PREFIX = re.compile(r'^/v\d+(?=/)')


class ProviderListingError(Exception):
    """The provider campaign listing could not be read."""


@dataclass
class GatewayResult:
    status: str
    zones: Optional[List[str]] = None
    campaigns: Optional[List[dict]] = None
    http_status: Optional[int] = None
    error: Optional[str] = None
    strategy: Optional[str] = None
    payload: Any = None
    message: Optional[str] = None

    @property
    def ok(self):
        return self.status == STATUS_OK

    @property
    def unconfigured(self):
        return self.status == STATUS_UNCONFIGURED

    @classmethod
    def failure(cls, error, http_status=None):
        return cls(status=STATUS_ERROR, error=truncate(error, ERROR_SNIPPET_LENGTH), http_status=http_status)

    @classmethod
    def not_configured(cls):
        return cls(status=STATUS_UNCONFIGURED, error=MISSING_TOKEN)


def build_provider_url(base_url, path_template, campaign_id=None):
    """
    Joins the base URL and a path template.

    Strips a trailing slash from the base, drops a leading '/vN' from the path when the base
    already carries a version segment, and substitutes the URL-encoded campaign id.
    """
    base = (base_url or '').rstrip('/')
    path = path_template or ''
    if campaign_id is not None:
        path = path.replace('{campaignId}', quote(str(campaign_id), safe=''))
    if not path.startswith('/'):
        path = '/' + path
    if _VERSION_IN_BASE.search(base):
        path = _VERSION_PREFIX.sub('', path, count=1)
    return f'{base}{path}'


def _normalize_campaign(item):
    if not isinstance(item, dict):
        return None
    raw_id = item.get('id', item.get('campaign_id', item.get('campaignId')))
    if raw_id is None or str(raw_id).strip() == '':
        return None
    name = item.get('name', item.get('title'))
    return {
        'id': str(raw_id).strip(),
        'name': str(name) if name is not None else 'Campaign',
        'status': item.get('status'),
    }


class ProviderGateway:
    """Thin client over the provider's campaign listing and zone exclusion endpoints."""

    def __init__(self, base_url, token, blacklist_path, remove_path, campaigns_path,
                 json_path=None, timeout=5.0, session=None):
        self.base_url = base_url
        self.token = token
        self.blacklist_path = blacklist_path
        self.remove_path = remove_path
        self.campaigns_path = campaigns_path
        self.json_path = json_path
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config, session=None):
        return cls(
            base_url=config.get('PROVIDER_API_BASE_URL'),
            token=config.get('PROVIDER_API_TOKEN'),
            blacklist_path=config.get('PROVIDER_GET_BLACKLIST_PATH'),
            remove_path=config.get('PROVIDER_REMOVE_BLACKLIST_PATH'),
            campaigns_path=config.get('PROVIDER_LIST_CAMPAIGNS_PATH'),
            json_path=config.get('PROVIDER_GET_BLACKLIST_JSON_PATH'),
            timeout=config.get('PROVIDER_TIMEOUT_SECONDS', 5.0),
            session=session,
        )

    @property
    def is_configured(self):
        return bool(self.token) and bool(self.base_url)

    def _headers(self, with_body=False):
        headers = {'Authorization': f'Bearer {self.token}', 'Accept': 'application/json'} # Bearer token auth.
        if with_body:
            headers['Content-Type'] = 'application/json'
        return headers

    def _request(self, method, url, **kwargs):
        """Performs one HTTP call. Returns (response, None) or (None, GatewayResult describing the failure)."""
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout:
            logger.warning('Provider %s %s timed out after %ss', method, url, self.timeout)
            return None, GatewayResult.failure(f'timeout after {self.timeout}s')
        except requests.RequestException as exc:
            logger.warning('Provider %s %s failed: %s', method, url, exc)
            return None, GatewayResult.failure(str(exc) or exc.__class__.__name__)
        return response, None

    @staticmethod
    def _parse_json(text):
        if not text or not text.strip():
            return None
        return json.loads(text)

    def fetch_excluded_zones(self, provider_campaign_id) -> GatewayResult:
        """Reads the zones currently excluded for one provider campaign."""
        if not self.is_configured: # No token: report unconfigured, never call out.
            return GatewayResult.not_configured()
        url = build_provider_url(self.base_url, self.blacklist_path, provider_campaign_id)
        response, failure = self._request('GET', url, headers=self._headers())
        if failure:
            return failure
        text = response.text or '' # Some endpoints answer 200 with an empty body.
        if not response.ok:
            logger.warning('Provider GET failed for campaign %s: %s %s',
                           provider_campaign_id, response.status_code, truncate(text))
            return GatewayResult.failure(text or response.reason, http_status=response.status_code)
        try:
            payload = self._parse_json(text)
        except ValueError:
            logger.warning('Provider returned invalid JSON for campaign %s: %s', provider_campaign_id, truncate(text))
            return GatewayResult.failure('invalid_json', http_status=response.status_code)
        if payload is None: # Empty body: nothing excluded.
            return GatewayResult(status=STATUS_OK, zones=[], http_status=response.status_code, strategy='empty_body')
        extraction = extract_zone_ids(payload, self.json_path)
        if not extraction.recognized:
            logger.warning('Could not locate a zone list in provider response for campaign %s: %s',
                           provider_campaign_id, truncate(text))
            return GatewayResult(status=STATUS_ERROR, error='unrecognized_payload',
                                 http_status=response.status_code, payload=payload)
        return GatewayResult(status=STATUS_OK, zones=extraction.zones, http_status=response.status_code,
                             strategy=extraction.strategy, payload=payload)

    def fetch_exclusion_payload(self, provider_campaign_id) -> GatewayResult:
        """Returns the parsed exclusion response without interpreting it."""
        if not self.is_configured:
            return GatewayResult.not_configured()
        url = build_provider_url(self.base_url, self.blacklist_path, provider_campaign_id)
        response, failure = self._request('GET', url, headers=self._headers())
        if failure:
            return failure
        text = response.text or ''
        try:
            payload = self._parse_json(text)
        except ValueError:
            payload = None
        if not response.ok:
            return GatewayResult(status=STATUS_ERROR, http_status=response.status_code,
                                 error=truncate(text, 400), payload=payload)
        return GatewayResult(status=STATUS_OK, http_status=response.status_code, payload=payload)

    def remove_exclusion(self, provider_campaign_id, zone_ids) -> GatewayResult:
        """Asks the provider to lift the exclusion of one or more zones for a campaign."""
        if not self.is_configured: # Dry-run handling lives in the revert orchestrator.
            return GatewayResult.not_configured()
        if isinstance(zone_ids, (str, int)):
            zone_ids = [zone_ids]
        url = build_provider_url(self.base_url, self.remove_path, provider_campaign_id)
        body = {'zone_ids': [str(z) for z in zone_ids]} # Provider expects string ids.
        response, failure = self._request('DELETE', url, headers=self._headers(with_body=True), json=body)
        if failure:
            failure.message = f'Provider API call failed: {failure.error}'
            return failure
        if not response.ok:
            text = response.text or response.reason or ''
            logger.warning('Provider DELETE failed for campaign %s zones %s: %s %s',
                           provider_campaign_id, body['zone_ids'], response.status_code, truncate(text))
            result = GatewayResult.failure(text, http_status=response.status_code)
            result.message = f'Provider API error ({response.status_code}): {truncate(text, ERROR_SNIPPET_LENGTH)}'
            return result
        return GatewayResult(status=STATUS_OK, http_status=response.status_code,
                             message='Zone removed from blacklist via provider API.')

    def list_campaigns(self, query=None) -> GatewayResult:
        """Lists provider campaigns (first page), normalised to {id, name, status}."""
        if not self.is_configured:
            return GatewayResult.not_configured()
        url = build_provider_url(self.base_url, self.campaigns_path)
        params = {'search': query} if query else None # Server-side name filter.
        response, failure = self._request('GET', url, headers=self._headers(), params=params)
        if failure:
            return failure
        text = response.text or ''
        if not response.ok:
            return GatewayResult.failure(text or response.reason, http_status=response.status_code)
        try:
            payload = self._parse_json(text)
        except ValueError:
            return GatewayResult.failure('invalid_json', http_status=response.status_code)
        raw = payload
        if isinstance(payload, dict):
            raw = next((payload[k] for k in ('data', 'items', 'campaigns') if isinstance(payload.get(k), list)), [])
        if not isinstance(raw, list):
            raw = []
        campaigns = [c for c in (_normalize_campaign(item) for item in raw) if c]
        return GatewayResult(status=STATUS_OK, campaigns=campaigns, http_status=response.status_code)

    def require_campaigns(self):
        """Campaign listing for name-based resolution; empty when unconfigured, raises on provider failure."""
        result = self.list_campaigns()
        if result.unconfigured:
            return []
        if not result.ok:
            raise ProviderListingError(f'{result.error} (status {result.http_status})')
        return result.campaigns

    def probe(self, provider_campaign_id):
        """Raw diagnostics for one exclusion request: URL, status, body snippet and parsed JSON."""
        url = build_provider_url(self.base_url, self.blacklist_path, provider_campaign_id)
        if not self.is_configured:
            return {'ok': False, 'error': MISSING_TOKEN, 'url': url}
        response, failure = self._request('GET', url, headers=self._headers())
        if failure:
            return {'ok': False, 'url': url, 'status': None, 'error': failure.error}
        text = response.text or ''
        try:
            parsed = self._parse_json(text)
        except ValueError:
            parsed = None
        return {'ok': True, 'url': url, 'status': response.status_code,
                'snippet': text[:PROBE_SNIPPET_LENGTH], 'parsed': parsed}
