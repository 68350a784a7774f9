import threading
from contextlib import contextmanager
from flask import Blueprint, jsonify, request, current_app
from extensions import db
from models import CampaignMapping, IGNORED_SENTINEL
from services.campaign_resolver import CampaignResolver, CampaignRef, Mapped, Ignored, load_overrides
from services.ledger import SuppressionLedger
from services.provider_gateway import ProviderGateway, MISSING_TOKEN
from services.recommendations import recommend
from services.reporting_client import ReportingClient
from services.revert import RevertOrchestrator
from services.sync import SyncOrchestrator
from services.verify import VerifyOrchestrator
from services.zone_extraction import from_deep_scan
from utils.decorators import json_endpoint
from utils.helpers import parse_bool, dedupe_preserving_order

# Blueprint for the zone suppression optimizer.
optimizer_bp = Blueprint('optimizer', __name__, url_prefix='/optimizer')

# Upper bound on zone ids returned by the live blacklist lookup.
LIVE_BLACKLIST_LIMIT = 100


# --- Collaborator construction (patched in tests) ---

def build_gateway():
    return ProviderGateway.from_config(current_app.config)


def build_reporting_client():
    return ReportingClient.from_config(current_app.config)


def build_ledger():
    return SuppressionLedger(
        provider=current_app.config['PROVIDER_NAME'],
        conflict_retries=current_app.config.get('LEDGER_CONFLICT_RETRIES', 3),
    )


def build_resolver(gateway):
    """One resolver per request, so the provider campaign listing is fetched at most once per batch."""
    overrides = load_overrides(CampaignMapping.query.all())
    return CampaignResolver(overrides, gateway.require_campaigns)


def _max_workers():
    return current_app.config.get('OPTIMIZER_MAX_WORKERS', 4)


@contextmanager
def request_deadline():
    """
    Yields a cancellation event that is set once OPTIMIZER_REQUEST_DEADLINE_SECONDS elapse.

    Provider fetches not yet started when it fires are skipped and reported as cancelled.
    A deadline of 0 disables it.
    """
    cancel_event = threading.Event()
    seconds = current_app.config.get('OPTIMIZER_REQUEST_DEADLINE_SECONDS', 0)
    timer = None
    if seconds and seconds > 0:
        timer = threading.Timer(seconds, cancel_event.set)
        timer.daemon = True # Never keeps the process alive.
        timer.start()
    try:
        yield cancel_event
    finally:
        if timer is not None:
            timer.cancel()


def _validate_items(items, require_zone):
    """Returns an error message if `items` is not a list of well-formed item objects, else None."""
    if not isinstance(items, list):
        return "'items' must be a list."
    for item in items:
        if not isinstance(item, dict):
            return "Each item must be an object."
        if require_zone:
            if item.get('campaignId') in (None, '') or item.get('zoneId') in (None, ''):
                return "Each item requires 'campaignId' and 'zoneId'."
        elif item.get('campaignId') in (None, '') and not item.get('id'):
            return "Each item requires 'campaignId' or 'id'."
    return None


def _validate_campaigns(campaigns):
    """Returns an error message unless every campaign is an object whose `zones`, if present, is a list of objects."""
    for campaign in campaigns:
        if not isinstance(campaign, dict):
            return "Each campaign must be an object."
        zones = campaign.get('zones')
        if zones is None:
            continue
        if not isinstance(zones, list):
            return "Campaign 'zones' must be a list."
        if not all(isinstance(zone, dict) for zone in zones):
            return "Each zone must be an object."
    return None


# --- Ledger operations ---

@optimizer_bp.route('/sync-blacklist', methods=['GET', 'POST'])
@json_endpoint('sync_error')
def sync_blacklist():
    """
    Imports the provider's current zone exclusions into the suppression ledger.

    POST body / GET query:
        campaignIds (list[str], optional): local or provider campaign ids. GET accepts repeated
            `campaignId` parameters or a comma-separated `campaignIds`. When omitted, the campaign
            set comes from the reporting service for `dateRange`.
        dateRange (str, optional): reporting date range, defaults to DEFAULT_DATE_RANGE.
        dryRun (bool, optional): compute everything but skip the ledger write.
    Returns:
        JSON: {ok, campaigns, added, dryRun, ignored, diagnostics}
    """
    if request.method == 'POST':
        body = request.get_json(silent=True) or {}
        if not isinstance(body, dict):
            return jsonify({"error": "Expected a JSON object."}), 400
        campaign_ids = body.get('campaignIds')
        if campaign_ids is not None and not isinstance(campaign_ids, list):
            return jsonify({"error": "'campaignIds' must be a list of campaign ids."}), 400
        date_range = body.get('dateRange')
        dry_run = parse_bool(body.get('dryRun'))
    else:
        campaign_ids = request.args.getlist('campaignId')
        if request.args.get('campaignIds'):
            campaign_ids += request.args.get('campaignIds').split(',')
        date_range = request.args.get('dateRange')
        dry_run = parse_bool(request.args.get('dryRun'))

    if campaign_ids is not None and not all(isinstance(c, (str, int)) and not isinstance(c, bool) for c in campaign_ids):
        return jsonify({"error": "'campaignIds' must contain strings or numbers."}), 400
    campaign_ids = dedupe_preserving_order(campaign_ids or [])
    date_range = date_range or current_app.config.get('DEFAULT_DATE_RANGE', 'last7days')

    gateway = build_gateway()
    if not gateway.is_configured:
        current_app.logger.warning("Sync requested without PROVIDER_API_TOKEN; every campaign will report missing_token.")
    orchestrator = SyncOrchestrator(
        gateway=gateway,
        ledger=build_ledger(),
        resolver=build_resolver(gateway),
        reporting_client=build_reporting_client(),
        max_workers=_max_workers(),
    )
    with request_deadline() as cancel_event:
        result = orchestrator.sync(campaign_refs=campaign_ids or None, date_range=date_range,
                                   dry_run=dry_run, cancel_event=cancel_event)
    payload = result.to_dict()
    if dry_run:
        payload['preview'] = [{'campaignId': r.campaign_id, 'zoneId': r.zone_id} for r in result.added]
    return jsonify(payload)


@optimizer_bp.route('/verify', methods=['POST'])
@json_endpoint('verify_error')
def verify_blacklist():
    """
    Re-checks ledger records against the provider and refreshes their `verified` flags.

    Body: {items?: [{id?, campaignId, zoneId?}]}; omit items to verify every non-reverted record.
    A missing provider token is reported with HTTP 200 and ok=false, not as a server error.
    """
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        return jsonify({"error": "Expected a JSON object."}), 400
    items = body.get('items')
    if items is not None:
        error = _validate_items(items, require_zone=False)
        if error:
            return jsonify({"error": error}), 400

    gateway = build_gateway()
    orchestrator = VerifyOrchestrator(
        gateway=gateway,
        ledger=build_ledger(),
        resolver=build_resolver(gateway),
        max_workers=_max_workers(),
    )
    with request_deadline() as cancel_event:
        result = orchestrator.verify(record_refs=items or None, cancel_event=cancel_event)
    return jsonify(result.to_dict())


@optimizer_bp.route('/unblacklist', methods=['POST'])
@json_endpoint('unblacklist_error')
def unblacklist():
    """
    Requests removal of zone exclusions at the provider and soft-reverts the matching ledger records.

    Body: {items: [{id?, campaignId, zoneId}]}
    Returns:
        JSON: {ok, results: [{campaignId, zoneId, ok, message, dryRun, confirmed, ...}], auditEventId}
    """
    body = request.get_json(silent=True)
    items = body.get('items') if isinstance(body, dict) else None
    if not isinstance(items, list) or not items:
        return jsonify({"error": "invalid_body", "message": "'items' must be a non-empty list."}), 400
    error = _validate_items(items, require_zone=True)
    if error:
        return jsonify({"error": "invalid_body", "message": error}), 400

    gateway = build_gateway()
    orchestrator = RevertOrchestrator(gateway=gateway, ledger=build_ledger(), resolver=build_resolver(gateway))
    result = orchestrator.revert(items)
    return jsonify(result.to_dict())


@optimizer_bp.route('/blacklist-log', methods=['GET'])
@json_endpoint('ledger_error')
def blacklist_log():
    """Lists ledger records newest-first. `includeReverted=false` hides reverted history."""
    include_reverted = parse_bool(request.args.get('includeReverted'), default=True)
    records = build_ledger().list_all(include_reverted=include_reverted)
    return jsonify({"items": [record.to_dict() for record in records]})


# --- Recommendations ---

@optimizer_bp.route('/preview', methods=['POST'])
@json_endpoint('preview_error')
def preview():
    """
    Suggests zone suppression rules and zones to pause from a reporting snapshot. Nothing is persisted.

    Body: {dashboard: {campaigns: [...], dateRange?, from?, to?}, trafficSourceFilter?}
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({"error": "Invalid body. Expected JSON."}), 400
    dashboard = body.get('dashboard')
    if not isinstance(dashboard, dict) or not isinstance(dashboard.get('campaigns'), list):
        return jsonify({"error": "Missing 'dashboard' field with campaigns."}), 400
    error = _validate_campaigns(dashboard['campaigns'])
    if error:
        return jsonify({"error": error}), 400
    traffic_source_filter = body.get('trafficSourceFilter')
    if traffic_source_filter is not None and not isinstance(traffic_source_filter, str):
        return jsonify({"error": "'trafficSourceFilter' must be a string."}), 400
    return jsonify(recommend(dashboard, traffic_source_filter))


# --- Campaign identity overrides ---

def _mapping_view():
    mappings = CampaignMapping.query.order_by(CampaignMapping.key).all()
    return {m.key: m.public_value for m in mappings}, [m.to_dict() for m in mappings]


def _upsert_mapping(key, provider_id, ignored, display_name):
    mapping = db.session.get(CampaignMapping, key)
    if mapping is None:
        mapping = CampaignMapping(key=key)
        db.session.add(mapping)
    mapping.ignored = ignored
    mapping.provider_id = None if ignored else provider_id
    mapping.display_name = display_name


@optimizer_bp.route('/mappings', methods=['GET'])
@json_endpoint('mapping_error')
def list_mappings():
    mapping, items = _mapping_view()
    return jsonify({"ok": True, "mapping": mapping, "items": items})


@optimizer_bp.route('/mappings', methods=['POST'])
@json_endpoint('mapping_error')
def save_mapping():
    """
    Creates or replaces a manual campaign mapping.

    Body: {dashboardId|key, providerId|value, dashboardName?}. A providerId of '__ignored__' (or
    `ignored: true`) marks the campaign as never-resolve. When dashboardName is given it is mapped too.
    """
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        return jsonify({"ok": False, "error": "Expected a JSON object."}), 400
    dashboard_id = body.get('dashboardId') or body.get('key')
    provider_id = body.get('providerId') or body.get('value')
    dashboard_name = body.get('dashboardName')
    ignored = parse_bool(body.get('ignored')) or str(provider_id or '') == IGNORED_SENTINEL
    if not dashboard_id or not (provider_id or ignored):
        return jsonify({"ok": False, "error": "missing dashboardId or providerId"}), 400

    provider_value = None if ignored else str(provider_id).strip()
    keys = [str(dashboard_id).strip()]
    if dashboard_name and str(dashboard_name).strip() not in keys:
        keys.append(str(dashboard_name).strip())
    for key in keys:
        _upsert_mapping(key, provider_value, ignored, dashboard_name)
    db.session.commit()
    current_app.logger.info(f"Campaign mapping saved: {keys} -> {IGNORED_SENTINEL if ignored else provider_value}")

    mapping, items = _mapping_view()
    return jsonify({"ok": True, "mapping": mapping, "items": items})


@optimizer_bp.route('/mappings', methods=['DELETE'])
@json_endpoint('mapping_error')
def delete_mapping():
    """Removes a manual mapping. Body (or query): {dashboardId|key, dashboardName?}."""
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        body = {}
    dashboard_id = body.get('dashboardId') or body.get('key') or request.args.get('dashboardId')
    if not dashboard_id:
        return jsonify({"ok": False, "error": "missing dashboardId"}), 400
    keys = [str(dashboard_id).strip()]
    if body.get('dashboardName'):
        keys.append(str(body['dashboardName']).strip())
    removed = CampaignMapping.query.filter(CampaignMapping.key.in_(keys)).delete(synchronize_session=False)
    db.session.commit()
    current_app.logger.info(f"Campaign mapping removed: {keys} ({removed} rows)")

    mapping, items = _mapping_view()
    return jsonify({"ok": True, "mapping": mapping, "items": items})


# --- Provider diagnostics ---

@optimizer_bp.route('/propeller/campaigns', methods=['GET'])
@json_endpoint('server_error')
def provider_campaigns():
    """Lists provider campaigns (first page), optionally filtered with ?q=."""
    gateway = build_gateway()
    result = gateway.list_campaigns(query=request.args.get('q') or None)
    if result.unconfigured:
        return jsonify({"ok": False, "error": MISSING_TOKEN, "message": "PROVIDER_API_TOKEN is not set"})
    if not result.ok:
        status = result.http_status if result.http_status and result.http_status >= 400 else 502
        return jsonify({"ok": False, "error": f"provider_{result.http_status or 'unreachable'}",
                        "message": result.error}), status
    return jsonify({"ok": True, "items": result.campaigns})


@optimizer_bp.route('/propeller/blacklist', methods=['GET'])
@json_endpoint('server_error')
def provider_blacklist():
    """
    Shows the zones currently excluded at the provider for one campaign.

    Query: providerId, or dashboardId (resolved through the campaign identity waterfall).
    """
    gateway = build_gateway()
    if not gateway.is_configured:
        return jsonify({"ok": False, "error": MISSING_TOKEN})
    provider_id = (request.args.get('providerId') or '').strip()
    dashboard_id = (request.args.get('dashboardId') or '').strip()
    if not provider_id and dashboard_id:
        resolution = build_resolver(gateway).resolve(CampaignRef(id=dashboard_id))
        if isinstance(resolution, Ignored):
            return jsonify({"ok": False, "error": "campaign_ignored"}), 409
        if isinstance(resolution, Mapped):
            provider_id = resolution.provider_id
        else:
            return jsonify({"ok": False, "error": "unresolved", "message": resolution.reason}), 404
    if not provider_id:
        return jsonify({"ok": False, "error": "missing_campaign"}), 400

    result = gateway.fetch_exclusion_payload(provider_id)
    if not result.ok:
        status = result.http_status if result.http_status and result.http_status >= 400 else 502
        return jsonify({"ok": False, "error": f"provider_{result.http_status or 'unreachable'}",
                        "message": result.error or ''}), status
    zones = from_deep_scan(result.payload) or []
    return jsonify({"ok": True, "providerCampaignId": provider_id, "total": len(zones),
                    "items": zones[:LIVE_BLACKLIST_LIMIT]})


@optimizer_bp.route('/probe', methods=['GET'])
@json_endpoint('probe_error')
def probe():
    """Raw provider response for one campaign's exclusion list, for diagnosing payload shapes."""
    campaign_id = (request.args.get('campaignId') or '').strip()
    if not campaign_id:
        return jsonify({"ok": False, "error": "missing campaignId"}), 400
    return jsonify(build_gateway().probe(campaign_id))
