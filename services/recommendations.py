"""
Zone suppression recommendations from a reporting snapshot.

Pure functions: nothing here touches the ledger or the provider. Thresholds derive from a
target cost per acquisition (CPA):

    target CPA = cost of depositing campaigns / their deposits
                 or, with no deposits anywhere, (total cost / total visits) * 100

A zone is a candidate when it is a zero-conversion burner (enough visits, no conversions,
cost >= 40% of target CPA) or a negative-ROI burner (converts, cost >= target CPA, ROI at or
below the floor).
"""
from utils.helpers import safe_number, utcnow, isoformat_utc

MIN_VISITS_FLOOR = 50
MIN_COST_FLOOR = 5.0
MIN_COST_CPA_SHARE = 0.4
MAX_ROI_FLOOR = -80.0
NEGATIVE_ROI_COST_FALLBACK = 50.0
FALLBACK_TEST_VISITS = 100

RULE_ZERO_CONVERSION = 'zero_conversion'
RULE_NEGATIVE_ROI = 'negative_roi'

METRIC_FIELDS = ('visits', 'conversions', 'revenue', 'cost', 'roi')


def filter_campaigns(campaigns, traffic_source_filter=None):
    """Keeps campaigns from one traffic source; None, '' and 'all' keep everything."""
    if not traffic_source_filter or traffic_source_filter == 'all':
        return list(campaigns)
    return [c for c in campaigns if c.get('trafficSource') == traffic_source_filter]


def compute_target_cpa(campaigns):
    """
    Returns (target_cpa, source) where source is 'deposits', 'visits' or None.

    With deposits anywhere in the set, only depositing campaigns contribute cost. Otherwise the
    average cost per visit is scaled to a rough per-zone test budget of FALLBACK_TEST_VISITS visits.
    """
    depositing = [c for c in campaigns if safe_number(c.get('deposits')) > 0]
    if depositing:
        cost = sum(safe_number(c.get('cost')) for c in depositing)
        deposits = sum(safe_number(c.get('deposits')) for c in depositing)
        return cost / deposits, 'deposits'
    total_cost = sum(safe_number(c.get('cost')) for c in campaigns)
    total_visits = sum(safe_number(c.get('visits')) for c in campaigns)
    if total_visits > 0 and total_cost > 0:
        return (total_cost / total_visits) * FALLBACK_TEST_VISITS, 'visits'
    return None, None


def compute_thresholds(campaigns):
    target_cpa, source = compute_target_cpa(campaigns)
    if target_cpa:
        min_cost = round(target_cpa * MIN_COST_CPA_SHARE, 2)
        negative_roi_min_cost = round(target_cpa, 2)
    else:
        min_cost = MIN_COST_FLOOR
        negative_roi_min_cost = NEGATIVE_ROI_COST_FALLBACK
    return {
        'targetCpa': round(target_cpa, 2) if target_cpa else None,
        'targetCpaSource': source,
        'minVisits': MIN_VISITS_FLOOR,
        'minCost': min_cost,
        'maxRoi': MAX_ROI_FLOOR,
        'negativeRoiMinCost': negative_roi_min_cost,
    }


def zone_metrics(zone):
    return {name: safe_number(zone.get(name)) for name in METRIC_FIELDS}


def _is_inactive(metrics):
    return all(value == 0 for value in metrics.values())


def evaluate_zone(metrics, thresholds):
    """Returns (rule, reason) for the rule a zone trips, or (None, None)."""
    visits, conversions, cost, roi = metrics['visits'], metrics['conversions'], metrics['cost'], metrics['roi']
    if visits >= thresholds['minVisits'] and conversions == 0 and cost >= thresholds['minCost']:
        return RULE_ZERO_CONVERSION, (
            f'Zero-conversion burner: visits={visits:g}, conversions=0, cost={cost:.2f} '
            f'(>= min cost {thresholds["minCost"]:.2f}).')
    if conversions > 0 and cost >= thresholds['negativeRoiMinCost'] and roi <= thresholds['maxRoi']:
        return RULE_NEGATIVE_ROI, (
            f'Negative-ROI burner: conversions={conversions:g}, cost={cost:.2f} '
            f'(>= {thresholds["negativeRoiMinCost"]:.2f}), ROI={roi:.1f}% (<= {thresholds["maxRoi"]:.0f}%).')
    return None, None


def build_rules(thresholds, traffic_source):
    return [
        {
            'name': 'Zero-conversion burner zones',
            'scope': 'zone',
            'trafficSource': traffic_source,
            'country': None,
            'condition': 'IF zone visits >= minVisits AND conversions == 0 AND cost >= minCost',
            'suggestedThresholds': {
                'minVisits': thresholds['minVisits'],
                'minCost': thresholds['minCost'],
                'maxROI': None,
            },
            'action': 'pause_zone',
            'appliesTo': 'All zones in the current report (filtered by traffic source and date range).',
            'rationale': ('These zones have had enough traffic to matter and spent a meaningful share of '
                          'the target CPA without a single conversion.'),
        },
        {
            'name': 'Negative-ROI burner zones (even with conversions)',
            'scope': 'zone',
            'trafficSource': traffic_source,
            'country': None,
            'condition': 'IF zone conversions > 0 AND cost >= targetCPA AND ROI <= maxROI',
            'suggestedThresholds': {
                'minVisits': None,
                'minCost': thresholds['negativeRoiMinCost'],
                'maxROI': thresholds['maxRoi'],
            },
            'action': 'pause_zone',
            'appliesTo': 'Zones that convert but stay deeply unprofitable.',
            'rationale': ('A few conversions do not justify a zone that has spent at least a full target CPA '
                          'and still loses most of its cost.'),
        },
    ]


def recommend(snapshot, traffic_source_filter=None):
    """
    Builds rule suggestions and a ranked list of zones to pause from a performance snapshot.

    Args:
        snapshot (dict): {'campaigns': [...], 'dateRange'?, 'from'?, 'to'?}; each campaign carries
            aggregate metrics and a 'zones' list of zone rows.
        traffic_source_filter (str, optional): restrict to campaigns of this traffic source.

    Returns:
        dict: {'rules': [...], 'zonesToPauseNow': [...], 'meta': {...}}
    """
    source_filter = traffic_source_filter if traffic_source_filter and traffic_source_filter != 'all' else None
    campaigns = filter_campaigns(snapshot.get('campaigns') or [], source_filter)
    thresholds = compute_thresholds(campaigns)

    candidates = []
    zones_considered = 0
    zones_inactive = 0
    for campaign in campaigns:
        for zone in campaign.get('zones') or []:
            if not isinstance(zone, dict):
                continue
            zone_id = str(zone.get('id') if zone.get('id') is not None else '').strip()
            if not zone_id:
                continue
            metrics = zone_metrics(zone)
            if _is_inactive(metrics):
                zones_inactive += 1
                continue
            zones_considered += 1
            rule, reason = evaluate_zone(metrics, thresholds)
            if rule is None:
                continue
            candidates.append({
                'campaignId': str(campaign.get('id')),
                'campaignName': campaign.get('name'),
                'trafficSource': campaign.get('trafficSource'),
                'zoneId': zone_id,
                'rule': rule,
                'reason': reason,
                'metrics': metrics,
            })

    # Worst offenders first: highest cost, then most negative ROI.
    candidates.sort(key=lambda c: (-c['metrics']['cost'], c['metrics']['roi']))

    notes = [
        f'Target CPA {thresholds["targetCpa"]} (from {thresholds["targetCpaSource"]}); '
        f'minVisits={thresholds["minVisits"]}, minCost={thresholds["minCost"]}, '
        f'negativeRoiMinCost={thresholds["negativeRoiMinCost"]}, maxROI={thresholds["maxRoi"]}.'
    ]
    if not campaigns:
        notes.append('No campaigns found for this traffic source filter.')
    elif not zones_considered:
        notes.append('No zone-level data found; make sure the report includes a zone breakdown.')
    elif not candidates:
        notes.append('No zones met the suppression criteria.')

    return {
        'rules': build_rules(thresholds, source_filter),
        'zonesToPauseNow': candidates,
        'meta': {
            'generatedAt': isoformat_utc(utcnow()),
            'dateRange': snapshot.get('dateRange', 'custom'),
            'from': snapshot.get('from'),
            'to': snapshot.get('to'),
            'trafficSourceFilter': source_filter,
            'thresholds': thresholds,
            'totalCampaigns': len(campaigns),
            'totalZones': zones_considered,
            'totalZonesSkippedInactive': zones_inactive,
            'totalZonesFlagged': len(candidates),
            'notes': notes,
        },
    }
