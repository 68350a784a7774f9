import pytest
from models import SuppressionRecord, CampaignMapping


def post_json(client, url, payload):
    return client.post(url, json=payload)


def test_sync_post_adds_records(client, db, fake_gateway):
    fake_gateway.exclusions = {'42': ['1', '2']}

    response = post_json(client, '/optimizer/sync-blacklist', {'campaignIds': ['42']})

    assert response.status_code == 200
    data = response.get_json()
    assert data['ok'] is True
    assert data['campaigns'] == 1
    assert data['added'] == 2
    assert SuppressionRecord.query.count() == 2


def test_sync_get_accepts_repeated_campaign_ids(client, db, fake_gateway):
    fake_gateway.exclusions = {'42': ['1'], '43': ['2']}

    response = client.get('/optimizer/sync-blacklist?campaignId=42&campaignId=43&campaignId=42')

    assert response.get_json()['added'] == 2
    assert sorted(fake_gateway.fetched()) == ['42', '43']


def test_sync_dry_run_returns_preview(client, db, fake_gateway):
    fake_gateway.exclusions = {'42': ['1']}

    data = post_json(client, '/optimizer/sync-blacklist', {'campaignIds': ['42'], 'dryRun': True}).get_json()

    assert data['dryRun'] is True
    assert data['preview'] == [{'campaignId': '42', 'zoneId': '1'}]
    assert SuppressionRecord.query.count() == 0


def test_sync_without_campaigns_or_reporting(client, db, fake_gateway):
    data = post_json(client, '/optimizer/sync-blacklist', {}).get_json()

    assert data['added'] == 0
    assert data['diagnostics'][0]['error'].startswith('reporting_unavailable')


def test_sync_rejects_non_list_campaign_ids(client, db, fake_gateway):
    response = post_json(client, '/optimizer/sync-blacklist', {'campaignIds': '42'})
    assert response.status_code == 400


def test_sync_unexpected_error_is_500(client, db, fake_gateway, mocker):
    mocker.patch('routes.optimizer.build_ledger', side_effect=RuntimeError('db gone'))

    response = post_json(client, '/optimizer/sync-blacklist', {'campaignIds': ['42']})

    assert response.status_code == 500
    assert response.get_json() == {'error': 'sync_error', 'message': 'db gone'}


def test_verify_updates_flags(client, db, fake_gateway, ledger):
    ledger.append([ledger.new_record('42', '1'), ledger.new_record('42', '2')])
    fake_gateway.exclusions = {'42': ['1']}

    data = post_json(client, '/optimizer/verify', {}).get_json()

    assert data['ok'] is True
    assert data['entries'] == {'checked': 2, 'verifiedTrue': 1, 'verifiedFalse': 1}


def test_verify_missing_token_is_not_a_server_error(client, db, fake_gateway):
    fake_gateway.configured = False

    response = post_json(client, '/optimizer/verify', {})

    assert response.status_code == 200
    assert response.get_json()['error'] == 'missing_token'


def test_verify_rejects_items_without_identity(client, db, fake_gateway):
    response = post_json(client, '/optimizer/verify', {'items': [{'zoneId': '1'}]})
    assert response.status_code == 400


@pytest.mark.parametrize("payload", [
    None,
    {},
    {'items': []},
    {'items': 'nope'},
    {'items': [{'campaignId': '42'}]},
    {'items': [{'zoneId': '1'}]},
])
def test_unblacklist_invalid_body(client, db, fake_gateway, payload):
    if payload is None:
        response = client.post('/optimizer/unblacklist', data='not json', content_type='application/json')
    else:
        response = post_json(client, '/optimizer/unblacklist', payload)
    assert response.status_code == 400
    assert response.get_json()['error'] == 'invalid_body'


def test_unblacklist_reverts_and_audits(client, db, fake_gateway, ledger):
    record = ledger.append([ledger.new_record('42', '777')])[0]

    data = post_json(client, '/optimizer/unblacklist',
                     {'items': [{'campaignId': '42', 'zoneId': '777'}]}).get_json()

    assert data['ok'] is True
    assert data['results'][0]['confirmed'] is True
    assert data['auditEventId']
    assert ledger.get_many([record.id])[0].reverted is True

    log = client.get('/optimizer/blacklist-log?includeReverted=false').get_json()
    assert log['items'] == []
    full_log = client.get('/optimizer/blacklist-log').get_json()
    assert full_log['items'][0]['revertConfirmed'] is True


def test_preview_requires_dashboard(client, db):
    response = post_json(client, '/optimizer/preview', {'trafficSourceFilter': 'all'})
    assert response.status_code == 400


def test_preview_returns_recommendations(client, db):
    dashboard = {'campaigns': [{
        'id': 'c1', 'name': 'Push', 'trafficSource': 'PropellerAds', 'cost': 500, 'deposits': 10,
        'zones': [{'id': 'z1', 'visits': 200, 'conversions': 0, 'cost': 25, 'roi': -100}],
    }]}

    data = post_json(client, '/optimizer/preview', {'dashboard': dashboard}).get_json()

    assert [z['zoneId'] for z in data['zonesToPauseNow']] == ['z1']
    assert data['meta']['thresholds']['minCost'] == 20


def test_mappings_crud(client, db):
    saved = post_json(client, '/optimizer/mappings',
                      {'dashboardId': 'dash-1', 'providerId': '555', 'dashboardName': 'Push US'}).get_json()
    assert saved['mapping'] == {'Push US': '555', 'dash-1': '555'}

    ignored = post_json(client, '/optimizer/mappings',
                        {'dashboardId': 'dash-2', 'providerId': '__ignored__'}).get_json()
    assert ignored['mapping']['dash-2'] == '__ignored__'
    row = db.session.get(CampaignMapping, 'dash-2')
    assert row.ignored is True
    assert row.provider_id is None

    listed = client.get('/optimizer/mappings').get_json()
    assert set(listed['mapping']) == {'Push US', 'dash-1', 'dash-2'}

    deleted = client.delete('/optimizer/mappings', json={'dashboardId': 'dash-1', 'dashboardName': 'Push US'}).get_json()
    assert deleted['mapping'] == {'dash-2': '__ignored__'}


def test_mapping_requires_both_ids(client, db):
    response = post_json(client, '/optimizer/mappings', {'dashboardId': 'dash-1'})
    assert response.status_code == 400


def test_manual_mapping_drives_sync(client, db, fake_gateway):
    fake_gateway.exclusions = {'555': ['9']}
    post_json(client, '/optimizer/mappings', {'dashboardId': 'dash-1', 'providerId': '555'})

    data = post_json(client, '/optimizer/sync-blacklist', {'campaignIds': ['dash-1']}).get_json()

    assert data['added'] == 1
    assert SuppressionRecord.query.first().campaign_id == '555'


def test_provider_campaigns(client, db, fake_gateway):
    fake_gateway.campaigns = [{'id': '1', 'name': 'A', 'status': 6}]

    data = client.get('/optimizer/propeller/campaigns?q=A').get_json()

    assert data == {'ok': True, 'items': [{'id': '1', 'name': 'A', 'status': 6}]}
    assert ('list', 'A') in fake_gateway.calls


def test_provider_blacklist_by_dashboard_id(client, db, fake_gateway):
    fake_gateway.campaigns = [{'id': '42', 'name': 'Push US'}]
    fake_gateway.exclusions = {'42': ['1', '2']}

    data = client.get('/optimizer/propeller/blacklist?dashboardId=Push%20US').get_json()

    assert data['providerCampaignId'] == '42'
    assert data['total'] == 2
    assert data['items'] == ['1', '2']


def test_provider_blacklist_missing_token(client, db, fake_gateway):
    fake_gateway.configured = False
    data = client.get('/optimizer/propeller/blacklist?providerId=42').get_json()
    assert data == {'ok': False, 'error': 'missing_token'}


def test_probe_requires_campaign_id(client, db, fake_gateway):
    assert client.get('/optimizer/probe').status_code == 400
    assert client.get('/optimizer/probe?campaignId=42').get_json()['status'] == 200


@pytest.mark.parametrize("campaigns, message", [
    ([None], "Each campaign must be an object."),
    (['c1'], "Each campaign must be an object."),
    ([{'id': 'c1', 'zones': 5}], "Campaign 'zones' must be a list."),
    ([{'id': 'c1', 'zones': {'id': 'z1'}}], "Campaign 'zones' must be a list."),
    ([{'id': 'c1', 'zones': [1]}], "Each zone must be an object."),
])
def test_preview_rejects_malformed_campaigns(client, db, campaigns, message):
    response = post_json(client, '/optimizer/preview', {'dashboard': {'campaigns': campaigns}})

    assert response.status_code == 400
    assert response.get_json()['error'] == message


def test_preview_accepts_campaign_without_zones(client, db):
    response = post_json(client, '/optimizer/preview', {'dashboard': {'campaigns': [{'id': 'c1', 'cost': 10}]}})

    assert response.status_code == 200
    assert response.get_json()['zonesToPauseNow'] == []


def test_verify_response_includes_diagnostics(client, db, fake_gateway, ledger):
    ledger.append([ledger.new_record('42', '1')])
    fake_gateway.exclusions = {'42': ['1']}

    data = post_json(client, '/optimizer/verify', {}).get_json()

    assert data['diagnostics'] == [{'campaignId': '42', 'providerCampaignId': '42', 'fetched': 1,
                                    'status': 200, 'strategy': 'root_list', 'checked': 1}]


def test_request_deadline_sets_cancel_event(app, app_context, mocker):
    from routes.optimizer import request_deadline
    mocker.patch.dict(app.config, {'OPTIMIZER_REQUEST_DEADLINE_SECONDS': 0.01})

    with request_deadline() as cancel_event:
        assert cancel_event.wait(2)


def test_request_deadline_disabled_at_zero(app, app_context, mocker):
    from routes.optimizer import request_deadline
    mocker.patch.dict(app.config, {'OPTIMIZER_REQUEST_DEADLINE_SECONDS': 0})

    with request_deadline() as cancel_event:
        assert not cancel_event.wait(0.05)


def test_sync_and_verify_pass_cancel_event(client, db, fake_gateway, mocker):
    import threading
    from services.sync import SyncOrchestrator
    from services.verify import VerifyOrchestrator
    sync_spy = mocker.spy(SyncOrchestrator, 'sync')
    verify_spy = mocker.spy(VerifyOrchestrator, 'verify')

    post_json(client, '/optimizer/sync-blacklist', {'campaignIds': ['42']})
    post_json(client, '/optimizer/verify', {})

    assert isinstance(sync_spy.call_args.kwargs['cancel_event'], threading.Event)
    assert isinstance(verify_spy.call_args.kwargs['cancel_event'], threading.Event)
