import json
import pytest
import requests
from services.provider_gateway import (
    ProviderGateway, ProviderListingError, build_provider_url, MISSING_TOKEN,
)


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None, reason='OK'):
        self.status_code = status_code
        self.text = text if text is not None else (json.dumps(body) if body is not None else '')
        self.reason = reason

    @property
    def ok(self):
        return self.status_code < 400


def make_gateway(session, token='secret', json_path=None):
    return ProviderGateway(
        base_url='https://ssp-api.propellerads.com/v5',
        token=token,
        blacklist_path='/v5/adv/campaigns/{campaignId}/targeting/exclude/zone',
        remove_path='/v5/adv/campaigns/{campaignId}/zones/blacklist',
        campaigns_path='/v5/adv/campaigns',
        json_path=json_path,
        timeout=5.0,
        session=session,
    )


@pytest.fixture
def session(mocker):
    return mocker.Mock(spec=requests.Session)


def test_build_provider_url_drops_duplicate_version():
    url = build_provider_url('https://api.test/v5/', '/v5/adv/campaigns/{campaignId}/zones', 'a b')
    assert url == 'https://api.test/v5/adv/campaigns/a%20b/zones'


def test_build_provider_url_unversioned_base():
    url = build_provider_url('https://api.test', 'adv/campaigns/{campaignId}', '42')
    assert url == 'https://api.test/adv/campaigns/42'


def test_unconfigured_gateway_never_calls_provider(session):
    gateway = make_gateway(session, token=None)
    result = gateway.fetch_excluded_zones('42')
    assert result.unconfigured
    assert result.error == MISSING_TOKEN
    session.request.assert_not_called()


def test_fetch_excluded_zones_sends_bearer_and_timeout(session):
    session.request.return_value = FakeResponse(body={"zone": [1, 2]})
    result = make_gateway(session).fetch_excluded_zones('42')

    assert result.ok
    assert result.zones == ["1", "2"]
    assert result.strategy == 'named_field'
    args, kwargs = session.request.call_args
    assert args == ('GET', 'https://ssp-api.propellerads.com/v5/adv/campaigns/42/targeting/exclude/zone')
    assert kwargs['timeout'] == 5.0
    assert kwargs['headers']['Authorization'] == 'Bearer secret'


def test_fetch_excluded_zones_empty_body_is_no_zones(session):
    session.request.return_value = FakeResponse(text='')
    result = make_gateway(session).fetch_excluded_zones('42')
    assert result.ok
    assert result.zones == []


def test_fetch_excluded_zones_http_error(session):
    session.request.return_value = FakeResponse(status_code=500, text='x' * 500, reason='Server Error')
    result = make_gateway(session).fetch_excluded_zones('42')
    assert not result.ok
    assert result.http_status == 500
    assert len(result.error) == 200


def test_fetch_excluded_zones_timeout(session):
    session.request.side_effect = requests.Timeout()
    result = make_gateway(session).fetch_excluded_zones('42')
    assert not result.ok
    assert not result.unconfigured
    assert 'timeout' in result.error


def test_fetch_excluded_zones_invalid_json(session):
    session.request.return_value = FakeResponse(text='<html>')
    result = make_gateway(session).fetch_excluded_zones('42')
    assert not result.ok
    assert result.error == 'invalid_json'


def test_fetch_excluded_zones_unrecognized_shape(session):
    session.request.return_value = FakeResponse(body={"status": "fine"})
    result = make_gateway(session).fetch_excluded_zones('42')
    assert not result.ok
    assert result.error == 'unrecognized_payload'


def test_remove_exclusion_success(session):
    session.request.return_value = FakeResponse(status_code=204, text='')
    result = make_gateway(session).remove_exclusion('42', '777')

    assert result.ok
    assert result.message == 'Zone removed from blacklist via provider API.'
    args, kwargs = session.request.call_args
    assert args[0] == 'DELETE'
    assert kwargs['json'] == {'zone_ids': ['777']}


def test_remove_exclusion_failure_message(session):
    session.request.return_value = FakeResponse(status_code=403, text='forbidden')
    result = make_gateway(session).remove_exclusion('42', ['777'])
    assert not result.ok
    assert result.message == 'Provider API error (403): forbidden'


def test_list_campaigns_normalizes_items(session):
    session.request.return_value = FakeResponse(body={"result": 1, "items": [
        {"id": 5, "name": "Alpha", "status": 6},
        {"campaign_id": "6"},
        {"name": "no id"},
    ]})
    result = make_gateway(session).list_campaigns(query='Al')
    assert result.ok
    assert result.campaigns == [
        {'id': '5', 'name': 'Alpha', 'status': 6},
        {'id': '6', 'name': 'Campaign', 'status': None},
    ]
    assert session.request.call_args.kwargs['params'] == {'search': 'Al'}


def test_require_campaigns_raises_on_provider_failure(session):
    session.request.return_value = FakeResponse(status_code=502, text='bad gateway')
    with pytest.raises(ProviderListingError):
        make_gateway(session).require_campaigns()


def test_require_campaigns_unconfigured_is_empty(session):
    assert make_gateway(session, token='').require_campaigns() == []


def test_probe_returns_snippet_and_parsed(session):
    session.request.return_value = FakeResponse(body=[1, 2])
    probe = make_gateway(session).probe('42')
    assert probe['ok'] is True
    assert probe['status'] == 200
    assert probe['parsed'] == [1, 2]
