import pytest
from app import create_app
from config import Config
from extensions import db as _db # Alias to avoid fixture name conflict
from services.provider_gateway import GatewayResult, STATUS_OK

class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:' # Use in-memory SQLite for tests
    SECRET_KEY = 'test-secret-key'
    AUTO_CREATE_TABLES = False # The db fixture creates and drops tables per test
    PROVIDER_API_BASE_URL = 'https://provider.test/v5'
    PROVIDER_API_TOKEN = None # Routes get their gateway from the fake_gateway fixture
    REPORTING_BASE_URL = None
    OPTIMIZER_MAX_WORKERS = 2


class FakeGateway:
    """
    In-memory stand-in for ProviderGateway.

    `exclusions` maps provider campaign id -> list of zone ids, or a GatewayResult to return as-is
    (e.g. a failure). Every call is recorded in `calls`.
    """

    def __init__(self, exclusions=None, campaigns=None, configured=True, remove_result=None):
        self.exclusions = dict(exclusions or {})
        self.campaigns = list(campaigns or [])
        self.configured = configured
        self.remove_result = remove_result
        self.calls = []

    @property
    def is_configured(self):
        return self.configured

    def fetch_excluded_zones(self, provider_campaign_id):
        self.calls.append(('fetch', provider_campaign_id))
        if not self.configured:
            return GatewayResult.not_configured()
        value = self.exclusions.get(provider_campaign_id, [])
        if isinstance(value, GatewayResult):
            return value
        return GatewayResult(status=STATUS_OK, zones=list(value), http_status=200, strategy='root_list')

    def fetch_exclusion_payload(self, provider_campaign_id):
        self.calls.append(('payload', provider_campaign_id))
        return GatewayResult(status=STATUS_OK, http_status=200,
                             payload={'data': list(self.exclusions.get(provider_campaign_id, []))})

    def remove_exclusion(self, provider_campaign_id, zone_ids):
        self.calls.append(('remove', provider_campaign_id, zone_ids))
        if not self.configured:
            return GatewayResult.not_configured()
        if self.remove_result is not None:
            return self.remove_result
        return GatewayResult(status=STATUS_OK, http_status=200,
                             message='Zone removed from blacklist via provider API.')

    def list_campaigns(self, query=None):
        self.calls.append(('list', query))
        if not self.configured:
            return GatewayResult.not_configured()
        return GatewayResult(status=STATUS_OK, http_status=200, campaigns=list(self.campaigns))

    def require_campaigns(self):
        self.calls.append(('require',))
        return list(self.campaigns) if self.configured else []

    def probe(self, provider_campaign_id):
        self.calls.append(('probe', provider_campaign_id))
        return {'ok': True, 'url': f'https://provider.test/{provider_campaign_id}', 'status': 200,
                'snippet': '[]', 'parsed': []}

    def fetched(self):
        return [call[1] for call in self.calls if call[0] == 'fetch']


@pytest.fixture(scope='session')
def app():
    """
    Session-wide test Flask application.
    Ensures the app is created once per test session with TestConfig.
    """
    app_instance = create_app(config_class=TestConfig)
    return app_instance

@pytest.fixture(scope='function')
def app_context(app):
    """
    Function-scoped application context.
    Pushes an app context before each test that needs it and pops it afterwards.
    """
    with app.app_context():
        yield

@pytest.fixture(scope='function')
def db(app_context):
    """
    Function-scoped database fixture.
    Creates all database tables before each test and drops them afterwards.
    """
    _db.create_all()
    yield _db
    _db.session.remove()
    _db.drop_all()

@pytest.fixture(scope='session')
def client(app):
    """Test client fixture for making requests to the application."""
    return app.test_client()

@pytest.fixture
def fake_gateway(mocker):
    """A configured FakeGateway wired into the optimizer routes."""
    gateway = FakeGateway()
    mocker.patch('routes.optimizer.build_gateway', return_value=gateway)
    return gateway

@pytest.fixture
def ledger(db):
    from services.ledger import SuppressionLedger
    return SuppressionLedger(provider='propellerads')

@pytest.fixture
def gateway_factory():
    """Builds unpatched FakeGateway instances for orchestrator tests."""
    return FakeGateway
