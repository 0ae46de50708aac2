"""API tests for the backend proxy."""
import pytest
from fastapi.testclient import TestClient
from notam_dashboard.config import Config
from notam_dashboard.errors import MalformedPayloadError, RateLimitedError, UpstreamError
from notam_dashboard.proxy import create_app


class StubClient:
    """Upstream client returning a fixed list or raising a fixed error."""

    def __init__(self, name, items=None, error=None):
        self.name = name
        self.items = items or []
        self.error = error
        self.calls = []

    def fetch_items(self, code):
        self.calls.append(code)
        if self.error:
            raise self.error
        return list(self.items)


@pytest.fixture
def config():
    config = Config()
    config.FAA_CLIENT_ID = 'id'
    config.FAA_CLIENT_SECRET = 'secret'
    config.VERSION = 'v1.2.3'
    return config


def make_client(config, primary, secondary):
    return TestClient(create_app(config, primary=primary, secondary=secondary))


class TestNotamsEndpoint:

    def test_primary_success(self, config):
        primary = StubClient('FAA', items=[{'id': 1}])
        secondary = StubClient('NAV CANADA', items=[{'id': 2}])
        client = make_client(config, primary, secondary)

        response = client.get('/api/notams', params={'icao': 'kjfk'})

        assert response.status_code == 200
        body = response.json()
        assert body['data'] == [{'id': 1}]
        assert body['source'] == 'primary'
        assert body['metadata']['icao'] == 'KJFK'
        assert body['metadata']['total'] == 1
        assert secondary.calls == []

    @pytest.mark.parametrize('icao', ['', 'JFK', 'KJFK1', '12AB', 'K JF'])
    def test_invalid_code(self, config, icao):
        primary = StubClient('FAA')
        client = make_client(config, primary, StubClient('NAV CANADA'))

        response = client.get('/api/notams', params={'icao': icao})

        assert response.status_code == 400
        assert 'error' in response.json()
        assert primary.calls == []

    @pytest.mark.parametrize('primary_error', [
        None,
        UpstreamError('FAA down', status_code=503),
        MalformedPayloadError('no items'),
    ])
    def test_canadian_fallback(self, config, primary_error):
        primary = StubClient('FAA', error=primary_error)
        secondary = StubClient('NAV CANADA', items=['E) RWY 05 CLSD'])
        client = make_client(config, primary, secondary)

        response = client.get('/api/notams', params={'icao': 'CYYZ'})

        assert response.status_code == 200
        assert response.json()['source'] == 'secondary'
        assert response.json()['data'] == ['E) RWY 05 CLSD']
        assert secondary.calls == ['CYYZ']

    def test_no_fallback_outside_prefix(self, config):
        primary = StubClient('FAA')
        secondary = StubClient('NAV CANADA', items=['E) RWY 05 CLSD'])
        client = make_client(config, primary, secondary)

        response = client.get('/api/notams', params={'icao': 'KJFK'})

        assert response.status_code == 200
        assert response.json()['data'] == []
        assert response.json()['source'] == 'primary'
        assert secondary.calls == []

    def test_upstream_error(self, config):
        primary = StubClient('FAA', error=UpstreamError('FAA down', status_code=503))
        client = make_client(config, primary, StubClient('NAV CANADA'))

        response = client.get('/api/notams', params={'icao': 'KJFK'})

        assert response.status_code == 502
        assert 'FAA down' in response.json()['details']

    def test_rate_limited(self, config):
        primary = StubClient('FAA', error=RateLimitedError('slow down', status_code=429))
        client = make_client(config, primary, StubClient('NAV CANADA'))

        response = client.get('/api/notams', params={'icao': 'KJFK'})

        assert response.status_code == 429

    def test_both_providers_fail(self, config):
        primary = StubClient('FAA', error=UpstreamError('FAA down'))
        secondary = StubClient('NAV CANADA', error=UpstreamError('CFPS down'))
        client = make_client(config, primary, secondary)

        response = client.get('/api/notams', params={'icao': 'CYYZ'})

        assert response.status_code == 502
        assert 'FAA down' in response.json()['details']

    def test_unexpected_error(self, config):
        primary = StubClient('FAA', error=KeyError('items'))
        client = make_client(config, primary, StubClient('NAV CANADA'))

        response = client.get('/api/notams', params={'icao': 'KJFK'})

        assert response.status_code == 500


class TestHealthEndpoint:

    def test_health(self, config):
        client = make_client(config, StubClient('FAA'), StubClient('NAV CANADA'))

        response = client.get('/health')

        assert response.status_code == 200
        data = response.json()
        assert data['status'] == 'ok'
        assert data['version'] == 'v1.2.3'
        assert data['credentials_configured'] is True
        assert 'uptime_seconds' in data
