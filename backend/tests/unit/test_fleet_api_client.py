"""
Fleet Trip Integrity - Fleet API Client Unit Tests

Tests FleetApiClient and FleetApiTripStore with HTTP mocking:
- Client initialization and headers
- get_json() - success, 404, HTTP errors
- Retry logic for transient failures (timeout, connection error)
- Store mapping of payloads to vehicles, drivers and trips
- Failures surfaced as StoreUnavailableError

Priority: P2 - Infrastructure testing
"""

import pytest
import requests
from unittest.mock import Mock, patch

from collector.fleet_api_client import FleetApiClient, FleetApiTripStore
from integrity.store import StoreUnavailableError, VehicleNotFoundError


def json_response(payload, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.raise_for_status = Mock()
    return response


class TestFleetApiClientInit:
    """Test FleetApiClient initialization."""

    def test_init_strips_trailing_slash(self):
        client = FleetApiClient(base_url="https://fleet.example.com/api/")

        assert client.base_url == "https://fleet.example.com/api"

    def test_init_sets_headers(self):
        client = FleetApiClient(base_url="https://fleet.example.com/api", api_key="")

        assert isinstance(client.session, requests.Session)
        assert 'FleetTripIntegrity' in client.session.headers['User-Agent']
        assert client.session.headers['Accept'] == 'application/json'
        assert 'Authorization' not in client.session.headers

    def test_init_sets_bearer_token(self):
        client = FleetApiClient(base_url="https://fleet.example.com/api", api_key="k-123")

        assert client.session.headers['Authorization'] == 'Bearer k-123'


class TestGetJson:
    """Test get_json() method."""

    def test_success(self):
        client = FleetApiClient(base_url="https://fleet.example.com/api", timeout=5)

        with patch.object(client.session, 'get', return_value=json_response([{"id": "v-1"}])) as mock_get:
            payload = client.get_json('/vehicles')

        mock_get.assert_called_once_with("https://fleet.example.com/api/vehicles", timeout=5)
        assert payload == [{"id": "v-1"}]

    def test_404_returns_none(self):
        client = FleetApiClient(base_url="https://fleet.example.com/api")

        with patch.object(client.session, 'get', return_value=json_response(None, status_code=404)):
            assert client.get_json('/vehicles/ghost') is None

    def test_http_error_is_raised(self):
        client = FleetApiClient(base_url="https://fleet.example.com/api")
        response = json_response(None, status_code=500)
        response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")

        with patch.object(client.session, 'get', return_value=response) as mock_get:
            with pytest.raises(requests.HTTPError):
                client.get_json('/vehicles')

        # HTTP errors are not retried
        assert mock_get.call_count == 1

    @patch('time.sleep')
    def test_timeout_is_retried_then_raised(self, mock_sleep):
        client = FleetApiClient(base_url="https://fleet.example.com/api")

        with patch.object(client.session, 'get', side_effect=requests.Timeout("Request timeout")) as mock_get:
            with pytest.raises(requests.Timeout):
                client.get_json('/vehicles')

        assert mock_get.call_count >= 2

    @patch('time.sleep')
    def test_connection_error_recovers_on_retry(self, mock_sleep):
        client = FleetApiClient(base_url="https://fleet.example.com/api")
        side_effect = [requests.ConnectionError("Connection refused"), json_response([])]

        with patch.object(client.session, 'get', side_effect=side_effect) as mock_get:
            assert client.get_json('/vehicles') == []

        assert mock_get.call_count == 2


class TestFleetApiTripStore:
    def store_with(self, payloads):
        """Store whose client answers from a {path: payload} map."""
        client = Mock(spec=FleetApiClient)
        client.get_json.side_effect = lambda path: payloads.get(path)
        return FleetApiTripStore(client=client)

    def test_list_vehicle_ids_accepts_envelope(self):
        store = self.store_with({'/vehicles': {"data": [{"id": 1}, {"id": "v-2"}, {"name": "no id"}]}})

        assert store.list_vehicle_ids() == ['1', 'v-2']

    def test_get_vehicle(self):
        store = self.store_with({'/vehicles/v-1': {"id": "v-1", "registration_number": "MH12AB1234", "status": "inactive"}})

        vehicle = store.get_vehicle('v-1')

        assert vehicle.registration_number == 'MH12AB1234'
        assert vehicle.is_active is False
        assert store.get_vehicle('ghost') is None

    def test_get_vehicle_trips_fills_vehicle_id(self):
        store = self.store_with({'/vehicles/v-1/trips': {"trips": [
            {"id": "t-1", "start_km": 100, "end_km": 180},
            "not a trip",
        ]}})

        trips = store.get_vehicle_trips('v-1')

        assert len(trips) == 1
        assert trips[0].id == 't-1'
        assert trips[0].vehicle_id == 'v-1'
        assert trips[0].end_km == 180.0

    def test_unknown_vehicle_trips_raise_not_found(self):
        store = self.store_with({})

        with pytest.raises(VehicleNotFoundError):
            store.get_vehicle_trips('ghost')

    def test_get_driver(self):
        store = self.store_with({'/drivers/d-1': {"driver": {"id": "d-1", "name": "Ravi Kumar"}}})

        assert store.get_driver('d-1').name == 'Ravi Kumar'
        assert store.get_driver('d-2') is None

    @pytest.mark.parametrize("error", [
        requests.Timeout("Request timeout"),
        requests.HTTPError("502 Bad Gateway"),
        ValueError("Expecting value: line 1 column 1"),
    ])
    def test_failures_become_store_unavailable(self, error):
        client = Mock(spec=FleetApiClient)
        client.get_json.side_effect = error
        store = FleetApiTripStore(client=client)

        with pytest.raises(StoreUnavailableError) as exc_info:
            store.get_vehicle_trips('v-1')

        assert exc_info.value.vehicle_id == 'v-1'
        assert exc_info.value.__cause__ is error
