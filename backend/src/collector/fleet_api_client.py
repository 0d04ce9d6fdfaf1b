"""
Fleet Trip Integrity - Fleet Backend API Client
Reads vehicles, drivers and trips from the fleet application's HTTP API with
retry logic using tenacity.

FleetApiTripStore implements integrity.store.TripStore for deployments where
the trip database is not directly reachable.

Endpoints used:
    GET /vehicles                  -> [{"id", "registration_number", "status"}, ...]
    GET /vehicles/<id>             -> vehicle object (404 if unknown)
    GET /vehicles/<id>/trips       -> [trip, ...] or {"trips": [...]}
    GET /drivers/<id>              -> driver object (404 if unknown)
"""

import requests
from typing import Any, List, Optional
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from integrity.store import DriverInfo, StoreUnavailableError, VehicleInfo, VehicleNotFoundError
from integrity.trip_record import TripRecord
from utils.config import (
    FLEET_API_BASE_URL,
    FLEET_API_KEY,
    FLEET_API_TIMEOUT_SECONDS,
    MAX_RETRY_ATTEMPTS,
    RETRY_BACKOFF_MULTIPLIER,
)
from utils.logger import logger


def _unwrap(payload: Any, key: str) -> Any:
    """Accept both bare lists and {"<key>": [...]} / {"data": [...]} envelopes."""
    if isinstance(payload, dict):
        if key in payload:
            return payload[key]
        if 'data' in payload:
            return payload['data']
    return payload


class FleetApiClient:
    """
    Client for the fleet backend API with automatic retry logic.

    Implements exponential backoff for transient failures (network, timeouts).
    Returns None for 404 responses; other HTTP errors raise requests.HTTPError.
    """

    def __init__(
        self,
        base_url: str = FLEET_API_BASE_URL,
        api_key: str = FLEET_API_KEY,
        timeout: float = FLEET_API_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            'User-Agent': 'FleetTripIntegrity/1.0',
            'Accept': 'application/json'
        })
        if api_key:
            self.session.headers['Authorization'] = f"Bearer {api_key}"

    @retry(
        stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=RETRY_BACKOFF_MULTIPLIER, min=1, max=30),
        retry=retry_if_exception_type((requests.Timeout, requests.ConnectionError)),
        reraise=True,
    )
    def get_json(self, path: str) -> Optional[Any]:
        """
        GET a JSON document.

        Args:
            path: Path below the base URL, e.g. "/vehicles"

        Returns:
            Decoded JSON, or None if the API answered 404

        Raises:
            requests.HTTPError: If API returns an error status other than 404
            requests.Timeout: If request times out (after retries)
        """
        url = f"{self.base_url}{path}"
        logger.debug(f"Fetching {url}")

        response = self.session.get(url, timeout=self.timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()


class FleetApiTripStore:
    """
    TripStore over the fleet backend API.

    Every transport or HTTP failure (after retries) becomes
    StoreUnavailableError; the store never returns fabricated data.

    Usage:
        ```python
        store = FleetApiTripStore()
        detector = EdgeCaseDetector(store=store, audit_sink=audit)
        ```
    """

    def __init__(self, client: Optional[FleetApiClient] = None):
        self.client = client or FleetApiClient()

    def _get(self, path: str, vehicle_id: Optional[str] = None) -> Optional[Any]:
        try:
            return self.client.get_json(path)
        except (requests.RequestException, ValueError) as e:
            # ValueError covers undecodable JSON bodies
            logger.error(f"Fleet API request failed: {path}", extra={
                "error_type": type(e).__name__,
                "error_message": str(e),
                "vehicle_id": vehicle_id,
            })
            raise StoreUnavailableError(f"Fleet API request {path} failed: {e}", vehicle_id=vehicle_id) from e

    def list_vehicle_ids(self) -> List[str]:
        vehicles = _unwrap(self._get('/vehicles'), 'vehicles') or []
        return [str(v['id']) for v in vehicles if isinstance(v, dict) and v.get('id') is not None]

    def get_vehicle(self, vehicle_id: str) -> Optional[VehicleInfo]:
        data = _unwrap(self._get(f'/vehicles/{vehicle_id}', vehicle_id), 'vehicle')
        return VehicleInfo.from_mapping(data) if isinstance(data, dict) else None

    def get_vehicle_trips(self, vehicle_id: str) -> List[TripRecord]:
        payload = self._get(f'/vehicles/{vehicle_id}/trips', vehicle_id)
        if payload is None:
            raise VehicleNotFoundError(vehicle_id)

        trips = _unwrap(payload, 'trips') or []
        records = []
        for raw in trips:
            if not isinstance(raw, dict):
                continue
            if raw.get('vehicle_id') is None:
                raw = {**raw, 'vehicle_id': vehicle_id}
            records.append(TripRecord.from_mapping(raw))

        logger.info(f"Fetched {len(records)} trips for vehicle {vehicle_id} from fleet API")
        return records

    def get_driver(self, driver_id: str) -> Optional[DriverInfo]:
        data = _unwrap(self._get(f'/drivers/{driver_id}'), 'driver')
        return DriverInfo.from_mapping(data) if isinstance(data, dict) else None
