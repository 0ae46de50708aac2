"""NOTAM API clients: upstream providers used by the proxy, and the dashboard's gateway to the proxy."""
import asyncio
import requests
from typing import Any, Dict, List, Optional, Tuple
from abc import ABC, abstractmethod
from notam_dashboard.config import Config
from notam_dashboard.errors import (
    InvalidAirportCodeError,
    MalformedPayloadError,
    RateLimitedError,
    UpstreamError,
)
from notam_dashboard.extraction import DEFAULT_STRATEGIES, PRIMARY_STRATEGIES, extract_items, find_strategy
from notam_dashboard.models.notam import FetchResult, Source, is_valid_code, normalize_code
from notam_dashboard.parser import normalize_batch
import logging

logger = logging.getLogger(__name__)


class BaseNotamClient(ABC):
    """
    Abstract base class for upstream NOTAM providers.
    Subclasses describe authentication, the request and how to find the items.
    """

    name = "upstream"
    source = Source.PRIMARY

    def __init__(self, config: Optional[Config] = None, session: Optional[requests.Session] = None):
        self.config = config or Config()
        self.session = session or requests.Session()
        self._setup_authentication()

    @abstractmethod
    def _setup_authentication(self):
        """Setup authentication headers. Override in subclasses."""
        pass

    @abstractmethod
    def _build_request(self, airport_code: str) -> Tuple[str, Dict, Dict]:
        """
        Build the API request parameters.

        Returns:
            Tuple of (url, headers, params)
        """
        pass

    @abstractmethod
    def _parse_response(self, response_data: Any, airport_code: str) -> List[Any]:
        """Locate the raw item list in the decoded response."""
        pass

    def fetch_items(self, airport_code: str) -> List[Any]:
        """
        Fetch raw NOTAM items for one airport.

        Args:
            airport_code: ICAO airport code

        Returns:
            List of raw upstream items (possibly empty)

        Raises:
            RateLimitedError: provider answered 429
            UpstreamError: network failure or any other HTTP error
            MalformedPayloadError: body is not JSON or has no item list
        """
        url, headers, params = self._build_request(airport_code)

        try:
            response = self.session.get(
                url, params=params, headers=headers, timeout=self.config.REQUEST_TIMEOUT_SECONDS
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"{self.name} request failed for {airport_code}", details=str(e)) from e

        if response.status_code == 429:
            raise RateLimitedError(f"{self.name} rate limited for {airport_code}", status_code=429)
        if response.status_code >= 400:
            raise UpstreamError(
                f"{self.name} returned an error for {airport_code}",
                status_code=response.status_code,
                details=(response.text or '')[:200],
            )

        try:
            response_data = response.json()
        except ValueError as e:
            raise MalformedPayloadError(
                f"{self.name} returned non-JSON body for {airport_code}",
                status_code=response.status_code,
                details=str(e),
            ) from e

        items = self._parse_response(response_data, airport_code)
        logger.info(f"{self.name}: {len(items)} item(s) for {airport_code}")
        return items


class FAANotamClient(BaseNotamClient):
    """
    Primary provider: FAA NOTAM API (geoJSON features).
    Requires client_id / client_secret issued by the FAA API portal.
    """

    name = "FAA"
    source = Source.PRIMARY

    def _setup_authentication(self):
        """FAA credentials travel as plain request headers."""
        self.session.headers.update({
            'client_id': self.config.FAA_CLIENT_ID,
            'client_secret': self.config.FAA_CLIENT_SECRET,
        })

    def _build_request(self, airport_code: str) -> Tuple[str, Dict, Dict]:
        headers = {"Accept": "application/json"}
        params = {
            "icaoLocation": airport_code,
            "responseFormat": "geoJson",
            "pageSize": 1000,
        }
        return self.config.FAA_API_URL, headers, params

    def _parse_response(self, response_data: Any, airport_code: str) -> List[Any]:
        """
        Parse FAA API response.

        Expected format: ``{"items": [feature, ...]}`` where each feature has
        ``properties.coreNOTAMData.notam`` and ``notamTranslation``.
        """
        if find_strategy(response_data, airport_code, PRIMARY_STRATEGIES) is None:
            raise MalformedPayloadError(
                f"FAA payload for {airport_code} has no items list",
                details=type(response_data).__name__,
            )
        return extract_items(response_data, airport_code, PRIMARY_STRATEGIES)


class NavCanadaClient(BaseNotamClient):
    """
    Secondary provider: NAV CANADA CFPS alpha API (no authentication).
    Only consulted for Canadian codes when the FAA yields nothing.
    """

    name = "NAV CANADA"
    source = Source.SECONDARY

    def _setup_authentication(self):
        """No authentication required for CFPS."""
        pass

    def _build_request(self, airport_code: str) -> Tuple[str, Dict, Dict]:
        headers = {
            "Accept": "application/json",
            "User-Agent": "notam-dashboard",
        }
        params = {"site": airport_code, "alpha": "notam"}
        return self.config.NAVCAN_API_URL, headers, params

    def _parse_response(self, response_data: Any, airport_code: str) -> List[Any]:
        # CFPS has changed its envelope several times; try every known shape
        return extract_items(response_data, airport_code, DEFAULT_STRATEGIES)


class ProxyNotamClient:
    """
    Fetch Gateway: the dashboard's only way to reach NOTAM data.

    Calls ``GET {PROXY_URL}/api/notams?icao=CODE`` and normalizes the envelope
    into a FetchResult. Network and HTTP failures become failed results so the
    scheduler can retry them; only malformed codes raise.
    """

    def __init__(self, config: Optional[Config] = None, session: Optional[requests.Session] = None):
        self.config = config or Config()
        self.session = session or requests.Session()
        self.base_url = self.config.PROXY_URL.rstrip('/')

    def _get(self, airport_code: str) -> Tuple[int, Any]:
        response = self.session.get(
            f"{self.base_url}/api/notams",
            params={"icao": airport_code},
            timeout=self.config.REQUEST_TIMEOUT_SECONDS,
        )
        try:
            payload = response.json()
        except ValueError:
            payload = None
        return response.status_code, payload

    async def fetch_records(self, airport_code: str) -> FetchResult:
        """
        Fetch and normalize the current NOTAMs for one airport.

        Args:
            airport_code: ICAO airport code

        Returns:
            FetchResult, ``ok`` False on any transport or envelope failure

        Raises:
            InvalidAirportCodeError: if the code is not four letters
        """
        code = normalize_code(airport_code)
        if not is_valid_code(code):
            raise InvalidAirportCodeError([airport_code])

        try:
            status_code, payload = await asyncio.to_thread(self._get, code)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Proxy request failed for {code}: {e}")
            return FetchResult.failure("Network error", str(e))

        if status_code == 429:
            return FetchResult.failure("Rate limited", _details(payload))
        if not isinstance(payload, dict):
            return FetchResult.failure(f"Unexpected response (HTTP {status_code})")
        if status_code >= 400 or 'error' in payload:
            return FetchResult.failure(str(payload.get('error') or f"HTTP {status_code}"), _details(payload))

        data = payload.get('data')
        if not isinstance(data, list):
            return FetchResult.failure("Malformed response", "missing data list")

        source = Source.parse(payload.get('source'))
        records = normalize_batch(data, code, source)
        logger.info(f"{code}: {len(records)} record(s) from {source.value} ({len(data)} raw item(s))")
        return FetchResult.success(records, source)


def _details(payload: Any) -> Optional[str]:
    if isinstance(payload, dict) and payload.get('details') is not None:
        return str(payload['details'])
    return None


def get_upstream_clients(config: Optional[Config] = None) -> Tuple[BaseNotamClient, BaseNotamClient]:
    """
    Factory function for the proxy's upstream clients.

    Returns:
        Tuple of (primary, secondary)
    """
    config = config or Config()
    if not config.FAA_CLIENT_ID:
        logger.warning("FAA_CLIENT_ID is not set; primary provider calls will be rejected")
    return FAANotamClient(config), NavCanadaClient(config)
