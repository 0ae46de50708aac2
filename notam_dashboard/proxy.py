"""
Backend proxy.

Hides the FAA credentials from the dashboard and decides, per request,
whether to fall back to NAV CANADA for Canadian codes.
"""
import time
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from notam_dashboard.config import Config
from notam_dashboard.errors import RateLimitedError, UpstreamError
from notam_dashboard.main import setup_logging
from notam_dashboard.models.notam import Source, is_valid_code, normalize_code
from notam_dashboard.notam_client import BaseNotamClient, get_upstream_clients

logger = logging.getLogger(__name__)


def fetch_with_fallback(code: str, primary: BaseNotamClient, secondary: Optional[BaseNotamClient],
                        fallback_prefix: str = 'C') -> Tuple[List[Any], Source]:
    """
    Fetch from the primary provider, falling back for codes with ``fallback_prefix``.

    The secondary is consulted when the primary fails, returns nothing, or
    returns a malformed payload.

    Returns:
        Tuple of (raw items, provider that served them)

    Raises:
        UpstreamError: if no provider could be queried
    """
    primary_error = None
    try:
        items = primary.fetch_items(code)
    except UpstreamError as e:
        logger.warning(f"Primary provider failed for {code}: {e}")
        items, primary_error = [], e

    if items:
        return items, Source.PRIMARY

    if secondary is None or not code.startswith(fallback_prefix):
        if primary_error:
            raise primary_error
        return [], Source.PRIMARY

    logger.info(f"Falling back to {secondary.name} for {code}")
    try:
        fallback_items = secondary.fetch_items(code)
    except UpstreamError as e:
        logger.warning(f"Secondary provider failed for {code}: {e}")
        raise primary_error or e

    if not fallback_items and primary_error:
        raise primary_error
    return fallback_items, Source.SECONDARY


def _error(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    content = {'error': error}
    if details:
        content['details'] = details
    return JSONResponse(status_code=status_code, content=content)


def create_app(config: Optional[Config] = None, primary: Optional[BaseNotamClient] = None,
               secondary: Optional[BaseNotamClient] = None) -> FastAPI:
    """Build the proxy application. Clients are injectable for tests."""
    config = config or Config()
    if primary is None or secondary is None:
        default_primary, default_secondary = get_upstream_clients(config)
        primary = primary or default_primary
        secondary = secondary or default_secondary

    app = FastAPI(title="NOTAM Proxy", version=config.VERSION)
    started = time.monotonic()

    @app.get("/api/notams")
    def get_notams(icao: str = Query("", description="4-letter ICAO airport code")):
        """Raw NOTAM items for one airport, tagged with the provider that served them."""
        start_time = time.monotonic()
        code = normalize_code(icao)
        if not is_valid_code(code):
            return _error(400, "Invalid ICAO code. Must be 4 uppercase letters.", f"Received: {icao!r}")

        try:
            items, source = fetch_with_fallback(code, primary, secondary, config.FALLBACK_PREFIX)
        except RateLimitedError as e:
            return _error(429, "Rate limited by upstream provider", str(e))
        except UpstreamError as e:
            return _error(502, "Failed to fetch NOTAMs from upstream", str(e))
        except Exception as e:
            logger.error(f"Unexpected error fetching NOTAMs for {code}: {e}", exc_info=True)
            return _error(500, "Internal server error", str(e))

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(f"{code}: {len(items)} item(s) from {source.value} in {elapsed_ms}ms")
        return {
            'data': items,
            'source': source.value,
            'metadata': {
                'icao': code,
                'total': len(items),
                'processing_time_ms': elapsed_ms,
                'timestamp': datetime.now(timezone.utc).isoformat(),
            },
        }

    @app.get("/health")
    def health():
        """Liveness check."""
        return {
            'status': 'ok',
            'service': 'notam-proxy',
            'version': config.VERSION,
            'uptime_seconds': round(time.monotonic() - started, 1),
            'credentials_configured': bool(config.FAA_CLIENT_ID and config.FAA_CLIENT_SECRET),
        }

    return app


def main():
    """Run the proxy with uvicorn."""
    setup_logging()
    config = Config()
    try:
        config.validate_proxy()
    except ValueError as e:
        logger.warning(f"{e}; primary provider calls will fail")
    uvicorn.run(create_app(config), host=config.PROXY_HOST, port=config.PROXY_PORT)


if __name__ == '__main__':
    main()
