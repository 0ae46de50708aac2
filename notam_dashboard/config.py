"""Configuration module for the NOTAM dashboard."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration."""

    # Logging level
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Software Version
    VERSION = os.getenv('VERSION', 'v0.0.0')

    # Local state (configured codes, sets, record cache, session claim)
    DATABASE_PATH = os.getenv('DATABASE_PATH', 'notam_dashboard.db')

    # Backend proxy the dashboard talks to
    PROXY_URL = os.getenv('PROXY_URL', 'http://localhost:3000')
    PROXY_HOST = os.getenv('PROXY_HOST', '0.0.0.0')
    PROXY_PORT = int(os.getenv('PROXY_PORT', '3000'))

    # Upstream providers (used by the proxy only)
    FAA_API_URL = os.getenv('FAA_API_URL', 'https://external-api.faa.gov/notamapi/v1/notams')
    FAA_CLIENT_ID = os.getenv('FAA_CLIENT_ID', '')
    FAA_CLIENT_SECRET = os.getenv('FAA_CLIENT_SECRET', '')
    NAVCAN_API_URL = os.getenv('NAVCAN_API_URL', 'https://plan.navcanada.ca/weather/api/alpha/')

    # Codes starting with this prefix may fall back to the secondary provider
    FALLBACK_PREFIX = os.getenv('FALLBACK_PREFIX', 'C')

    # Airports loaded when the local store has none configured (ICAO codes)
    AIRPORTS = [a.strip().upper() for a in os.getenv('AIRPORTS', '').split(',') if a.strip()]

    REQUEST_TIMEOUT_SECONDS = float(os.getenv('REQUEST_TIMEOUT_SECONDS', '15'))

    # Sliding window rate limit for upstream calls
    CALLS_PER_WINDOW = int(os.getenv('CALLS_PER_WINDOW', '25'))
    RATE_WINDOW_SECONDS = float(os.getenv('RATE_WINDOW_SECONDS', '65'))
    BATCH_INTERVAL_SECONDS = float(os.getenv('BATCH_INTERVAL_SECONDS', '3'))
    RETRY_CAP = int(os.getenv('RETRY_CAP', '2'))

    # Timers
    AUTO_REFRESH_INTERVAL_SECONDS = int(os.getenv('AUTO_REFRESH_INTERVAL_SECONDS', '300'))
    HIGHLIGHT_WINDOW_SECONDS = float(os.getenv('HIGHLIGHT_WINDOW_SECONDS', '60'))
    MARKER_SWEEP_INTERVAL_SECONDS = float(os.getenv('MARKER_SWEEP_INTERVAL_SECONDS', '10'))
    CACHE_MAX_AGE_SECONDS = float(os.getenv('CACHE_MAX_AGE_SECONDS', '300'))

    # Notifications
    NOTIFICATION_RECENCY_HOURS = float(os.getenv('NOTIFICATION_RECENCY_HOURS', '4'))
    MAX_NOTIFICATIONS = int(os.getenv('MAX_NOTIFICATIONS', '10'))
    NTFY_URL = os.getenv('NTFY_URL', '')

    @classmethod
    def validate(cls):
        """Validate dashboard configuration."""
        if not cls.PROXY_URL:
            raise ValueError("PROXY_URL configuration is required")
        if cls.CALLS_PER_WINDOW < 1:
            raise ValueError("CALLS_PER_WINDOW must be at least 1")
        if cls.RETRY_CAP < 0:
            raise ValueError("RETRY_CAP must not be negative")
        return True

    @classmethod
    def validate_proxy(cls):
        """Validate configuration required by the backend proxy."""
        if not cls.FAA_API_URL:
            raise ValueError("FAA_API_URL configuration is required")
        if not cls.FAA_CLIENT_ID or not cls.FAA_CLIENT_SECRET:
            raise ValueError("FAA_CLIENT_ID and FAA_CLIENT_SECRET are required")
        return True
