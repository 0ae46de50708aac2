"""NOTAM dashboard: rate-limited refresh of airport NOTAMs from two providers."""
