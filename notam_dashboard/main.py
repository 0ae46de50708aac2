"""Main application module."""
import argparse
import asyncio
import logging
import sys
import time
from typing import List, Optional

from notam_dashboard.alerts import Notifier
from notam_dashboard.config import Config
from notam_dashboard.database import NotamStore
from notam_dashboard.notam_client import ProxyNotamClient
from notam_dashboard.orchestrator import RefreshOrchestrator
from notam_dashboard.reports import DEFAULT_FILTERS, filter_records, render_table, sort_records
from notam_dashboard.session import SessionGate

logger = logging.getLogger(__name__)


def setup_logging(level: str = Config.LOG_LEVEL):
    """Configure logging for the command line entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)-20s | %(filename)-15s | %(funcName)-15s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


class NotamDashboard:
    """Terminal NOTAM dashboard."""

    def __init__(self, config: Optional[Config] = None, codes: Optional[List[str]] = None,
                 gateway=None, store: Optional[NotamStore] = None):
        """Initialize the dashboard."""
        self.config = config or Config()
        self.config.validate()

        self.store = store or NotamStore(self.config.DATABASE_PATH)
        if codes:
            self.store.save_codes(codes)
        elif not self.store.get_codes() and self.config.AIRPORTS:
            self.store.save_codes(self.config.AIRPORTS)

        self.session = SessionGate(self.store)
        self.notifier = Notifier(self.config)
        self.orchestrator = RefreshOrchestrator(
            gateway or ProxyNotamClient(self.config),
            store=self.store,
            notifier=self.notifier,
            session_gate=self.session,
            config=self.config,
        )

        logger.info("=" * 80)
        logger.info("NOTAM Dashboard initialized")
        logger.info(f"Software Version: {self.config.VERSION}")
        logger.info(f"Proxy: {self.config.PROXY_URL}")
        logger.info(f"Database: {self.config.DATABASE_PATH}")
        logger.info(f"Rate limit: {self.config.CALLS_PER_WINDOW} calls / {self.config.RATE_WINDOW_SECONDS:g}s, "
                    f"{self.config.BATCH_INTERVAL_SECONDS:g}s between calls")
        logger.info("=" * 80)

    def prepare(self) -> List[str]:
        """Claim the session, load configured codes and restore fresh cache entries."""
        self.session.claim()
        codes = self.store.get_codes()
        self.orchestrator.configure(codes)
        self.orchestrator.restore_from_cache()
        logger.info(f"Monitoring {len(codes)} airport(s): {', '.join(codes) or 'none'}")
        return codes

    def render(self, keyword: str = '', show_cancelled: bool = False) -> str:
        """Filtered, sorted table of the current records."""
        filters = dict(DEFAULT_FILTERS)
        filters['cancelled'] = show_cancelled
        records = sort_records(filter_records(self.orchestrator.records(), filters, keyword))
        return render_table(records, new_ids=self.orchestrator.new_markers.keys())

    def _log_progress(self):
        counts = self.orchestrator.counts()
        logger.info(
            f"Loaded {counts['loaded']}/{counts['total']} | queued {counts['queued']} | "
            f"failed {counts['failed']}"
        )
        for code, error in self.orchestrator.errors.items():
            logger.warning(f"  {code}: {error}")

    async def run_once(self, keyword: str = '', show_cancelled: bool = False) -> str:
        """Load every configured code once and return the rendered table."""
        logger.info("Starting NOTAM load")
        start_time = time.time()

        self.prepare()
        self.orchestrator.scheduler.start()
        await self.orchestrator.wait_idle()
        await self.notifier.wait_sent()

        self._log_progress()
        logger.info(f"Load complete in {time.time() - start_time:.2f}s")
        return self.render(keyword, show_cancelled)

    async def run_continuous(self, keyword: str = '', show_cancelled: bool = False):
        """Keep the dashboard running with auto-refresh until interrupted."""
        logger.info("Starting continuous mode")
        logger.info(f"Auto-refresh interval: {self.config.AUTO_REFRESH_INTERVAL_SECONDS}s")

        self.prepare()
        await self.orchestrator.start()
        last_update = None
        try:
            while True:
                await asyncio.sleep(1)
                if self.orchestrator.last_updated != last_update and not self.orchestrator.scheduler.running:
                    last_update = self.orchestrator.last_updated
                    self._log_progress()
                    print(self.render(keyword, show_cancelled))
                    logger.info(f"Next refresh in {self.orchestrator.countdown}s...")
        finally:
            await self.orchestrator.stop()
            await self.notifier.wait_sent()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='NOTAM dashboard')
    parser.add_argument('--once', action='store_true', help='Load all codes once, print and exit')
    parser.add_argument('--codes', nargs='+', metavar='ICAO', help='Replace the configured codes')
    parser.add_argument('--keyword', default='', help='Only show NOTAMs containing this text')
    parser.add_argument('--show-cancelled', action='store_true', help='Include cancelled NOTAMs')
    args = parser.parse_args()

    setup_logging()

    try:
        dashboard = NotamDashboard(codes=args.codes)

        if args.once:
            print(asyncio.run(dashboard.run_once(args.keyword, args.show_cancelled)))
        else:
            asyncio.run(dashboard.run_continuous(args.keyword, args.show_cancelled))
    except KeyboardInterrupt:
        logger.info("Dashboard stopped by user")
    except Exception as e:
        logger.error(f"Failed to run NOTAM dashboard: {e}", exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
