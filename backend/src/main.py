#!/usr/bin/env python3
"""
LoL Stats Refresh Service - Main Entry Point

This service ticks on a fixed interval; each tick asks the poll scheduler
which tournaments are due, refreshes them from Leaguepedia and stores the
recomputed statistics in Supabase.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

# Load .env from backend directory before Config() is used
from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config import Config
from refresh.coordinator import RunCoordinator
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


class LoLStatsRefreshService:
    """Main service class for the scheduled refresh."""

    def __init__(self):
        self.config = Config()
        self.coordinator = None
        self.running = False
        self._stop = asyncio.Event()

    async def start(self):
        """Start the refresh service."""
        logger.info("Starting LoL Stats Refresh Service", extra={
            "version": "1.0.0",
            "environment": self.config.environment,
            "tick_interval_seconds": self.config.tick_interval_seconds,
        })

        try:
            self.coordinator = RunCoordinator(self.config)
            await self.coordinator.initialize()

            # Set up signal handlers for graceful shutdown
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._handle_shutdown, sig)

            self.running = True
            await self._run_loop()

        except Exception as e:
            logger.error("Fatal error in refresh service", extra={
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)
            raise
        finally:
            if self.coordinator:
                await self.coordinator.shutdown()

    async def _run_loop(self):
        """One scheduled (non-forced) run per tick; a failing tick never stops the loop."""
        while self.running:
            try:
                outcome = await self.coordinator.run_and_record(force=False)
                logger.info("Tick finished", extra={
                    "status": outcome.status.value,
                    "refreshed": outcome.refreshed,
                    "failures": list(outcome.failures),
                })
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Tick error", extra={"error": str(e)}, exc_info=True)

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.config.tick_interval_seconds)
            except asyncio.TimeoutError:
                pass

    def _handle_shutdown(self, signum):
        """Handle shutdown signals gracefully."""
        logger.info("Received shutdown signal", extra={"signal": signum})
        self.running = False
        self._stop.set()


async def main():
    """Main entry point."""
    # Set up logging
    setup_logging()

    service = LoLStatsRefreshService()
    try:
        await service.start()
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.error("Service crashed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
