#!/usr/bin/env python3
"""
Run a single refresh cycle and print its outcome.

Usage:
    python3 scripts/run_once.py            # scheduled run (only due tournaments)
    python3 scripts/run_once.py --force    # every tournament, no rollback guard
    python3 scripts/run_once.py --no-record
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from refresh.coordinator import RunCoordinator, RunStatus
from utils.logger import setup_logging


async def run_once(force: bool, record: bool) -> int:
    config = Config()
    setup_logging(config)

    coordinator = RunCoordinator(config)
    await coordinator.initialize()
    try:
        if record:
            outcome = await coordinator.run_and_record(force=force)
        else:
            outcome = await coordinator.run(force=force)
    finally:
        await coordinator.shutdown()

    print(json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False))
    return 1 if outcome.status == RunStatus.ABORTED else 0


def main():
    parser = argparse.ArgumentParser(description="Run one LoL stats refresh cycle")
    parser.add_argument("--force", action="store_true", help="Refresh every tournament and skip the rollback guard")
    parser.add_argument("--no-record", action="store_true", help="Do not append this run's entries to the stored log")
    args = parser.parse_args()

    sys.exit(asyncio.run(run_once(args.force, not args.no_record)))


if __name__ == "__main__":
    main()
