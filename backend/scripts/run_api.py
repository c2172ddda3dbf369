#!/usr/bin/env python3
"""
Serve the read-only state API and the forced-refresh endpoint.

Usage:
    python3 scripts/run_api.py                      # API_PORT or 8000, reload in development
    python3 scripts/run_api.py --port 9000 --no-reload
    python3 scripts/run_api.py --log-file logs/api.log
"""

import argparse
import os
import sys
from pathlib import Path
from dotenv import load_dotenv

backend_dir = Path(__file__).parent.parent
load_dotenv(backend_dir / ".env")
sys.path.insert(0, str(backend_dir / "src"))

import uvicorn

from config import Config
from utils.logger import setup_logging


def main():
    parser = argparse.ArgumentParser(description="Run the LoL stats API server")
    parser.add_argument("--host", default=os.getenv("API_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("API_PORT", "8000")))
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Disable auto-reload (on by default when ENVIRONMENT=development)",
    )
    parser.add_argument("--log-file", help="Also append log lines to this file")
    args = parser.parse_args()

    config = Config()
    setup_logging(config, log_file=args.log_file)

    os.chdir(backend_dir)
    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=config.environment == "development" and not args.no_reload,
        reload_dirs=[str(backend_dir / "src")],
        log_config=None,
    )


if __name__ == "__main__":
    main()
