#!/usr/bin/env python3
"""
Export the stored run log (newest first).

Usage:
    python3 scripts/export_refresh_log.py
    python3 scripts/export_refresh_log.py -o refresh_log.json
    python3 scripts/export_refresh_log.py --level ERROR
"""

import argparse
import json
import sys
from pathlib import Path
from datetime import datetime, timezone

# Load environment
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

from config import Config
from database.supabase_client import SupabaseClient


def main():
    parser = argparse.ArgumentParser(description="Export the refresh run log")
    parser.add_argument("-o", "--output", default=None, help="Output file (default: stdout)")
    parser.add_argument("--level", default=None, choices=["INFO", "SUCCESS", "ERROR"], help="Only entries of this level")
    args = parser.parse_args()

    config = Config()
    client = SupabaseClient(config)

    entries = client.get_logs()
    if args.level:
        entries = [e for e in entries if e.get("level") == args.level]

    out = {
        "logs": entries,
        "exported_at": datetime.now(timezone.utc).isoformat(),
    }
    json_str = json.dumps(out, indent=2, ensure_ascii=False)

    if args.output:
        Path(args.output).write_text(json_str, encoding="utf-8")
        print(f"Exported to {args.output} ({len(entries)} entries)")
    else:
        print(json_str)


if __name__ == "__main__":
    main()
