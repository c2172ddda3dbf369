"""
Backend API: serves the last committed analysis and the run log, and lets an
operator trigger a forced refresh.
"""

import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env and ensure backend/src is on path
backend_dir = Path(__file__).resolve().parent.parent.parent
load_dotenv(backend_dir / ".env")
sys.path.insert(0, str(backend_dir / "src"))

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from config import Config
from database.supabase_client import SupabaseClient
from refresh.coordinator import RunCoordinator

logger = logging.getLogger(__name__)

app = FastAPI(title="LoL Stats API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Lazy init so we don't require Supabase in tests
_db: SupabaseClient | None = None


def get_db() -> SupabaseClient:
    global _db
    if _db is None:
        _db = SupabaseClient(Config())
    return _db


def get_coordinator() -> RunCoordinator:
    db = get_db()
    return RunCoordinator(db.config, store=db)


@app.get("/api/v1/state")
def get_state():
    """Last committed analysis plus its update time; empty before the first run."""
    cache = get_db().get_cache()
    if not cache:
        return {"analysis": None, "update_time": None}
    return {"analysis": cache.get("analysis"), "update_time": cache.get("update_time")}


@app.get("/api/v1/logs")
def get_logs(limit: int = Query(100, ge=1, le=1000, description="Max entries, newest first")):
    return {"logs": get_db().get_logs()[:limit]}


@app.post("/api/v1/force")
async def force_refresh():
    """Run one forced cycle now: every tournament is due and the rollback guard is bypassed."""
    coordinator = get_coordinator()
    await coordinator.initialize()
    try:
        outcome = await coordinator.run_and_record(force=True)
    except Exception as e:
        logger.error("Forced refresh failed", extra={"error": str(e)}, exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    finally:
        await coordinator.shutdown()
    return outcome.to_dict()


@app.get("/health")
def health():
    return {"status": "ok"}
