"""Health check endpoints."""

import sqlite3
from datetime import datetime
from typing import Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from api.dependencies import get_orchestrator
from core import __version__
from reconciliation.orchestrator import ReconciliationOrchestrator


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    held_batches: int
    services: Dict[str, str]


def _database_status(orchestrator: ReconciliationOrchestrator) -> str:
    try:
        conn = sqlite3.connect(orchestrator.settings.db_path)
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except sqlite3.Error:
        return "down"
    return "up"


@router.get("/health", response_model=HealthResponse)
async def health_check(orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator)) -> HealthResponse:
    """Health check endpoint."""
    database = _database_status(orchestrator)
    return HealthResponse(
        status="healthy" if database == "up" else "degraded",
        timestamp=datetime.utcnow().isoformat(),
        version=__version__,
        held_batches=len(orchestrator.store),
        services={
            "api": "up",
            "database": database,
        }
    )


@router.get("/ready")
async def readiness_check(
    response: Response,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, str]:
    """Readiness probe for Kubernetes."""
    if _database_status(orchestrator) != "up":
        response.status_code = 503
        return {"status": "not ready"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Liveness probe for Kubernetes."""
    return {"status": "alive"}
