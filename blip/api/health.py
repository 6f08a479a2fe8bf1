"""
Health check endpoints for monitoring system status
"""

from datetime import datetime, timezone
from typing import Any, Dict
import asyncio

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
import structlog

router = APIRouter()
logger = structlog.get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("")
async def liveness() -> Dict[str, Any]:
    """Liveness probe; does not touch dependencies"""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(request: Request):
    """Readiness probe checking the database and the warehouse"""
    checks = {}

    db = getattr(request.app.state, "db", None)
    warehouse = getattr(request.app.state, "warehouse", None)
    if db is not None:
        checks["database"] = _check_database(db)
    if warehouse is not None:
        checks["warehouse"] = _check_warehouse(warehouse)

    results = await asyncio.gather(*checks.values(), return_exceptions=True)

    services = {}
    overall_status = "ready"
    for name, result in zip(checks.keys(), results):
        if isinstance(result, Exception):
            logger.error("readiness_check_error", service=name, error=str(result))
            services[name] = {"status": "unhealthy"}
        else:
            services[name] = result
        if services[name]["status"] != "healthy":
            overall_status = "not_ready"

    for name, service in (("database", db), ("warehouse", warehouse)):
        if service is None:
            services[name] = {"status": "unavailable"}
            overall_status = "not_ready"

    body = {"status": overall_status, "timestamp": _now(), "services": services}
    if overall_status != "ready":
        logger.warning("readiness_check_failed", services=services)
        return JSONResponse(status_code=503, content=body)
    return body


async def _check_database(db) -> Dict[str, Any]:
    healthy = await db.health_check()
    return {"status": "healthy" if healthy else "unhealthy"}


async def _check_warehouse(warehouse) -> Dict[str, Any]:
    healthy = await warehouse.test_connection()
    return {"status": "healthy" if healthy else "unhealthy"}
