"""Health endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from src.utils.health_checks import check_directory_health, check_prefect_health

router = APIRouter()


@router.get("")
def health(request: Request, deep: bool = False) -> dict[str, Any]:
    """Liveness by default; ``?deep=true`` also probes the directory and Prefect."""
    result: dict[str, Any] = {"status": "ok"}
    if not deep:
        return result

    config = request.app.state.config
    checks = {
        "directory": check_directory_health(config.directory_base_url, config.directory_api_key),
        "prefect": check_prefect_health(config.prefect_base_url),
    }
    result["checks"] = checks
    if not all(checks.values()):
        result["status"] = "degraded"
    return result
