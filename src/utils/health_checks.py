"""Reachability checks for the external services the orchestrator depends on."""

from __future__ import annotations

import requests

from src.utils.logger import get_logger

logger = get_logger(__name__)


def check_directory_health(base_url: str, api_key: str | None = None, timeout: float = 10) -> bool:
    """Check if the tree/document directory is up and ready."""
    headers = {"x-api-key": api_key} if api_key else {}
    try:
        response = requests.get(f"{base_url.rstrip('/')}/ready", headers=headers, timeout=timeout)
        return response.status_code == 200
    except requests.RequestException as exc:
        logger.warning("directory_health_check_failed", error=str(exc))
        return False


def check_prefect_health(base_url: str, timeout: float = 10) -> bool:
    """Check if the Prefect server is reachable."""
    try:
        response = requests.get(f"{base_url.rstrip('/')}/api/health", timeout=timeout)
        return response.status_code == 200
    except requests.RequestException as exc:
        logger.warning("prefect_health_check_failed", error=str(exc))
        return False
