"""Command endpoint for the extension UI, plus change counters for polling."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Header, HTTPException

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_extension_auth(
    authorization: Optional[str],
    x_extension_token: Optional[str],
) -> None:
    from . import runtime_config, runtime_env_settings

    if runtime_config is None or not runtime_config.require_auth:
        return

    expected = runtime_env_settings.tabstash_api_token if runtime_env_settings else None
    if not expected:
        raise HTTPException(status_code=503, detail="API token is not configured")

    presented = x_extension_token
    if not presented and authorization and authorization.lower().startswith("bearer "):
        presented = authorization[7:]

    if not presented or presented != expected:
        raise HTTPException(status_code=401, detail="Invalid API token")


def _services():
    from . import services

    if services is None:
        raise HTTPException(status_code=503, detail="Stash is not initialized")
    return services


@router.post("/commands", response_model=dict)
async def run_command(
    request: Any = Body(...),
    authorization: Optional[str] = Header(default=None),
    x_extension_token: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    """Execute one command.

    The body is a command object tagged by ``type``. Failures, including
    malformed commands, come back as ``{"ok": false, "error": ...}`` with
    status 200; only auth and service availability use HTTP errors.
    """
    _require_extension_auth(authorization, x_extension_token)
    return await _services().dispatcher.dispatch(request)


@router.get("/changes", response_model=dict)
async def get_changes(
    authorization: Optional[str] = Header(default=None),
    x_extension_token: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    """Change counters; a UI refetches whatever counter moved since its last poll."""
    _require_extension_auth(authorization, x_extension_token)
    services = _services()
    return {
        "counters": services.notifier.counters(),
        "enrichment_queued": len(services.enricher.queue),
        "enrichment_running": services.enricher.is_running,
    }
