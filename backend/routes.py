"""
API routes for the PR monitor.

Thin HTTP adapter over PollerEngine commands: every endpoint maps to one
command (or a read of stored state) and returns the engine's result model.
"""

import logging
from typing import Any, Dict, List
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ValidationError

from models.data_models import DisplayFilter
from poller.commands import (
    BadgeResult,
    ClickResult,
    GetSnapshot,
    NotificationClicked,
    RefreshNow,
    RefreshResult,
    SetDisplayFilter,
    SettingsChanged,
    SettingsResult,
    SnapshotResult,
    parse_command,
)
from poller.engine import PollerEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["poller"])


class FilterRequest(BaseModel):
    """Request body for the display filter endpoint."""
    filter: DisplayFilter


class HighlightsResponse(BaseModel):
    """PR id -> event types from the last notification."""
    highlighted_prs: Dict[int, List[str]]


def get_engine(request: Request) -> PollerEngine:
    return request.app.state.engine


@router.post("/refresh", response_model=RefreshResult)
def refresh_now(engine: PollerEngine = Depends(get_engine)):
    """
    Run a poll cycle now.

    If a cycle is already running, waits for it and returns its outcome.
    """
    logger.info("Manual refresh requested")
    return engine.dispatch(RefreshNow())


@router.get("/snapshot", response_model=SnapshotResult)
def get_snapshot(engine: PollerEngine = Depends(get_engine)):
    """Return the last persisted PR list, timestamp and error."""
    return engine.dispatch(GetSnapshot())


@router.post("/settings/reload", response_model=SettingsResult)
def settings_changed(engine: PollerEngine = Depends(get_engine)):
    """Re-read configuration and reschedule the poll timer."""
    return engine.dispatch(SettingsChanged())


@router.put("/filter", response_model=BadgeResult)
def set_display_filter(body: FilterRequest, engine: PollerEngine = Depends(get_engine)):
    """Persist the display filter and return the recomputed badge."""
    return engine.dispatch(SetDisplayFilter(filter=body.filter))


@router.get("/badge", response_model=BadgeResult)
def get_badge(engine: PollerEngine = Depends(get_engine)):
    return engine.badge_status()


@router.post("/notifications/click", response_model=ClickResult)
def notification_clicked(engine: PollerEngine = Depends(get_engine)):
    """
    Resolve a click on the last notification.

    Returns open_pr with the PR URL when one PR was affected, otherwise
    open_summary (or none if there is no pending notification).
    """
    return engine.dispatch(NotificationClicked())


@router.get("/highlights", response_model=HighlightsResponse)
def get_highlights(engine: PollerEngine = Depends(get_engine)):
    snapshot = engine.snapshot()
    return HighlightsResponse(highlighted_prs=snapshot.highlighted_prs)


@router.delete("/highlights", status_code=204)
def clear_highlights(engine: PollerEngine = Depends(get_engine)):
    engine.clear_highlights()


@router.post("/commands")
def dispatch_command(payload: Dict[str, Any], engine: PollerEngine = Depends(get_engine)):
    """
    Dispatch a raw command, e.g. {"type": "set_display_filter", "filter": "mine"}.

    Accepted types: refresh_now, get_snapshot, settings_changed,
    set_display_filter, notification_clicked.
    """
    try:
        command = parse_command(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"Invalid command: {e.errors()}")

    return engine.dispatch(command)
