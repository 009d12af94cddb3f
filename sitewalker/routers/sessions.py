import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from playwright.async_api import Error as PlaywrightError

from sitewalker.models.recording import RecordingSession
from sitewalker.models.session_request import CaptureRequest, StartSessionRequest, TrainingToggle
from sitewalker.models.site_rules import SiteRules
from sitewalker.routers.crawl import limiter
from sitewalker.services.errors import BrowserLaunchError, SessionNotActiveError
from sitewalker.services.session import LiveBrowserSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _session(request: Request, session_id: str) -> LiveBrowserSession:
    try:
        return request.app.state.registry.get_session(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")


@router.post("", summary="Open a live recording session")
@limiter.limit("5/minute")
async def start_session(request: Request, body: StartSessionRequest) -> dict:
    url = str(body.url)
    try:
        session_id = await request.app.state.registry.start_session(url)
    except (BrowserLaunchError, PlaywrightError) as exc:
        logger.error("Live session failed to start for %s: %s", url, exc)
        raise HTTPException(status_code=502, detail=str(exc))
    return {"session_id": session_id}


@router.delete(
    "/{session_id}",
    response_model=Optional[RecordingSession],
    summary="Stop a session and return its recording",
)
@limiter.limit("30/minute")
async def stop_session(request: Request, session_id: str) -> Optional[RecordingSession]:
    _session(request, session_id)
    return await request.app.state.registry.stop_session(session_id)


@router.post("/{session_id}/training", summary="Turn training mode on or off")
@limiter.limit("30/minute")
async def set_training(request: Request, session_id: str, body: TrainingToggle) -> dict:
    session = _session(request, session_id)
    try:
        if body.enabled:
            await session.enable_training_mode()
        else:
            await session.disable_training_mode()
    except SessionNotActiveError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {"training_mode": session.is_in_training_mode()}


@router.get("/{session_id}/training", summary="Whether training mode is on")
@limiter.limit("120/minute")
async def get_training(request: Request, session_id: str) -> dict:
    return {"training_mode": _session(request, session_id).is_in_training_mode()}


@router.post("/{session_id}/capture", summary="Capture the viewport or an area of it")
@limiter.limit("30/minute")
async def capture(request: Request, session_id: str, body: CaptureRequest) -> dict:
    session = _session(request, session_id)
    box = body.bounding_box.model_dump() if body.bounding_box else None
    try:
        return await session.manual_capture(box)
    except SessionNotActiveError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.get(
    "/{session_id}/rules",
    response_model=Optional[SiteRules],
    summary="Trained components for the session's current site",
)
@limiter.limit("60/minute")
async def get_rules(request: Request, session_id: str) -> Optional[SiteRules]:
    return _session(request, session_id).get_site_parsing_rules()


@router.delete("/{session_id}/rules/{component_id}", summary="Delete a trained component")
@limiter.limit("30/minute")
async def delete_rule(request: Request, session_id: str, component_id: str) -> dict:
    session = _session(request, session_id)
    try:
        deleted = await session.delete_trained_component(component_id)
    except SessionNotActiveError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Unknown component: {component_id}")
    return {"deleted": component_id}
