"""Contact API Routes - Snapshot sync, latest snapshot and voicemail playback."""

import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse, Response
from pydantic import ValidationError

from contactline.core.config import get_settings
from contactline.core.database import db_service
from contactline.core.exceptions import InvalidInput, InvalidPin, NotFound
from contactline.models import SyncRequest, SyncResponse
from contactline.services.contact_filter import filter_contacts
from contactline.services.voicemail import voicemail_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["contacts"])


# ===========================================
# Dependencies
# ===========================================

async def _body_pin(request: Request) -> Optional[str]:
    if "application/json" not in request.headers.get("content-type", ""):
        return None
    try:
        body = await request.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("pin") is not None:
        return str(body["pin"])
    return None


async def require_pin(request: Request) -> str:
    """
    Check the shared PIN from the ``x-pin`` header, ``pin`` body field or
    ``pin`` query parameter, in that order.
    """
    pin = (
        request.headers.get("x-pin")
        or await _body_pin(request)
        or request.query_params.get("pin")
    )
    if not pin or pin != get_settings().USER_PIN:
        logger.warning(f"Rejected PIN on {request.url.path}")
        raise InvalidPin("Invalid PIN")
    return pin


# ===========================================
# Snapshot Endpoints
# ===========================================

@router.post("/sync", response_model=SyncResponse, summary="Save contacts snapshot")
@router.post("/contacts/sync", response_model=SyncResponse, include_in_schema=False)
async def sync_contacts(request: Request, pin: str = Depends(require_pin)) -> SyncResponse:
    """Store the device's contacts as the newest snapshot."""
    try:
        raw_data = await request.json()
    except ValueError as e:
        raise InvalidInput("Body must be JSON") from e

    if not isinstance(raw_data, dict):
        raise InvalidInput("Body must be a JSON object")

    try:
        sync = SyncRequest(**raw_data)
    except ValidationError as e:
        raise InvalidInput("Contacts must be a list of objects") from e

    count = await db_service.save_snapshot(pin, sync.contacts)
    return SyncResponse(ok=True, count=count)


@router.get("/latest", summary="Retrieve latest contacts snapshot")
@router.get("/contacts/latest", include_in_schema=False)
async def latest_contacts(pin: str = Depends(require_pin)) -> Dict[str, Any]:
    """Return the newest snapshot with block-listed entries removed."""
    contacts = await db_service.fetch_latest_snapshot(pin)
    if contacts is None:
        raise NotFound("No contacts found")

    visible = filter_contacts(contacts)
    return {
        "ok": True,
        "contacts": [contact.model_dump(by_alias=True) for contact in visible],
        "count": len(visible),
    }


# ===========================================
# Voicemail Playback
# ===========================================

@router.get("/voicemails/{voicemail_id}", summary="Play a voicemail")
async def get_voicemail(voicemail_id: str, pin: str = Depends(require_pin)) -> Response:
    """Redirect to signed storage, or stream the carrier recording."""
    audio = await voicemail_service.fetch(voicemail_id, secret=pin)

    if audio.redirect_url:
        return RedirectResponse(audio.redirect_url, status_code=307)

    return Response(content=audio.content, media_type=audio.media_type)
