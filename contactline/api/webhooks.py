"""Voice Webhook Routes - Entry points for Twilio call turns."""

import logging
from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import ValidationError

from contactline.core.config import get_settings
from contactline.core.exceptions import InvalidInput
from contactline.integrations.twilio_markup import Hangup, Redirect, Say, VoiceReply, render
from contactline.models import CallEvent, CallEventType, TwilioWebhookForm
from contactline.services.call_flow import PROMPTS, get_call_flow, route

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/voice", tags=["voice"])


def twiml_response(reply: VoiceReply) -> Response:
    """Render a reply as a TwiML HTTP response."""
    settings = get_settings()
    return Response(
        content=render(reply, voice=settings.VOICE_NAME, language=settings.VOICE_LANGUAGE),
        media_type="application/xml",
    )


async def parse_event(request: Request, event_type: CallEventType) -> CallEvent:
    """Read Twilio's form body into a call event."""
    try:
        form = await request.form()
        payload = TwilioWebhookForm(**{key: value for key, value in form.items() if isinstance(value, str)})
    except (ValidationError, ValueError) as e:
        raise InvalidInput(f"Unparseable webhook body: {e}") from e

    if not payload.CallSid:
        raise InvalidInput("Missing required field: CallSid")
    return payload.to_event(event_type)


async def _handle_turn(request: Request, event_type: CallEventType) -> Response:
    """
    Run one call turn.

    Never fails the webhook: bad input restarts the menu and unexpected
    errors end the call politely, so the carrier always gets valid markup.
    """
    try:
        event = await parse_event(request, event_type)
        reply = await get_call_flow().handle(event)

    except InvalidInput as e:
        logger.warning(f"Invalid {event_type.value} webhook: {e.message}")
        reply = VoiceReply().add(Redirect(route(CallEventType.WELCOME)))

    except Exception as e:
        logger.error(f"Voice webhook {event_type.value} failed: {e}", exc_info=True)
        reply = VoiceReply().add(Say(PROMPTS["system_error"]), Hangup())

    return twiml_response(reply)


# ===========================================
# Call Flow Webhooks
# ===========================================

@router.post("/answer", summary="Call answered")
async def answer_webhook(request: Request) -> Response:
    """First webhook of a call; clears any stale state for the call id."""
    return await _handle_turn(request, CallEventType.ANSWER)


@router.post("/welcome", summary="Main menu")
async def welcome_webhook(request: Request) -> Response:
    """Re-present the main menu without resetting the call."""
    return await _handle_turn(request, CallEventType.WELCOME)


@router.post("/menu", summary="Main menu choice")
async def menu_webhook(request: Request) -> Response:
    return await _handle_turn(request, CallEventType.MENU)


@router.post("/phone", summary="Caller phone number")
async def phone_webhook(request: Request) -> Response:
    return await _handle_turn(request, CallEventType.PHONE)


@router.post("/pin", summary="Caller PIN")
async def pin_webhook(request: Request) -> Response:
    return await _handle_turn(request, CallEventType.PIN)


@router.post("/search", summary="Spoken contact search")
async def search_webhook(request: Request) -> Response:
    return await _handle_turn(request, CallEventType.SEARCH)


@router.post("/select", summary="Search result selection")
async def select_webhook(request: Request) -> Response:
    return await _handle_turn(request, CallEventType.SELECT)


@router.post("/voicemail-done", summary="Voicemail recorded")
async def voicemail_done_webhook(request: Request) -> Response:
    return await _handle_turn(request, CallEventType.VOICEMAIL_DONE)


@router.post("/status", summary="Call status callback")
async def status_webhook(request: Request) -> Response:
    """Tear down call state once Twilio reports the call has ended."""
    return await _handle_turn(request, CallEventType.STATUS)
