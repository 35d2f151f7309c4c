"""Enumeration types for the call flow."""

from enum import Enum


class CallState(str, Enum):
    """Steps of the caller's journey through the voice menu."""
    START = "start"
    MENU = "menu"
    AWAITING_PHONE = "awaiting_phone"
    AWAITING_PIN = "awaiting_pin"
    SEARCH_PROMPT = "search_prompt"
    SELECT_PROMPT = "select_prompt"
    VOICEMAIL = "voicemail"
    ENDED = "ended"


class CallEventType(str, Enum):
    """Webhook turns delivered by the carrier."""
    ANSWER = "answer"
    WELCOME = "welcome"
    MENU = "menu"
    PHONE = "phone"
    PIN = "pin"
    SEARCH = "search"
    SELECT = "select"
    VOICEMAIL_DONE = "voicemail-done"
    STATUS = "status"


class CarrierCallStatus(str, Enum):
    """Twilio call statuses reported on the status callback."""
    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BUSY = "busy"
    FAILED = "failed"
    NO_ANSWER = "no-answer"
    CANCELED = "canceled"

    @property
    def is_final(self) -> bool:
        return self in (
            CarrierCallStatus.COMPLETED,
            CarrierCallStatus.BUSY,
            CarrierCallStatus.FAILED,
            CarrierCallStatus.NO_ANSWER,
            CarrierCallStatus.CANCELED,
        )
