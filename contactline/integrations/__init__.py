"""Integrations module - Carrier markup and recording access."""

from contactline.integrations.twilio_markup import (
    VoiceReply,
    Say,
    SayDigits,
    Pause,
    Gather,
    Record,
    Redirect,
    Hangup,
    render,
    spoken_digits,
)
from contactline.integrations.twilio_recordings import TwilioRecordingService, twilio_recordings

__all__ = [
    "VoiceReply",
    "Say",
    "SayDigits",
    "Pause",
    "Gather",
    "Record",
    "Redirect",
    "Hangup",
    "render",
    "spoken_digits",
    "TwilioRecordingService",
    "twilio_recordings",
]
