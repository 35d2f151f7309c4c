"""Call-related models - Per-call state and carrier webhook payloads."""

import time
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field

from contactline.models.contact import Contact
from contactline.models.enums import CallEventType, CallState

MAX_PRESENTED_RESULTS = 3


class LastSearch(BaseModel):
    """The most recent search a caller ran, as presented to them."""
    query: str
    results: List[Contact] = Field(default_factory=list, max_length=MAX_PRESENTED_RESULTS)

    model_config = ConfigDict(frozen=True)


class CallSession(BaseModel):
    """
    State of one in-progress call.

    Sessions are immutable; every change produces a new value via
    ``evolve`` that replaces the stored one.
    """
    call_id: str = Field(..., description="Carrier call identifier")
    state: CallState = Field(CallState.START, description="Current step in the flow")
    caller_phone: Optional[str] = Field(None, description="Number captured from the caller")
    authenticated: bool = Field(False, description="Whether the PIN was accepted")
    contacts: List[Contact] = Field(default_factory=list, description="Filtered snapshot")
    last_search: Optional[LastSearch] = Field(None, description="Last presented search")
    touched_at: float = Field(default_factory=time.monotonic)

    model_config = ConfigDict(frozen=True)

    def evolve(self, **changes: Any) -> "CallSession":
        """Return a copy with ``changes`` applied."""
        return self.model_copy(update=changes)


class AttemptCounter(BaseModel):
    """Failed PIN attempts for one call."""
    call_id: str
    count: int = 0
    touched_at: float = Field(default_factory=time.monotonic)

    model_config = ConfigDict(frozen=True)


class CallEvent(BaseModel):
    """A single carrier webhook turn, reduced to the fields the flow reads."""
    type: CallEventType
    call_id: str
    digits: Optional[str] = None
    speech: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def captured(self) -> str:
        """Touch-tone digits if present, otherwise the speech transcript."""
        if self.digits and self.digits.strip():
            return self.digits.strip()
        if self.speech and self.speech.strip():
            return self.speech.strip()
        return ""


class TwilioWebhookForm(BaseModel):
    """Form fields Twilio posts to every voice webhook."""
    CallSid: str = Field("", description="Carrier call identifier")
    From: Optional[str] = None
    To: Optional[str] = None
    Digits: Optional[str] = None
    SpeechResult: Optional[str] = None
    CallStatus: Optional[str] = None
    RecordingUrl: Optional[str] = None
    RecordingSid: Optional[str] = None
    RecordingDuration: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    def to_event(self, event_type: CallEventType) -> CallEvent:
        """Reduce the form to a call event."""
        return CallEvent(
            type=event_type,
            call_id=self.CallSid,
            digits=self.Digits,
            speech=self.SpeechResult,
            metadata={
                key: value
                for key, value in {
                    "from": self.From,
                    "to": self.To,
                    "call_status": self.CallStatus,
                    "recording_url": self.RecordingUrl,
                    "recording_sid": self.RecordingSid,
                    "recording_duration": self.RecordingDuration,
                }.items()
                if value
            },
        )
