"""Models package - All Pydantic models organized by domain."""

from contactline.models.enums import CallState, CallEventType, CarrierCallStatus
from contactline.models.contact import (
    Contact,
    PhoneNumber,
    SyncRequest,
    SyncResponse,
)
from contactline.models.call import (
    CallSession,
    LastSearch,
    AttemptCounter,
    CallEvent,
    TwilioWebhookForm,
    MAX_PRESENTED_RESULTS,
)
from contactline.models.voicemail import VoicemailRecord

__all__ = [
    # Enums
    "CallState",
    "CallEventType",
    "CarrierCallStatus",
    # Contact models
    "Contact",
    "PhoneNumber",
    "SyncRequest",
    "SyncResponse",
    # Call models
    "CallSession",
    "LastSearch",
    "AttemptCounter",
    "CallEvent",
    "TwilioWebhookForm",
    "MAX_PRESENTED_RESULTS",
    # Voicemail models
    "VoicemailRecord",
]
