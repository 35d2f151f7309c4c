"""Voicemail models - Metadata rows and retrieval references."""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class VoicemailRecord(BaseModel):
    """Voicemail metadata as stored in Supabase."""
    id: Optional[str] = Field(None, description="Row identifier")
    pin: Optional[str] = Field(None, description="Secret the voicemail belongs to")
    caller: Optional[str] = Field(None, description="Number that left the message")
    callee: Optional[str] = Field(None, description="Number that was dialed")
    recording_sid: Optional[str] = Field(None, description="Carrier recording SID")
    recording_url: Optional[str] = Field(None, description="Carrier-hosted recording URL")
    storage_path: Optional[str] = Field(None, description="Path in the private bucket")
    duration_seconds: Optional[int] = Field(None, description="Recording length")
    created_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    @property
    def has_reference(self) -> bool:
        return bool(self.storage_path or self.recording_url)
