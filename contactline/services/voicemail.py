"""Voicemail retrieval - Resolves a voicemail id to playable audio."""

import logging
from dataclasses import dataclass
from typing import Optional

from contactline.core.config import get_settings
from contactline.core.database import DatabaseService, db_service
from contactline.core.exceptions import NotFound
from contactline.integrations.twilio_recordings import TwilioRecordingService, twilio_recordings

logger = logging.getLogger(__name__)


@dataclass
class VoicemailAudio:
    """Either a URL to redirect to or audio bytes to send directly."""
    redirect_url: Optional[str] = None
    content: Optional[bytes] = None
    media_type: str = TwilioRecordingService.MEDIA_TYPE


class VoicemailService:
    """
    Looks up voicemail metadata and produces playable audio.

    Private storage wins: a stored object is served through a short-lived
    signed URL. Otherwise the carrier-hosted recording is fetched with the
    account credentials and returned as bytes.
    """

    def __init__(
        self,
        directory: Optional[DatabaseService] = None,
        recordings: Optional[TwilioRecordingService] = None,
    ):
        self.directory = directory or db_service
        self.recordings = recordings or twilio_recordings

    async def fetch(self, voicemail_id: str, secret: Optional[str] = None) -> VoicemailAudio:
        """
        Resolve a voicemail to audio.

        Raises:
            NotFound: No record, or no usable reference, under the secret
            StorageError: Signing or download failed
        """
        secret = secret or get_settings().USER_PIN
        record = await self.directory.get_voicemail(secret, voicemail_id)
        if record is None:
            raise NotFound("Voicemail not found")

        if record.storage_path:
            url = await self.directory.create_signed_url(record.storage_path)
            logger.info(f"Voicemail {voicemail_id}: serving signed storage URL")
            return VoicemailAudio(redirect_url=url)

        if record.recording_url and self.recordings.is_available():
            content = await self.recordings.fetch_recording(record.recording_url)
            logger.info(f"Voicemail {voicemail_id}: streaming carrier recording")
            return VoicemailAudio(content=content)

        logger.warning(f"Voicemail {voicemail_id}: no playable reference")
        raise NotFound("Voicemail not found")


# Singleton instance
voicemail_service = VoicemailService()
