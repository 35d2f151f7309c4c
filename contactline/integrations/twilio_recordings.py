"""Twilio recording download for voicemail playback."""

import logging
from typing import Optional
import httpx

from contactline.core.config import get_settings
from contactline.core.exceptions import StorageError

logger = logging.getLogger(__name__)


class TwilioRecordingService:
    """
    Fetches carrier-hosted recordings with account credentials.

    Recording URLs delivered on the voicemail webhook require HTTP basic
    auth, so playback goes through the server rather than the requester.
    """

    MEDIA_TYPE = "audio/mpeg"

    def __init__(self):
        """Initialize service with settings."""
        self._settings = None

    @property
    def settings(self):
        """Lazy load settings."""
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def is_available(self) -> bool:
        return self.settings.twilio_configured

    @staticmethod
    def media_url(recording_url: str) -> str:
        """Twilio serves a recording's audio at its URL plus a format suffix."""
        if recording_url.endswith((".mp3", ".wav")):
            return recording_url
        return f"{recording_url}.mp3"

    async def fetch_recording(self, recording_url: str) -> bytes:
        """
        Download recording audio.

        Args:
            recording_url: RecordingUrl as delivered by Twilio

        Returns:
            MP3 bytes

        Raises:
            StorageError: If credentials are missing or the download fails
        """
        if not self.is_available():
            raise StorageError("Twilio credentials not configured")

        url = self.media_url(recording_url)
        try:
            async with httpx.AsyncClient(
                timeout=30.0,
                follow_redirects=True,
                auth=(self.settings.TWILIO_ACCOUNT_SID, self.settings.TWILIO_AUTH_TOKEN),
            ) as client:
                response = await client.get(url)

        except httpx.TimeoutException as e:
            logger.error("Twilio recording download timeout")
            raise StorageError("Recording download timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Twilio recording download error: {e}")
            raise StorageError("Recording download failed") from e

        if response.status_code != 200:
            logger.error(f"Twilio recording error: {response.status_code}")
            raise StorageError("Recording download failed")

        logger.info(f"Fetched recording: {len(response.content)} bytes")
        return response.content


# Singleton instance
twilio_recordings = TwilioRecordingService()
