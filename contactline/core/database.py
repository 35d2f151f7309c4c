"""Supabase directory service for ContactLine."""

import logging
from typing import Optional, Dict, Any, List
from datetime import datetime
from supabase import create_client, Client
from supabase.lib.client_options import ClientOptions
from pydantic import ValidationError

from contactline.core.config import get_settings
from contactline.core.exceptions import DirectoryUnavailable, StorageError

logger = logging.getLogger(__name__)


class DatabaseService:
    """
    Service for Supabase operations.

    Reads and writes contact snapshots, voicemail metadata and signed
    voicemail URLs. Uses the sync Supabase client but is exposed through an
    async interface for consistency with the rest of the application.
    """

    def __init__(self):
        """Initialize with a lazily created Supabase client."""
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        """Lazy initialization of Supabase client."""
        if self._client is None:
            settings = get_settings()
            if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
                raise StorageError("Supabase credentials not configured")

            self._client = create_client(
                settings.SUPABASE_URL,
                settings.SUPABASE_KEY,
                options=ClientOptions(
                    postgrest_client_timeout=30,
                    storage_client_timeout=30
                )
            )
            logger.info("Supabase client initialized")
        return self._client

    @property
    def settings(self):
        return get_settings()

    # ===========================================
    # Contact Snapshots
    # ===========================================

    async def fetch_latest_snapshot(self, secret: str) -> Optional[List["Contact"]]:
        """
        Fetch the most recent contact snapshot for a secret.

        Args:
            secret: PIN the snapshot was stored under

        Returns:
            Contacts in device order, or None if no snapshot exists

        Raises:
            DirectoryUnavailable: On any transport or storage error
        """
        try:
            response = (
                self.client.table(self.settings.SNAPSHOTS_TABLE)
                .select("contacts")
                .eq("pin", secret)
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to fetch latest snapshot: {e}")
            raise DirectoryUnavailable("Contact directory unavailable") from e

        if not response.data:
            logger.info("No contact snapshot stored")
            return None

        raw_contacts = response.data[0].get("contacts") or []
        return self._parse_contacts(raw_contacts)

    async def fetch_latest_contacts(self, secret: str) -> List["Contact"]:
        """Latest snapshot for a secret, empty if none was ever stored."""
        return await self.fetch_latest_snapshot(secret) or []

    async def save_snapshot(self, secret: str, contacts: List[Dict[str, Any]]) -> int:
        """
        Store a new snapshot; the newest one always wins on read.

        Returns:
            Number of contacts stored
        """
        try:
            self.client.table(self.settings.SNAPSHOTS_TABLE).insert([
                {"pin": secret, "contacts": contacts}
            ]).execute()
        except Exception as e:
            logger.error(f"Failed to save snapshot: {e}")
            raise StorageError("Failed to save contacts") from e

        logger.info(f"Saved contact snapshot: {len(contacts)} contacts")
        return len(contacts)

    @staticmethod
    def _parse_contacts(raw_contacts: List[Any]) -> List["Contact"]:
        from contactline.models import Contact

        contacts = []
        for index, raw in enumerate(raw_contacts):
            try:
                contacts.append(Contact.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping malformed contact at index {index}: {e.error_count()} errors")
        return contacts

    # ===========================================
    # Voicemail
    # ===========================================

    async def get_voicemail(self, secret: str, voicemail_id: str) -> Optional["VoicemailRecord"]:
        """Fetch voicemail metadata by id under a secret."""
        from contactline.models import VoicemailRecord

        try:
            response = (
                self.client.table(self.settings.VOICEMAILS_TABLE)
                .select("*")
                .eq("pin", secret)
                .eq("id", voicemail_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to get voicemail {voicemail_id}: {e}")
            raise StorageError("Voicemail lookup failed") from e

        if response.data:
            return VoicemailRecord(**response.data[0])

        logger.warning(f"Voicemail not found: {voicemail_id}")
        return None

    async def record_voicemail(self, record: "VoicemailRecord") -> Optional[str]:
        """Insert voicemail metadata; returns the new row id."""
        data = record.model_dump(exclude_none=True, exclude={"id"})
        data["created_at"] = datetime.utcnow().isoformat()

        try:
            response = self.client.table(self.settings.VOICEMAILS_TABLE).insert(data).execute()
        except Exception as e:
            logger.error(f"Failed to record voicemail: {e}")
            raise StorageError("Failed to record voicemail") from e

        if response.data:
            voicemail_id = response.data[0].get("id")
            logger.info(f"Recorded voicemail: {voicemail_id}")
            return voicemail_id
        return None

    async def create_signed_url(self, storage_path: str, expires_in: Optional[int] = None) -> str:
        """Exchange a private storage path for a short-lived URL."""
        ttl = expires_in or self.settings.VOICEMAIL_SIGNED_URL_TTL
        try:
            result = (
                self.client.storage
                .from_(self.settings.VOICEMAIL_BUCKET)
                .create_signed_url(storage_path, ttl)
            )
        except Exception as e:
            logger.error(f"Failed to sign voicemail path: {e}")
            raise StorageError("Failed to sign voicemail URL") from e

        signed_url = result.get("signedURL") or result.get("signedUrl")
        if not signed_url:
            raise StorageError("Storage returned no signed URL")
        return signed_url

    # ===========================================
    # Health Check
    # ===========================================

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            self.client.table(self.settings.SNAPSHOTS_TABLE).select("id").limit(1).execute()
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


# Forward reference imports
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from contactline.models import Contact, VoicemailRecord

# Singleton instance
db_service = DatabaseService()
