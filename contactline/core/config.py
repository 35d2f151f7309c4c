"""Configuration management for ContactLine."""

import re
from functools import lru_cache
from typing import List, Optional
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ===========================================
    # Supabase Configuration
    # ===========================================
    SUPABASE_URL: str = Field(default="", description="Supabase project URL")
    SUPABASE_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("SUPABASE_SERVICE_KEY", "SUPABASE_KEY"),
        description="Supabase service key (SUPABASE_SERVICE_KEY preferred)"
    )
    SNAPSHOTS_TABLE: str = Field(
        default="contact_snapshots",
        description="Table holding contact snapshots"
    )
    VOICEMAILS_TABLE: str = Field(
        default="voicemails",
        description="Table holding voicemail metadata"
    )
    VOICEMAIL_BUCKET: str = Field(
        default="voicemails",
        description="Private storage bucket for voicemail audio"
    )
    VOICEMAIL_SIGNED_URL_TTL: int = Field(
        default=60,
        description="Lifetime of signed voicemail URLs in seconds"
    )

    # ===========================================
    # Authentication
    # ===========================================
    USER_PIN: str = Field(default="123456", description="Shared secret PIN")
    MAX_PIN_ATTEMPTS: int = Field(
        default=5,
        description="Failed PIN attempts before a call is locked out"
    )

    # ===========================================
    # Twilio Configuration
    # ===========================================
    TWILIO_ACCOUNT_SID: str = Field(default="", description="Twilio account SID")
    TWILIO_AUTH_TOKEN: str = Field(default="", description="Twilio auth token")
    VOICE_NAME: str = Field(default="Polly.Joanna", description="Text-to-speech voice")
    VOICE_LANGUAGE: str = Field(default="en-US", description="Speech recognition language")

    # ===========================================
    # Call Sessions
    # ===========================================
    SESSION_IDLE_SECONDS: int = Field(
        default=600,
        description="Idle window after which call state is evicted"
    )
    SESSION_SWEEP_INTERVAL_SECONDS: int = Field(
        default=60,
        description="Interval between background eviction sweeps"
    )

    # ===========================================
    # Server Configuration
    # ===========================================
    ALLOWED_ORIGINS: str = Field(
        default="",
        description="Comma-separated CORS origins; any origin is allowed in debug mode"
    )
    DEBUG: bool = Field(default=True, description="Debug mode")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse comma-separated origins into list; debug mode allows any origin."""
        if self.DEBUG:
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN)


def digits_only(value: Optional[str]) -> str:
    """Strip everything except digits."""
    if not value:
        return ""
    return re.sub(r"\D", "", str(value))


WORD_TO_DIGIT = {
    "zero": "0", "oh": "0", "o": "0",
    "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
}


def words_to_digits(text: Optional[str]) -> str:
    """
    Convert spoken digit words and digits to a digit string.

    Example: "five five five one two" -> "55512"
    """
    if not text:
        return ""
    tokens = re.findall(r"[a-zA-Z]+|\d", str(text).lower())
    return "".join(WORD_TO_DIGIT.get(tok, tok if tok.isdigit() else "") for tok in tokens)


def normalize_phone(value: Optional[str]) -> str:
    """
    Normalize captured phone input to digits, keeping a leading plus sign.

    Args:
        value: Raw DTMF digits or a speech transcript

    Returns:
        Normalized number, or an empty string if no digits were captured
    """
    if not value:
        return ""

    text = str(value).strip()
    digits = words_to_digits(text)
    if not digits:
        return ""

    # Speech results sometimes read "plus" instead of rendering the sign
    if text.startswith("+") or text.lower().startswith("plus"):
        return f"+{digits}"
    return digits


def mask_phone(value: Optional[str]) -> str:
    """Mask a phone number for logging, keeping the last four digits."""
    digits = digits_only(value)
    if len(digits) <= 4:
        return "***"
    return f"***{digits[-4:]}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
