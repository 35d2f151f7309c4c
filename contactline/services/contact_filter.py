"""Contact filter - Keeps block-listed entries out of every response."""

from typing import Iterable, List

from contactline.models import Contact

# Normalized (trimmed, lower-cased) names never exposed to callers
BLOCKED_NAMES = frozenset({
    "voicemail",
    "emergency",
    "emergency services",
    "unknown",
    "no name",
    "spam",
    "spam risk",
    "scam likely",
})


def normalize_name(name: str) -> str:
    return (name or "").strip().lower()


def is_blocked(contact: Contact) -> bool:
    return normalize_name(contact.name) in BLOCKED_NAMES


def filter_contacts(contacts: Iterable[Contact]) -> List[Contact]:
    """Drop block-listed contacts, preserving order."""
    return [contact for contact in contacts if not is_blocked(contact)]
