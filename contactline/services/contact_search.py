"""Contact search - Substring ranking over a contact snapshot."""

import logging
from typing import Iterable, List, Sequence

from contactline.models import Contact

logger = logging.getLogger(__name__)

NAME_MATCH_SCORE = 3
NUMBER_MATCH_SCORE = 1
MAX_SPEECH_HINTS = 50


def score_contact(contact: Contact, query: str) -> int:
    """
    Score a contact against an already normalized query.

    A name match is worth 3 and a number match 1; they add up, so a
    contact scores between 0 and 4.
    """
    score = 0
    if query in (contact.name or "").lower():
        score += NAME_MATCH_SCORE
    if any(query in str(phone.number).lower() for phone in contact.phone_numbers):
        score += NUMBER_MATCH_SCORE
    return score


def search_contacts(contacts: Sequence[Contact], query: str) -> List[Contact]:
    """
    Rank contacts by relevance to a free-text or spoken query.

    Args:
        contacts: Snapshot to search, in device order
        query: Raw query; trimmed and lower-cased before matching

    Returns:
        Every contact with a positive score, best first. Equal scores keep
        their snapshot order. Callers truncate for presentation.
    """
    needle = (query or "").strip().lower()
    if not needle:
        return []

    scored = [(score_contact(contact, needle), contact) for contact in contacts]
    matches = [(score, contact) for score, contact in scored if score > 0]
    # sorted() is stable, so ties keep snapshot order
    matches = sorted(matches, key=lambda item: item[0], reverse=True)

    logger.debug(f"Search '{needle}' matched {len(matches)} of {len(contacts)} contacts")
    return [contact for _, contact in matches]


def speech_hints(contacts: Iterable[Contact], limit: int = MAX_SPEECH_HINTS) -> List[str]:
    """Distinct contact names to bias speech recognition, in snapshot order."""
    hints: List[str] = []
    seen = set()
    for contact in contacts:
        name = (contact.name or "").strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        hints.append(name)
        if len(hints) >= limit:
            break
    return hints
