"""
Call Flow - The voice menu as an explicit state machine.

Every carrier webhook becomes a ``CallEvent``. ``CallFlow.handle`` looks up
the caller's session, checks the event is legal for the session's state,
runs the matching handler and applies the resulting ``Transition``:

    answer/welcome -> menu -> phone -> pin -> search -> select -> menu
                           \\-> voicemail -> voicemail-done

Continuity between turns lives only in the session store and attempt
tracker, keyed by the carrier's call id.
"""

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

from contactline.core.config import Settings, get_settings, mask_phone, normalize_phone, words_to_digits
from contactline.core.database import DatabaseService, db_service
from contactline.core.exceptions import (
    AuthFailure,
    DirectoryUnavailable,
    Lockout,
    SessionExpired,
    StorageError,
)
from contactline.integrations.twilio_markup import (
    Gather,
    Hangup,
    Pause,
    Record,
    Redirect,
    Say,
    SayDigits,
    VoiceReply,
)
from contactline.models import (
    CallEvent,
    CallEventType,
    CallSession,
    CallState,
    CarrierCallStatus,
    Contact,
    LastSearch,
    MAX_PRESENTED_RESULTS,
    VoicemailRecord,
)
from contactline.services.contact_filter import filter_contacts
from contactline.services.contact_search import search_contacts, speech_hints
from contactline.services.session_store import (
    AttemptTracker,
    SessionStore,
    get_attempt_tracker,
    get_session_store,
)

logger = logging.getLogger(__name__)

VOICE_PREFIX = "/voice"
PIN_LENGTH = 6
REPEAT = "repeat"


def route(event_type: CallEventType) -> str:
    """Webhook path the carrier should call for an event."""
    return f"{VOICE_PREFIX}/{event_type.value}"


# ===========================================
# Prompts
# ===========================================

PROMPTS = {
    "menu": "Welcome to Contact Line. To leave a voicemail, press 1. For secure access to your contacts, press 2.",
    "menu_invalid": "Sorry, that is not a valid option.",
    "voicemail": "Please leave your message after the beep. Press pound when you are finished.",
    "voicemail_thanks": "Thank you. Your message has been recorded. Goodbye.",
    "phone": "Please say or enter your phone number, then press pound.",
    "phone_missing": "Sorry, I did not get a phone number.",
    "pin": "Please enter your six digit PIN.",
    "pin_wrong": "That PIN is incorrect.",
    "lockout": "Too many incorrect attempts. For your security this call will now end. Goodbye.",
    "no_contacts": "You have no contacts backed up yet. Goodbye.",
    "system_error": "Sorry, we are having trouble reaching your contacts right now. Please try again later. Goodbye.",
    "search": "Say the contact name you need.",
    "no_matches": "Sorry, I could not find any contacts matching that name.",
    "session_expired": "Your session has expired. Let's start again.",
    "select": "Say or press the number of the contact you want, or say repeat to hear the list again.",
    "select_invalid": "Sorry, I did not understand your choice.",
    "no_number": "Sorry, that contact has no phone number saved.",
    "another": "To look up another contact, press 2, or simply hang up.",
}

SELECTION_WORDS = {
    "1": 0, "one": 0, "first": 0,
    "2": 1, "two": 1, "second": 1,
    "3": 2, "three": 2, "third": 2,
}
ORDINALS = ["One", "Two", "Three"]


def parse_selection(text: Optional[str]) -> Optional[object]:
    """
    Resolve a selection turn.

    Returns:
        ``REPEAT``, a zero-based index, or None if unrecognized
    """
    if not text:
        return None
    tokens = re.findall(r"[a-z]+|\d", text.lower())
    if REPEAT in tokens:
        return REPEAT
    for token in tokens:
        if token in SELECTION_WORDS:
            return SELECTION_WORDS[token]
    return None


# ===========================================
# Transitions
# ===========================================

@dataclass
class Transition:
    """Outcome of one event: the next state, what to say, what to store."""
    state: CallState
    reply: VoiceReply
    session: Optional[CallSession] = None


# Session states in which an event is legal; events not listed need no session
REQUIRED_STATES: Dict[CallEventType, FrozenSet[CallState]] = {
    CallEventType.SEARCH: frozenset({CallState.SEARCH_PROMPT, CallState.SELECT_PROMPT}),
    CallEventType.SELECT: frozenset({CallState.SELECT_PROMPT}),
}


class CallFlow:
    """
    Drives a caller through the voice menu one webhook at a time.

    Handlers never mutate a stored session; they return a replacement in the
    ``Transition``, which ``handle`` writes back. Reaching ``ENDED`` removes
    the call's session and attempt counter.
    """

    def __init__(
        self,
        sessions: Optional[SessionStore] = None,
        attempts: Optional[AttemptTracker] = None,
        directory: Optional[DatabaseService] = None,
        settings: Optional[Settings] = None,
    ):
        self.sessions = sessions or get_session_store()
        self.attempts = attempts or get_attempt_tracker()
        self.directory = directory or db_service
        self.settings = settings or get_settings()

        self._handlers: Dict[
            CallEventType,
            Callable[[CallEvent, Optional[CallSession]], Awaitable[Transition]],
        ] = {
            CallEventType.ANSWER: self._on_answer,
            CallEventType.WELCOME: self._on_welcome,
            CallEventType.MENU: self._on_menu,
            CallEventType.PHONE: self._on_phone,
            CallEventType.PIN: self._on_pin,
            CallEventType.SEARCH: self._on_search,
            CallEventType.SELECT: self._on_select,
            CallEventType.VOICEMAIL_DONE: self._on_voicemail_done,
            CallEventType.STATUS: self._on_status,
        }

    async def handle(self, event: CallEvent) -> VoiceReply:
        """Process one webhook turn and return what the carrier should do next."""
        session = await self.sessions.get(event.call_id)
        current = session.state if session else CallState.START

        try:
            self._require_usable_session(event, session)
            transition = await self._handlers[event.type](event, session)
        except SessionExpired as e:
            logger.info(f"Call {event.call_id}: {e.message}")
            transition = self._expired(event)

        await self._apply(event.call_id, transition)

        logger.info(
            f"Call {event.call_id}: {event.type.value} {current.value} -> {transition.state.value}"
        )
        return transition.reply

    @staticmethod
    def _require_usable_session(event: CallEvent, session: Optional[CallSession]) -> None:
        """Raise SessionExpired if the event is illegal for the session's state."""
        required = REQUIRED_STATES.get(event.type)
        if required is None:
            return
        if session is None or not session.authenticated or session.state not in required:
            raise SessionExpired(f"{event.type.value} without a usable session")
        if event.type == CallEventType.SELECT and session.last_search is None:
            raise SessionExpired("select without a previous search")

    async def _apply(self, call_id: str, transition: Transition) -> None:
        if transition.state == CallState.ENDED:
            await self.sessions.delete(call_id)
            await self.attempts.delete(call_id)
        elif transition.session is not None:
            await self.sessions.set(call_id, transition.session)

    # ===========================================
    # Reply Builders
    # ===========================================

    def _menu_reply(self, *preamble: Say) -> VoiceReply:
        return VoiceReply().add(
            *preamble,
            Gather(
                action=route(CallEventType.MENU),
                prompts=[Say(PROMPTS["menu"])],
                input="dtmf",
                num_digits=1,
            ),
            Redirect(route(CallEventType.WELCOME)),
        )

    def _restart(self, *preamble: Say) -> VoiceReply:
        return VoiceReply().add(*preamble, Redirect(route(CallEventType.WELCOME)))

    @staticmethod
    def _goodbye(message: str) -> VoiceReply:
        return VoiceReply().add(Say(message), Hangup())

    def _pin_reply(self, *preamble: Say) -> VoiceReply:
        return VoiceReply().add(
            *preamble,
            Gather(
                action=route(CallEventType.PIN),
                prompts=[Say(PROMPTS["pin"])],
                num_digits=PIN_LENGTH,
                timeout=8,
            ),
            Redirect(route(CallEventType.WELCOME)),
        )

    def _search_reply(self, session: CallSession, *preamble: Say) -> VoiceReply:
        return VoiceReply().add(
            *preamble,
            Gather(
                action=route(CallEventType.SEARCH),
                prompts=[Say(PROMPTS["search"])],
                input="speech",
                timeout=6,
                hints=speech_hints(session.contacts),
            ),
            Redirect(route(CallEventType.WELCOME)),
        )

    def _results_reply(self, results: List[Contact]) -> VoiceReply:
        noun = "contact" if len(results) == 1 else "contacts"
        prompts: List = [Say(f"I found {len(results)} {noun}.")]
        for index, contact in enumerate(results):
            prompts.append(Say(f"{ORDINALS[index]}: {contact.name}."))
        prompts.append(Say(PROMPTS["select"]))

        return VoiceReply().add(
            Gather(
                action=route(CallEventType.SELECT),
                prompts=prompts,
                num_digits=1,
                hints=[REPEAT, "one", "two", "three"],
            ),
            Redirect(route(CallEventType.WELCOME)),
        )

    # ===========================================
    # Handlers
    # ===========================================

    async def _on_answer(self, event: CallEvent, session: Optional[CallSession]) -> Transition:
        # A new call always starts clean, even if the carrier reused the id
        await self.sessions.delete(event.call_id)
        await self.attempts.delete(event.call_id)
        return Transition(CallState.MENU, self._menu_reply())

    async def _on_welcome(self, event: CallEvent, session: Optional[CallSession]) -> Transition:
        return Transition(CallState.MENU, self._menu_reply())

    async def _on_menu(self, event: CallEvent, session: Optional[CallSession]) -> Transition:
        choice = (event.digits or "").strip()

        if choice == "1":
            reply = VoiceReply().add(
                Say(PROMPTS["voicemail"]),
                Record(action=route(CallEventType.VOICEMAIL_DONE)),
                Hangup(),
            )
            return Transition(CallState.VOICEMAIL, reply)

        if choice == "2":
            reply = VoiceReply().add(
                Gather(
                    action=route(CallEventType.PHONE),
                    prompts=[Say(PROMPTS["phone"])],
                    timeout=8,
                ),
                Redirect(route(CallEventType.WELCOME)),
            )
            return Transition(CallState.AWAITING_PHONE, reply)

        return Transition(CallState.MENU, self._restart(Say(PROMPTS["menu_invalid"])))

    async def _on_phone(self, event: CallEvent, session: Optional[CallSession]) -> Transition:
        phone = normalize_phone(event.captured)
        if not phone:
            return Transition(CallState.MENU, self._restart(Say(PROMPTS["phone_missing"])))

        logger.info(f"Call {event.call_id}: phone captured {mask_phone(phone)}")
        fresh = CallSession(
            call_id=event.call_id,
            state=CallState.AWAITING_PIN,
            caller_phone=phone,
        )
        return Transition(CallState.AWAITING_PIN, self._pin_reply(), session=fresh)

    async def _on_pin(self, event: CallEvent, session: Optional[CallSession]) -> Transition:
        pin = words_to_digits(event.captured)

        if pin != self.settings.USER_PIN:
            try:
                await self._record_failure(event.call_id)
            except Lockout as e:
                logger.warning(f"Call {event.call_id}: locked out, {e.message}")
                return Transition(CallState.ENDED, self._goodbye(PROMPTS["lockout"]))
            except AuthFailure as e:
                logger.warning(f"Call {event.call_id}: {e.message}")
                return Transition(CallState.MENU, self._restart(Say(PROMPTS["pin_wrong"])))

        await self.attempts.delete(event.call_id)

        try:
            contacts = filter_contacts(
                await self.directory.fetch_latest_contacts(self.settings.USER_PIN)
            )
        except DirectoryUnavailable as e:
            logger.error(f"Call {event.call_id}: directory fetch failed: {e}")
            return Transition(CallState.ENDED, self._goodbye(PROMPTS["system_error"]))

        if not contacts:
            logger.info(f"Call {event.call_id}: authenticated but no contacts backed up")
            return Transition(CallState.ENDED, self._goodbye(PROMPTS["no_contacts"]))

        base = session or CallSession(call_id=event.call_id)
        authenticated = base.evolve(
            state=CallState.SEARCH_PROMPT,
            authenticated=True,
            contacts=contacts,
            last_search=None,
        )
        logger.info(f"Call {event.call_id}: authenticated, {len(contacts)} contacts loaded")
        return Transition(
            CallState.SEARCH_PROMPT,
            self._search_reply(authenticated),
            session=authenticated,
        )

    async def _record_failure(self, call_id: str) -> None:
        """
        Count a wrong PIN for the call.

        Raises:
            Lockout: The attempt limit has been reached
            AuthFailure: Attempts remain
        """
        failures = await self.attempts.record_failure(call_id)
        limit = self.settings.MAX_PIN_ATTEMPTS
        details = {"failures": failures, "limit": limit}

        if failures >= limit:
            raise Lockout(f"PIN attempts exhausted ({failures}/{limit})", details)
        raise AuthFailure(f"wrong PIN ({failures}/{limit})", details)

    async def _on_search(self, event: CallEvent, session: Optional[CallSession]) -> Transition:
        query = (event.speech or event.digits or "").strip()
        results = search_contacts(session.contacts, query)[:MAX_PRESENTED_RESULTS]

        if not results:
            logger.info(f"Call {event.call_id}: no matches for '{query}'")
            return Transition(
                CallState.MENU,
                self._restart(Say(PROMPTS["no_matches"])),
                session=session.evolve(state=CallState.MENU, last_search=None),
            )

        updated = session.evolve(
            state=CallState.SELECT_PROMPT,
            last_search=LastSearch(query=query, results=results),
        )
        return Transition(CallState.SELECT_PROMPT, self._results_reply(results), session=updated)

    async def _on_select(self, event: CallEvent, session: Optional[CallSession]) -> Transition:
        results = session.last_search.results
        choice = parse_selection(event.captured)

        if choice == REPEAT:
            return Transition(CallState.SELECT_PROMPT, self._results_reply(list(results)), session=session)

        if choice is None or choice >= len(results):
            return Transition(
                CallState.SEARCH_PROMPT,
                self._search_reply(session, Say(PROMPTS["select_invalid"])),
                session=session.evolve(state=CallState.SEARCH_PROMPT),
            )

        contact = results[choice]
        number = contact.first_number
        if not number:
            # Back to PIN entry; the contacts are reloaded on the next success
            logger.info(f"Call {event.call_id}: selected contact has no number")
            return Transition(
                CallState.AWAITING_PIN,
                self._pin_reply(Say(PROMPTS["no_number"])),
                session=session.evolve(
                    state=CallState.AWAITING_PIN,
                    authenticated=False,
                    contacts=[],
                    last_search=None,
                ),
            )

        reply = VoiceReply().add(
            Say(f"The number for {contact.name} is"),
            SayDigits(number),
            Pause(1),
            Say("Again,"),
            SayDigits(number),
            Gather(
                action=route(CallEventType.MENU),
                prompts=[Say(PROMPTS["another"])],
                input="dtmf",
                num_digits=1,
            ),
            Hangup(),
        )
        return Transition(CallState.MENU, reply, session=session.evolve(state=CallState.MENU))

    async def _on_voicemail_done(self, event: CallEvent, session: Optional[CallSession]) -> Transition:
        meta = event.metadata
        logger.info(
            f"Voicemail recorded: call={event.call_id}, from={mask_phone(meta.get('from'))}, "
            f"to={mask_phone(meta.get('to'))}, recording={meta.get('recording_sid')}, "
            f"duration={meta.get('recording_duration')}s"
        )

        if meta.get("recording_url"):
            duration = meta.get("recording_duration")
            record = VoicemailRecord(
                pin=self.settings.USER_PIN,
                caller=meta.get("from"),
                callee=meta.get("to"),
                recording_sid=meta.get("recording_sid"),
                recording_url=meta.get("recording_url"),
                duration_seconds=int(duration) if duration and str(duration).isdigit() else None,
            )
            try:
                await self.directory.record_voicemail(record)
            except StorageError as e:
                # Metadata is kept for playback only; the caller still gets thanked
                logger.error(f"Call {event.call_id}: voicemail metadata not stored: {e}")

        return Transition(CallState.ENDED, self._goodbye(PROMPTS["voicemail_thanks"]))

    async def _on_status(self, event: CallEvent, session: Optional[CallSession]) -> Transition:
        raw_status = event.metadata.get("call_status", "")
        try:
            status = CarrierCallStatus(raw_status)
        except ValueError:
            logger.warning(f"Call {event.call_id}: unknown call status '{raw_status}'")
            return Transition(session.state if session else CallState.START, VoiceReply())

        if status.is_final:
            return Transition(CallState.ENDED, VoiceReply())
        return Transition(session.state if session else CallState.START, VoiceReply())

    def _expired(self, event: CallEvent) -> Transition:
        if event.type == CallEventType.SEARCH:
            return Transition(CallState.MENU, self._restart(Say(PROMPTS["session_expired"])))
        return Transition(CallState.MENU, self._restart())


# Global instance (created on first webhook)
_call_flow: Optional[CallFlow] = None


def get_call_flow() -> CallFlow:
    """Get the global call flow."""
    global _call_flow
    if _call_flow is None:
        _call_flow = CallFlow()
    return _call_flow
