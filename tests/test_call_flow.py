"""Tests for the call flow state machine."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from contactline.core.config import get_settings
from contactline.core.exceptions import AuthFailure, DirectoryUnavailable, Lockout, SessionExpired
from contactline.integrations.twilio_markup import Gather, Hangup, Redirect, SayDigits
from contactline.models import CallEvent, CallEventType, CallSession, CallState
from contactline.services.call_flow import REPEAT, CallFlow, parse_selection
from contactline.services.session_store import AttemptTracker, SessionStore

CALL_ID = "CA_flow_1"


class FakeClock:
    """Monotonic clock the tests can move forward."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return get_settings().model_copy(update={"USER_PIN": "246810", "MAX_PIN_ATTEMPTS": 3})


@pytest.fixture
def directory(sample_contacts):
    directory = MagicMock()
    directory.fetch_latest_contacts = AsyncMock(return_value=sample_contacts)
    directory.record_voicemail = AsyncMock(return_value="vm_1")
    return directory


@pytest.fixture
def flow(clock, settings, directory):
    return CallFlow(
        sessions=SessionStore(idle_seconds=600, clock=clock),
        attempts=AttemptTracker(idle_seconds=600, clock=clock),
        directory=directory,
        settings=settings,
    )


def event(event_type: CallEventType, **fields) -> CallEvent:
    return CallEvent(type=event_type, call_id=CALL_ID, **fields)


async def authenticate(flow: CallFlow) -> None:
    await flow.handle(event(CallEventType.ANSWER))
    await flow.handle(event(CallEventType.MENU, digits="2"))
    await flow.handle(event(CallEventType.PHONE, digits="4155551234"))
    await flow.handle(event(CallEventType.PIN, digits="246810"))


class TestParseSelection:
    """Tests for parse_selection."""

    @pytest.mark.parametrize("text,expected", [
        ("1", 0),
        ("one", 0),
        ("The first one", 0),
        ("two", 1),
        ("3", 2),
        ("Third.", 2),
        ("repeat", REPEAT),
        ("Repeat please", REPEAT),
    ])
    def test_recognized(self, text, expected):
        assert parse_selection(text) == expected

    @pytest.mark.parametrize("text", [None, "", "four", "banana", "9"])
    def test_unrecognized(self, text):
        assert parse_selection(text) is None


class TestAuthentication:
    """Tests for PIN handling and lockout."""

    @pytest.mark.asyncio
    async def test_phone_creates_unauthenticated_session(self, flow: CallFlow):
        await flow.handle(event(CallEventType.PHONE, speech="plus four four two zero"))

        session = await flow.sessions.get(CALL_ID)
        assert session.state == CallState.AWAITING_PIN
        assert session.caller_phone == "+4420"
        assert session.authenticated is False

    @pytest.mark.asyncio
    async def test_success_stores_filtered_contacts(self, flow: CallFlow, directory):
        await authenticate(flow)

        session = await flow.sessions.get(CALL_ID)
        assert session.authenticated is True
        assert session.state == CallState.SEARCH_PROMPT
        assert [c.name for c in session.contacts] == [
            "Ada Byron", "Alan Turing", "Grace Hopper", "Adam Smith"
        ]
        directory.fetch_latest_contacts.assert_awaited_once_with("246810")

    @pytest.mark.asyncio
    async def test_lockout_exactly_at_max(self, flow: CallFlow):
        await flow.handle(event(CallEventType.PHONE, digits="4155551234"))

        first = await flow.handle(event(CallEventType.PIN, digits="111111"))
        second = await flow.handle(event(CallEventType.PIN, digits="111111"))
        assert not first.ends_call
        assert not second.ends_call
        assert await flow.attempts.count(CALL_ID) == 2

        third = await flow.handle(event(CallEventType.PIN, digits="111111"))

        assert third.ends_call
        assert "Too many incorrect attempts" in third.spoken_text()
        assert await flow.attempts.count(CALL_ID) == 0
        assert await flow.sessions.get(CALL_ID) is None

    @pytest.mark.asyncio
    async def test_max_minus_one_failures_then_success(self, flow: CallFlow):
        await flow.handle(event(CallEventType.PHONE, digits="4155551234"))
        for _ in range(2):
            await flow.handle(event(CallEventType.PIN, digits="111111"))

        reply = await flow.handle(event(CallEventType.PIN, digits="246810"))

        assert not reply.ends_call
        assert await flow.attempts.count(CALL_ID) == 0
        session = await flow.sessions.get(CALL_ID)
        assert session.authenticated is True

    @pytest.mark.asyncio
    async def test_answer_resets_attempts(self, flow: CallFlow):
        await flow.handle(event(CallEventType.PIN, digits="111111"))

        await flow.handle(event(CallEventType.ANSWER))

        assert await flow.attempts.count(CALL_ID) == 0

    @pytest.mark.asyncio
    async def test_welcome_keeps_attempts(self, flow: CallFlow):
        await flow.handle(event(CallEventType.PIN, digits="111111"))

        await flow.handle(event(CallEventType.WELCOME))

        assert await flow.attempts.count(CALL_ID) == 1

    @pytest.mark.asyncio
    async def test_directory_unavailable_ends_call(self, flow: CallFlow, directory):
        directory.fetch_latest_contacts.side_effect = DirectoryUnavailable("down")
        await flow.handle(event(CallEventType.PHONE, digits="4155551234"))

        reply = await flow.handle(event(CallEventType.PIN, digits="246810"))

        assert reply.ends_call
        assert "trouble reaching your contacts" in reply.spoken_text()
        assert await flow.sessions.get(CALL_ID) is None

    @pytest.mark.asyncio
    async def test_record_failure_raises_auth_failure_below_limit(self, flow: CallFlow):
        with pytest.raises(AuthFailure) as exc_info:
            await flow._record_failure(CALL_ID)

        assert not isinstance(exc_info.value, Lockout)
        assert exc_info.value.details == {"failures": 1, "limit": 3}

    @pytest.mark.asyncio
    async def test_record_failure_raises_lockout_at_limit(self, flow: CallFlow):
        for _ in range(2):
            with pytest.raises(AuthFailure):
                await flow._record_failure(CALL_ID)

        with pytest.raises(Lockout) as exc_info:
            await flow._record_failure(CALL_ID)

        assert exc_info.value.status_code == 403
        assert exc_info.value.details == {"failures": 3, "limit": 3}


class TestSearchAndSelect:
    """Tests for search, selection and session guards."""

    @pytest.mark.asyncio
    async def test_search_stores_top_results(self, flow: CallFlow):
        await authenticate(flow)

        await flow.handle(event(CallEventType.SEARCH, speech="a"))

        session = await flow.sessions.get(CALL_ID)
        assert session.state == CallState.SELECT_PROMPT
        assert session.last_search.query == "a"
        assert len(session.last_search.results) == 3

    @pytest.mark.asyncio
    async def test_sessions_are_replaced_not_mutated(self, flow: CallFlow):
        await authenticate(flow)
        before = await flow.sessions.get(CALL_ID)

        await flow.handle(event(CallEventType.SEARCH, speech="Ada"))

        after = await flow.sessions.get(CALL_ID)
        assert before.state == CallState.SEARCH_PROMPT
        assert before.last_search is None
        assert after is not before

    @pytest.mark.asyncio
    async def test_select_speaks_digits(self, flow: CallFlow):
        await authenticate(flow)
        await flow.handle(event(CallEventType.SEARCH, speech="Ada"))

        reply = await flow.handle(event(CallEventType.SELECT, speech="one"))

        digits = [item for item in reply.instructions if isinstance(item, SayDigits)]
        assert [item.text for item in digits] == ["5, 5, 5, 1, 2, 3, 4"] * 2
        assert isinstance(reply.instructions[-1], Hangup)
        session = await flow.sessions.get(CALL_ID)
        assert session.state == CallState.MENU

    @pytest.mark.asyncio
    async def test_repeat_does_not_search_again(self, flow: CallFlow, directory):
        await authenticate(flow)
        await flow.handle(event(CallEventType.SEARCH, speech="Ada"))
        directory.fetch_latest_contacts.reset_mock()
        stored = await flow.sessions.get(CALL_ID)

        reply = await flow.handle(event(CallEventType.SELECT, speech="repeat"))

        session = await flow.sessions.get(CALL_ID)
        assert session.last_search == stored.last_search
        assert session.state == CallState.SELECT_PROMPT
        assert "One: Ada Byron." in reply.spoken_text()
        directory.fetch_latest_contacts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_select_without_search_redirects(self, flow: CallFlow):
        await authenticate(flow)

        reply = await flow.handle(event(CallEventType.SELECT, digits="1"))

        assert isinstance(reply.instructions[-1], Redirect)
        assert reply.instructions[-1].url == "/voice/welcome"

    @pytest.mark.asyncio
    async def test_search_requires_authentication(self, flow: CallFlow, clock):
        await flow.sessions.set(
            CALL_ID,
            CallSession(call_id=CALL_ID, state=CallState.SEARCH_PROMPT, authenticated=False),
        )

        reply = await flow.handle(event(CallEventType.SEARCH, speech="Ada"))

        assert "session has expired" in reply.spoken_text()

    @pytest.mark.asyncio
    async def test_idle_session_expires(self, flow: CallFlow, clock):
        await authenticate(flow)
        clock.advance(601)

        reply = await flow.handle(event(CallEventType.SEARCH, speech="Ada"))

        assert "session has expired" in reply.spoken_text()

    @pytest.mark.asyncio
    async def test_activity_keeps_session_alive(self, flow: CallFlow, clock):
        await authenticate(flow)
        clock.advance(400)
        await flow.handle(event(CallEventType.SEARCH, speech="Ada"))
        clock.advance(400)

        reply = await flow.handle(event(CallEventType.SELECT, digits="1"))

        assert "The number for Ada Byron is" in reply.spoken_text()

    @pytest.mark.asyncio
    async def test_no_number_returns_to_pin_entry(self, flow: CallFlow):
        await authenticate(flow)
        await flow.handle(event(CallEventType.SEARCH, speech="Grace"))

        reply = await flow.handle(event(CallEventType.SELECT, digits="1"))

        assert "no phone number saved" in reply.spoken_text()
        gathers = [item for item in reply.instructions if isinstance(item, Gather)]
        assert gathers[0].action == "/voice/pin"
        assert gathers[0].num_digits == 6
        assert isinstance(reply.instructions[-1], Redirect)
        session = await flow.sessions.get(CALL_ID)
        assert session.state == CallState.AWAITING_PIN
        assert session.authenticated is False
        assert session.contacts == []
        assert session.last_search is None

    @pytest.mark.asyncio
    async def test_search_after_no_number_needs_pin_again(self, flow: CallFlow, directory):
        await authenticate(flow)
        await flow.handle(event(CallEventType.SEARCH, speech="Grace"))
        await flow.handle(event(CallEventType.SELECT, digits="1"))

        expired = await flow.handle(event(CallEventType.SEARCH, speech="Ada"))
        assert "session has expired" in expired.spoken_text()

        await flow.handle(event(CallEventType.PIN, digits="246810"))
        session = await flow.sessions.get(CALL_ID)
        assert session.authenticated is True
        assert directory.fetch_latest_contacts.await_count == 2

    @pytest.mark.parametrize("session", [
        None,
        CallSession(call_id=CALL_ID, state=CallState.SEARCH_PROMPT, authenticated=False),
        CallSession(call_id=CALL_ID, state=CallState.MENU, authenticated=True),
    ])
    def test_unusable_session_raises_session_expired(self, session):
        with pytest.raises(SessionExpired) as exc_info:
            CallFlow._require_usable_session(event(CallEventType.SEARCH, speech="Ada"), session)

        assert exc_info.value.status_code == 409

    def test_select_without_search_raises_session_expired(self):
        session = CallSession(call_id=CALL_ID, state=CallState.SELECT_PROMPT, authenticated=True)

        with pytest.raises(SessionExpired):
            CallFlow._require_usable_session(event(CallEventType.SELECT, digits="1"), session)

    def test_unrestricted_events_always_allowed(self):
        assert CallFlow._require_usable_session(event(CallEventType.PIN, digits="1"), None) is None


class TestCallEnd:
    """Tests for voicemail and status teardown."""

    @pytest.mark.asyncio
    async def test_voicemail_done_records_metadata(self, flow: CallFlow, directory):
        reply = await flow.handle(event(
            CallEventType.VOICEMAIL_DONE,
            metadata={
                "from": "+14155551234",
                "to": "+18005550100",
                "recording_url": "https://api.twilio.com/Recordings/RE1",
                "recording_sid": "RE1",
                "recording_duration": "9",
            },
        ))

        assert reply.ends_call
        record = directory.record_voicemail.await_args[0][0]
        assert record.pin == "246810"
        assert record.caller == "+14155551234"
        assert record.duration_seconds == 9

    @pytest.mark.asyncio
    async def test_voicemail_done_without_recording(self, flow: CallFlow, directory):
        reply = await flow.handle(event(CallEventType.VOICEMAIL_DONE))

        assert reply.ends_call
        directory.record_voicemail.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["completed", "busy", "failed", "no-answer", "canceled"])
    async def test_final_status_clears_call(self, flow: CallFlow, status):
        await authenticate(flow)
        await flow.handle(event(CallEventType.PIN, digits="000000"))

        reply = await flow.handle(event(CallEventType.STATUS, metadata={"call_status": status}))

        assert reply.instructions == []
        assert await flow.sessions.get(CALL_ID) is None
        assert await flow.attempts.count(CALL_ID) == 0

    @pytest.mark.asyncio
    async def test_unknown_status_is_ignored(self, flow: CallFlow):
        await authenticate(flow)

        await flow.handle(event(CallEventType.STATUS, metadata={"call_status": "teleported"}))

        session = await flow.sessions.get(CALL_ID)
        assert session.state == CallState.SEARCH_PROMPT
