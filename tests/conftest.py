"""Pytest fixtures and configuration for ContactLine tests."""

import os
import pytest
from typing import Any, Dict, Generator, List
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

# Set test environment variables before importing app
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-key")
os.environ.setdefault("USER_PIN", "123456")
os.environ.setdefault("MAX_PIN_ATTEMPTS", "5")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "AC_test")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "twilio-test-token")
os.environ.setdefault("DEBUG", "true")

TEST_PIN = os.environ["USER_PIN"]


# ===========================================
# Sample Data Fixtures
# ===========================================

@pytest.fixture
def sample_raw_contacts() -> List[Dict[str, Any]]:
    """Contacts as the device syncs them, block-listed entries included."""
    return [
        {"name": "Ada Byron", "phoneNumbers": [{"number": "555-1234", "label": "mobile"}]},
        {"name": "Voicemail", "phoneNumbers": [{"number": "*86"}]},
        {"name": "Alan Turing", "phoneNumbers": [{"number": "+44 20 7946 0000", "label": "work"}]},
        {"name": "  SPAM RISK ", "phoneNumbers": [{"number": "900-555-0000"}]},
        {"name": "Grace Hopper", "phoneNumbers": []},
        {"name": "Adam Smith", "phoneNumbers": [{"number": "555-9876"}]},
    ]


@pytest.fixture
def sample_contacts(sample_raw_contacts):
    """Parsed sample contacts."""
    from contactline.models import Contact
    return [Contact.model_validate(raw) for raw in sample_raw_contacts]


@pytest.fixture
def blocked_only_contacts():
    """A snapshot holding nothing but block-listed entries."""
    from contactline.models import Contact
    return [
        Contact(name="Voicemail", phone_numbers=[{"number": "*86"}]),
        Contact(name="Emergency", phone_numbers=[{"number": "911"}]),
    ]


@pytest.fixture
def twilio_form() -> Dict[str, str]:
    """Fields Twilio sends on every voice webhook."""
    return {
        "CallSid": "CA_test_12345",
        "From": "+14155551234",
        "To": "+18005550100",
        "CallStatus": "in-progress",
    }


@pytest.fixture
def sample_voicemail_row() -> Dict[str, Any]:
    """Voicemail metadata row as returned by Supabase."""
    return {
        "id": "vm_test_1",
        "pin": TEST_PIN,
        "caller": "+14155551234",
        "callee": "+18005550100",
        "recording_sid": "RE_test_1",
        "recording_url": "https://api.twilio.com/2010-04-01/Accounts/AC_test/Recordings/RE_test_1",
        "storage_path": None,
        "duration_seconds": 12,
        "created_at": "2026-01-05T10:00:00",
    }


# ===========================================
# Mock Fixtures
# ===========================================

@pytest.fixture
def mock_supabase():
    """Mock Supabase client behind the directory service."""
    from contactline.core.database import db_service

    mock = MagicMock()
    mock.table.return_value.insert.return_value.execute.return_value.data = [{"id": "row_1"}]
    with patch.object(db_service, "_client", mock):
        yield mock


@pytest.fixture
def mock_directory(sample_contacts):
    """Patch directory reads used by the call flow."""
    from contactline.core.database import db_service

    with patch.object(
        db_service,
        "fetch_latest_contacts",
        new=AsyncMock(return_value=sample_contacts),
    ) as mock:
        yield mock


# ===========================================
# Client Fixtures
# ===========================================

@pytest.fixture
def client(mock_supabase) -> Generator[TestClient, None, None]:
    """Test client with Supabase mocked."""
    from contactline.main import app
    with TestClient(app) as test_client:
        yield test_client


# ===========================================
# Pytest Configuration
# ===========================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset singleton instances between tests."""
    yield
    from contactline.services import call_flow, session_store

    session_store._session_store = None
    session_store._attempt_tracker = None
    call_flow._call_flow = None
