"""Shared test fixtures."""
from datetime import datetime, timezone

import pytest

from docsmile.backends.static import StaticBackend
from docsmile.services import ClinicClient
from docsmile.session import ClinicSession, SessionStore

# 10:00 in Lima (UTC-5)
FIXED_NOW = datetime(2024, 7, 25, 15, 0, tzinfo=timezone.utc)
TOMORROW = "2024-07-26"


@pytest.fixture
def clock():
    """Clock pinned to FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def backend(clock):
    """Fresh static backend over the demo fixtures."""
    return StaticBackend(clock=clock, tz="America/Lima")


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "session.json")


@pytest.fixture
def session(store):
    return ClinicSession(store)


@pytest.fixture
def clinic(backend, session, clock):
    """Client wired to the static backend with a temporary session file."""
    return ClinicClient(backend=backend, session=session, clock=clock, tz="America/Lima")


@pytest.fixture
def signed_in(clinic):
    """Client with the demo dentist signed in."""
    clinic.auth.login("doctor", "doctor123")
    return clinic


@pytest.fixture
def appointment_form():
    """Valid booking for tomorrow: two cleanings and a consultation."""
    return {
        "patient": "p3",
        "date": TOMORROW,
        "start_time": "09:00",
        "end_time": "10:00",
        "type": "tratamiento",
        "services": [
            {"service": "s2", "quantity": 2},
            {"service": "s1", "quantity": 1},
        ],
        "notes": "Control",
    }
