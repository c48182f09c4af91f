"""Configuration for the DocSmile clinic client.

Business constants live here; deployment settings come from the environment
(or a local .env file) so nothing needs code changes between clinics.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Backend selection: "live" talks to the REST API, "static" serves demo fixtures
DATA_MODE = os.getenv("DOCSMILE_DATA_MODE", "static")
API_BASE_URL = os.getenv("DOCSMILE_API_BASE_URL", "http://localhost:5000/api")
REQUEST_TIMEOUT = int(os.getenv("DOCSMILE_REQUEST_TIMEOUT", "15"))

# Idempotent GETs only; mutations are never retried
GET_RETRIES = int(os.getenv("DOCSMILE_GET_RETRIES", "0"))

# All "today" / "past" comparisons are anchored to this zone
CLINIC_TIMEZONE = os.getenv("DOCSMILE_CLINIC_TIMEZONE", "America/Lima")

MIN_APPOINTMENT_MINUTES = int(os.getenv("DOCSMILE_MIN_APPOINTMENT_MINUTES", "30"))
SEARCH_DEBOUNCE_MS = int(os.getenv("DOCSMILE_SEARCH_DEBOUNCE_MS", "500"))

SESSION_FILE = os.getenv(
    "DOCSMILE_SESSION_FILE",
    str(Path.home() / ".docsmile" / "session.json")
)

LOG_LEVEL = os.getenv("DOCSMILE_LOG_LEVEL", "INFO")

# Payments
PAYMENT_TOLERANCE = 0.01
CURRENCY = "PEN"

DEFAULT_PAGE_SIZE = 10
MIN_PASSWORD_LENGTH = 6

CLINIC_INFO = {
    "name": "HappyDent - Clínica Dental",
    "address": "Av. Arequipa 1234, Miraflores, Lima",
    "phone": "+51 999 888 777",
}

# Mock API Configuration
MOCK_API_PORT = int(os.getenv("MOCK_API_PORT", "5000"))
