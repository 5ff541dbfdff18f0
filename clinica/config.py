"""Configuration for the clinic client.

All business constants centralized here - override the environment-backed
values in a .env file without touching code.
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Backend
API_BASE_URL = os.getenv("CLINICA_API_BASE_URL", "http://127.0.0.1:8000/api").rstrip("/")
HTTP_TIMEOUT = int(os.getenv("CLINICA_HTTP_TIMEOUT", "15"))
HTTP_MAX_RETRIES = int(os.getenv("CLINICA_HTTP_MAX_RETRIES", "3"))

# Circuit breaker around the backend
BREAKER_FAILURE_THRESHOLD = 5
BREAKER_TIMEOUT_SECONDS = 60

# Persisted client state (token, refresh token, user identity)
SESSION_DB_URL = os.getenv("CLINICA_SESSION_DB_URL", "sqlite:///clinica_session.db")

LOG_LEVEL = os.getenv("CLINICA_LOG_LEVEL", "INFO")

# List views
PAGE_SIZE = int(os.getenv("CLINICA_PAGE_SIZE", "5"))
REPORT_PAGE_SIZE = 10
SEARCH_DEBOUNCE_SECONDS = float(os.getenv("CLINICA_SEARCH_DEBOUNCE_SECONDS", "0.5"))

# Billing: how long the success banner stays before the form is cleared
SUCCESS_DISPLAY_SECONDS = float(os.getenv("CLINICA_SUCCESS_DISPLAY_SECONDS", "2.0"))

# Patients
PHONE_COUNTRY_CODE = os.getenv("CLINICA_PHONE_COUNTRY_CODE", "504")
MIN_IDENTIFICATION_LENGTH = 13

# Medical records
MAX_WEIGHT_KG = 500
MAX_HEIGHT_CM = 250

# Appointment editing may move a Completada/Cancelada appointment to any status
ALLOW_STATUS_OVERRIDE = _env_bool("CLINICA_ALLOW_STATUS_OVERRIDE", True)

# Appointment time grid (24h wall clock, inclusive)
APPOINTMENT_HOURS = {
    "start_time": "07:00",
    "end_time": "22:00",
    "slot_duration_minutes": 30,
}

SERVICE_TYPES = {
    "c": "consulta",
    "p": "procedimiento",
}
