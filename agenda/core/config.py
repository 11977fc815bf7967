import json
import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_json_dict(value: str | None) -> dict[str, str]:
    if not value:
        return {}
    parsed = json.loads(value)
    if not isinstance(parsed, dict):
        raise RuntimeError("TENANT_TIMEZONES must be a JSON object of tenant id to zone name.")
    return {str(key): str(zone) for key, zone in parsed.items()}

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL")
DB_POOL_SIZE = _get_int(os.getenv("DB_POOL_SIZE"), 5)
DB_MAX_OVERFLOW = _get_int(os.getenv("DB_MAX_OVERFLOW"), 10)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:4200").split(",")
    if origin.strip()
]

# One zone per tenant; tenants missing from the mapping use DEFAULT_TIMEZONE.
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo")
TENANT_TIMEZONES = _get_json_dict(os.getenv("TENANT_TIMEZONES"))

MIN_APPOINTMENT_MINUTES = 15
MAX_APPOINTMENT_MINUTES = 480
DEFAULT_SLOT_STEP_MINUTES = _get_int(os.getenv("DEFAULT_SLOT_STEP_MINUTES"), 30)
BOOKING_MAX_ATTEMPTS = _get_int(os.getenv("BOOKING_MAX_ATTEMPTS"), 3)

SIDE_EFFECT_WORKERS = _get_int(os.getenv("SIDE_EFFECT_WORKERS"), 4)

GOOGLE_CALENDAR_ENABLED = _get_bool(os.getenv("GOOGLE_CALENDAR_ENABLED"), default=False)
GOOGLE_CALENDAR_API_URL = os.getenv("GOOGLE_CALENDAR_API_URL", "https://www.googleapis.com/calendar/v3")
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GOOGLE_CALENDAR_ACCESS_TOKEN = os.getenv("GOOGLE_CALENDAR_ACCESS_TOKEN", "")
CALENDAR_SYNC_TIMEOUT_SECONDS = float(os.getenv("CALENDAR_SYNC_TIMEOUT_SECONDS", "5"))
CALENDAR_SYNC_MAX_RETRIES = _get_int(os.getenv("CALENDAR_SYNC_MAX_RETRIES"), 1)


def timezone_name_for_tenant(tenant_id: str) -> str:
    return TENANT_TIMEZONES.get(tenant_id, DEFAULT_TIMEZONE)


def validate_runtime_config() -> None:
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL must be set.")
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if GOOGLE_CALENDAR_ENABLED and not GOOGLE_CALENDAR_ACCESS_TOKEN:
        raise RuntimeError("GOOGLE_CALENDAR_ACCESS_TOKEN must be set when GOOGLE_CALENDAR_ENABLED is on.")
    if BOOKING_MAX_ATTEMPTS < 1:
        raise RuntimeError("BOOKING_MAX_ATTEMPTS must be at least 1.")
