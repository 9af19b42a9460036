import os
import secrets
from datetime import timedelta


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Defaults read from the environment when the module is imported."""

    SECRET_KEY = os.environ.get("SECRET_KEY") or os.environ.get("SESSION_SECRET") or secrets.token_hex(32)
    SESSION_SECRET = os.environ.get("SESSION_SECRET", "")
    # The login cookie lives one day; the account window is tracked separately.
    PERMANENT_SESSION_LIFETIME = timedelta(hours=24)
    SESSION_COOKIE_SECURE = os.environ.get("SESSION_COOKIE_SECURE", "").lower() in ("1", "true", "yes")

    DATA_DIR = os.environ.get("DATA_DIR", "data")
    AUTH_DIR = os.environ.get("AUTH_DIR", "auth_info")
    SESSION_NAME = os.environ.get("SESSION_NAME", "gateway")
    MONGO_URL = os.environ.get("MONGO_URL") or os.environ.get("MONGODB_URI")
    MONGO_DB = os.environ.get("MONGO_DB", "broadcastgw")

    TELEGRAM_API_ID = int(os.environ.get("TELEGRAM_API_ID") or 0)
    TELEGRAM_API_HASH = os.environ.get("TELEGRAM_API_HASH", "")
    TELEGRAM_PASSWORD = os.environ.get("TELEGRAM_PASSWORD", "")

    ADDRESS_DOMAIN = os.environ.get("ADDRESS_DOMAIN", "phone")
    SUBSCRIPTION_DAYS = int(os.environ.get("SUBSCRIPTION_DAYS") or 30)
    CORS_ORIGINS = _env_list("CORS_ORIGINS", "http://localhost:3000")

    RECONNECT_BASE_DELAY = _env_float("RECONNECT_BASE_DELAY", 1.0)
    RECONNECT_MAX_DELAY = _env_float("RECONNECT_MAX_DELAY", 60.0)
    SEND_TIMEOUT = _env_float("SEND_TIMEOUT", 30.0)
    QR_TIMEOUT = _env_float("QR_TIMEOUT", 60.0)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    PORT = int(os.environ.get("PORT", 5000))
