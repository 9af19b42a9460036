import base64
import binascii
import hashlib
from datetime import datetime, timezone
from typing import Any

from .errors import InvalidArgument


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp written by isoformat (or a JS toISOString)."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _get_secret_bytes(secret: str) -> bytes:
    if not secret:
        return b""
    return hashlib.sha256(secret.encode()).digest()


def encrypt_session_string(session_string: str, secret: str) -> str:
    key = _get_secret_bytes(secret)
    if not key:
        return session_string
    data = session_string.encode()
    enc = bytes(b ^ key[i % len(key)] for i, b in enumerate(data))
    return base64.urlsafe_b64encode(enc).decode()


def decrypt_session_string(payload: str, secret: str) -> str:
    key = _get_secret_bytes(secret)
    if not key:
        return payload
    try:
        raw = base64.urlsafe_b64decode(payload.encode())
        dec = bytes(b ^ key[i % len(key)] for i, b in enumerate(raw))
        return dec.decode()
    except (binascii.Error, ValueError):
        return ""


def parse_numbers(raw: Any) -> list[str]:
    """Return a cleaned list of recipient numbers, rejecting empty entries."""
    if not isinstance(raw, list) or not raw:
        raise InvalidArgument("Message and numbers required")
    numbers = []
    for item in raw:
        if not isinstance(item, (str, int)) or isinstance(item, bool):
            raise InvalidArgument("Numbers must be strings")
        text = str(item).strip()
        if not text:
            raise InvalidArgument("Numbers must not be empty")
        numbers.append(text)
    return numbers


def to_address(number: str, domain: str) -> str:
    """Qualify a bare number with the protocol domain unless it already has it."""
    suffix = f"@{domain}"
    if suffix in number:
        return number
    return f"{number}{suffix}"


def address_to_phone(address: str) -> str:
    """Strip the protocol domain and return a dialable +<digits> phone string."""
    local = address.split("@", 1)[0].strip()
    digits = local.lstrip("+").replace(" ", "").replace("-", "")
    if not digits.isdigit():
        raise ValueError(f"Not a phone number: {address}")
    return f"+{digits}"
