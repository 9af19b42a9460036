import logging
from datetime import timedelta
from typing import Any, Callable, Dict

from werkzeug.security import check_password_hash, generate_password_hash

from .db import Storage
from .errors import Forbidden, InvalidArgument, Unauthorized
from . import utils

logger = logging.getLogger(__name__)

SUBSCRIPTION_DAYS = 30


def clean_email(email) -> str:
    return email.strip() if isinstance(email, str) else ""


class AccountDirectory:
    """Registers accounts, checks passwords and enforces the subscription window."""

    def __init__(
        self,
        storage: Storage,
        subscription_days: int = SUBSCRIPTION_DAYS,
        clock: Callable = utils.utcnow,
    ):
        self.storage = storage
        self.subscription_days = subscription_days
        self.clock = clock

    def register(self, email: str, phone: str | None, password: str) -> Dict[str, Any]:
        email = clean_email(email)
        if not email or not isinstance(password, str) or not password:
            raise InvalidArgument("email and password are required")
        now = self.clock()
        account = {
            "email": email,
            "phone": str(phone or "").strip(),
            "password_hash": generate_password_hash(password),
            "is_active": True,
            "session_start": utils.isoformat(now),
            "session_expires": utils.isoformat(now + timedelta(days=self.subscription_days)),
        }
        self.storage.insert_account(account)
        logger.info("User registered: %s", email)
        return account

    def login(self, email: str, password: str) -> str:
        """Return the email to bind to the caller's session."""
        email = clean_email(email)
        account = self.storage.get_account(email) if email else None
        if (
            account is None
            or not isinstance(password, str)
            or not check_password_hash(account.get("password_hash", ""), password)
        ):
            raise Unauthorized("Invalid email or password")

        if not account.get("is_active") or self.clock() > utils.parse_timestamp(account["session_expires"]):
            self.storage.update_account(email, {"is_active": False})
            logger.info("Login refused for expired account: %s", email)
            raise Forbidden("Subscription expired. Please renew.")

        logger.info("User logged in: %s", email)
        return email

    def require_active(self, email: str | None) -> Dict[str, Any]:
        """Re-validate the account behind a session on every call."""
        if not email:
            raise Unauthorized()
        account = self.storage.get_account(email)
        if (
            account is None
            or not account.get("is_active")
            or utils.parse_timestamp(account["session_expires"]) < self.clock()
        ):
            raise Forbidden("Session expired or deactivated")
        return account
