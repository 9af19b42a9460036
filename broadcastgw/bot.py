import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Callable

from telethon import TelegramClient, functions, types
from telethon.errors import (
    AuthKeyUnregisteredError,
    RPCError,
    SessionPasswordNeededError,
    SessionRevokedError,
    UserDeactivatedError,
)
from telethon.sessions import StringSession

from .connection import CONNECTION_LOST, LOGGED_OUT, Closed, Opened, PairingCode, ProtocolClient
from . import utils

logger = logging.getLogger(__name__)

# Errors meaning the stored authorization is gone for good.
LOGOUT_ERRORS = (AuthKeyUnregisteredError, SessionRevokedError, UserDeactivatedError)


class TelegramProtocolClient(ProtocolClient):
    """Telethon session running on its own event loop thread.

    Pairing uses Telegram's QR login: the login URL is reported as the pairing
    code and recreated whenever it expires, until the account scans it.
    """

    def __init__(
        self,
        session_string: str | None,
        api_id: int,
        api_hash: str,
        password: str = "",
        qr_timeout: float = 60.0,
        send_timeout: float = 30.0,
    ):
        self.session_string = session_string or ""
        self.api_id = api_id
        self.api_hash = api_hash
        self.password = password
        self.qr_timeout = qr_timeout
        self.send_timeout = send_timeout
        self._loop = None
        self._thread = None
        self._client = None
        self._closing = False

    def open(self, on_update: Callable, on_credentials: Callable):
        self._on_update = on_update
        self._on_credentials = on_credentials
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="telegram-session", daemon=True)
        self._thread.start()

    def _run(self):
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._session())
        finally:
            self._loop.close()

    async def _session(self):
        # Telethon binds to the running loop, so the client is built on this thread.
        client = TelegramClient(StringSession(self.session_string), self.api_id, self.api_hash)
        self._client = client
        reason = CONNECTION_LOST
        try:
            await client.connect()
            if self._closing:
                return
            if not await client.is_user_authorized():
                await self._pair(client)
            if self._closing:
                return
            self._emit_credentials(client)
            self._on_update(Opened())
            await client.run_until_disconnected()
        except LOGOUT_ERRORS as exc:
            logger.warning("Telegram authorization revoked: %s", exc)
            reason = LOGGED_OUT
        except SessionPasswordNeededError:
            logger.error("Account has two-step verification; set TELEGRAM_PASSWORD to pair")
            reason = LOGGED_OUT
        except (OSError, ConnectionError, RPCError, asyncio.TimeoutError) as exc:
            logger.warning("Telegram connection dropped: %s", exc)
        except Exception:
            logger.exception("Telegram session failed")
        finally:
            if client.is_connected():
                await client.disconnect()
        if not self._closing:
            self._on_update(Closed(reason))

    async def _pair(self, client: TelegramClient):
        qr = await client.qr_login()
        while True:
            self._on_update(PairingCode(qr.url))
            try:
                await qr.wait(timeout=self.qr_timeout)
                return
            except asyncio.TimeoutError:
                await qr.recreate()
            except SessionPasswordNeededError:
                if not self.password:
                    raise
                await client.sign_in(password=self.password)
                return

    def _emit_credentials(self, client: TelegramClient):
        self._on_credentials(client.session.save())

    async def _resolve_phone(self, phone: str) -> Any:
        """Find the user behind a phone number, including numbers outside the contact list."""
        client = self._client
        try:
            return await client.get_input_entity(phone)
        except ValueError:
            pass
        digits = phone.lstrip("+")
        try:
            result = await client(functions.contacts.ResolvePhoneRequest(phone=digits))
        except RPCError as exc:
            logger.debug("ResolvePhone failed for %s (%s); importing as contact", phone, exc)
            result = await client(
                functions.contacts.ImportContactsRequest(
                    [types.InputPhoneContact(client_id=0, phone=digits, first_name=digits, last_name="")]
                )
            )
        if not result.users:
            raise ValueError(f"No Telegram account for {phone}")
        return result.users[0]

    async def _send(self, address: str, text: str) -> Any:
        target = await self._resolve_phone(utils.address_to_phone(address))
        return await self._client.send_message(target, text)

    def send_text(self, address: str, text: str):
        if self._client is None or self._loop is None or self._loop.is_closed():
            raise ConnectionError("Telegram session is not running")
        future = asyncio.run_coroutine_threadsafe(self._send(address, text), self._loop)
        try:
            return future.result(timeout=self.send_timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise TimeoutError(f"Timed out sending to {address}") from exc

    def close(self):
        self._closing = True
        if self._loop is None or self._loop.is_closed() or self._client is None:
            return
        future = asyncio.run_coroutine_threadsafe(self._client.disconnect(), self._loop)
        try:
            future.result(timeout=5)
        except (concurrent.futures.TimeoutError, RuntimeError) as exc:
            logger.warning("Telegram client did not disconnect cleanly: %s", exc)
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=2)


def client_factory(api_id: int, api_hash: str, password: str = "", qr_timeout: float = 60.0, send_timeout: float = 30.0):
    """Return a callable building a TelegramProtocolClient from stored credentials."""

    def build(session_string: str | None) -> TelegramProtocolClient:
        return TelegramProtocolClient(
            session_string,
            api_id,
            api_hash,
            password=password,
            qr_timeout=qr_timeout,
            send_timeout=send_timeout,
        )

    return build
