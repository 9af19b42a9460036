import base64
import json
import logging
import os
import tempfile
import threading
import time
from typing import Any, Dict

from pymongo import MongoClient, errors as mongo_errors

from .errors import Conflict, InternalError
from . import utils

logger = logging.getLogger(__name__)


def _key_to_filename(key: str) -> str:
    return base64.urlsafe_b64encode(key.encode()).decode().rstrip("=") + ".json"


def _write_atomic(path: str, text: str):
    """Replace path with text so readers never see a partial file."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise


class Storage:
    """Account and log documents keyed by email.

    MongoDB is used when a URL is configured; otherwise each key lives in its
    own JSON file and is replaced atomically. Every failure is reported as
    InternalError so a request fails without taking the process down.
    """

    def __init__(self, data_dir: str, mongo_url: str | None = None, mongo_db: str = "broadcastgw"):
        self.data_dir = data_dir
        self.mongo_url = mongo_url
        self.mongo_db = mongo_db
        self._mongo_client = None
        self._lock = threading.RLock()

    def get_mongo(self):
        if not self.mongo_url:
            return None
        if self._mongo_client is not None:
            return self._mongo_client[self.mongo_db]
        try:
            client = MongoClient(self.mongo_url, serverSelectionTimeoutMS=2000)
            client.admin.command("ping")
        except mongo_errors.PyMongoError as exc:
            logger.error("MongoDB unavailable: %s", exc)
            raise InternalError("Storage unavailable") from exc
        self._mongo_client = client
        return client[self.mongo_db]

    def _path(self, kind: str, key: str) -> str:
        return os.path.join(self.data_dir, kind, _key_to_filename(key))

    def _read(self, kind: str, key: str) -> Any:
        path = self._path(kind, key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            logger.error("Could not read %s document for %s: %s", kind, key, exc)
            raise InternalError("Storage read failed") from exc

    def _write(self, kind: str, key: str, payload: Any):
        try:
            _write_atomic(self._path(kind, key), json.dumps(payload, indent=2))
        except OSError as exc:
            logger.error("Could not write %s document for %s: %s", kind, key, exc)
            raise InternalError("Storage write failed") from exc

    # Accounts

    def insert_account(self, account: Dict[str, Any]):
        email = account["email"]
        db = self.get_mongo()
        if db is not None:
            try:
                db.accounts.insert_one({"_id": email, **account})
            except mongo_errors.DuplicateKeyError as exc:
                raise Conflict() from exc
            except mongo_errors.PyMongoError as exc:
                raise InternalError("Storage write failed") from exc
            return
        with self._lock:
            if self._read("accounts", email) is not None:
                raise Conflict()
            self._write("accounts", email, account)

    def get_account(self, email: str) -> Dict[str, Any] | None:
        db = self.get_mongo()
        if db is not None:
            try:
                doc = db.accounts.find_one({"_id": email})
            except mongo_errors.PyMongoError as exc:
                raise InternalError("Storage read failed") from exc
            if doc is None:
                return None
            doc.pop("_id", None)
            return doc
        with self._lock:
            return self._read("accounts", email)

    def update_account(self, email: str, fields: Dict[str, Any]):
        db = self.get_mongo()
        if db is not None:
            try:
                db.accounts.update_one({"_id": email}, {"$set": fields})
            except mongo_errors.PyMongoError as exc:
                raise InternalError("Storage write failed") from exc
            return
        with self._lock:
            account = self._read("accounts", email)
            if account is None:
                return
            account.update(fields)
            self._write("accounts", email, account)

    # Logs

    def append_log(self, email: str, entry: Dict[str, Any]):
        db = self.get_mongo()
        if db is not None:
            try:
                db.logs.update_one(
                    {"_id": email},
                    {"$push": {"entries": entry}, "$set": {"updated_at": time.time()}},
                    upsert=True,
                )
            except mongo_errors.PyMongoError as exc:
                raise InternalError("Storage write failed") from exc
            return
        with self._lock:
            entries = self._read("logs", email) or []
            entries.append(entry)
            self._write("logs", email, entries)

    def list_logs(self, email: str) -> list:
        db = self.get_mongo()
        if db is not None:
            try:
                doc = db.logs.find_one({"_id": email}) or {}
            except mongo_errors.PyMongoError as exc:
                raise InternalError("Storage read failed") from exc
            return list(doc.get("entries") or [])
        with self._lock:
            return list(self._read("logs", email) or [])


class CredentialStore:
    """Persists the protocol session string across restarts."""

    def __init__(self, auth_dir: str, session_name: str = "gateway", secret: str = "", storage: Storage | None = None):
        self.path = os.path.join(auth_dir, f"{session_name}.session")
        self.session_name = session_name
        self.secret = secret
        self.storage = storage

    def load(self) -> str | None:
        # Prefer DB stored session
        db = self.storage.get_mongo() if self.storage else None
        if db is not None:
            try:
                doc = db.sessions.find_one({"_id": self.session_name})
            except mongo_errors.PyMongoError as exc:
                raise InternalError("Could not load credentials") from exc
            if doc and doc.get("session_enc"):
                decrypted = utils.decrypt_session_string(doc["session_enc"], self.secret)
                if decrypted:
                    return decrypted
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                payload = fh.read().strip()
        except OSError as exc:
            raise InternalError("Could not load credentials") from exc
        return utils.decrypt_session_string(payload, self.secret) or None

    def save(self, session_string: str):
        payload = utils.encrypt_session_string(session_string, self.secret)
        try:
            _write_atomic(self.path, payload)
        except OSError as exc:
            raise InternalError("Could not save credentials") from exc
        db = self.storage.get_mongo() if self.storage else None
        if db is not None:
            try:
                db.sessions.update_one(
                    {"_id": self.session_name},
                    {"$set": {"session_enc": payload, "updated_at": time.time()}},
                    upsert=True,
                )
            except mongo_errors.PyMongoError as exc:
                raise InternalError("Could not save credentials") from exc

    def clear(self):
        """Remove any persisted session from disk and DB."""
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise InternalError("Could not clear credentials") from exc
        db = self.storage.get_mongo() if self.storage else None
        if db is not None:
            try:
                db.sessions.delete_one({"_id": self.session_name})
            except mongo_errors.PyMongoError as exc:
                raise InternalError("Could not clear credentials") from exc
