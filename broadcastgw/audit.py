from typing import Any, Callable, Dict

from .db import Storage
from . import utils

SUCCESS = "success"
FAILED = "failed"


class AuditLog:
    """Append-only broadcast history grouped by account email."""

    def __init__(self, storage: Storage, clock: Callable = utils.utcnow):
        self.storage = storage
        self.clock = clock

    def append(self, email: str, message: str, numbers: list, status: str, results: list | None = None) -> Dict[str, Any]:
        entry = {
            "message": message,
            "numbers": list(numbers),
            "status": status,
            "timestamp": utils.isoformat(self.clock()),
        }
        if results is not None:
            entry["results"] = results
        self.storage.append_log(email, entry)
        return entry

    def list(self, email: str) -> list:
        return self.storage.list_logs(email)
