import logging
from dataclasses import dataclass, field

from .audit import FAILED, SUCCESS, AuditLog
from .connection import ConnectionManager
from .errors import BroadcastFailed, InvalidArgument, ServiceUnavailable
from . import utils

logger = logging.getLogger(__name__)


@dataclass
class BroadcastResult:
    sent_to: int
    results: list = field(default_factory=list)


class BroadcastDispatcher:
    """Sends one text to many recipients over the live connection."""

    def __init__(self, connection: ConnectionManager, audit: AuditLog, address_domain: str):
        self.connection = connection
        self.audit = audit
        self.address_domain = address_domain

    def broadcast(self, email: str, message, numbers) -> BroadcastResult:
        if not self.connection.is_connected():
            raise ServiceUnavailable("Messaging connection is not available")
        if not isinstance(message, str) or not message.strip():
            raise InvalidArgument("Message and numbers required")
        numbers = utils.parse_numbers(numbers)
        addresses = [utils.to_address(num, self.address_domain) for num in numbers]

        logger.info("Sending broadcast for %s to %d recipients", email, len(addresses))
        results = []
        for address in addresses:
            # One bad recipient must not stop the rest.
            try:
                self.connection.send_text(address, message)
            except Exception as exc:
                logger.warning("Failed to send to %s: %s", address, exc)
                results.append({"address": address, "status": FAILED, "error": str(exc) or type(exc).__name__})
                continue
            results.append({"address": address, "status": SUCCESS})

        failures = sum(1 for item in results if item["status"] == FAILED)
        status = FAILED if failures else SUCCESS
        self.audit.append(email, message, numbers, status, results)
        if failures:
            logger.error("Broadcast for %s failed for %d of %d recipients", email, failures, len(addresses))
            raise BroadcastFailed(results)
        return BroadcastResult(sent_to=len(addresses), results=results)
