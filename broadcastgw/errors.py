class GatewayError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code = 500
    detail = "Internal error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.detail)

    def to_dict(self):
        return {"detail": str(self)}


class InvalidArgument(GatewayError):
    status_code = 400
    detail = "Invalid request"


class Unauthorized(GatewayError):
    status_code = 401
    detail = "Not authenticated"


class Forbidden(GatewayError):
    status_code = 403
    detail = "Session expired or deactivated"


class NotFound(GatewayError):
    status_code = 404
    detail = "Not found"


class Conflict(GatewayError):
    status_code = 409
    detail = "User already exists"


class ServiceUnavailable(GatewayError):
    status_code = 503
    detail = "Messaging connection is not available"


class InternalError(GatewayError):
    status_code = 500
    detail = "Internal error"


class BroadcastFailed(InternalError):
    """Raised when at least one recipient of a broadcast could not be reached."""

    detail = "Failed to send broadcast"

    def __init__(self, results, detail: str | None = None):
        super().__init__(detail)
        self.results = results

    def to_dict(self):
        payload = super().to_dict()
        payload["results"] = self.results
        return payload
