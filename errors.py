from typing import Optional


class VaxTrackError(Exception):
    """Base error; rendered by the API as {"error": ..., "details": ...}."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(VaxTrackError):
    status_code = 400


class NotFound(VaxTrackError):
    status_code = 404


class GenerationExhausted(VaxTrackError):
    status_code = 500


class StoreFailure(VaxTrackError):
    status_code = 500


class NotificationFailure(VaxTrackError):
    # Only raised inside the notification worker, never returned to a client.
    status_code = 500
