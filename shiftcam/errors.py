"""
Errors raised by the coordinator. Each class carries the HTTP status the
API layer answers with; the message is returned to the caller as
`{"error": message}`.
"""


class CoordinatorError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(CoordinatorError):
    status_code = 401
    default_message = "Unauthorized"


class MissingField(CoordinatorError):
    status_code = 400
    default_message = "Missing required field"


class InvalidJobId(MissingField):
    default_message = "job_id is required"


class SessionNotFound(CoordinatorError):
    status_code = 404
    default_message = "No active shift found"


class ProfileNotFound(CoordinatorError):
    status_code = 404
    default_message = "User profile not found"


class RecordingNotFound(CoordinatorError):
    status_code = 404
    default_message = "Recording not found"


class ConfigurationError(CoordinatorError):
    status_code = 500
    default_message = "Service not configured"


class CaptureStartFailed(CoordinatorError):
    status_code = 502
    default_message = "Capture provider failed to start recording"


class RecordingRegistrationFailed(CoordinatorError):
    """The provider job is running but no Recording row exists for it."""

    status_code = 500
    default_message = "Recording started but could not be registered"

    def __init__(self, job_id: str, message: str | None = None) -> None:
        self.job_id = job_id
        super().__init__(message)


class StopFailed(CoordinatorError):
    status_code = 502
    default_message = "Capture provider failed to stop recording"


class InvalidSignature(CoordinatorError):
    status_code = 401
    default_message = "Invalid signature"
