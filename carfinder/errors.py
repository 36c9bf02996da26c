"""Error taxonomy for carfinder."""
from __future__ import annotations

from typing import Any


class CarfinderError(Exception):
    """Base error; status_code maps the error to an HTTP status class."""
    status_code = 500

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(CarfinderError):
    """Bad caller input. Never retried."""
    status_code = 400


class NotFoundError(CarfinderError):
    """The requested resource does not exist or is disabled."""
    status_code = 404


class ConversationNotFound(ValidationError):
    """Refinement requested for a session with no prior search."""

    def __init__(self, session_id: str) -> None:
        super().__init__("No active conversation found. Start a new search first.")
        self.session_id = session_id


class ModelUnavailableError(CarfinderError):
    """The model backend could not be reached."""
    status_code = 503


class ModelHTTPError(CarfinderError):
    """The model backend answered with a non-2xx status."""
    status_code = 502

    def __init__(self, message: str, http_status: int) -> None:
        super().__init__(message)
        self.http_status = http_status


class ParseError(CarfinderError):
    """No JSON value could be recovered from model text."""
    status_code = 502


class TemplateNotFoundError(CarfinderError):
    """A prompt template is missing. Treated as a configuration error."""
    status_code = 500


class PipelineError(CarfinderError):
    """An unrecoverable stage failed and the run was aborted."""
    status_code = 500
    public_message = "We could not generate recommendations right now. Please try again."

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} stage failed: {cause}")
        self.stage = stage
        self.cause = cause
        if isinstance(cause, CarfinderError) and cause.status_code != 500:
            self.status_code = cause.status_code
