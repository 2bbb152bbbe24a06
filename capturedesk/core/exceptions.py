"""Custom exceptions for capturedesk.

This module defines the exception hierarchy used throughout the capture
pipeline and the newsletter tooling. Every request-level failure inherits
from CaptureDeskError, which carries the HTTP status the server answers with,
so the aiohttp layer can map errors to responses in one place.
"""


class CaptureDeskError(Exception):
    """Base class for capture pipeline errors.

    Attributes:
        status: HTTP status code used when the error reaches the server layer.
        code: Short machine-readable error code.
        retryable: Whether repeating the same operation may succeed.
    """

    status: int = 500
    code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class ValidationError(CaptureDeskError):
    """Malformed or missing input (bad URL, unknown enum value, no content).

    Never retryable: the same input fails the same way.
    """

    status = 400
    code = "validation_error"


class InvalidTransitionError(ValidationError):
    """A status change that the capture lifecycle does not allow.

    Raised before any state is touched, e.g. approving a rejected capture.
    """

    code = "invalid_transition"


class AuthError(CaptureDeskError):
    """Missing or incorrect credential."""

    status = 401
    code = "unauthorized"


class NotFoundError(CaptureDeskError):
    """A capture or project document does not exist."""

    status = 404
    code = "not_found"


class UpstreamError(CaptureDeskError):
    """An external service (store, hosting API, LLM, mail API) failed."""

    status = 500
    code = "upstream_error"
    retryable = True


class PublishStepError(UpstreamError):
    """One step of the multi-step commit sequence failed.

    The branch ref update is the only commit point, so any step before it
    leaves the repository untouched.
    """

    code = "publish_failed"

    def __init__(self, step: str, message: str, *, retryable: bool | None = None):
        super().__init__(f"{step} failed: {message}", retryable=retryable)
        self.step = step


class RefinementError(UpstreamError):
    """The text-generation service failed or returned an unusable response.

    Callers of the refinement gateway never see this: it is caught and turned
    into a ``None`` suggestion.
    """

    code = "refinement_failed"


class ConfigurationError(Exception):
    """Invalid or missing configuration.

    This is NOT a CaptureDeskError - configuration issues should be fixed
    before the service runs, not retried or reported as bad input.
    """

    pass
