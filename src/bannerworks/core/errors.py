"""Exception hierarchy for the generation pipeline.

Every error carries a stable ``code`` so the HTTP layer and the ``failed``
list of a generation outcome can report it without inspecting the class.

Propagation rules:

- ``ValidationError`` and a pre-flight ``CreditExhausted`` are raised to the
  caller of the orchestrator.
- ``TransientError``, ``PermanentError``, ``UpstreamError`` and a mid-batch
  ``CreditExhausted`` are captured per prompt and reported in ``failed``.
- The idea generator raises ``UpstreamError`` directly, since there is no
  partial result to keep.
"""

from typing import Any


class BannerworksError(Exception):
    """Base class for all Bannerworks errors."""

    code = "BANNERWORKS_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to the standard error payload."""
        return {
            "code": self.code,
            "message": str(self),
            "details": self.details,
        }


class ValidationError(BannerworksError):
    """Malformed or missing input. Raised before any external call is made.

    The message is intended to be displayed directly to the user.
    """

    code = "VALIDATION_ERROR"


class ConfigurationError(BannerworksError):
    """A static lookup (resolution table, API key) is missing an entry."""

    code = "CONFIGURATION_ERROR"


class NotFoundError(BannerworksError):
    """A requested record does not exist or belongs to another user."""

    code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with id '{resource_id}' not found",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class AlreadySavedError(BannerworksError):
    """The image was already added to the user's library."""

    code = "ALREADY_SAVED"


class UpstreamError(BannerworksError):
    """An LLM or image backend returned an unusable response."""

    code = "UPSTREAM_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details=details)
        self.status_code = status_code
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


class TransientError(UpstreamError):
    """Retryable backend failure (HTTP 429, 5xx or a transport error)."""

    code = "TRANSIENT_ERROR"


class PermanentError(UpstreamError):
    """Non-retryable backend failure.

    Also raised when a transient failure persists after its retry; in that
    case ``retried`` is True.
    """

    code = "PERMANENT_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        retried: bool = False,
    ):
        super().__init__(message, status_code=status_code, details=details)
        self.retried = retried
        self.details["retried"] = retried


class CreditExhausted(BannerworksError):
    """The user's credit balance is zero."""

    code = "CREDIT_EXHAUSTED"
