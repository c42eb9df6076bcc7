"""
Typed failures raised by the relay pipeline stages.

Each stage raises a RelayError subclass; the coordinator turns those into
a Failed settlement. The kind decides whether the caller should fix the
request, retry later, or reconcile out-of-band.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Failure kinds surfaced by the relay."""
    INVALID_INTENT = "InvalidIntent"
    SIMULATION_REVERTED = "SimulationReverted"
    ESTIMATION_UNAVAILABLE = "EstimationUnavailable"
    SPONSORSHIP_DENIED = "SponsorshipDenied"
    SPONSORSHIP_UNAVAILABLE = "SponsorshipUnavailable"
    SUBMISSION_REJECTED = "SubmissionRejected"
    SUBMISSION_UNAVAILABLE = "SubmissionUnavailable"
    SUBMISSION_AMBIGUOUS = "SubmissionAmbiguous"
    TIMED_OUT = "TimedOut"
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    INCOMPLETE_OPERATION = "IncompleteOperation"


CALLER_ERROR_KINDS = frozenset({
    ErrorKind.INVALID_INTENT,
    ErrorKind.SIMULATION_REVERTED,
})

TRANSIENT_ERROR_KINDS = frozenset({
    ErrorKind.ESTIMATION_UNAVAILABLE,
    ErrorKind.SPONSORSHIP_UNAVAILABLE,
    ErrorKind.SUBMISSION_UNAVAILABLE,
    ErrorKind.DEADLINE_EXCEEDED,
})


class RelayError(Exception):
    """Base exception for relay pipeline failures."""

    kind: ErrorKind = ErrorKind.INCOMPLETE_OPERATION
    retryable: bool = False

    def __init__(self, message: str, user_op_hash: Optional[str] = None):
        self.message = message
        self.user_op_hash = user_op_hash
        super().__init__(message)

    @property
    def is_caller_error(self) -> bool:
        """The request itself is wrong; resubmitting it unchanged cannot help."""
        return self.kind in CALLER_ERROR_KINDS

    @property
    def is_transient(self) -> bool:
        """Infrastructure condition that may clear on a later attempt."""
        return self.kind in TRANSIENT_ERROR_KINDS

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class InvalidIntent(RelayError):
    """Unknown function signature or argument type mismatch."""
    kind = ErrorKind.INVALID_INTENT


class SimulationReverted(RelayError):
    """The simulated call reverts; resubmission cannot fix it."""
    kind = ErrorKind.SIMULATION_REVERTED

    def __init__(self, message: str, revert_reason: Optional[str] = None):
        self.revert_reason = revert_reason
        super().__init__(message)


class EstimationUnavailable(RelayError):
    """Execution network unreachable during estimation."""
    kind = ErrorKind.ESTIMATION_UNAVAILABLE
    retryable = True


class _RemotePolicyError(RelayError):
    """Error object returned by a remote service, carrying its stated reason."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        self.code = code
        self.data = data
        super().__init__(message)


class SponsorshipDenied(_RemotePolicyError):
    """The sponsor refused to pay for the operation."""
    kind = ErrorKind.SPONSORSHIP_DENIED


class SponsorshipUnavailable(RelayError):
    """Sponsor unreachable or returned an unusable payload."""
    kind = ErrorKind.SPONSORSHIP_UNAVAILABLE
    retryable = True


class SubmissionRejected(_RemotePolicyError):
    """The bundler rejected the operation."""
    kind = ErrorKind.SUBMISSION_REJECTED


class SubmissionUnavailable(RelayError):
    """The submission request never reached the bundler."""
    kind = ErrorKind.SUBMISSION_UNAVAILABLE
    retryable = True


class SubmissionAmbiguous(RelayError):
    """
    The submission may or may not have been accepted.

    Retrying could double-submit; the caller must reconcile, for example by
    checking whether the sender nonce has been consumed.
    """
    kind = ErrorKind.SUBMISSION_AMBIGUOUS


class TimedOut(RelayError):
    """
    Polling budget exhausted without a receipt.

    Soft failure: the operation may still be included after the window.
    """
    kind = ErrorKind.TIMED_OUT


class DeadlineExceeded(RelayError):
    """Caller deadline elapsed before anything was submitted."""
    kind = ErrorKind.DEADLINE_EXCEEDED


class IncompleteOperation(RelayError):
    """An operation reached submission with required fields still absent."""
    kind = ErrorKind.INCOMPLETE_OPERATION

    def __init__(self, missing_fields: list[str]):
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Operation is missing required fields: {', '.join(self.missing_fields)}"
        )
