"""Exception hierarchy shared by the resolver, venues and the executor."""

from __future__ import annotations


class SolhandsError(Exception):
    """Base class for all errors raised by :mod:`solhands`."""


class SchemaError(SolhandsError):
    """Raised when an instruction schema is malformed or cannot be loaded."""


class ResolutionError(SolhandsError):
    """Raised when an account role cannot be resolved to an address."""

    def __init__(self, role: str, reason: str | None = None) -> None:
        self.role = role
        self.reason = reason
        message = f"Unable to resolve account {role}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class EncodingError(SolhandsError):
    """Raised when a value does not fit its declared binary layout."""


class VenueBuildError(SolhandsError):
    """Raised when a venue cannot produce instructions for a swap."""

    def __init__(self, venue: str, reason: str) -> None:
        self.venue = venue
        self.reason = reason
        super().__init__(f"{venue}: {reason}")


class SubmissionError(SolhandsError):
    """Raised when a transaction cannot be landed after bounded retries.

    ``broadcast`` tells callers whether at least one copy of the transaction
    reached the network; such a transaction may still land later.
    """

    def __init__(
        self,
        message: str,
        *,
        signature: str | None = None,
        broadcast: bool = False,
        attempts: int = 0,
    ) -> None:
        self.signature = signature
        self.broadcast = broadcast
        self.attempts = attempts
        super().__init__(message)


class SimulationError(SubmissionError):
    """Raised when preflight simulation rejects a transaction."""


class SafetyGateSkip(SolhandsError):
    """Raised internally when a safety gate turns a decision into a no-op."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


__all__ = [
    "SolhandsError",
    "SchemaError",
    "ResolutionError",
    "EncodingError",
    "VenueBuildError",
    "SubmissionError",
    "SimulationError",
    "SafetyGateSkip",
]
