"""Error taxonomy for reconciliation operations.

Every error carries a short human-readable summary and a detail string so the
caller can surface both, mirroring how diagnostics are reported to operators.

TAXONOMY:
- TransportError: network/IO failure, never retried at this layer
- RemoteStatusError: unexpected HTTP status from the remote API
- RemoteFailureState: a polled resource reached a non-success terminal state
- ConfigValidationError: declared configuration breaks a structural rule
  (raised before any remote mutation)
- MalformedResponseError: a required field is missing or mistyped in a response
- PollTimeoutError: the opt-in poll deadline elapsed
"""

from __future__ import annotations


class ReconcileError(Exception):
    """Base class for all reconciliation failures."""

    summary: str = "Reconciliation failed"

    def __init__(self, detail: str, *, summary: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if summary is not None:
            self.summary = summary

    def __str__(self) -> str:
        return f"{self.summary}: {self.detail}"


class TransportError(ReconcileError):
    """Raised when the HTTP exchange itself fails."""

    summary = "Transport error"


class RemoteStatusError(ReconcileError):
    """Raised when the remote API answers with an unexpected status code."""

    summary = "Unexpected response from remote API"

    def __init__(self, detail: str, status_code: int, *, summary: str | None = None) -> None:
        super().__init__(f"{detail}, status code: {status_code}", summary=summary)
        self.status_code = status_code

    @property
    def not_found(self) -> bool:
        """Check if the remote reported the resource as gone."""
        return self.status_code == 404


class RemoteFailureState(ReconcileError):
    """Raised when a polled deployment settles in a state other than success."""

    summary = "Workflow deployment failed"

    def __init__(
        self, status: str, *, undeploy: bool = False, summary: str | None = None
    ) -> None:
        action = "failed to undeploy" if undeploy else "failed"
        super().__init__(f"Workflow deployment {action} with status: {status}", summary=summary)
        self.status = status
        self.undeploy = undeploy


class ConfigValidationError(ReconcileError):
    """Raised when declared configuration violates a structural rule."""

    summary = "Invalid configuration"


class MalformedResponseError(ReconcileError):
    """Raised when a decoded remote response lacks a required field."""

    summary = "Malformed response from remote API"


class PollTimeoutError(ReconcileError):
    """Raised when polling exceeds the configured deadline."""

    summary = "Timed out waiting for terminal state"
