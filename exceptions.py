"""
Exception classes for the room orchestrator.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base exception class for orchestrator errors."""
    pass


class InvalidStateError(OrchestratorError):
    """Operation attempted on a room in the wrong lifecycle state."""
    pass


class NotFoundError(OrchestratorError):
    """Unknown room or asset identifier."""
    pass


class AgentError(OrchestratorError):
    """A single agent call failed. Subclasses decide whether it may be retried."""

    retryable = False

    def __init__(self, agent: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.agent = agent
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"{self.agent}: HTTP {self.status_code}: {base}"
        return f"{self.agent}: {base}"


class TransientAgentError(AgentError):
    """Network failure, timeout, 5xx or 429."""

    retryable = True


class PermanentAgentError(AgentError):
    """Validation failure (4xx) or a malformed response."""
    pass


class UploadError(OrchestratorError):
    """Content-addressed upload failed or returned an invalid identifier."""
    pass


class LedgerError(OrchestratorError):
    """Reward ledger rejected or failed a credit."""
    pass
