"""Exception types raised by the agentkit engine."""

from __future__ import annotations


class AgentKitError(Exception):
    """Base exception for agentkit."""


class ConfigurationError(AgentKitError):
    """Base exception for configuration and manifest loading errors."""


class ManifestError(ConfigurationError):
    """Raised when a manifest fails schema or integrity validation."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: " + "; ".join(self.errors)
        super().__init__(message)


class UnknownStateError(AgentKitError):
    """Raised when a state identifier does not resolve within the manifest."""

    def __init__(self, state_id: str) -> None:
        self.state_id = state_id
        super().__init__(f"Unknown state '{state_id}'")


class IterationLimitExceededError(AgentKitError):
    """Raised when the loop is exhausted without a stop and no fallback applies."""

    def __init__(self, limit: int, state_id: str, *, scope: str = "state") -> None:
        self.limit = limit
        self.state_id = state_id
        self.scope = scope
        if scope == "state":
            message = f"Max iterations ({limit}) reached for state '{state_id}'"
        else:
            message = f"Max total iterations ({limit}) reached in state '{state_id}'"
        super().__init__(message)


class BackendError(AgentKitError):
    """Raised when the model backend or a tool transport fails."""


class RunCancelledError(AgentKitError):
    """Raised when a caller cancels an in-flight run."""
