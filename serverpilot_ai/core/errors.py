"""Error taxonomy shared by the provider gateway, the remote channel and the plan engine.

Every failure that crosses a component boundary is one of these types. The
plan engine converts them into step/plan state transitions; the HTTP layer
maps them onto status codes.
"""

from __future__ import annotations

from typing import Optional


class ServerPilotError(Exception):
    """Base class for all domain errors."""


class NotInitializedError(ServerPilotError):
    """A provider was used before ``initialize`` was called."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider} provider is not initialized; call initialize(api_key) first")
        self.provider = provider


class BackendError(ServerPilotError):
    """A chat backend answered with a non-2xx status or could not be reached.

    ``status`` is the HTTP status code untouched, or ``None`` for transport
    failures (DNS, connect, read timeout).
    """

    def __init__(self, status: Optional[int], message: str) -> None:
        super().__init__(f"backend error ({status}): {message}" if status is not None else f"backend error: {message}")
        self.status = status
        self.message = message

    @property
    def is_auth_failure(self) -> bool:
        return self.status in (401, 403)

    @property
    def is_transient(self) -> bool:
        return self.status is None or self.status >= 500 or self.status == 429


class AuthError(BackendError):
    """The backend rejected the credential (401/403)."""


class StreamCancelledError(ServerPilotError):
    """A streaming chat call was cancelled by its consumer."""


class CommandExecutionError(ServerPilotError):
    """A dispatched command exited non-zero or timed out."""

    def __init__(self, exit_code: int, output: str, *, timed_out: bool = False) -> None:
        reason = "timed out" if timed_out else f"exited with status {exit_code}"
        super().__init__(f"command {reason}")
        self.exit_code = exit_code
        self.output = output
        self.timed_out = timed_out


class ConnectionLostError(ServerPilotError):
    """The remote session dropped."""


class ChannelBusyError(ServerPilotError):
    """An interactive write arrived while a programmatic command owns the channel."""


class PlanValidationError(ServerPilotError):
    """A generated plan is malformed and cannot be executed."""


class PlanStateError(ServerPilotError):
    """An operation is not permitted in the plan's current state."""


class PlanNotFoundError(PlanStateError):
    """No plan with the given id has been loaded."""

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"plan {plan_id} not found")
        self.plan_id = plan_id


class ChatBusyError(ServerPilotError):
    """A goal was sent while another chat request is still in flight."""
