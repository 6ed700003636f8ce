"""Error taxonomy for pairing coordination."""

from typing import Literal

Phase = Literal["read", "stop", "mutate", "start", "watch", "transport"]


class PairingError(Exception):
    """Base class for pairing failures.

    ``phase`` names the step that failed so callers can pick the right
    recovery action; ``remediation`` is an operator-facing hint.
    """

    phase: Phase = "mutate"

    def __init__(self, message: str, remediation: str | None = None):
        super().__init__(message)
        self.remediation = remediation


class StoreMalformedError(PairingError):
    """Pairing store content is not valid JSON or does not match the schema."""

    phase: Phase = "read"


class RequestNotFoundError(PairingError):
    """No pending request matched. Callers treat this as "nothing to do"."""


class SchemaMixError(PairingError):
    """Paired-entry and allowFrom modes would be mixed on the same store."""


class StoreLockedError(PairingError):
    """Another administrator flow holds the store lock."""


class ServiceStopError(PairingError):
    """The gateway could not be stopped; nothing was mutated."""

    phase: Phase = "stop"


class ServiceStartError(PairingError):
    """The gateway did not come back after a mutation."""

    phase: Phase = "start"


class TransportError(PairingError):
    """Remote command or file transfer failed."""

    phase: Phase = "transport"

    def __init__(
        self,
        message: str,
        remediation: str | None = None,
        exit_code: int | None = None,
        stderr: str = "",
    ):
        super().__init__(message, remediation)
        self.exit_code = exit_code
        self.stderr = stderr


class WatchTimeoutError(PairingError):
    """No pairing request showed up before the deadline."""

    phase: Phase = "watch"

    def __init__(self, timeout_seconds: float, remediation: str | None = None):
        super().__init__(
            f"No pairing request detected within {timeout_seconds:g} seconds",
            remediation,
        )
        self.timeout_seconds = timeout_seconds
