"""
Errors
======
Typed failures raised by the gateway, the normalization boundary and the
navigation layer.

    TransportError          : network failure or timeout, never retried
    RemoteAPIError          : non-2xx response or explicit failure payload
    MalformedResponseError  : response shape matched no known variant
    StateError              : invalid caller input, raised before any network call
    ConfigError             : missing or unreadable configuration

Cancellation is not represented here: a canceled session exits silently.
"""
from typing import Iterable, Optional


class PipewatchError(Exception):
    """Base class for every failure surfaced to the operator."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class TransportError(PipewatchError):
    kind = "transport"


class RemoteAPIError(PipewatchError):
    kind = "remote_api"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    def __str__(self) -> str:
        parts = []
        if self.status_code is not None:
            parts.append(f"HTTP {self.status_code}")
        if self.code:
            parts.append(self.code)
        prefix = " ".join(parts)
        return f"{prefix}: {self.message}" if prefix else self.message


class MalformedResponseError(PipewatchError):
    kind = "malformed_response"

    def __init__(self, message: str, present_keys: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.present_keys = sorted(str(k) for k in present_keys)

    def __str__(self) -> str:
        if not self.present_keys:
            return self.message
        return f"{self.message} (available keys: {', '.join(self.present_keys)})"


class StateError(PipewatchError):
    kind = "state"


class ConfigError(PipewatchError):
    kind = "config"
