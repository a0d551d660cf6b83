"""
Error taxonomy for the session orchestration layer.

None of these are fatal: connect-path errors lead to a scheduled retry,
decode and send errors are logged and the offending event is dropped.
"""

from __future__ import annotations

from typing import Optional


class BoticalError(Exception):
    """Base class for all client-side orchestration errors."""


class CredentialFetchError(BoticalError):
    """Token endpoint unreachable or returned a non-2xx status."""

    def __init__(self, status_code: Optional[int], detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        if status_code is None:
            msg = f"Token endpoint unreachable: {detail}"
        else:
            msg = f"Token API returned {status_code}: {detail}"
        super().__init__(msg)


class TransportConnectError(BoticalError):
    """Handshake or connect call on the transport failed."""


class UnsolicitedDisconnect(BoticalError):
    """The transport dropped a live session without being asked to."""

    def __init__(self, reason: Optional[str] = None) -> None:
        self.reason = reason
        super().__init__(f"Disconnected: {reason or 'unknown'}")


class DecodeError(BoticalError):
    """A data-channel payload could not be decoded into a known event."""


class SendError(BoticalError):
    """Text or greeting delivery over the data channel failed."""
