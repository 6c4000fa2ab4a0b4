from __future__ import annotations


class RelayError(Exception):
    """Base exception for every failure the hub reports to a requester."""


class AuthError(RelayError):
    """Raised when a peer connection presents a missing or invalid token."""


class NotFoundError(RelayError):
    """Raised when an identity, account or pending verification is absent."""


class DuplicateError(RelayError):
    """Raised when an account link or peer registration already exists."""


class ValidationError(RelayError):
    """Raised for malformed frames, options or command arguments."""


class StoreError(RelayError):
    """Raised when the account store fails unexpectedly."""


class TransportError(RelayError):
    """Raised when a chat platform call fails."""


UNEXPECTED_ERRORS = (StoreError, TransportError)

__all__ = [
    "RelayError",
    "AuthError",
    "NotFoundError",
    "DuplicateError",
    "ValidationError",
    "StoreError",
    "TransportError",
    "UNEXPECTED_ERRORS",
]
