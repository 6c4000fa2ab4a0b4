"""Relay hub bridging Discord guilds to connected game servers."""

from .correlator import CorrelatedRequest, RequestCorrelator
from .errors import (
    AuthError,
    DuplicateError,
    NotFoundError,
    RelayError,
    StoreError,
    TransportError,
    ValidationError,
)
from .mentions import resolve_mentions
from .models import LinkedAccount, PeerIdentity, PendingVerification
from .policy import ChannelPolicy, ConnectionOptions, RelayEndpoint, parse_options
from .registry import SessionRegistry
from .session import PeerSession
from .storage import AccountStore
from .verification import VerificationWorkflow

__all__ = [
    "AccountStore",
    "AuthError",
    "ChannelPolicy",
    "ConnectionOptions",
    "CorrelatedRequest",
    "DuplicateError",
    "LinkedAccount",
    "NotFoundError",
    "PeerIdentity",
    "PeerSession",
    "PendingVerification",
    "RelayEndpoint",
    "RelayError",
    "RequestCorrelator",
    "SessionRegistry",
    "StoreError",
    "TransportError",
    "ValidationError",
    "VerificationWorkflow",
    "parse_options",
    "resolve_mentions",
]
