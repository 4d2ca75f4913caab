"""Stores package for the protocol viewer's ledger access."""

from .ledger_client import DemoSessionInfo, LedgerApiError, LedgerClient, RecoveryFetchError
from .stream_transport import ReconnectBackoff, SseStreamTransport, TransportError
from .pubsub import LedgerPubSub

__all__ = [
    # Ledger REST API
    "DemoSessionInfo",
    "LedgerApiError",
    "LedgerClient",
    "RecoveryFetchError",
    # Live feeds
    "ReconnectBackoff",
    "SseStreamTransport",
    "TransportError",
    "LedgerPubSub",
]
