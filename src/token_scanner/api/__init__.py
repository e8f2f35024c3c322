"""Scanner API clients."""

from .scanner_api import ScannerApiClient, ScannerResponse, build_scanner_query
from .websocket import ScannerWebSocketClient

__all__ = [
    "ScannerApiClient",
    "ScannerResponse",
    "build_scanner_query",
    "ScannerWebSocketClient",
]
