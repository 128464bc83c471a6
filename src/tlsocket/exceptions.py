"""
Exceptions for tlsocket.

This module contains all exceptions raised by tlsocket.
"""

from __future__ import annotations


class TLSocketError(Exception):
    """Base exception used by this module."""
    pass


class ConfigurationError(TLSocketError, ValueError):
    """
    Raised when the TLS parameters cannot be honoured.

    This is always raised before any bytes are exchanged with the peer.
    """
    pass


class ConnectionTimeout(TLSocketError, TimeoutError):
    """Raised when the TLS handshake does not finish before its deadline."""

    def __init__(self, host, port):
        self.host = host
        self.port = port
        super().__init__(f"The connection to {host}:{port} timed out")


class ProtocolViolation(TLSocketError):
    """Raised when raw socket IO is attempted on a TLS stream."""
    pass


class SSLError(TLSocketError):
    """Raised when the trust material or the peer certificate is unusable."""
    pass
