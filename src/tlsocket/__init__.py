"""
tlsocket - TLS stream sockets for Python.

tlsocket layers a client TLS session over an already-connected socket:
- Protocol version resolution against what the ssl module supports
- Handshakes with a deadline, in blocking or nonblocking mode
- Retrying nonblocking reads and writes with adaptive chunking
- Peer certificate verification that is recorded rather than enforced
"""

from __future__ import annotations

# Set default logging handler to avoid "No handler found" warnings.
import logging
from logging import NullHandler

from ._version import __version__

logging.getLogger(__name__).addHandler(NullHandler())

from . import exceptions  # noqa: E402
from .connection import DEFAULT_ALLOW_NONBLOCK, TLSSocket, create_connection  # noqa: E402
from .exceptions import (  # noqa: E402
    ConfigurationError,
    ConnectionTimeout,
    ProtocolViolation,
    SSLError,
    TLSocketError,
)
from .parameters import TlsParameters, VerifyMode  # noqa: E402
from .session import TlsSession  # noqa: E402
from .util.cert_verification import PeerVerifier, VerificationOutcome  # noqa: E402
from .util.retry import CLOSED  # noqa: E402
from .util.ssl_ import (  # noqa: E402
    TlsVersion,
    resolve_tls_version,
    supported_tls_versions,
)

__all__ = (
    "__version__",
    "CLOSED",
    "DEFAULT_ALLOW_NONBLOCK",
    "ConfigurationError",
    "ConnectionTimeout",
    "PeerVerifier",
    "ProtocolViolation",
    "SSLError",
    "TLSSocket",
    "TLSocketError",
    "TlsParameters",
    "TlsSession",
    "TlsVersion",
    "VerificationOutcome",
    "VerifyMode",
    "add_stderr_logger",
    "create_connection",
    "exceptions",
    "resolve_tls_version",
    "supported_tls_versions",
)


def add_stderr_logger(level=logging.DEBUG):
    """
    Helper for quickly adding a StreamHandler to the logger. Useful for
    debugging.

    Returns the handler after adding it.
    """
    # This method needs to be in this __init__.py to get the __name__ correct
    logger = logging.getLogger(__name__)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.debug("Added a stderr logging handler to logger: %s", __name__)
    return handler
