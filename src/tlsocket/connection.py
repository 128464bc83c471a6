"""
TLS stream sockets for tlsocket.

This module provides :class:`TLSSocket`, the stream object handed to
callers once a TLS session is up on a connected socket.
"""

from __future__ import annotations

import functools
import logging
import socket
import sys
import typing
from typing import Any, List, Optional, Tuple, Union

from .exceptions import ProtocolViolation
from .parameters import _TYPE_PARAMETERS, to_parameters
from .session import TlsSession, negotiate
from .util.cert_verification import PeerVerifier, VerificationOutcome
from .util.retry import CLOSED, ClosedSentinel, NonblockingRetry
from .util.ssl_ import TlsVersion
from .util.wait import wait_for_read, wait_for_write

if typing.TYPE_CHECKING:
    from cryptography import x509
    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

log = logging.getLogger(__name__)

# The nonblocking TLS path is only enabled by default on Windows
DEFAULT_ALLOW_NONBLOCK = sys.platform == "win32"


class TLSSocket:
    """
    A TLS stream over an already-connected socket.

    The handshake runs in the constructor; a TLSSocket that was returned is
    established. All reads and writes go through the TLS session, and the
    raw socket primitives are disabled.

    :param sock:
        A connected stream socket. It is closed by :meth:`close`.

    :param params:
        :class:`~tlsocket.parameters.TlsParameters` or a mapping of options.

    :param allow_nonblock:
        Drive the socket in nonblocking mode, retrying would-block results.
        Defaults to :data:`DEFAULT_ALLOW_NONBLOCK`.

    :param verifier:
        The :class:`~tlsocket.util.cert_verification.PeerVerifier` recording
        whether the peer is trusted. Built from ``params`` when omitted.

    :param engine:
        A preconfigured :class:`~tlsocket.util.retry.NonblockingRetry`.

    Any other keyword argument overrides the matching option in ``params``.
    """

    def __init__(
        self,
        sock: socket.socket,
        params: _TYPE_PARAMETERS = None,
        *,
        allow_nonblock: Optional[bool] = None,
        verifier: Optional[PeerVerifier] = None,
        engine: Optional[NonblockingRetry] = None,
        **options: Any,
    ) -> None:
        self.sock = sock
        self.params = to_parameters(params, **options)
        self._allow_nonblock = (
            DEFAULT_ALLOW_NONBLOCK if allow_nonblock is None else bool(allow_nonblock)
        )
        if engine is None:
            engine = NonblockingRetry(
                functools.partial(wait_for_read, sock),
                functools.partial(wait_for_write, sock),
            )
        self._engine = engine
        self._session: Optional[TlsSession] = None
        self._closed = False

        if not self._allow_nonblock:
            log.debug("Nonblocking TLS IO disabled, using blocking calls")

        self._session = negotiate(
            sock,
            self.params,
            engine,
            nonblocking=self._allow_nonblock,
            verifier=verifier,
        )

    @classmethod
    def create(
        cls,
        host: str,
        port: int,
        params: _TYPE_PARAMETERS = None,
        *,
        connect_timeout: Optional[float] = None,
        source_address: Optional[Tuple[str, int]] = None,
        allow_nonblock: Optional[bool] = None,
        verifier: Optional[PeerVerifier] = None,
        **options: Any,
    ) -> "TLSSocket":
        """
        Connect to ``host``:``port`` and negotiate TLS over the new socket.

        The socket is closed again if the handshake fails.
        """
        params = to_parameters(params, **options)
        if params.peer_host is None:
            params = params.replace(peer_host=host)
        if params.peer_port is None:
            params = params.replace(peer_port=port)

        sock = socket.create_connection(
            (host, port), timeout=connect_timeout, source_address=source_address
        )
        sock.settimeout(None)
        try:
            return cls(sock, params, allow_nonblock=allow_nonblock, verifier=verifier)
        except BaseException:
            sock.close()
            raise

    def __repr__(self) -> str:
        if self._closed:
            state = "closed"
        elif self._session is not None and self._session.established:
            state = "established"
        else:
            state = "unestablished"
        return f"<{type(self).__name__} {self.peerhost}:{self.peerport} {state}>"

    def __enter__(self) -> "TLSSocket":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @property
    def type(self) -> str:
        """Socket category reported to the enclosing framework."""
        return "tcp-tls"

    @property
    def allow_nonblock(self) -> bool:
        return self._allow_nonblock

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def session(self) -> Optional[TlsSession]:
        return self._session

    @property
    def peerhost(self) -> Optional[str]:
        if self._session is not None:
            return self._session.peer_host
        return self.params.peer_host

    @property
    def peerport(self) -> Optional[int]:
        if self._session is not None:
            return self._session.peer_port
        return self.params.peer_port

    def fileno(self) -> int:
        return self.sock.fileno()

    # Stream contract

    def write(self, data: bytes) -> Union[int, ClosedSentinel]:
        """
        Write all of ``data`` over the TLS session.

        Returns the number of bytes written, or :data:`~tlsocket.CLOSED` if
        the peer went away or the session failed.
        """
        if self._closed or self._session is None:
            return CLOSED
        return self._engine.write(self._session.write_chunk, data)

    def read(self, length: Optional[int] = None) -> Union[bytes, ClosedSentinel]:
        """
        Read whatever is available, up to ``length`` bytes if given.

        Returns :data:`~tlsocket.CLOSED` once the stream has ended.
        """
        if self._closed or self._session is None:
            return CLOSED
        return self._engine.read(self._session.read_block, length)

    def raw_recv(self, *args: Any, **kwargs: Any) -> typing.NoReturn:
        """Reading past the TLS layer is not allowed."""
        raise ProtocolViolation("Invalid raw_recv() call on a TLS socket")

    def raw_send(self, *args: Any, **kwargs: Any) -> typing.NoReturn:
        """Writing past the TLS layer is not allowed."""
        raise ProtocolViolation("Invalid raw_send() call on a TLS socket")

    def shutdown(self, how: int = socket.SHUT_RDWR) -> None:
        """
        Ignored. A half-close under an active TLS session desynchronizes the
        TLS close sequence; use :meth:`close`.
        """
        log.debug("Ignoring shutdown(%r) on a TLS socket", how)

    def close(self) -> None:
        """Tear down the TLS session, then close the socket. Idempotent."""
        if self._closed:
            return
        self._closed = True

        session, self._session = self._session, None
        if session is not None:
            try:
                session.close()
            except Exception as e:
                log.debug("Ignoring error while closing the TLS session: %s", e)

        self.sock.close()

    # Peer trust accessors

    def peer_cert(self) -> Optional["x509.Certificate"]:
        return self._session.peer_cert() if self._session is not None else None

    def peer_cert_chain(self) -> Optional[List["x509.Certificate"]]:
        return self._session.peer_cert_chain() if self._session is not None else None

    def cipher(self) -> Optional[Tuple[str, str, int]]:
        return self._session.cipher() if self._session is not None else None

    def client_cert(self) -> Optional["x509.Certificate"]:
        return self._session.client_cert() if self._session is not None else None

    def client_key(self) -> Optional["PrivateKeyTypes"]:
        return self._session.client_key() if self._session is not None else None

    def negotiated_version(self) -> Optional[TlsVersion]:
        return self._session.negotiated_version() if self._session is not None else None

    def peer_verified(self) -> Optional[bool]:
        return self._session.peer_verified() if self._session is not None else None

    def verification(self) -> Optional[VerificationOutcome]:
        return self._session.verification() if self._session is not None else None


def create_connection(
    address: Tuple[str, int],
    params: _TYPE_PARAMETERS = None,
    **kwargs: Any,
) -> TLSSocket:
    """
    Connect to ``address`` and return an established :class:`TLSSocket`.

    Shorthand for :meth:`TLSSocket.create`.
    """
    host, port = address
    return TLSSocket.create(host, port, params, **kwargs)
