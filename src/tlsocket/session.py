"""
TLS sessions for tlsocket.

A :class:`TlsSession` runs an :class:`ssl.SSLObject` over a pair of memory
BIOs and pumps ciphertext between them and an already-connected transport.
Its IO primitives never raise for conditions the retry engine handles;
they report an :class:`~tlsocket.util.retry.Attempt` instead.
"""

from __future__ import annotations

import errno
import logging
import socket
import ssl
import typing
from typing import List, Optional, Tuple

from cryptography import x509

from .exceptions import ConnectionTimeout, SSLError
from .parameters import TlsParameters, VerifyMode
from .util.cert_verification import PeerVerifier, VerificationOutcome
from .util.retry import Attempt, NonblockingRetry
from .util.ssl_ import (
    TlsVersion,
    create_tls_context,
    load_certificate,
    load_private_key,
    resolve_tls_version,
    sni_hostname,
)
from .util.timeout import Deadline

if typing.TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

log = logging.getLogger(__name__)

# Bytes pulled from the transport per receive
SSL_BLOCKSIZE = 16384

# Transport errors meaning the stream is gone rather than broken
_CLOSED_ERRNOS = frozenset({errno.EBADF, errno.ENOTCONN, errno.ESHUTDOWN})


def _transport_error(exc: OSError, would_block: Attempt) -> Attempt:
    if isinstance(exc, BlockingIOError):
        return would_block
    if isinstance(exc, (BrokenPipeError, ConnectionResetError, ConnectionAbortedError)):
        return Attempt.closed(exc)
    if exc.errno in _CLOSED_ERRNOS:
        return Attempt.closed(exc)
    return Attempt.other(exc)


def _tls_error(exc: ssl.SSLError) -> Attempt:
    if isinstance(exc, (ssl.SSLZeroReturnError, ssl.SSLEOFError)):
        return Attempt.closed(exc)
    return Attempt.fatal(exc)


class TlsSession:
    """
    A client TLS session over a connected transport.

    The session owns the context and the TLS object; it only references
    ``transport``, which must outlive it.
    """

    def __init__(
        self,
        transport: socket.socket,
        context: ssl.SSLContext,
        server_hostname: Optional[str] = None,
        peer_host: Optional[str] = None,
        peer_port: Optional[int] = None,
        verify_mode: VerifyMode = VerifyMode.PEER,
        verifier: Optional[PeerVerifier] = None,
        client_cert: Optional[x509.Certificate] = None,
        client_key: Optional["PrivateKeyTypes"] = None,
        nonblocking: bool = False,
    ) -> None:
        self.transport = transport
        self.context = context
        self.server_hostname = server_hostname
        self.peer_host = peer_host
        self.peer_port = peer_port
        self.verify_mode = verify_mode
        self.verifier = verifier if verifier is not None else PeerVerifier()
        self.nonblocking = nonblocking
        self._client_cert = client_cert
        self._client_key = client_key

        self.incoming = ssl.MemoryBIO()
        self.outgoing = ssl.MemoryBIO()
        self.sslobj = context.wrap_bio(
            self.incoming,
            self.outgoing,
            server_side=False,
            server_hostname=server_hostname,
        )

        # Ciphertext not yet accepted by the transport, and the plaintext
        # byte count it stands for.
        self._pending = b""
        self._unacked = 0

        self.established = False
        self._version: Optional[TlsVersion] = None
        self._cipher: Optional[Tuple[str, str, int]] = None
        self._chain: List[x509.Certificate] = []
        self._verification: Optional[VerificationOutcome] = None

    def __repr__(self) -> str:
        state = "established" if self.established else "unestablished"
        return f"<{type(self).__name__} {self.peer_host}:{self.peer_port} {state}>"

    # Transport pumping

    def _flush(self) -> Optional[Attempt]:
        """Hand queued ciphertext to the transport. ``None`` once drained."""
        if self.outgoing.pending:
            self._pending += self.outgoing.read()
        while self._pending:
            try:
                sent = self.transport.send(self._pending)
            except OSError as e:
                return _transport_error(e, Attempt.would_block_write())
            self._pending = self._pending[sent:]
        return None

    def _fill(self) -> Optional[Attempt]:
        """Feed one read from the transport into the TLS object."""
        if self.incoming.eof:
            return Attempt.closed(
                ssl.SSLEOFError(ssl.SSL_ERROR_EOF, "EOF occurred in violation of protocol")
            )
        try:
            data = self.transport.recv(SSL_BLOCKSIZE)
        except OSError as e:
            return _transport_error(e, Attempt.would_block_read())
        if data:
            self.incoming.write(data)
        else:
            # Let the TLS object decide between a clean and a ragged close
            self.incoming.write_eof()
        return None

    def _pump(self) -> Attempt:
        attempt = self._flush() or self._fill()
        return attempt if attempt is not None else Attempt.progress(0)

    # IO primitives

    def handshake_step(self) -> Attempt:
        """One attempt at advancing the handshake."""
        try:
            self.sslobj.do_handshake()
        except ssl.SSLWantReadError:
            return self._pump()
        except ssl.SSLWantWriteError:
            return self._flush() or Attempt.progress(0)
        except ssl.SSLError as e:
            return _tls_error(e)

        # The final flight has to reach the peer before we are done
        attempt = self._flush()
        return attempt if attempt is not None else Attempt.done()

    def _flush_chunk(self) -> Optional[Attempt]:
        attempt = self._flush()
        if attempt is not None and not attempt.would_block:
            # The write call is over; its queued chunk is never reported
            self._unacked = 0
        return attempt

    def write_chunk(self, chunk: memoryview) -> Attempt:
        """
        Encrypt and send ``chunk``.

        Progress is only reported once the ciphertext has fully left for the
        transport. If it stalls on a would-block, the next call finishes
        sending it and reports that earlier chunk's size, whatever ``chunk``
        is then. Ciphertext left over from a write that ended in an error is
        still sent first, but counts as zero progress.
        """
        if self._pending:
            attempt = self._flush_chunk()
            if attempt is not None:
                return attempt
            sent, self._unacked = self._unacked, 0
            return Attempt.progress(sent)

        try:
            written = self.sslobj.write(chunk)
        except ssl.SSLWantReadError:
            return self._pump()
        except ssl.SSLError as e:
            return _tls_error(e)

        self._unacked = written
        attempt = self._flush_chunk()
        if attempt is not None:
            return attempt
        self._unacked = 0
        return Attempt.progress(written)

    def read_block(self, size: int) -> Attempt:
        """Read up to ``size`` bytes of plaintext."""
        try:
            data = self.sslobj.read(size)
        except ssl.SSLWantReadError:
            return self._pump()
        except ssl.SSLError as e:
            return _tls_error(e)

        if not data:
            return Attempt.closed()
        return Attempt.progress(len(data), data)

    # Handshake

    def _timeout_error(self) -> ConnectionTimeout:
        return ConnectionTimeout(self.peer_host, self.peer_port)

    def handshake(self, engine: NonblockingRetry, deadline: Deadline) -> None:
        """
        Negotiate the session before ``deadline``.

        In blocking mode every transport call is bounded by the time left.
        """
        log.debug(
            "Starting TLS handshake with %s:%s (nonblocking=%s)",
            self.peer_host,
            self.peer_port,
            self.nonblocking,
        )

        if self.nonblocking:
            previous = self.transport.gettimeout()
            self.transport.setblocking(False)
            try:
                engine.handshake(self.handshake_step, deadline, self._timeout_error)
            except BaseException:
                # A failed handshake hands the transport back in its old mode
                self.transport.settimeout(previous)
                raise
        else:
            previous = self.transport.gettimeout()

            def step() -> Attempt:
                self.transport.settimeout(deadline.remaining())
                return self.handshake_step()

            try:
                engine.handshake(step, deadline, self._timeout_error)
            except ConnectionTimeout:
                raise
            except socket.timeout as e:
                raise self._timeout_error() from e
            finally:
                self.transport.settimeout(previous)

        self._establish()

    def _peer_chain_der(self) -> List[bytes]:
        get_chain = getattr(self.sslobj, "get_unverified_chain", None)
        if get_chain is not None:
            chain = get_chain()
            if chain:
                return list(chain)
        leaf = self.sslobj.getpeercert(binary_form=True)
        return [leaf] if leaf else []

    def _establish(self) -> None:
        try:
            self._chain = [x509.load_der_x509_certificate(der) for der in self._peer_chain_der()]
        except ValueError as e:
            log.debug("Unable to parse the peer certificate chain: %s", e)
            self._chain = []
            self._verification = VerificationOutcome(False, f"unparseable chain: {e}")
        else:
            if not self._chain and self.verify_mode is VerifyMode.FAIL_IF_NO_PEER_CERT:
                raise SSLError("The peer did not present a certificate")
            # Mistrust is recorded, never fatal; callers check peer_verified()
            self._verification = self.verifier.verify(self._chain, self.peer_host)

        self._version = TlsVersion.from_protocol_name(self.sslobj.version())
        self._cipher = self.sslobj.cipher()
        self.established = True

        log.debug(
            "TLS session with %s:%s established: %s, %s, peer verified: %s",
            self.peer_host,
            self.peer_port,
            self.sslobj.version(),
            self._cipher[0] if self._cipher else None,
            self._verification.valid,
        )

    # Peer trust accessors

    def peer_cert(self) -> Optional[x509.Certificate]:
        if not self.established or not self._chain:
            return None
        return self._chain[0]

    def peer_cert_chain(self) -> Optional[List[x509.Certificate]]:
        if not self.established:
            return None
        return list(self._chain)

    def cipher(self) -> Optional[Tuple[str, str, int]]:
        return self._cipher if self.established else None

    def client_cert(self) -> Optional[x509.Certificate]:
        return self._client_cert if self.established else None

    def client_key(self) -> Optional["PrivateKeyTypes"]:
        return self._client_key if self.established else None

    def negotiated_version(self) -> Optional[TlsVersion]:
        return self._version if self.established else None

    def verification(self) -> Optional[VerificationOutcome]:
        return self._verification if self.established else None

    def peer_verified(self) -> Optional[bool]:
        if not self.established or self._verification is None:
            return None
        return self._verification.valid

    # Teardown

    def close(self) -> None:
        """Send close_notify if possible. Never raises for TLS or IO errors."""
        if not self.established:
            return
        self.established = False
        try:
            self.sslobj.unwrap()
        except (ssl.SSLWantReadError, ssl.SSLWantWriteError):
            # close_notify is queued; the peer's reply is not awaited
            pass
        except (ssl.SSLError, OSError, ValueError) as e:
            log.debug("Error during TLS shutdown: %s", e)
        self._flush()


def _peer_address(
    transport: socket.socket, params: TlsParameters
) -> Tuple[Optional[str], Optional[int]]:
    host, port = params.peer_host, params.peer_port
    if host is None or port is None:
        try:
            address = transport.getpeername()
        except OSError:
            address = None
        if isinstance(address, tuple) and len(address) >= 2:
            host = host if host is not None else address[0]
            port = port if port is not None else address[1]
    return host, port


def negotiate(
    transport: socket.socket,
    params: TlsParameters,
    engine: NonblockingRetry,
    nonblocking: bool = False,
    verifier: Optional[PeerVerifier] = None,
) -> TlsSession:
    """
    Build a session from ``params`` and run its handshake over ``transport``.

    Every configuration problem is raised before the transport is touched.

    :raises ConfigurationError: unsupported version, half of a client
        certificate/key pair, or an invalid cipher spec
    :raises ConnectionTimeout: the handshake missed its deadline
    """
    version = resolve_tls_version(params.version)

    client_cert = client_key = None
    if params.mutual_tls:
        client_cert = load_certificate(params.client_cert)
        client_key = load_private_key(params.client_key, params.key_password)

    context = create_tls_context(
        version,
        ciphers=params.cipher_spec,
        client_cert=client_cert,
        client_key=client_key,
    )

    peer_host, peer_port = _peer_address(transport, params)
    if verifier is None:
        verifier = PeerVerifier(ca_certs=params.ca_certs, ca_cert_data=params.ca_cert_data)

    session = TlsSession(
        transport,
        context,
        server_hostname=sni_hostname(peer_host),
        peer_host=peer_host,
        peer_port=peer_port,
        verify_mode=typing.cast(VerifyMode, params.verify_mode),
        verifier=verifier,
        client_cert=client_cert,
        client_key=client_key,
        nonblocking=nonblocking,
    )
    session.handshake(engine, Deadline.from_float(params.timeout))
    return session
