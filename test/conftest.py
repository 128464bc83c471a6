from __future__ import annotations

import datetime
import socket
import ssl
import threading
import typing
from dataclasses import dataclass
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from tlsocket.util.retry import NonblockingRetry


@dataclass
class CertBundle:
    cert: x509.Certificate
    key: ec.EllipticCurvePrivateKey
    certfile: str
    keyfile: str

    @property
    def cert_pem(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.PEM)

    @property
    def cert_der(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.DER)

    @property
    def key_pem(self) -> bytes:
        return self.key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _key_usage(**enabled: bool) -> x509.KeyUsage:
    flags = dict(
        digital_signature=False,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=False,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    )
    flags.update(enabled)
    return x509.KeyUsage(**flags)


def _builder(subject: x509.Name, issuer: x509.Name, public_key) -> x509.CertificateBuilder:
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
    )


def _save(directory: Path, name: str, cert: x509.Certificate, key) -> CertBundle:
    bundle = CertBundle(cert, key, str(directory / f"{name}.crt"), str(directory / f"{name}.key"))
    Path(bundle.certfile).write_bytes(bundle.cert_pem)
    Path(bundle.keyfile).write_bytes(bundle.key_pem)
    return bundle


def make_self_signed(directory: Path, hostname: str = "localhost") -> CertBundle:
    key = ec.generate_private_key(ec.SECP256R1())
    cert = (
        _builder(_name(hostname), _name(hostname), key.public_key())
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(hostname)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    return _save(directory, f"self-signed-{hostname}", cert, key)


def make_ca(directory: Path) -> CertBundle:
    key = ec.generate_private_key(ec.SECP256R1())
    cert = (
        _builder(_name("tlsocket test CA"), _name("tlsocket test CA"), key.public_key())
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(_key_usage(key_cert_sign=True, crl_sign=True), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(key, hashes.SHA256())
    )
    return _save(directory, "ca", cert, key)


def issue(directory: Path, ca: CertBundle, hostname: str, client: bool = False) -> CertBundle:
    key = ec.generate_private_key(ec.SECP256R1())
    ca_ski = ca.cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value
    usage = ExtendedKeyUsageOID.CLIENT_AUTH if client else ExtendedKeyUsageOID.SERVER_AUTH
    cert = (
        _builder(_name(hostname), ca.cert.subject, key.public_key())
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(hostname)]), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(_key_usage(digital_signature=True), critical=True)
        .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ca_ski),
            critical=False,
        )
        .sign(ca.key, hashes.SHA256())
    )
    return _save(directory, f"{'client' if client else 'server'}-{hostname}", cert, key)


@pytest.fixture
def self_signed(tmp_path: Path) -> CertBundle:
    return make_self_signed(tmp_path)


@pytest.fixture
def ca(tmp_path: Path) -> CertBundle:
    return make_ca(tmp_path)


@pytest.fixture
def server_cert(tmp_path: Path, ca: CertBundle) -> CertBundle:
    return issue(tmp_path, ca, "localhost")


@pytest.fixture
def client_cert(tmp_path: Path, ca: CertBundle) -> CertBundle:
    return issue(tmp_path, ca, "client.example", client=True)


def server_context(
    bundle: CertBundle, client_ca: typing.Optional[CertBundle] = None
) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(bundle.certfile, bundle.keyfile)
    if client_ca is not None:
        context.verify_mode = ssl.CERT_REQUIRED
        context.load_verify_locations(cafile=client_ca.certfile)
    return context


class MemoryTransport:
    """
    A connected, nonblocking socket stand-in whose peer is an in-memory TLS
    server. The server answers synchronously whenever data is sent to it.

    :param send_limit: Most bytes accepted by one ``send`` call.
    :param block_every: Every n-th ``send`` call raises BlockingIOError.
    """

    def __init__(
        self,
        context: ssl.SSLContext,
        send_limit: typing.Optional[int] = None,
        block_every: typing.Optional[int] = None,
    ) -> None:
        self.server_in = ssl.MemoryBIO()
        self.server_out = ssl.MemoryBIO()
        self.server = context.wrap_bio(self.server_in, self.server_out, server_side=True)
        self.server_established = False
        self.received = bytearray()
        self.raw_sent = bytearray()
        self.send_limit = send_limit
        self.block_every = block_every
        self.send_calls = 0
        self.blocked_sends = 0
        self.recv_error: typing.Optional[OSError] = None
        self.send_error: typing.Optional[OSError] = None
        self.closed = False
        self.blocking = True
        self.timeout: typing.Optional[float] = None

    def _advance(self) -> None:
        if not self.server_established:
            try:
                self.server.do_handshake()
            except ssl.SSLWantReadError:
                return
            self.server_established = True
        while True:
            try:
                data = self.server.read(65536)
            except (ssl.SSLWantReadError, ssl.SSLZeroReturnError):
                return
            if not data:
                return
            self.received += data

    def send(self, data) -> int:
        if self.send_error is not None:
            raise self.send_error
        self.send_calls += 1
        if self.block_every and self.send_calls % self.block_every == 0:
            self.blocked_sends += 1
            raise BlockingIOError("send queue full")
        data = bytes(data)
        if self.send_limit is not None:
            data = data[: self.send_limit]
        self.raw_sent += data
        self.server_in.write(data)
        self._advance()
        return len(data)

    def recv(self, bufsize: int) -> bytes:
        if self.recv_error is not None:
            raise self.recv_error
        self._advance()
        data = self.server_out.read(bufsize)
        if not data:
            raise BlockingIOError("nothing to read")
        return data

    def server_send(self, data: bytes) -> None:
        self.server.write(data)

    def server_close_notify(self) -> None:
        try:
            self.server.unwrap()
        except ssl.SSLWantReadError:
            pass

    def setblocking(self, flag: bool) -> None:
        self.blocking = flag

    def settimeout(self, timeout: typing.Optional[float]) -> None:
        self.timeout = timeout

    def gettimeout(self) -> typing.Optional[float]:
        return self.timeout

    def getpeername(self):
        return ("127.0.0.1", 8443)

    def fileno(self) -> int:
        return -1

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def memory_transport(self_signed: CertBundle):
    def factory(**kwargs) -> MemoryTransport:
        return MemoryTransport(server_context(self_signed), **kwargs)

    return factory


@pytest.fixture
def noop_engine() -> NonblockingRetry:
    return NonblockingRetry(lambda timeout: None, lambda timeout: None)


class TLSServer:
    """
    A loopback TLS server handling a single connection in a thread.

    ``handler`` receives the server-side SSLSocket.
    """

    def __init__(self, context: ssl.SSLContext, handler: typing.Callable) -> None:
        self.context = context
        self.handler = handler
        self.errors: typing.List[BaseException] = []
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.bind(("127.0.0.1", 0))
        self.listener.listen(1)
        self.host, self.port = self.listener.getsockname()[:2]
        self.thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        try:
            conn, _ = self.listener.accept()
        except OSError as e:
            self.errors.append(e)
            return
        conn.settimeout(5)
        try:
            with self.context.wrap_socket(conn, server_side=True) as tls:
                self.handler(tls)
        except Exception as e:
            self.errors.append(e)

    def connect(self) -> socket.socket:
        return socket.create_connection((self.host, self.port), timeout=5)

    def __enter__(self) -> "TLSServer":
        self.thread.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.thread.join(5)
        self.listener.close()


def echo_handler(tls: ssl.SSLSocket) -> None:
    while True:
        data = tls.recv(65536)
        if not data:
            return
        tls.sendall(data)
