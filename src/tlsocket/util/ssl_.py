"""
SSL utilities for tlsocket.

Version resolution against the capabilities of the linked ssl module,
client context construction and SNI hostname handling.
"""

from __future__ import annotations

import logging
import os
import socket
import ssl
import tempfile
import typing
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

import idna
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from ..exceptions import ConfigurationError

if typing.TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

log = logging.getLogger(__name__)

_TYPE_MATERIAL = Union[bytes, bytearray, str, "os.PathLike[str]"]

# For mocking in tests
SSLContext = ssl.SSLContext


class TlsVersion(Enum):
    """Canonical SSL/TLS protocol versions."""

    # Let the library negotiate the highest version both sides support
    AUTO = "Auto"

    SSL2 = "SSL2"
    SSL3 = "SSL3"
    TLS1 = "TLS1"
    TLS1_1 = "TLS1.1"
    TLS1_2 = "TLS1.2"
    TLS1_3 = "TLS1.3"

    @property
    def tls_version(self) -> Optional[ssl.TLSVersion]:
        """The :class:`ssl.TLSVersion` to pin, or ``None`` to negotiate."""
        return _TLS_VERSIONS.get(self)

    @classmethod
    def from_protocol_name(cls, name: Optional[str]) -> Optional["TlsVersion"]:
        """
        Map a protocol name as reported by the ssl module (``"TLSv1.2"``)
        back to the canonical version.
        """
        if name is None:
            return None
        return _PROTOCOL_NAMES.get(name)


_TLS_VERSIONS: Dict[TlsVersion, ssl.TLSVersion] = {
    TlsVersion.SSL3: ssl.TLSVersion.SSLv3,
    TlsVersion.TLS1: ssl.TLSVersion.TLSv1,
    TlsVersion.TLS1_1: ssl.TLSVersion.TLSv1_1,
    TlsVersion.TLS1_2: ssl.TLSVersion.TLSv1_2,
    TlsVersion.TLS1_3: ssl.TLSVersion.TLSv1_3,
}

_PROTOCOL_NAMES: Dict[str, TlsVersion] = {
    "SSLv2": TlsVersion.SSL2,
    "SSLv3": TlsVersion.SSL3,
    "TLSv1": TlsVersion.TLS1,
    "TLSv1.1": TlsVersion.TLS1_1,
    "TLSv1.2": TlsVersion.TLS1_2,
    "TLSv1.3": TlsVersion.TLS1_3,
}

_HAS_FLAGS: Dict[TlsVersion, str] = {
    TlsVersion.SSL2: "HAS_SSLv2",
    TlsVersion.SSL3: "HAS_SSLv3",
    TlsVersion.TLS1: "HAS_TLSv1",
    TlsVersion.TLS1_1: "HAS_TLSv1_1",
    TlsVersion.TLS1_2: "HAS_TLSv1_2",
    TlsVersion.TLS1_3: "HAS_TLSv1_3",
}

# Lower-cased tokens. 'TLS' is the newer name for auto-negotiation.
_ALIASES: Dict[str, TlsVersion] = {
    "auto": TlsVersion.AUTO,
    "tls": TlsVersion.AUTO,
    "ssl23": TlsVersion.AUTO,
    "sslv23": TlsVersion.AUTO,
    "ssl2": TlsVersion.SSL2,
    "sslv2": TlsVersion.SSL2,
    "ssl3": TlsVersion.SSL3,
    "sslv3": TlsVersion.SSL3,
    "tls1": TlsVersion.TLS1,
    "tls1.0": TlsVersion.TLS1,
    "tlsv1": TlsVersion.TLS1,
    "tls1.1": TlsVersion.TLS1_1,
    "tlsv1_1": TlsVersion.TLS1_1,
    "tlsv1.1": TlsVersion.TLS1_1,
    "tls1.2": TlsVersion.TLS1_2,
    "tlsv1_2": TlsVersion.TLS1_2,
    "tlsv1.2": TlsVersion.TLS1_2,
    "tls1.3": TlsVersion.TLS1_3,
    "tlsv1_3": TlsVersion.TLS1_3,
    "tlsv1.3": TlsVersion.TLS1_3,
}


def _probe_supported_versions() -> FrozenSet[TlsVersion]:
    supported = {TlsVersion.AUTO}
    for version, flag in _HAS_FLAGS.items():
        if getattr(ssl, flag, False) and version.tls_version is not None:
            supported.add(version)
    return frozenset(supported)


_SUPPORTED_VERSIONS = _probe_supported_versions()


def supported_tls_versions() -> FrozenSet[TlsVersion]:
    """
    Returns the versions the linked ssl module can negotiate on this host.

    The set is computed once, when this module is imported.
    """
    return _SUPPORTED_VERSIONS


def resolve_tls_version(
    candidate: Union[None, str, TlsVersion],
    supported: Optional[FrozenSet[TlsVersion]] = None,
) -> TlsVersion:
    """
    Resolves a requested version token to a canonical :class:`TlsVersion`.

    Defaults to :attr:`TlsVersion.AUTO`.

    Args:
        candidate: A :class:`TlsVersion` or a version token such as
            ``"TLS1.2"``, ``"TLSv1_2"`` or ``"SSL23"``.
        supported: The capability set to check against. Defaults to
            :func:`supported_tls_versions`.

    Returns:
        The resolved version.

    Raises:
        ConfigurationError: If the token is unknown or the version is not
            supported by the linked ssl module.
    """
    if candidate is None:
        version = TlsVersion.AUTO
    elif isinstance(candidate, TlsVersion):
        version = candidate
    elif isinstance(candidate, str):
        res = _ALIASES.get(candidate.strip().lower())
        if res is None:
            raise ConfigurationError(f"Unknown SSL/TLS version {candidate!r}")
        version = res
    else:
        raise ConfigurationError(f"Invalid SSL/TLS version {candidate!r}")

    if supported is None:
        supported = _SUPPORTED_VERSIONS

    if version not in supported:
        raise ConfigurationError(
            "This build of the ssl module does not support the requested "
            f"SSL/TLS version {version.value}"
        )

    return version


def is_ipaddress(hostname: Union[str, bytes]) -> bool:
    """
    Detects whether the hostname given is an IP address.

    Args:
        hostname: The hostname to check.

    Returns:
        True if the hostname is an IP address, False otherwise.
    """
    if isinstance(hostname, bytes):
        # IDN A-label bytes are ASCII compatible.
        hostname = hostname.decode("ascii")

    # IPv6 addresses with zone IDs contain '%'
    if "%" in hostname:
        hostname = hostname.split("%")[0]

    for family in (socket.AF_INET, socket.AF_INET6):
        try:
            socket.inet_pton(family, hostname)
            return True
        except (OSError, ValueError):
            continue
    return False


def sni_hostname(hostname: Optional[str]) -> Optional[str]:
    """
    Returns the name to send in the Server Name Indication extension.

    If we detect the hostname is an IP address then the SNI extension
    should not be used according to RFC3546 Section 3.1.
    """
    if not hostname or is_ipaddress(hostname):
        return None

    if hostname.isascii():
        return hostname.lower()

    try:
        return idna.encode(hostname, uts46=True).decode("ascii")
    except idna.IDNAError as e:
        raise ConfigurationError(f"Invalid peer hostname {hostname!r}") from e


def _read_material(value: _TYPE_MATERIAL) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str) and "-----BEGIN" in value:
        return value.encode("ascii")
    with open(value, "rb") as fp:
        return fp.read()


def load_certificate(value: _TYPE_MATERIAL) -> x509.Certificate:
    """
    Loads a certificate from PEM or DER bytes, PEM text, or a file path.
    """
    data = _read_material(value)
    if b"-----BEGIN" in data:
        return x509.load_pem_x509_certificate(data)
    return x509.load_der_x509_certificate(data)


def load_private_key(
    value: _TYPE_MATERIAL, password: Union[None, str, bytes] = None
) -> "PrivateKeyTypes":
    """
    Loads a private key from PEM or DER bytes, PEM text, or a file path.
    """
    data = _read_material(value)
    if isinstance(password, str):
        password = password.encode("utf-8")
    if b"-----BEGIN" in data:
        return serialization.load_pem_private_key(data, password=password)
    return serialization.load_der_private_key(data, password=password)


def _load_cert_chain(
    context: ssl.SSLContext, cert: x509.Certificate, key: "PrivateKeyTypes"
) -> None:
    # The ssl module only reads certificate chains from files.
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    with tempfile.TemporaryDirectory(prefix="tlsocket-") as tmp:
        certfile = os.path.join(tmp, "client.crt")
        keyfile = os.path.join(tmp, "client.key")
        for path, data in ((certfile, cert_pem), (keyfile, key_pem)):
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as fp:
                fp.write(data)
        context.load_cert_chain(certfile, keyfile)


def create_tls_context(
    version: TlsVersion = TlsVersion.AUTO,
    ciphers: Optional[str] = None,
    client_cert: Optional[x509.Certificate] = None,
    client_key: Optional["PrivateKeyTypes"] = None,
    options: Optional[int] = None,
) -> ssl.SSLContext:
    """
    Creates and configures a client :class:`ssl.SSLContext`.

    The context never rejects the peer on its own: hostname checking and
    certificate verification are left to the session's verification hook,
    which records the outcome without aborting the handshake.

    Args:
        version: The resolved protocol version. Anything but
            :attr:`TlsVersion.AUTO` pins both the minimum and maximum version.
        ciphers: An OpenSSL cipher list.
        client_cert: Client certificate for mutual TLS.
        client_key: Private key matching ``client_cert``.
        options: SSL options. Defaults to :data:`ssl.OP_ALL`.

    Returns:
        The configured SSL context.
    """
    if (client_cert is None) != (client_key is None):
        raise ConfigurationError(
            "A client certificate and a client key must be supplied together"
        )

    context = SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE

    tls_version = version.tls_version
    if tls_version is not None:
        context.minimum_version = tls_version
        context.maximum_version = tls_version

    # Enable the broad set of bug workarounds
    context.options |= ssl.OP_ALL if options is None else options

    if ciphers:
        try:
            context.set_ciphers(ciphers)
        except ssl.SSLError as e:
            raise ConfigurationError(f"Invalid cipher spec {ciphers!r}") from e

    if client_cert is not None and client_key is not None:
        _load_cert_chain(context, client_cert, client_key)

    return context
