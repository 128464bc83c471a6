"""
TLS parameters for tlsocket.

This module provides the immutable configuration a :class:`~tlsocket.TLSSocket`
is created from.
"""

from __future__ import annotations

import os
import typing
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Mapping, Optional, Union

from .exceptions import ConfigurationError
from .util.ssl_ import TlsVersion

# Seconds allowed for the TLS handshake
DEFAULT_HANDSHAKE_TIMEOUT = 5.0

_TYPE_MATERIAL = Union[bytes, str, "os.PathLike[str]"]


class VerifyMode(Enum):
    """How the peer certificate is treated during the handshake."""

    # Don't ask for verification
    NONE = "none"

    # Verify the peer and record the outcome
    PEER = "peer"

    # Verify the peer on the first handshake only
    PEER_ONCE = "peer-once"

    # Like PEER, and refuse peers that present no certificate at all
    FAIL_IF_NO_PEER_CERT = "fail-if-no-peer-cert"

    @classmethod
    def parse(cls, candidate: Union[None, str, "VerifyMode"]) -> "VerifyMode":
        """
        Resolves a verify mode, accepting OpenSSL-style names such as
        ``"VERIFY_PEER"`` or ``"CLIENT_ONCE"``. Defaults to :attr:`PEER`.
        """
        if candidate is None:
            return cls.PEER
        if isinstance(candidate, VerifyMode):
            return candidate
        if isinstance(candidate, str):
            token = candidate.strip().lower().replace("_", "-")
            if token.startswith("verify-"):
                token = token[len("verify-") :]
            if token == "client-once":
                token = "peer-once"
            for mode in cls:
                if mode.value == token:
                    return mode
        raise ConfigurationError(f"Invalid verify mode {candidate!r}")


@dataclass(frozen=True)
class TlsParameters:
    """
    Parameters for a client TLS session.

    :param version:
        Protocol version token or :class:`~tlsocket.util.ssl_.TlsVersion`.
        ``None`` negotiates automatically.

    :param client_cert:
        Client certificate for mutual TLS, as PEM or DER bytes or a path.
        Must be given together with ``client_key``.

    :param client_key:
        Private key matching ``client_cert``.

    :param key_password:
        Password for an encrypted ``client_key``.

    :param verify_mode:
        See :class:`VerifyMode`. Defaults to :attr:`VerifyMode.PEER`.

    :param cipher_spec:
        OpenSSL cipher list restricting the negotiable ciphers.

    :param timeout:
        Handshake deadline in seconds. ``None`` waits forever.

    :param peer_host:
        Name of the peer, used for SNI when it is not a literal IP address
        and for certificate verification. Defaults to the transport's peer
        address.

    :param peer_port:
        Port of the peer, for error reporting.

    :param ca_certs:
        Path to a PEM bundle of CA certificates to verify the peer against.

    :param ca_cert_data:
        PEM data of CA certificates to verify the peer against.
    """

    version: Union[None, str, TlsVersion] = None
    client_cert: Optional[_TYPE_MATERIAL] = None
    client_key: Optional[_TYPE_MATERIAL] = None
    key_password: Union[None, str, bytes] = None
    verify_mode: Union[None, str, VerifyMode] = VerifyMode.PEER
    cipher_spec: Optional[str] = None
    timeout: Optional[float] = DEFAULT_HANDSHAKE_TIMEOUT
    peer_host: Optional[str] = None
    peer_port: Optional[int] = None
    ca_certs: Optional[str] = None
    ca_cert_data: Union[None, str, bytes] = None

    def __post_init__(self) -> None:
        if (self.client_cert is None) != (self.client_key is None):
            raise ConfigurationError(
                "A client certificate and a client key must be supplied together"
            )

        object.__setattr__(self, "verify_mode", VerifyMode.parse(self.verify_mode))

        if self.timeout is not None:
            try:
                timeout = float(self.timeout)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid timeout {self.timeout!r}") from e
            if timeout < 0:
                raise ConfigurationError(f"Invalid timeout {self.timeout!r}")
            object.__setattr__(self, "timeout", timeout)

    @property
    def mutual_tls(self) -> bool:
        return self.client_cert is not None

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "TlsParameters":
        """
        Create parameters from a loose option mapping.

        Keys are matched case-insensitively and ``-`` and ``_`` are
        interchangeable, so ``{"Verify-Mode": "none"}`` works.

        :param options: Option names and values
        :return: A TlsParameters instance
        """
        return cls(**_normalize_options(options))

    def replace(self, **changes: Any) -> "TlsParameters":
        """Return a copy with ``changes`` applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(_normalize_options(changes))
        return type(self)(**values)

    def __repr__(self) -> str:
        # Never print key material
        return (
            f"{type(self).__name__}(version={self.version!r}, "
            f"verify_mode={self.verify_mode!r}, cipher_spec={self.cipher_spec!r}, "
            f"timeout={self.timeout!r}, peer_host={self.peer_host!r}, "
            f"peer_port={self.peer_port!r}, mutual_tls={self.mutual_tls})"
        )


def _normalize_options(options: Mapping[str, Any]) -> typing.Dict[str, Any]:
    known = {f.name for f in fields(TlsParameters)}
    normalized = {}
    for key, value in options.items():
        name = key.strip().lower().replace("-", "_")
        if name not in known:
            raise ConfigurationError(f"Unknown TLS option {key!r}")
        normalized[name] = value
    return normalized


_TYPE_PARAMETERS = Union[None, TlsParameters, Mapping[str, Any]]


def to_parameters(params: _TYPE_PARAMETERS = None, **options: Any) -> TlsParameters:
    """
    Normalize ``params`` (None, a mapping or TlsParameters) plus keyword
    overrides into a :class:`TlsParameters`.
    """
    if params is None:
        base = TlsParameters()
    elif isinstance(params, TlsParameters):
        base = params
    elif isinstance(params, typing.Mapping):
        base = TlsParameters.from_dict(params)
    else:
        raise ConfigurationError(f"Invalid TLS parameters {params!r}")

    if options:
        base = base.replace(**options)
    return base
