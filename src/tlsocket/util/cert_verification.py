"""
Certificate verification utilities for tlsocket.

The TLS context never rejects a peer by itself. Instead the chain the peer
presented is checked here once the handshake is done, and the result is
recorded as a :class:`VerificationOutcome` that callers inspect afterwards.
"""

from __future__ import annotations

import functools
import ipaddress
import logging
import typing
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import certifi
from cryptography import x509
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError

from ..exceptions import SSLError
from .ssl_ import is_ipaddress, sni_hostname

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationOutcome:
    """
    Whether the peer's certificate chain was trusted.

    Produced once per handshake. ``reason`` explains a negative outcome.
    """

    valid: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


def _load_pem_bundle(pem: bytes) -> List[x509.Certificate]:
    try:
        return x509.load_pem_x509_certificates(pem)
    except ValueError as e:
        raise SSLError(f"Unable to parse CA certificates: {e}") from e


@functools.lru_cache(maxsize=1)
def default_trust_store() -> List[x509.Certificate]:
    """The CA certificates bundled with :mod:`certifi`."""
    with open(certifi.where(), "rb") as fp:
        return _load_pem_bundle(fp.read())


def load_trust_store(
    ca_certs: Optional[str] = None,
    ca_cert_data: Union[None, str, bytes] = None,
) -> List[x509.Certificate]:
    """
    Loads the CA certificates peers are verified against.

    :param ca_certs: Path to a PEM bundle
    :param ca_cert_data: PEM data
    :return: The certificates; the :mod:`certifi` bundle if neither is given
    """
    if ca_certs is None and ca_cert_data is None:
        return default_trust_store()

    pem = b""
    if ca_certs is not None:
        try:
            with open(ca_certs, "rb") as fp:
                pem += fp.read()
        except OSError as e:
            raise SSLError(e) from e
    if ca_cert_data is not None:
        if isinstance(ca_cert_data, str):
            ca_cert_data = ca_cert_data.encode("ascii")
        pem += b"\n" + ca_cert_data

    return _load_pem_bundle(pem)


class PeerVerifier:
    """
    Verifies a server certificate chain against a trust store.

    :param trust_store: CA certificates to trust. Loaded lazily from
        ``ca_certs``/``ca_cert_data`` (or :mod:`certifi`) when omitted.
    """

    def __init__(
        self,
        trust_store: Optional[Sequence[x509.Certificate]] = None,
        ca_certs: Optional[str] = None,
        ca_cert_data: Union[None, str, bytes] = None,
    ) -> None:
        self._trust_store = list(trust_store) if trust_store is not None else None
        self.ca_certs = ca_certs
        self.ca_cert_data = ca_cert_data

    @property
    def trust_store(self) -> List[x509.Certificate]:
        if self._trust_store is None:
            self._trust_store = load_trust_store(self.ca_certs, self.ca_cert_data)
        return self._trust_store

    @staticmethod
    def _subject(peer: str) -> x509.GeneralName:
        if is_ipaddress(peer):
            return x509.IPAddress(ipaddress.ip_address(peer.split("%")[0]))
        return x509.DNSName(typing.cast(str, sni_hostname(peer)))

    def verify(
        self, chain: Sequence[x509.Certificate], peer: Optional[str]
    ) -> VerificationOutcome:
        """
        Verify ``chain`` (leaf first) for the peer name or address ``peer``.

        Never raises for an untrusted chain; the outcome says why.
        """
        if not chain:
            return VerificationOutcome(False, "peer presented no certificate")
        if not peer:
            return VerificationOutcome(False, "no peer name to verify against")

        try:
            verifier = (
                PolicyBuilder()
                .store(Store(self.trust_store))
                .build_server_verifier(self._subject(peer))
            )
            verifier.verify(chain[0], list(chain[1:]))
        except (VerificationError, ValueError) as e:
            log.debug("Certificate chain for %s not trusted: %s", peer, e)
            return VerificationOutcome(False, str(e))

        log.debug("Certificate chain for %s verified", peer)
        return VerificationOutcome(True)
