"""
Tests for TLS parameters.
"""

from __future__ import annotations

import pytest

from tlsocket.exceptions import ConfigurationError
from tlsocket.parameters import (
    DEFAULT_HANDSHAKE_TIMEOUT,
    TlsParameters,
    VerifyMode,
    to_parameters,
)
from tlsocket.util.ssl_ import TlsVersion


class TestVerifyMode:
    """Tests for the VerifyMode enum."""

    @pytest.mark.parametrize(
        "candidate, expected",
        [
            (None, VerifyMode.PEER),
            ("none", VerifyMode.NONE),
            ("VERIFY_NONE", VerifyMode.NONE),
            ("VERIFY_PEER", VerifyMode.PEER),
            ("peer-once", VerifyMode.PEER_ONCE),
            ("CLIENT_ONCE", VerifyMode.PEER_ONCE),
            ("VERIFY_FAIL_IF_NO_PEER_CERT", VerifyMode.FAIL_IF_NO_PEER_CERT),
            (VerifyMode.NONE, VerifyMode.NONE),
        ],
    )
    def test_parse(self, candidate, expected):
        assert VerifyMode.parse(candidate) is expected

    @pytest.mark.parametrize("candidate", ["strict", 1, ""])
    def test_parse_invalid(self, candidate):
        with pytest.raises(ConfigurationError):
            VerifyMode.parse(candidate)


class TestTlsParameters:
    """Tests for the TlsParameters dataclass."""

    def test_defaults(self):
        params = TlsParameters()
        assert params.version is None
        assert params.verify_mode is VerifyMode.PEER
        assert params.timeout == DEFAULT_HANDSHAKE_TIMEOUT == 5.0
        assert params.peer_host is None
        assert not params.mutual_tls

    def test_verify_mode_parsed(self):
        assert TlsParameters(verify_mode="VERIFY_NONE").verify_mode is VerifyMode.NONE

    def test_version_kept_as_given(self):
        """Test that versions are resolved at negotiation time, not here."""
        assert TlsParameters(version="TLSv1_2").version == "TLSv1_2"
        assert TlsParameters(version=TlsVersion.TLS1_3).version is TlsVersion.TLS1_3

    def test_client_cert_without_key(self):
        """Test that half a client identity is refused."""
        with pytest.raises(ConfigurationError, match="together"):
            TlsParameters(client_cert=b"cert")

    def test_client_key_without_cert(self):
        with pytest.raises(ConfigurationError):
            TlsParameters(client_key=b"key")

    def test_mutual_tls(self):
        assert TlsParameters(client_cert=b"cert", client_key=b"key").mutual_tls

    @pytest.mark.parametrize("timeout", [-1, "soon", object()])
    def test_invalid_timeout(self, timeout):
        with pytest.raises(ConfigurationError):
            TlsParameters(timeout=timeout)

    def test_timeout_coerced(self):
        assert TlsParameters(timeout=2).timeout == 2.0
        assert TlsParameters(timeout=None).timeout is None

    def test_frozen(self):
        params = TlsParameters()
        with pytest.raises(AttributeError):
            params.timeout = 1  # type: ignore[misc]

    def test_repr_hides_key_material(self):
        """Test that key material never appears in the repr."""
        params = TlsParameters(
            client_cert=b"CERTDATA", client_key=b"KEYDATA", key_password="hunter2"
        )
        text = repr(params)
        assert "KEYDATA" not in text
        assert "hunter2" not in text
        assert "mutual_tls=True" in text

    def test_from_dict(self):
        """Test loose option names."""
        params = TlsParameters.from_dict(
            {"Verify-Mode": "none", "VERSION": "TLS1.2", "peer_host": "example.com"}
        )
        assert params.verify_mode is VerifyMode.NONE
        assert params.version == "TLS1.2"
        assert params.peer_host == "example.com"

    def test_from_dict_unknown_option(self):
        with pytest.raises(ConfigurationError, match="Unknown TLS option"):
            TlsParameters.from_dict({"ssl_compression": True})

    def test_replace(self):
        params = TlsParameters(peer_host="example.com")
        changed = params.replace(peer_port=443, verify_mode="none")
        assert changed.peer_host == "example.com"
        assert changed.peer_port == 443
        assert changed.verify_mode is VerifyMode.NONE
        assert params.peer_port is None


class TestToParameters:
    """Tests for to_parameters."""

    def test_none(self):
        assert to_parameters() == TlsParameters()

    def test_instance_passthrough(self):
        params = TlsParameters(peer_host="example.com")
        assert to_parameters(params) is params

    def test_mapping(self):
        assert to_parameters({"timeout": 1}).timeout == 1.0

    def test_overrides(self):
        """Test that keyword options override the base parameters."""
        params = to_parameters({"timeout": 1}, timeout=3, peer_port=8443)
        assert params.timeout == 3.0
        assert params.peer_port == 8443

    def test_invalid(self):
        with pytest.raises(ConfigurationError):
            to_parameters(["timeout"])  # type: ignore[arg-type]
