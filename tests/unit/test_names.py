"""Tests for alternate-name classification (IP literal first, DNS fallback)."""

import pytest
from cryptography import x509

from certgen.errors import ConfigurationError
from certgen.names import AltName, classify, classify_all, is_valid_dns_name


class TestClassify:
    """Classification of single names."""

    @pytest.mark.parametrize("text,expected", [
        ("192.168.0.2", AltName("ip", "192.168.0.2")),
        ("10.0.0.1", AltName("ip", "10.0.0.1")),
        ("::1", AltName("ip", "::1")),
        ("2001:DB8:0:0::1", AltName("ip", "2001:db8::1")),
        ("backup.example.net", AltName("dns", "backup.example.net")),
        ("srv", AltName("dns", "srv")),
        ("  Backup.Example.NET  ", AltName("dns", "backup.example.net")),
        ("*.example.net", AltName("dns", "*.example.net")),
        ("xn--bcher-kva.example", AltName("dns", "xn--bcher-kva.example")),
    ])
    def test_valid_names(self, text, expected):
        """Valid names are classified and canonicalized."""
        assert classify(text) == expected

    @pytest.mark.parametrize("text", [
        "256.0.0.1",            # not an IP, and a numeric TLD is not a host name
        "a..b",                 # empty label
        "not a valid name!!",
        "-leading.example.net",
        "trailing-.example.net",
        "",
        "   ",
        "*",
        "*.com",
        "under_score.example",
        "a" * 64 + ".example",  # label longer than 63
    ])
    def test_rejected_names(self, text):
        """Names that are neither IP literals nor DNS names raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            classify(text)

    def test_non_string_rejected(self):
        with pytest.raises(ConfigurationError):
            classify(1234)

    def test_general_name_types(self):
        """AltName maps onto the matching cryptography GeneralName."""
        assert isinstance(classify("192.168.0.2").to_general_name(), x509.IPAddress)
        assert isinstance(classify("srv.example.net").to_general_name(), x509.DNSName)


class TestClassifyAll:
    """Classification of whole alt_names lists."""

    def test_duplicates_removed_in_order(self):
        names = classify_all(["srv", "192.168.0.2", "SRV", "192.168.0.2", "dns"])
        assert names == (
            AltName("dns", "srv"),
            AltName("ip", "192.168.0.2"),
            AltName("dns", "dns"),
        )

    def test_first_bad_name_raises(self):
        with pytest.raises(ConfigurationError, match="not a valid name"):
            classify_all(["srv", "not a valid name!!"])


def test_dns_length_limit():
    """A name longer than 253 characters is not a DNS name."""
    long_name = ".".join(["a" * 63] * 4)
    assert len(long_name) > 253
    assert not is_valid_dns_name(long_name)
    assert is_valid_dns_name(".".join(["a" * 63] * 3))
