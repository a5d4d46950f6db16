"""
Classification of subject alternative names.

An alternate name is either a literal IP address or a DNS name. Classification
is a pure function: strict IP parsing is attempted first, then the text is
validated as a DNS name. Anything else is a configuration error.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from typing import Iterable, Literal

from cryptography import x509

from .errors import ConfigurationError

_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_MAX_DNS_LENGTH = 253


@dataclass(frozen=True, order=True)
class AltName:
    """
    A classified alternate name.

    Attributes:
        kind (str): "dns" or "ip".
        value (str): Canonical text form (lowercase DNS name, compressed IP).
    """
    kind: Literal["dns", "ip"]
    value: str

    def to_general_name(self) -> x509.GeneralName:
        """Convert to the cryptography GeneralName used in the SAN extension."""
        if self.kind == "ip":
            return x509.IPAddress(ipaddress.ip_address(self.value))
        return x509.DNSName(self.value)


def is_valid_dns_name(name: str) -> bool:
    """
    Check a DNS name against hostname syntax rules.

    Labels are 1-63 characters of letters, digits and hyphens, neither starting
    nor ending with a hyphen. The whole name is at most 253 characters and its
    last label is not purely numeric (so "256.0.0.1" is not taken as a host
    name). A single leading "*" label is accepted for wildcard names.

    Args:
        name (str): Candidate name, already stripped.

    Returns:
        bool: True if the name is a syntactically valid DNS name.
    """
    name = name.lower().rstrip(".")
    if not name or len(name) > _MAX_DNS_LENGTH:
        return False
    labels = name.split(".")
    if labels[0] == "*":
        labels = labels[1:]
        if len(labels) < 2:  # bare "*" or "*.com"
            return False
    if not all(_LABEL_RE.match(label) for label in labels):
        return False
    return not labels[-1].isdigit()


def classify(name: str) -> AltName:
    """
    Classify one alternate name.

    Args:
        name (str): Raw alternate name from configuration.

    Returns:
        AltName: The classified, canonicalized name.

    Raises:
        ConfigurationError: If the name is neither an IP literal nor a DNS name.
    """
    if not isinstance(name, str):
        raise ConfigurationError(f"Alternate name must be a string, got {name!r}")
    text = name.strip()
    try:
        return AltName("ip", str(ipaddress.ip_address(text)))
    except ValueError:
        pass
    if is_valid_dns_name(text):
        return AltName("dns", text.lower().rstrip("."))
    raise ConfigurationError(f"Alternate name is neither a DNS name nor an IP address: {name!r}")


def classify_all(names: Iterable[str]) -> tuple[AltName, ...]:
    """
    Classify a sequence of names, dropping duplicates but keeping first-seen order.

    Args:
        names (Iterable[str]): Raw alternate names.

    Returns:
        tuple[AltName, ...]: Unique classified names in configuration order.

    Raises:
        ConfigurationError: On the first name that cannot be classified.
    """
    seen: dict[AltName, None] = {}
    for n in names:
        seen.setdefault(classify(n), None)
    return tuple(seen)
