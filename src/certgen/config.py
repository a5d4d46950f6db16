"""
Configuration model and loader.

The configuration describes the organization (network section), the
certificate authority, and one entry per site. It may be written as YAML or as
TOML:

    [network]
    name = "My Network"
    email = "admin@example.net"
    country = "US"
    province = "WA"
    root_ca_name = "personal_ca"
    root_ca_validity_days = 3650

    [sites."srv.example.net"]
    name = "Server"
    crt_validity_days = 365
    alt_names = ["backup.example.net", "srv", "192.168.0.2"]

Everything is validated here, so a bad value stops the run before any key or
certificate file is touched.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigurationError
from .names import AltName, classify_all, is_valid_dns_name

LOGGER = logging.getLogger(__name__)

DEFAULT_ROOT_CA_NAME = "root_ca"
DEFAULT_ROOT_CA_VALIDITY_DAYS = 3650
DEFAULT_CRT_VALIDITY_DAYS = 365
DEFAULT_RENEW_BEFORE_DAYS = 0
DEFAULT_KEY_SIZE = 2048
ALLOWED_KEY_SIZES = (2048, 3072, 4096)


# ---------- model ----------

@dataclass(frozen=True)
class NetworkIdentity:
    """
    Organization details embedded in every issued certificate's subject.

    Attributes:
        name (str): Organization (O).
        email (str): Contact email (emailAddress).
        country (str | None): Two-letter country code (C).
        province (str | None): State or province (ST).
    """
    name: str
    email: str
    country: Optional[str] = None
    province: Optional[str] = None


@dataclass(frozen=True)
class AuthoritySpec:
    """
    Desired state of the certificate authority.

    Attributes:
        name (str): File-name prefix and common name of the CA.
        identity (NetworkIdentity): Organization the CA belongs to.
        validity_days (int): Lifetime of a newly generated CA certificate.
    """
    name: str
    identity: NetworkIdentity
    validity_days: int = DEFAULT_ROOT_CA_VALIDITY_DAYS

    def __post_init__(self) -> None:
        _require_name(self.name, "network.root_ca_name")
        _require_positive(self.validity_days, "network.root_ca_validity_days")


@dataclass(frozen=True)
class LeafSpec:
    """
    Desired state of one server certificate.

    Attributes:
        primary_name (str): Site identifier; always the first SAN entry and the file-name prefix.
        identity (NetworkIdentity): Organization the certificate is issued for.
        display_name (str): Subject common name. Defaults to primary_name.
        validity_days (int): Requested lifetime in days.
        alt_names (tuple[AltName, ...]): Classified extra names, in configuration order.
    """
    primary_name: str
    identity: NetworkIdentity
    display_name: str = ""
    validity_days: int = DEFAULT_CRT_VALIDITY_DAYS
    alt_names: tuple[AltName, ...] = ()

    def __post_init__(self) -> None:
        _require_name(self.primary_name, "sites")
        _require_positive(self.validity_days, f"sites.{self.primary_name}.crt_validity_days")
        if not self.display_name:
            object.__setattr__(self, "display_name", self.primary_name)

    @property
    def san_entries(self) -> tuple[AltName, ...]:
        """Primary name followed by the alternate names, duplicates removed."""
        entries: dict[AltName, None] = {}
        for alt in classify_all([self.primary_name]) + self.alt_names:
            entries.setdefault(alt, None)
        return tuple(entries)


@dataclass(frozen=True)
class Policy:
    """
    Reconciliation policy knobs.

    Attributes:
        renew_before_days (int): Regenerate material that expires within this many days.
        key_size (int): RSA modulus size for newly generated keys.
    """
    renew_before_days: int = DEFAULT_RENEW_BEFORE_DAYS
    key_size: int = DEFAULT_KEY_SIZE


@dataclass(frozen=True)
class Config:
    identity: NetworkIdentity
    authority: AuthoritySpec
    sites: tuple[LeafSpec, ...] = ()
    policy: Policy = field(default_factory=Policy)


# ---------- validation helpers ----------

def _require_name(value: Any, key: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{key}: name must be a non-empty string")


def _require_positive(value: Any, key: str) -> None:
    # bool is an int subclass; "true" is never a valid day count
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"{key} must be a positive integer, got {value!r}")


def _opt_str(section: Mapping[str, Any], key: str, path: str) -> Optional[str]:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"{path}.{key} must be a string, got {value!r}")
    value = value.strip()
    return value or None


def _req_str(section: Mapping[str, Any], key: str, path: str) -> str:
    value = _opt_str(section, key, path)
    if value is None:
        raise ConfigurationError(f"Missing required config key: {path}.{key}")
    return value


def _days(section: Mapping[str, Any], key: str, default: int) -> Any:
    # an empty value ("key =" in YAML) falls back to the default; 0 does not
    value = section.get(key)
    return default if value is None else value


def _section(data: Mapping[str, Any], key: str, *, required: bool = True) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        if required:
            raise ConfigurationError(f"Missing required config section: {key}")
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Config section {key} must be a mapping")
    return value


# ---------- parsing ----------

def parse_identity(network: Mapping[str, Any]) -> NetworkIdentity:
    """
    Build the NetworkIdentity from the network section.

    Raises:
        ConfigurationError: If name/email are missing or the country is not a two-letter code.
    """
    country = _opt_str(network, "country", "network")
    if country is not None and (len(country) != 2 or not country.isalpha()):
        raise ConfigurationError(f"network.country must be a two-letter code, got {country!r}")
    return NetworkIdentity(
        name=_req_str(network, "name", "network"),
        email=_req_str(network, "email", "network"),
        country=country.upper() if country else None,
        province=_opt_str(network, "province", "network"),
    )


def parse_site(site_id: Any, section: Any, identity: NetworkIdentity) -> LeafSpec:
    """
    Build a LeafSpec from one entry of the sites mapping.

    Args:
        site_id: Mapping key, the site's primary domain name.
        section: The site's settings.
        identity (NetworkIdentity): Organization details shared by all sites.

    Returns:
        LeafSpec: Validated site specification.

    Raises:
        ConfigurationError: On an empty or invalid identifier, bad validity or unusable alt name.
    """
    if not isinstance(site_id, str) or not site_id.strip():
        raise ConfigurationError(f"Site identifier must be a non-empty string, got {site_id!r}")
    primary = site_id.strip().lower()
    if primary.startswith("*") or not is_valid_dns_name(primary):
        raise ConfigurationError(f"Site identifier is not a valid DNS name: {site_id!r}")
    if section is None:
        section = {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"sites.{site_id} must be a mapping")

    alt_names = section.get("alt_names", [])
    if alt_names is None:
        alt_names = []
    if not isinstance(alt_names, list):
        raise ConfigurationError(f"sites.{site_id}.alt_names must be a list")

    return LeafSpec(
        primary_name=primary,
        identity=identity,
        display_name=_opt_str(section, "name", f"sites.{site_id}") or "",
        validity_days=_days(section, "crt_validity_days", DEFAULT_CRT_VALIDITY_DAYS),
        alt_names=classify_all(alt_names),
    )


def parse_policy(section: Mapping[str, Any]) -> Policy:
    renew = section.get("renew_before_days", DEFAULT_RENEW_BEFORE_DAYS)
    if isinstance(renew, bool) or not isinstance(renew, int) or renew < 0:
        raise ConfigurationError(f"policy.renew_before_days must be a non-negative integer, got {renew!r}")
    key_size = section.get("key_size", DEFAULT_KEY_SIZE)
    if key_size not in ALLOWED_KEY_SIZES or isinstance(key_size, bool):
        raise ConfigurationError(f"policy.key_size must be one of {ALLOWED_KEY_SIZES}, got {key_size!r}")
    return Policy(renew_before_days=renew, key_size=key_size)


def parse_config(data: Mapping[str, Any]) -> Config:
    """
    Validate a decoded configuration document.

    Args:
        data (Mapping): Document root as produced by YAML or TOML decoding.

    Returns:
        Config: Immutable, fully validated configuration.

    Raises:
        ConfigurationError: On the first invalid value.
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Config root must be a mapping")

    network = _section(data, "network")
    identity = parse_identity(network)
    authority = AuthoritySpec(
        name=_opt_str(network, "root_ca_name", "network") or DEFAULT_ROOT_CA_NAME,
        identity=identity,
        validity_days=_days(network, "root_ca_validity_days", DEFAULT_ROOT_CA_VALIDITY_DAYS),
    )

    sites: list[LeafSpec] = []
    seen: set[str] = set()
    for site_id, section in _section(data, "sites", required=False).items():
        leaf = parse_site(site_id, section, identity)
        if leaf.primary_name in seen:
            raise ConfigurationError(f"Duplicate site identifier: {leaf.primary_name}")
        if leaf.primary_name == authority.name:
            raise ConfigurationError(f"Site {leaf.primary_name} collides with network.root_ca_name")
        seen.add(leaf.primary_name)
        sites.append(leaf)

    policy = parse_policy(_section(data, "policy", required=False))
    # A renewal window as long as the validity would reissue on every run
    if policy.renew_before_days >= authority.validity_days:
        raise ConfigurationError(
            f"policy.renew_before_days ({policy.renew_before_days}) must be shorter than "
            f"network.root_ca_validity_days ({authority.validity_days})"
        )
    for leaf in sites:
        if policy.renew_before_days >= leaf.validity_days:
            raise ConfigurationError(
                f"policy.renew_before_days ({policy.renew_before_days}) must be shorter than "
                f"sites.{leaf.primary_name}.crt_validity_days ({leaf.validity_days})"
            )

    return Config(
        identity=identity,
        authority=authority,
        sites=tuple(sites),
        policy=policy,
    )


def load_config(path: str | Path) -> Config:
    """
    Read and validate a YAML (.yml/.yaml) or TOML (.toml) configuration file.

    Args:
        path (str | Path): Configuration file.

    Returns:
        Config: Validated configuration.

    Raises:
        ConfigurationError: If the file is missing, cannot be decoded, or holds invalid values.
    """
    p = Path(path)
    if not p.is_file():
        raise ConfigurationError(f"Config not found: {p}")
    LOGGER.info("Reading configuration file: %s", p)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Unable to read configuration file {p}: {e}") from e

    try:
        if p.suffix.lower() == ".toml":
            data = tomllib.loads(text)
        else:
            data = yaml.safe_load(text)
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"{p} is not a valid configuration document: {e}") from e

    config = parse_config(data)
    LOGGER.debug("Loaded %d site(s) from %s", len(config.sites), p)
    return config
