"""Shared fixtures: a network identity, authority/site specs and a fake clock."""

from datetime import datetime, timedelta, timezone

import pytest

from certgen.config import AuthoritySpec, LeafSpec, NetworkIdentity, Policy
from certgen.names import classify_all
from certgen.store import KeyMaterialStore


class FakeClock:
    """Callable clock that tests can move around."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def identity():
    return NetworkIdentity(name="My Network", email="admin@example.net", country="US", province="WA")


@pytest.fixture
def authority_spec(identity):
    return AuthoritySpec(name="personal_ca", identity=identity, validity_days=3650)


@pytest.fixture
def make_site(identity):
    def _make(primary="srv.example.net", alt_names=("backup.example.net", "192.168.0.2"), **kwargs):
        return LeafSpec(primary_name=primary, identity=identity, alt_names=classify_all(alt_names), **kwargs)
    return _make


@pytest.fixture
def store(tmp_path):
    return KeyMaterialStore(tmp_path / "out")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return Policy()
