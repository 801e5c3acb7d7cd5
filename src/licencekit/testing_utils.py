"""
Testing utilities for licencekit - for use in packages that depend on licencekit.

Provides pytest fixtures for signing keys and deterministic time sources, so
licence validation can be tested without network access:

    # conftest.py
    from licencekit.testing_utils import dsa_keys, rsa_keys, fixed_time_source

Key fixtures are session-scoped because RSA key generation is slow.
"""

from datetime import datetime, timezone
from typing import Callable, NamedTuple

import pytest

from .crypto import KeyCapability, KeyFamily, generate_keypair, load_private_key
from .ntp import TimeSourceUnavailable


class TestKeys(NamedTuple):
    """A private key capability and its public counterpart."""

    private: KeyCapability
    public: KeyCapability

    @classmethod
    def generate(cls, family: KeyFamily) -> "TestKeys":
        kp = generate_keypair(family)
        private = load_private_key(kp.private_pem)
        return cls(private=private, public=private.public_key())


TestKeys.__test__ = False  # not a test class despite the name


def make_fixed_time_source(moment: datetime) -> Callable[[], datetime]:
    """Return a time source that always reports ``moment``."""

    def source() -> datetime:
        return moment

    return source


def unavailable_time_source() -> datetime:
    """Time source that behaves like an unreachable NTP server."""
    raise TimeSourceUnavailable("network time disabled in tests")


@pytest.fixture(scope="session")
def rsa_keys() -> TestKeys:
    """RSA-family key pair shared by the test session."""
    return TestKeys.generate(KeyFamily.RSA)


@pytest.fixture(scope="session")
def dsa_keys() -> TestKeys:
    """DSA-family (ECDSA P-256) key pair shared by the test session."""
    return TestKeys.generate(KeyFamily.DSA)


@pytest.fixture(params=[KeyFamily.RSA, KeyFamily.DSA], ids=lambda f: f.value)
def signing_keys(request, rsa_keys, dsa_keys) -> TestKeys:
    """Parametrized over both key families."""
    return rsa_keys if request.param is KeyFamily.RSA else dsa_keys


@pytest.fixture
def fixed_time_source() -> Callable[[datetime], Callable[[], datetime]]:
    """
    Factory fixture building time sources pinned to a given moment.

    Usage:
        source = fixed_time_source(datetime(2030, 1, 1, tzinfo=timezone.utc))
        validate(licence, key, time_source=source)
    """
    return make_fixed_time_source


@pytest.fixture
def no_network_time(monkeypatch):
    """
    Make every default network time query fail as if the server were unreachable.

    Patches the socket resolution used by licencekit.ntp, so code relying on
    the default time source falls back to the local clock.
    """
    import socket

    from . import ntp

    def fail(*args, **kwargs):
        raise socket.gaierror("network disabled in tests")

    monkeypatch.setattr(ntp.socket, "getaddrinfo", fail)
    return datetime.now(timezone.utc)
