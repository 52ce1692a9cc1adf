# tests/conftest.py
"""Shared fixtures: actors are expensive to generate, so they are made once."""

import socket

import pytest

from fedsig.activitypub.actor import Actor
from fedsig.config import FederationConfig

BASE_URL = "https://example.test"

# Fixed wall-clock time used by signing and verification tests
NOW = 1_800_000_000


@pytest.fixture(scope="session")
def user1():
    return Actor.create("user1", "User One")


@pytest.fixture(scope="session")
def user2():
    return Actor.create("user2", "User Two")


@pytest.fixture(scope="session")
def ed_actor():
    return Actor.create("eddie", key_type="ed25519")


@pytest.fixture
def config():
    return FederationConfig()


@pytest.fixture
def silent_url():
    """URL of a listener that accepts connections but never answers."""
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        s.listen(16)
        yield f"http://127.0.0.1:{s.getsockname()[1]}"
