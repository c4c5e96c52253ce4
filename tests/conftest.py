"""
Shared fixtures: an in-process Redis (fakeredis) and an Ed25519 keypair.
"""
import base64

import fakeredis
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from sigverify.models import WorkerIdentity
from sigverify.store import Store


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class Signer:
    """Test-side holder for a private key and its wire-encoded public key"""

    def __init__(self):
        self.private_key = Ed25519PrivateKey.generate()
        raw = self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.public_bytes = raw
        self.public_key = b64(raw)

    def sign_bytes(self, message: bytes) -> bytes:
        return self.private_key.sign(message)

    def sign(self, payload: str) -> str:
        return b64(self.sign_bytes(payload.encode("utf-8")))


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def store(redis_client):
    return Store(redis_client)


@pytest.fixture
def identity():
    return WorkerIdentity(name="worker-a")


@pytest.fixture
def alice():
    return Signer()


@pytest.fixture
def bob():
    return Signer()
