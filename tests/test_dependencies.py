"""Tests for the handle registry and platform wiring."""

import base64

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from corecatalog.core.dependencies import HandleRegistry, build_platform
from corecatalog.services.platform import Ed25519SignatureVerifier, RejectingSignatureVerifier


class FakeHandle:
    def __init__(self, name):
        self.name = name
        self.closed = False

    def close(self):
        self.closed = True


@pytest.fixture
def registry():
    opened = []

    def factory(name):
        handle = FakeHandle(name)
        opened.append(handle)
        return handle

    registry = HandleRegistry(factory)
    registry.opened = opened
    return registry


class TestHandleRegistry:
    def test_nested_acquisitions_share_one_handle(self, registry):
        with registry.acquire("db") as outer:
            with registry.acquire("db") as inner:
                assert inner is outer
            assert not outer.closed
        assert outer.closed
        assert len(registry) == 0
        assert len(registry.opened) == 1

    def test_handle_is_closed_when_holder_fails(self, registry):
        with pytest.raises(RuntimeError):
            with registry.acquire("db") as handle:
                raise RuntimeError("boom")
        assert handle.closed

    def test_reopens_after_release(self, registry):
        with registry.acquire("db") as first:
            pass
        with registry.acquire("db") as second:
            assert second is not first
        assert len(registry.opened) == 2

    def test_close_all(self, registry):
        scope = registry.acquire("a")
        handle = scope.__enter__()
        with registry.acquire("b"):
            registry.close_all()
            assert registry.names() == []
        assert handle.closed
        scope.__exit__(None, None, None)


class TestBuildPlatform:
    def test_without_key_rejects_signatures(self, config):
        platform = build_platform(config, httpx.AsyncClient())
        assert isinstance(platform.signatures, RejectingSignatureVerifier)

    def test_with_key(self, config):
        config.signature_public_key = base64.b64encode(
            Ed25519PrivateKey.generate().public_key().public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
        ).decode()
        platform = build_platform(config, httpx.AsyncClient())
        assert isinstance(platform.signatures, Ed25519SignatureVerifier)
