"""Tests for verified downloads."""

import base64

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from corecatalog.domain.errors import IntegrityError, NetworkError, SignatureError
from corecatalog.domain.models import File
from corecatalog.services.files import download_and_check
from corecatalog.services.platform import Ed25519SignatureVerifier, RejectingSignatureVerifier

from conftest import BASE, RBF_BYTES, FakeVerifier, file_entry, sha256_of

URL = f"{BASE}/files/nes.rbf"


def make_file(data: bytes = RBF_BYTES, **overrides) -> File:
    return File.model_validate({**file_entry("files/nes.rbf", data), **overrides})


class TestDownloadAndCheck:
    @pytest.mark.asyncio
    async def test_matching_file(self, server, platform, tmp_path):
        server.blobs[URL] = RBF_BYTES

        path = await download_and_check(URL, make_file(), tmp_path / "out", platform)

        assert path == tmp_path / "out" / "nes.rbf"
        assert path.read_bytes() == RBF_BYTES

    @pytest.mark.asyncio
    async def test_hash_comparison_ignores_case(self, server, platform, tmp_path):
        server.blobs[URL] = RBF_BYTES

        path = await download_and_check(URL, make_file(sha256=sha256_of(RBF_BYTES).upper()), tmp_path, platform)

        assert path.exists()

    @pytest.mark.asyncio
    async def test_hash_mismatch_deletes_file(self, server, platform, tmp_path):
        tampered = b"x" * len(RBF_BYTES)
        server.blobs[URL] = tampered

        with pytest.raises(IntegrityError) as info:
            await download_and_check(URL, make_file(), tmp_path, platform)

        assert info.value.what == "SHA-256 hash"
        assert info.value.actual == sha256_of(tampered)
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_size_mismatch_deletes_file(self, server, platform, tmp_path):
        server.blobs[URL] = RBF_BYTES + b"extra"

        with pytest.raises(IntegrityError, match="File size mismatch"):
            await download_and_check(URL, make_file(), tmp_path, platform)

        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_download_failure(self, platform, tmp_path):
        with pytest.raises(NetworkError):
            await download_and_check(URL, make_file(), tmp_path, platform)

    @pytest.mark.asyncio
    async def test_no_destination_uses_temp_dir(self, server, platform):
        server.blobs[URL] = RBF_BYTES

        path = await download_and_check(URL, make_file(), None, platform)

        assert path.name == "nes.rbf"
        assert path.read_bytes() == RBF_BYTES


class TestSignatures:
    @pytest.mark.asyncio
    async def test_signature_is_passed_to_verifier(self, server, platform, verifier, tmp_path):
        server.blobs[URL] = RBF_BYTES
        signature = b"\x01" * 64

        path = await download_and_check(
            URL, make_file(signature=base64.b64encode(signature).decode()), tmp_path, platform
        )

        assert verifier.calls == [(path, signature)]

    @pytest.mark.asyncio
    async def test_invalid_signature_deletes_file(self, server, platform, tmp_path):
        server.blobs[URL] = RBF_BYTES
        platform.signatures = FakeVerifier(valid=False)

        with pytest.raises(SignatureError):
            await download_and_check(
                URL, make_file(signature=base64.b64encode(b"\x01" * 64).decode()), tmp_path, platform
            )

        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_unsigned_file_skips_verifier(self, server, platform, verifier, tmp_path):
        server.blobs[URL] = RBF_BYTES

        await download_and_check(URL, make_file(), tmp_path, platform)

        assert verifier.calls == []

    @pytest.mark.asyncio
    async def test_ed25519(self, server, platform, tmp_path):
        key = Ed25519PrivateKey.generate()
        public = key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        platform.signatures = Ed25519SignatureVerifier(public)
        server.blobs[URL] = RBF_BYTES

        good = base64.b64encode(key.sign(RBF_BYTES)).decode()
        assert (await download_and_check(URL, make_file(signature=good), tmp_path, platform)).exists()

        bad = base64.b64encode(key.sign(b"something else")).decode()
        with pytest.raises(SignatureError):
            await download_and_check(URL, make_file(signature=bad), tmp_path, platform)

    @pytest.mark.asyncio
    async def test_no_trusted_key_rejects_signed_files(self, server, platform, tmp_path):
        platform.signatures = RejectingSignatureVerifier()
        server.blobs[URL] = RBF_BYTES

        with pytest.raises(SignatureError):
            await download_and_check(
                URL, make_file(signature=base64.b64encode(b"\x01" * 64).decode()), tmp_path, platform
            )
