"""
Platform capabilities the catalog pipeline orchestrates.

The pipeline never talks to the network, the filesystem or the trust store
directly; it goes through the protocols below. Concrete implementations use
httpx + aiofiles for transport and file I/O and cryptography for Ed25519
signature checks.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional, Protocol, Sequence, Set, Union
from urllib.parse import unquote, urlparse

import aiofiles
import aiofiles.os
import httpx
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from corecatalog.domain.errors import NetworkError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

HASH_CHUNK_SIZE = 64 * 1024


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class Network(Protocol):
    async def fetch_json(self, url: str) -> Any: ...

    async def download(self, url: str, dest: Optional[PathLike] = None) -> Path: ...


class FileSystem(Protocol):
    async def sha256(self, path: PathLike) -> str: ...

    async def file_size(self, path: PathLike) -> int: ...


class SignatureVerifier(Protocol):
    async def verify(self, path: PathLike, signature: bytes) -> bool: ...


class Prompt(Protocol):
    async def choose(self, title: str, message: str, choices: Sequence[str]) -> int:
        """Return the index of the chosen option."""
        ...


class Upgrader(Protocol):
    async def upgrade(self, name: str, path: PathLike, signature: bytes) -> None: ...


@dataclass
class Platform:
    network: Network
    files: FileSystem
    signatures: SignatureVerifier
    prompt: Prompt
    upgrader: Upgrader


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


def _usable_name(name: str) -> Optional[str]:
    # "." and ".." would resolve to a directory, never to a file.
    return name if name not in ("", ".", "..") else None


def _file_name_from_disposition(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    for part in header.split(";"):
        part = part.strip()
        if part.startswith("filename="):
            name = part[len("filename="):].strip().strip('"')
            # Never let the server pick a directory.
            return _usable_name(PurePosixPath(name.replace("\\", "/")).name)
    return None


def _file_name_from_url(url: str) -> Optional[str]:
    return _usable_name(PurePosixPath(unquote(urlparse(url).path)).name)


def generated_file_name() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def unique_file_name(name: str) -> str:
    """``name`` with a generated part inserted before its extension."""
    path = PurePosixPath(name)
    return f"{path.stem}-{generated_file_name()}{path.suffix}"


def download_file_name(url: str, content_disposition: Optional[str] = None) -> str:
    """
    Name for a downloaded file: the server-declared filename, else the last
    URL path segment, else a generated collision-avoiding name.
    """
    return (
        _file_name_from_disposition(content_disposition)
        or _file_name_from_url(url)
        or generated_file_name()
    )


class HttpNetwork:
    """Network capability on top of a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient):
        self._client = client
        # File names taken in each directory while downloads into it are in flight.
        self._claims: Dict[Path, Set[str]] = {}
        self._in_flight: Dict[Path, int] = {}

    async def fetch_json(self, url: str) -> Any:
        logger.debug(f"Fetching JSON from {url}")
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NetworkError(url, f"Failed to fetch JSON: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(url, f"Response is not valid JSON: {e}") from e

    def _enter(self, directory: Path) -> None:
        self._in_flight[directory] = self._in_flight.get(directory, 0) + 1

    def _leave(self, directory: Path) -> None:
        self._in_flight[directory] -= 1
        if self._in_flight[directory] == 0:
            del self._in_flight[directory]
            self._claims.pop(directory, None)

    def _claim(self, directory: Path, name: str) -> str:
        claimed = self._claims.setdefault(directory, set())
        if name in claimed:
            name = unique_file_name(name)
            logger.debug(f"File name collision in {directory}, using {name}")
        claimed.add(name)
        return name

    async def download(self, url: str, dest: Optional[PathLike] = None) -> Path:
        """
        Download ``url`` into directory ``dest`` (or a fresh temp directory).

        The body is streamed to a ``.tmp`` file first and moved into place once
        complete, so a failed transfer never leaves a partial artifact behind.
        Concurrent downloads into the same directory never share a file name.
        """
        logger.debug(f"Downloading {url}")
        directory = Path(dest).absolute() if dest else Path(tempfile.mkdtemp(prefix="corecatalog-"))
        tmp_path: Optional[Path] = None

        self._enter(directory)
        try:
            async with self._client.stream("GET", url) as response:
                response.raise_for_status()
                name = self._claim(
                    directory,
                    download_file_name(url, response.headers.get("content-disposition")),
                )
                path = directory / name
                tmp_path = path.with_name(name + ".tmp")

                await aiofiles.os.makedirs(directory, exist_ok=True)
                async with aiofiles.open(tmp_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        await f.write(chunk)

            tmp_path.replace(path)
            tmp_path = None
            return path
        except httpx.HTTPError as e:
            raise NetworkError(url, f"Failed to download: {e}") from e
        except OSError as e:
            raise NetworkError(url, f"Failed to write download: {e}") from e
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            self._leave(directory)


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


class LocalFileSystem:
    async def sha256(self, path: PathLike) -> str:
        h = hashlib.sha256()
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(HASH_CHUNK_SIZE)
                if not chunk:
                    break
                h.update(chunk)
        return h.hexdigest()

    async def file_size(self, path: PathLike) -> int:
        return await aiofiles.os.path.getsize(path)


# ---------------------------------------------------------------------------
# Trust
# ---------------------------------------------------------------------------


class Ed25519SignatureVerifier:
    """Verifies detached Ed25519 signatures against a single trusted public key."""

    def __init__(self, public_key: bytes):
        self._key = Ed25519PublicKey.from_public_bytes(public_key)

    async def verify(self, path: PathLike, signature: bytes) -> bool:
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        try:
            self._key.verify(signature, data)
        except InvalidSignature:
            return False
        return True


class RejectingSignatureVerifier:
    """Used when no trusted key is configured: nothing signed can be trusted."""

    async def verify(self, path: PathLike, signature: bytes) -> bool:
        logger.warning(f"No trusted public key configured; rejecting signature for {path}")
        return False


# ---------------------------------------------------------------------------
# Prompt / upgrade
# ---------------------------------------------------------------------------


class FixedPrompt:
    """Non-interactive prompt that always picks the same option."""

    def __init__(self, choice: int):
        self.choice = choice

    async def choose(self, title: str, message: str, choices: Sequence[str]) -> int:
        logger.info(f"{title}: {message.strip()} -> {choices[self.choice]!r}")
        return self.choice


class StagingUpgrader:
    """
    Stages a verified platform binary and its signature under ``staging_dir``
    for the boot loader to pick up on restart.
    """

    def __init__(self, staging_dir: Path):
        self.staging_dir = staging_dir

    async def upgrade(self, name: str, path: PathLike, signature: bytes) -> None:
        target_dir = self.staging_dir / name
        await aiofiles.os.makedirs(target_dir, exist_ok=True)
        target = target_dir / Path(path).name

        await asyncio.to_thread(shutil.copy2, path, target)
        async with aiofiles.open(target.with_name(target.name + ".sig"), "wb") as f:
            await f.write(signature)

        logger.info(f"Staged {name} upgrade at {target}")
