"""
Verified downloads.

:func:`download_and_check` is the only way an artifact described by a catalog
``File`` reaches the rest of the system: it refuses to return a path unless the
downloaded bytes match the declared size, SHA-256 and (when present) signature.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from pathlib import Path
from typing import Awaitable, Iterable, List, Optional, TypeVar, Union

from corecatalog.domain.errors import IntegrityError, SignatureError
from corecatalog.domain.models import File
from corecatalog.services.platform import Platform

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _discard(path: Path) -> None:
    path.unlink(missing_ok=True)


async def verify_artifact(url: str, path: Path, file: File, platform: Platform) -> None:
    """Check a downloaded artifact against its manifest. Raises on mismatch."""
    sha, size = await asyncio.gather(
        platform.files.sha256(path),
        platform.files.file_size(path),
    )

    if size != file.size:
        logger.error(f"File size mismatch for {url}: expected {file.size}, got {size}")
        raise IntegrityError(url, "File size", file.size, size)

    if sha.lower() != file.sha256.lower():
        logger.error(f"SHA256 mismatch for {url}: expected {file.sha256}, got {sha}")
        raise IntegrityError(url, "SHA-256 hash", file.sha256, sha)

    if file.signature:
        try:
            signature = base64.b64decode(file.signature, validate=True)
        except binascii.Error as e:
            raise SignatureError(url, "Malformed signature") from e
        if not await platform.signatures.verify(path, signature):
            logger.error(f"Invalid signature for {url}")
            raise SignatureError(url)


async def download_and_check(
    url: str,
    file: File,
    dest: Optional[Union[str, Path]],
    platform: Platform,
) -> Path:
    """
    Download ``url`` under ``dest`` and verify it against ``file``.

    The artifact is deleted before any IntegrityError or SignatureError is
    raised, and when the download is cancelled while being verified.
    """
    path = await platform.network.download(url, dest)
    try:
        await verify_artifact(url, path, file, platform)
    except (IntegrityError, SignatureError, asyncio.CancelledError):
        _discard(path)
        raise

    logger.debug(f"Verified {url} -> {path}")
    return path


async def download_all(downloads: Iterable[Awaitable[T]]) -> List[T]:
    """
    Run ``downloads`` concurrently and return their results in order.

    When one of them fails, the others are cancelled and awaited before the
    error propagates. Artifacts that already completed are left in place.
    """
    tasks = [asyncio.ensure_future(d) for d in downloads]
    try:
        return list(await asyncio.gather(*tasks))
    except Exception:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
