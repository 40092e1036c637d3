"""
Upgrade the platform binary from a catalog release.
"""
from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Tuple
from urllib.parse import urljoin

from corecatalog.domain.errors import PreconditionFailed, SignatureError
from corecatalog.domain.models import File, Release
from corecatalog.services.files import download_all, download_and_check
from corecatalog.services.platform import Platform

logger = logging.getLogger(__name__)


async def _download_signed(url: str, file: File, platform: Platform) -> Tuple[Path, bytes]:
    path = await download_and_check(url, file, None, platform)
    return path, base64.b64decode(file.signature)


async def upgrade_platform(base_url: str, release: Release, platform: Platform, name: str) -> bool:
    """
    Upgrade the platform binary ``name`` with ``release``.

    The release must hold exactly one file and it must be signed. Whether the
    release belongs to the binary being upgraded is not verified here.
    """
    if len(release.files) != 1:
        raise PreconditionFailed("Expected exactly one file to upgrade")

    for f in release.files:
        if not f.signature:
            raise SignatureError(urljoin(base_url, f.url), "Platform upgrades must always be signed")

    logger.info(f"Downloading {name} upgrade {release.version}")
    downloads = await download_all(
        _download_signed(urljoin(base_url, f.url), f, platform) for f in release.files
    )

    path, signature = downloads[0]
    logger.info(f"Upgrading {name} from {path}")
    await platform.upgrader.upgrade(name, path, signature)
    return True
