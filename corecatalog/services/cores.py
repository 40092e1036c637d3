"""
Download a core's release files.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urljoin

from corecatalog.domain.errors import PreconditionFailed
from corecatalog.domain.models import CORE_RBF_TYPE, NormalizedCatalog, NormalizedCore, Release
from corecatalog.domain.versions import latest_of
from corecatalog.services.files import download_all, download_and_check
from corecatalog.services.platform import Platform

logger = logging.getLogger(__name__)


def latest_release_of(core: NormalizedCore) -> Optional[Release]:
    return latest_of(core.releases)


def base_url_of(catalog: NormalizedCatalog, core: NormalizedCore) -> str:
    container_url = catalog.cores.source_url if catalog.cores is not None else None
    return core.source_url or container_url or catalog.source_url or ""


def core_directory(download_root: Path, catalog: NormalizedCatalog, core: NormalizedCore) -> Path:
    return download_root / "cores" / catalog.unique_name / core.unique_name


async def download(
    catalog: NormalizedCatalog,
    core: NormalizedCore,
    platform: Platform,
    download_root: Path,
    release: Optional[Release] = None,
) -> Path:
    """
    Download and verify every file of a core release (the latest one by
    default), concurrently. Returns the path of the release's RBF bitstream.
    """
    if release is None:
        release = latest_release_of(core)
    if release is None:
        raise PreconditionFailed(
            f"Core {core.unique_name!r} exists but no release could be selected."
        )

    rbf_count = sum(1 for f in release.files if f.type == CORE_RBF_TYPE)
    if rbf_count == 0:
        raise PreconditionFailed(f"Release of core {core.unique_name!r} contains no RBF file.")
    if rbf_count > 1:
        raise PreconditionFailed(f"Release of core {core.unique_name!r} contains multiple RBF files.")

    base_url = base_url_of(catalog, core)
    dest = core_directory(download_root, catalog, core)
    logger.info(f"Downloading core {core.unique_name} ({len(release.files)} files) to {dest}")

    paths = await download_all(
        download_and_check(urljoin(base_url, f.url), f, dest, platform) for f in release.files
    )

    return next(p for f, p in zip(release.files, paths) if f.type == CORE_RBF_TYPE)
