"""
Download a system's metadata database.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urljoin

from corecatalog.domain.errors import PreconditionFailed
from corecatalog.domain.models import NormalizedCatalog, NormalizedSystem
from corecatalog.services.files import download_and_check
from corecatalog.services.platform import Platform

logger = logging.getLogger(__name__)


def system_directory(download_root: Path, catalog: NormalizedCatalog, system: NormalizedSystem) -> Path:
    return download_root / "systems" / catalog.unique_name / system.unique_name


async def download(
    catalog: NormalizedCatalog,
    system: NormalizedSystem,
    platform: Platform,
    download_root: Path,
) -> Optional[Path]:
    """
    Download a system's database (a SQLite file) and return its path.

    Returns None for a system without a database.
    """
    if system.db is not None:
        container_url = catalog.systems.source_url if catalog.systems is not None else None
        base_url = system.source_url or container_url or catalog.source_url or ""
        url = urljoin(base_url, system.db.url)
        dest = system_directory(download_root, catalog, system)
        logger.info(f"Downloading system {system.unique_name} database to {dest}")
        return await download_and_check(url, system.db, dest, platform)

    if system.games_db is not None:
        raise PreconditionFailed("The old GamesDb format is not supported anymore.")

    return None
