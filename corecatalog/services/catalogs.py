"""
Catalog lifecycle: create, check for updates, install and update.

``CatalogService`` ties the normalizer, the differ, the verified downloader and
the row store together. Each catalog has an :class:`UpdateState` that moves
through the phases of a check or an install and always goes back to ``IDLE``,
also when the operation fails.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from corecatalog.core.config import ServiceConfig
from corecatalog.domain.errors import NetworkError, PreconditionFailed
from corecatalog.domain.models import (
    CatalogRow,
    CoreRow,
    InstallReport,
    InstallSelection,
    NormalizedCatalog,
    NormalizedCore,
    NormalizedSystem,
    SystemRow,
)
from corecatalog.domain.versions import compare, latest_of
from corecatalog.services import cores as core_downloads
from corecatalog.services import differ
from corecatalog.services import releases as platform_releases
from corecatalog.services import systems as system_downloads
from corecatalog.services.normalizer import RETRY_CHOICES, Normalizer
from corecatalog.services.platform import Platform
from corecatalog.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)

UPGRADE_CHOICES = ("Cancel", "Update and Restart")


class UpdateState(str, Enum):
    IDLE = "idle"
    CHECKING_FOR_UPDATES = "checking_for_updates"
    NO_UPDATE = "no_update"
    UPDATE_AVAILABLE = "update_available"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    INSTALLING = "installing"


class Outcome(Enum):
    CANCELLED = "cancelled"


# Returned instead of a result when the user cancels an operation.
CANCELLED = Outcome.CANCELLED


class CatalogService:
    def __init__(self, store: DatabaseManager, platform: Platform, config: ServiceConfig):
        self.store = store
        self.platform = platform
        self.config = config
        self.normalizer = Normalizer(platform.network, platform.prompt)
        self._states: Dict[int, UpdateState] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    # -- state -------------------------------------------------------------

    def state_of(self, catalog_id: int) -> UpdateState:
        return self._states.get(catalog_id, UpdateState.IDLE)

    def _set_state(self, catalog_id: int, state: UpdateState) -> None:
        logger.info(f"Catalog {catalog_id}: {self.state_of(catalog_id).value} -> {state.value}")
        self._states[catalog_id] = state

    @asynccontextmanager
    async def _tracking(self, catalog_id: int):
        try:
            yield
        finally:
            self._set_state(catalog_id, UpdateState.IDLE)

    def _lock(self, catalog_id: int) -> asyncio.Lock:
        return self._locks.setdefault(catalog_id, asyncio.Lock())

    # -- fetching ----------------------------------------------------------

    async def _with_retry(self, action: Callable[[], Awaitable[Any]], title: str) -> Any:
        """
        Run ``action``, asking Retry/Cancel whenever it fails with a network
        error. Validation, integrity and signature errors propagate untouched.
        """
        while True:
            try:
                return await action()
            except NetworkError as e:
                if e.cancelled:
                    logger.info(f"{title}: cancelled by user")
                    return CANCELLED
                choice = await self.platform.prompt.choose(title, f"{e}\n", RETRY_CHOICES)
                if choice == 1:
                    logger.info(f"{title}: cancelled by user")
                    return CANCELLED

    async def _fetch(self, url: str) -> Union[NormalizedCatalog, Outcome]:
        return await self._with_retry(
            lambda: self.normalizer.fetch_and_normalize_catalog(url),
            "Error fetching catalog",
        )

    # -- operations --------------------------------------------------------

    async def create(self, url: str, priority: int = 0) -> Union[CatalogRow, Outcome]:
        """Fetch and normalize the catalog at ``url`` and store it."""
        catalog = await self._fetch(url)
        if catalog is CANCELLED:
            return CANCELLED
        return self.store.create_catalog_row(catalog, catalog.source_url or url, priority)

    async def check(self, row: Optional[CatalogRow] = None) -> Union[bool, Outcome]:
        """
        Check one catalog (or every catalog) for a newer remote version.

        Returns True when at least one catalog has an update pending after the
        check. Every catalog is checked, even after one reports an update.
        """
        rows = [row] if row is not None else self.store.list_catalog_rows()

        found = False
        for r in rows:
            result = await self._check_one(r)
            if result is CANCELLED:
                return CANCELLED
            found = found or result
        return found

    async def _check_one(self, row: CatalogRow) -> Union[bool, Outcome]:
        async with self._tracking(row.id):
            self._set_state(row.id, UpdateState.CHECKING_FOR_UPDATES)
            latest = await self._fetch(row.url)
            if latest is CANCELLED:
                return CANCELLED

            current, _ = row.snapshots()
            if compare(current, latest) < 0:
                logger.info(f"Catalog {row.unique_name}: {current.version} -> {latest.version} available")
                self.store.set_latest(row.id, latest)
                self._set_state(row.id, UpdateState.UPDATE_AVAILABLE)
                return True

            self._set_state(row.id, UpdateState.NO_UPDATE)
            return False

    def latest_diff(self, row: CatalogRow) -> NormalizedCatalog:
        return differ.latest_diff(row)

    async def install(self, row: CatalogRow, selection: Optional[InstallSelection] = None) -> InstallReport:
        """Install the selected entries (all by default) of the current snapshot."""
        current, _ = row.snapshots()
        return await self._install(row, current, selection)

    async def update(self, row: CatalogRow, selection: Optional[InstallSelection] = None) -> InstallReport:
        """Install what changed in the pending snapshot, then make it current."""
        if not row.latest_json:
            raise PreconditionFailed(f"Catalog {row.unique_name!r} has no pending update.")

        report = await self._install(row, self.latest_diff(row), selection)
        self.store.apply_latest(row.id)
        return report

    async def update_platform(self, row: CatalogRow) -> Union[bool, Outcome]:
        """
        Upgrade the platform binary from the catalog's pending release of it.

        Returns False when no newer release than the running one is available.
        """
        name = self.config.platform_name
        diff = self.latest_diff(row)
        if diff.releases is None or name not in diff.releases:
            return False

        release = latest_of(diff.releases[name])
        if release is None or compare(release, self.config.platform_version) <= 0:
            return False

        choice = await self.platform.prompt.choose(
            "Update available",
            f"{name} {release.version} is available (running {self.config.platform_version}).\n",
            UPGRADE_CHOICES,
        )
        if choice == 0:
            return CANCELLED

        base_url = release.source_url or diff.releases.source_url or diff.source_url or row.url
        async with self._lock(row.id), self._tracking(row.id):
            self._set_state(row.id, UpdateState.DOWNLOADING)
            return await platform_releases.upgrade_platform(base_url, release, self.platform, name)

    # -- install pipeline --------------------------------------------------

    @staticmethod
    def _select(container, names: Optional[List[str]], kind: str) -> List[Any]:
        if names is None:
            return [entry for _, entry in container.items()] if container is not None else []

        selected = []
        for name in names:
            if container is None or name not in container:
                raise PreconditionFailed(f"Unknown {kind} {name!r}.")
            selected.append(container[name])
        return selected

    async def _install(
        self,
        row: CatalogRow,
        catalog: NormalizedCatalog,
        selection: Optional[InstallSelection],
    ) -> InstallReport:
        selection = selection or InstallSelection()
        cores: List[NormalizedCore] = self._select(catalog.cores, selection.cores, "core")
        systems: List[NormalizedSystem] = self._select(catalog.systems, selection.systems, "system")

        if not cores and not systems:
            logger.info(f"Catalog {row.unique_name}: nothing to install")
            return InstallReport(catalog_id=row.id, skipped=True)

        root = self.config.downloads_dir

        async with self._lock(row.id), self._tracking(row.id):
            self._set_state(row.id, UpdateState.DOWNLOADING)
            system_paths: List[Optional[Path]] = []
            for system in systems:
                system_paths.append(await system_downloads.download(catalog, system, self.platform, root))

            core_paths: List[Path] = []
            for core in cores:
                core_paths.append(await core_downloads.download(catalog, core, self.platform, root))

            self._set_state(row.id, UpdateState.VERIFYING)
            self._check_core_systems(row, catalog, cores)

            self._set_state(row.id, UpdateState.INSTALLING)
            system_rows: List[SystemRow] = [
                self.store.create_system_row(row.id, system, path)
                for system, path in zip(systems, system_paths)
            ]
            core_rows: List[CoreRow] = [
                self.store.create_core_row(row.id, core, path)
                for core, path in zip(cores, core_paths)
            ]

        logger.info(
            f"Catalog {row.unique_name}: installed {len(core_rows)} cores, {len(system_rows)} systems"
        )
        return InstallReport(catalog_id=row.id, cores=core_rows, systems=system_rows)

    def _check_core_systems(self, row: CatalogRow, catalog: NormalizedCatalog, cores: List[NormalizedCore]) -> None:
        known = {s.unique_name for s in self.store.list_system_rows(row.id)}
        if catalog.systems is not None:
            known.update(catalog.systems.names())

        for core in cores:
            missing = [name for name in core.system_names if name not in known]
            if missing:
                logger.warning(f"Core {core.unique_name} refers to unknown systems: {', '.join(missing)}")
