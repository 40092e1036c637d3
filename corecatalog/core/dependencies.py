import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Generic, Iterator, List, TypeVar

import httpx
from fastapi import Depends, HTTPException, Request, status

from corecatalog.core.config import ServiceConfig
from corecatalog.domain.models import CatalogRow
from corecatalog.services.catalogs import CatalogService
from corecatalog.services.platform import (
    Ed25519SignatureVerifier,
    FixedPrompt,
    HttpNetwork,
    LocalFileSystem,
    Platform,
    RejectingSignatureVerifier,
    StagingUpgrader,
)
from corecatalog.storage.db_manager import DatabaseManager
from corecatalog.storage.json_db_manager import JsonDatabaseManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

STORE_HANDLE = "catalogs"

# Index of the choice picked by the non-interactive prompt: "Cancel" on a
# Retry/Cancel question, "Update and Restart" on an upgrade confirmation.
NON_INTERACTIVE_CHOICE = 1


class HandleRegistry(Generic[T]):
    """
    Reference-counted handles, opened on first acquisition and closed when the
    last holder releases them.

    Handles must expose ``close()``.
    """

    def __init__(self, factory: Callable[[str], T]):
        self._factory = factory
        self._handles: Dict[str, T] = {}
        self._refs: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def names(self) -> List[str]:
        return list(self._handles)

    @contextmanager
    def acquire(self, name: str) -> Iterator[T]:
        handle = self._handles.get(name)
        if handle is None:
            logger.debug(f"Opening handle {name}")
            handle = self._factory(name)
            self._handles[name] = handle
            self._refs[name] = 0

        self._refs[name] += 1
        try:
            yield handle
        finally:
            self._release(name)

    def _release(self, name: str) -> None:
        if name not in self._refs:
            return
        self._refs[name] -= 1
        if self._refs[name] == 0:
            self._close(name)

    def _close(self, name: str) -> None:
        handle = self._handles.pop(name)
        self._refs.pop(name, None)
        logger.debug(f"Closing handle {name}")
        handle.close()

    def close_all(self) -> None:
        for name in list(self._handles):
            self._close(name)


def open_store(data_dir: Path) -> DatabaseManager:
    store = JsonDatabaseManager(data_dir)
    store.initialize()
    return store


def build_platform(config: ServiceConfig, client: httpx.AsyncClient) -> Platform:
    public_key = config.public_key_bytes()
    if public_key is not None:
        signatures = Ed25519SignatureVerifier(public_key)
    else:
        logger.warning("No signature public key configured; signed files will be rejected")
        signatures = RejectingSignatureVerifier()

    return Platform(
        network=HttpNetwork(client),
        files=LocalFileSystem(),
        signatures=signatures,
        prompt=FixedPrompt(NON_INTERACTIVE_CHOICE),
        upgrader=StagingUpgrader(config.staging_dir),
    )


def get_store(request: Request) -> DatabaseManager:
    return request.app.state.store


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog_service


def get_catalog_row(catalog_id: int, store: DatabaseManager = Depends(get_store)) -> CatalogRow:
    row = store.get_catalog_row(catalog_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Catalog {catalog_id} not found")
    return row
