"""
Download center endpoints: register catalogs, check them for updates and
install their cores and systems.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from corecatalog.core.dependencies import get_catalog_row, get_catalog_service, get_store
from corecatalog.domain.models import CatalogRow, CreateCatalogRequest, InstallSelection
from corecatalog.services.catalogs import CANCELLED, CatalogService
from corecatalog.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)
router = APIRouter()


def _summary(row: CatalogRow) -> Dict[str, Any]:
    return row.model_dump(mode="json", by_alias=True, exclude={"current_json", "latest_json"})


def _cancelled() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Catalog could not be fetched; operation cancelled",
    )


# ---------------------------------------------------------------------------
# Catalogs
# ---------------------------------------------------------------------------

@router.get("")
async def list_catalogs(store: DatabaseManager = Depends(get_store)) -> List[Dict[str, Any]]:
    return [_summary(row) for row in store.list_catalog_rows()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_catalog(
    body: CreateCatalogRequest,
    service: CatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    """
    Fetch, normalize and store a new catalog.
    """
    row = await service.create(body.url, body.priority)
    if row is CANCELLED:
        raise _cancelled()
    return _summary(row)


@router.post("/check")
async def check_all(service: CatalogService = Depends(get_catalog_service)) -> Dict[str, Any]:
    result = await service.check()
    if result is CANCELLED:
        raise _cancelled()
    return {"updateAvailable": result}


@router.get("/{catalog_id}")
async def get_catalog(row: CatalogRow = Depends(get_catalog_row)) -> Dict[str, Any]:
    current, _ = row.snapshots()
    data = _summary(row)
    data["catalog"] = json.loads(current.to_json())
    return data


@router.post("/{catalog_id}/check")
async def check_catalog(
    row: CatalogRow = Depends(get_catalog_row),
    service: CatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    result = await service.check(row)
    if result is CANCELLED:
        raise _cancelled()
    return {"updateAvailable": result}


@router.get("/{catalog_id}/updates")
async def get_updates(
    row: CatalogRow = Depends(get_catalog_row),
    service: CatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    """
    The cores, systems and releases that changed in the pending snapshot.
    """
    return json.loads(service.latest_diff(row).to_json())


@router.get("/{catalog_id}/state")
async def get_state(
    catalog_id: int,
    row: CatalogRow = Depends(get_catalog_row),
    service: CatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    return {"catalogId": catalog_id, "state": service.state_of(catalog_id).value}


# ---------------------------------------------------------------------------
# Installation
# ---------------------------------------------------------------------------

@router.post("/{catalog_id}/install")
async def install_catalog(
    selection: Optional[InstallSelection] = None,
    row: CatalogRow = Depends(get_catalog_row),
    service: CatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    report = await service.install(row, selection)
    return report.model_dump(mode="json", by_alias=True)


@router.post("/{catalog_id}/update")
async def update_catalog(
    selection: Optional[InstallSelection] = None,
    row: CatalogRow = Depends(get_catalog_row),
    service: CatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    report = await service.update(row, selection)
    return report.model_dump(mode="json", by_alias=True)


@router.post("/{catalog_id}/platform-upgrade")
async def upgrade_platform(
    row: CatalogRow = Depends(get_catalog_row),
    service: CatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    """
    Stage the platform binary from the catalog's pending releases, if newer
    than the running one.
    """
    result = await service.update_platform(row)
    if result is CANCELLED:
        return {"upgraded": False, "cancelled": True}
    return {"upgraded": result, "cancelled": False}
