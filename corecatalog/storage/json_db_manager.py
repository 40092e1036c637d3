import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from corecatalog.domain.errors import PreconditionFailed
from corecatalog.domain.models import (
    CatalogRow,
    CoreRow,
    NormalizedCatalog,
    NormalizedCore,
    NormalizedSystem,
    SystemRow,
)
from corecatalog.domain.versions import format_version
from corecatalog.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)

CATALOG_FILE_NAME = "catalog.json"


class JsonDatabaseManager(DatabaseManager):
    """
    Row store backed by JSON files, with an in-memory index built from disk.

    Layout::

        <data_dir>/catalogs/<id>/catalog.json
        <data_dir>/catalogs/<id>/cores/<uniqueName>.json
        <data_dir>/catalogs/<id>/systems/<uniqueName>.json
    """

    def __init__(self, data_dir: Path):
        self._data_dir = data_dir
        self._catalogs: Dict[int, CatalogRow] = {}
        self._cores: Dict[int, Dict[str, CoreRow]] = {}
        self._systems: Dict[int, Dict[str, SystemRow]] = {}

        # Ensure data directory exists
        if not self._data_dir.exists():
            self._data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def catalogs_dir(self) -> Path:
        return self._data_dir / "catalogs"

    def initialize(self) -> None:
        self._build_index_from_disk()

    def close(self) -> None:
        self._catalogs.clear()
        self._cores.clear()
        self._systems.clear()

    # -- catalogs ----------------------------------------------------------

    def create_catalog_row(self, catalog: NormalizedCatalog, url: str, priority: int = 0) -> CatalogRow:
        for existing in self._catalogs.values():
            if existing.unique_name == catalog.unique_name:
                raise PreconditionFailed(f"Catalog {catalog.unique_name!r} already exists.")

        row = CatalogRow(
            id=max(self._catalogs, default=0) + 1,
            name=catalog.name,
            unique_name=catalog.unique_name,
            url=url,
            version=format_version(catalog.version),
            priority=priority,
            last_update_at=datetime.now(timezone.utc),
            current_json=catalog.to_json(),
        )
        self._write_catalog(row)
        self._cores[row.id] = {}
        self._systems[row.id] = {}
        logger.info(f"Created catalog {row.unique_name} (id={row.id})")
        return row

    def list_catalog_rows(self) -> List[CatalogRow]:
        return sorted(self._catalogs.values(), key=lambda r: (r.priority, r.id))

    def get_catalog_row(self, catalog_id: int) -> Optional[CatalogRow]:
        return self._catalogs.get(catalog_id)

    def set_latest(self, catalog_id: int, latest: NormalizedCatalog) -> CatalogRow:
        row = self._require_catalog(catalog_id)
        updated = self._replace(
            row,
            latest_json=latest.to_json(),
            update_pending=True,
            last_update_at=datetime.now(timezone.utc),
        )
        self._write_catalog(updated)
        return updated

    def apply_latest(self, catalog_id: int) -> CatalogRow:
        row = self._require_catalog(catalog_id)
        if not row.latest_json:
            raise PreconditionFailed(f"Catalog {row.unique_name!r} has no pending update.")

        latest = NormalizedCatalog.from_json(row.latest_json)
        updated = self._replace(
            row,
            name=latest.name,
            version=format_version(latest.version),
            current_json=row.latest_json,
            latest_json=None,
            update_pending=False,
            last_update_at=datetime.now(timezone.utc),
        )
        self._write_catalog(updated)
        return updated

    # -- cores / systems ---------------------------------------------------

    def create_core_row(self, catalog_id: int, core: NormalizedCore, rbf_path: Optional[Path]) -> CoreRow:
        self._require_catalog(catalog_id)
        rows = self._cores.setdefault(catalog_id, {})
        existing = rows.get(core.unique_name)

        row = CoreRow(
            id=existing.id if existing else self._next_id(self._cores),
            catalog_id=catalog_id,
            name=core.name,
            unique_name=core.unique_name,
            rbf_path=str(rbf_path) if rbf_path is not None else None,
            systems=core.system_names,
        )
        self._write_row(catalog_id, "cores", row.unique_name, row)
        rows[row.unique_name] = row
        return row

    def create_system_row(self, catalog_id: int, system: NormalizedSystem, db_path: Optional[Path]) -> SystemRow:
        self._require_catalog(catalog_id)
        rows = self._systems.setdefault(catalog_id, {})
        existing = rows.get(system.unique_name)

        row = SystemRow(
            id=existing.id if existing else self._next_id(self._systems),
            catalog_id=catalog_id,
            name=system.name,
            unique_name=system.unique_name,
            db_path=str(db_path) if db_path is not None else None,
        )
        self._write_row(catalog_id, "systems", row.unique_name, row)
        rows[row.unique_name] = row
        return row

    def list_core_rows(self, catalog_id: Optional[int] = None) -> List[CoreRow]:
        return self._list_rows(self._cores, catalog_id)

    def list_system_rows(self, catalog_id: Optional[int] = None) -> List[SystemRow]:
        return self._list_rows(self._systems, catalog_id)

    # -- helpers -----------------------------------------------------------

    def _require_catalog(self, catalog_id: int) -> CatalogRow:
        row = self._catalogs.get(catalog_id)
        if row is None:
            raise ValueError(f"Catalog {catalog_id} not found")
        return row

    @staticmethod
    def _replace(row: CatalogRow, **changes: Any) -> CatalogRow:
        # Rebuilt rather than copied so the parsed snapshot cache starts empty.
        return CatalogRow.model_validate({**row.model_dump(), **changes})

    @staticmethod
    def _next_id(index: Dict[int, Dict[str, Any]]) -> int:
        return max((r.id for rows in index.values() for r in rows.values()), default=0) + 1

    @staticmethod
    def _list_rows(index: Dict[int, Dict[str, Any]], catalog_id: Optional[int]) -> List[Any]:
        if catalog_id is not None:
            rows = list(index.get(catalog_id, {}).values())
        else:
            rows = [r for rows in index.values() for r in rows.values()]
        return sorted(rows, key=lambda r: r.id)

    def _write_catalog(self, row: CatalogRow) -> None:
        catalog_dir = self.catalogs_dir / str(row.id)
        catalog_dir.mkdir(parents=True, exist_ok=True)
        path = catalog_dir / CATALOG_FILE_NAME
        path.write_text(row.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        self._catalogs[row.id] = row

    def _write_row(self, catalog_id: int, kind: str, name: str, row: Any) -> None:
        row_dir = self.catalogs_dir / str(catalog_id) / kind
        row_dir.mkdir(parents=True, exist_ok=True)
        path = row_dir / f"{name}.json"
        path.write_text(row.model_dump_json(by_alias=True, indent=2), encoding="utf-8")

    def _build_index_from_disk(self) -> None:
        self._catalogs = {}
        self._cores = {}
        self._systems = {}

        if not self.catalogs_dir.exists():
            return

        for catalog_dir in self.catalogs_dir.iterdir():
            if not catalog_dir.is_dir():
                continue

            catalog_json = catalog_dir / CATALOG_FILE_NAME
            if not catalog_json.exists():
                continue

            try:
                row = CatalogRow.model_validate_json(catalog_json.read_text(encoding="utf-8"))
            except PydanticValidationError as e:
                logger.warning(f"Skipping unreadable catalog row {catalog_json}: {e}")
                continue

            self._catalogs[row.id] = row
            self._cores[row.id] = self._load_rows(catalog_dir / "cores", CoreRow)
            self._systems[row.id] = self._load_rows(catalog_dir / "systems", SystemRow)

        logger.info(f"Loaded {len(self._catalogs)} catalogs from {self.catalogs_dir}")

    @staticmethod
    def _load_rows(directory: Path, model) -> Dict[str, Any]:
        rows: Dict[str, Any] = {}
        if not directory.exists():
            return rows

        for path in sorted(directory.glob("*.json")):
            try:
                row = model.model_validate_json(path.read_text(encoding="utf-8"))
            except PydanticValidationError as e:
                logger.warning(f"Skipping unreadable row {path}: {e}")
                continue
            rows[row.unique_name] = row
        return rows
