from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from corecatalog.domain.models import (
    CatalogRow,
    CoreRow,
    NormalizedCatalog,
    NormalizedCore,
    NormalizedSystem,
    SystemRow,
)


class DatabaseManager(ABC):
    """
    Abstract base class for the catalog row store.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the storage subsystem (e.g. load from disk)."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release any resource held by the store."""
        pass

    @abstractmethod
    def create_catalog_row(self, catalog: NormalizedCatalog, url: str, priority: int = 0) -> CatalogRow:
        """Persist a freshly normalized catalog as the current snapshot."""
        pass

    @abstractmethod
    def list_catalog_rows(self) -> List[CatalogRow]:
        """All catalogs, lowest priority first."""
        pass

    @abstractmethod
    def get_catalog_row(self, catalog_id: int) -> Optional[CatalogRow]:
        pass

    @abstractmethod
    def set_latest(self, catalog_id: int, latest: NormalizedCatalog) -> CatalogRow:
        """Record a newer remote snapshot and mark the catalog as having an update pending."""
        pass

    @abstractmethod
    def apply_latest(self, catalog_id: int) -> CatalogRow:
        """Fold the pending snapshot into the current one."""
        pass

    @abstractmethod
    def create_core_row(self, catalog_id: int, core: NormalizedCore, rbf_path: Optional[Path]) -> CoreRow:
        """Create (or replace) the row of an installed core."""
        pass

    @abstractmethod
    def create_system_row(self, catalog_id: int, system: NormalizedSystem, db_path: Optional[Path]) -> SystemRow:
        """Create (or replace) the row of an installed system."""
        pass

    @abstractmethod
    def list_core_rows(self, catalog_id: Optional[int] = None) -> List[CoreRow]:
        pass

    @abstractmethod
    def list_system_rows(self, catalog_id: Optional[int] = None) -> List[SystemRow]:
        pass
