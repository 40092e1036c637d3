"""
Pydantic models for catalog documents, their normalized snapshots and the
persisted rows of the catalog store.

This module defines:
- The wire schemas of catalog documents (Catalog, Core, System, Release, File)
- Normalized variants carrying provenance (`_url` / `_version`)
- Normalized containers (cores, systems, releases) keyed by unique name
- Store rows (catalogs, cores, systems) and install request/response models

Field names are snake_case; the JSON documents use camelCase aliases. Snapshots
are always serialized with ``by_alias=True, exclude_none=True`` so they round-trip
to the same JSON shape the catalog servers publish.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    StrictFloat,
    StrictInt,
    StringConstraints,
    model_serializer,
    model_validator,
)


# ---------------------------------------------------------------------------
# Scalar types
# ---------------------------------------------------------------------------

VERSION_PATTERN = r"^[0-9a-zA-Z][-0-9a-zA-Z._@()+]*$"

Version = Union[
    StrictInt,
    StrictFloat,
    Annotated[str, StringConstraints(min_length=1, max_length=64, pattern=VERSION_PATTERN)],
]

ShortName = Annotated[str, StringConstraints(min_length=3, max_length=32, pattern=r"^[a-zA-Z0-9_-]+$")]

Tag = ShortName

Sha256Hex = Annotated[str, StringConstraints(pattern=r"^[0-9a-fA-F]{64}$")]

Base64Text = Annotated[
    str,
    StringConstraints(pattern=r"^(?:[A-Za-z0-9+/]{4})*(?:[A-Za-z0-9+/]{2}==|[A-Za-z0-9+/]{3}=)?$"),
]

UrlOrRelative = Annotated[str, StringConstraints(min_length=1)]

Links = Dict[str, str]

# Keys reserved for provenance in normalized documents.
PROVENANCE_KEYS = ("_url", "_version")

# File type of the bitstream that makes a core runnable.
CORE_RBF_TYPE = "mister.core.rbf"


class Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Catalog document schemas
# ---------------------------------------------------------------------------


class File(Document):
    """
    A downloadable artifact and the manifest it must match.

    ``size`` and ``sha256`` are always checked after download; ``signature`` is
    checked whenever it is present.
    """

    url: UrlOrRelative = Field(description="Absolute URL or URL relative to the owning document.")
    type: Optional[str] = Field(default=None, description="A mimetype for the file.")
    size: int = Field(ge=0, description="The size (in bytes) of the file.")
    sha256: Sha256Hex = Field(description="The SHA256 hash of the file, in hexadecimal.")
    signature: Optional[Base64Text] = Field(default=None, description="The signature of the file, in base64.")


class GamesDb(File):
    version: Optional[Version] = None
    links: Optional[Links] = None


class System(Document):
    name: str
    unique_name: ShortName = Field(alias="uniqueName")
    description: Optional[str] = None
    icon: Optional[UrlOrRelative] = None
    image: Optional[UrlOrRelative] = None
    games_db: Optional[GamesDb] = Field(default=None, alias="gamesDb")
    db: Optional[File] = None
    tags: Optional[List[Tag]] = None
    links: Optional[Links] = None


class Release(Document):
    files: List[File]
    version: Optional[Version] = None
    tags: Optional[List[Tag]] = None

    def has_tag(self, tag: str) -> bool:
        return tag in (self.tags or [])


class Core(Document):
    name: str = Field(description="Name of the core")
    game_name: Optional[str] = Field(
        default=None,
        alias="gameName",
        description="Name of the game when starting the core",
    )
    unique_name: ShortName = Field(alias="uniqueName", description="Unique short name of the core")
    tags: Optional[List[Tag]] = None
    links: Optional[Links] = None
    description: Optional[str] = None
    icon: Optional[UrlOrRelative] = None
    image: Optional[UrlOrRelative] = None
    releases: List[Release]
    systems: Union[ShortName, List[ShortName]]

    @property
    def system_names(self) -> List[str]:
        return list(self.systems) if isinstance(self.systems, list) else [self.systems]


class CatalogHeader(Document):
    name: Annotated[str, StringConstraints(min_length=3, max_length=64)] = Field(
        description="Name of the catalog.",
    )
    unique_name: ShortName = Field(
        alias="uniqueName",
        description="Unique short name of the catalog. Unique per install.",
    )
    version: Version


class Catalog(CatalogHeader):
    """
    Top-level catalog document as served.

    ``cores``, ``systems`` and ``releases`` are versioned references: inline
    containers, URL strings or ``{url, version}`` objects. They are validated
    when the normalizer parses them.
    """

    cores: Optional[Any] = None
    systems: Optional[Any] = None
    releases: Optional[Any] = None


# ---------------------------------------------------------------------------
# Normalized (provenance-tagged) models
# ---------------------------------------------------------------------------


class Provenance(Document):
    source_url: Optional[str] = Field(
        default=None,
        alias="_url",
        description="Resolved URL this value was fetched from; base for its relative URLs.",
    )
    source_version: Optional[str] = Field(
        default=None,
        alias="_version",
        description="Version declared by the `{url, version}` reference that pointed here.",
    )


class NormalizedSystem(System, Provenance):
    pass


class NormalizedCore(Core, Provenance):
    pass


class NormalizedRelease(Release, Provenance):
    pass


def _is_provenance_key(key: str, value: Any) -> bool:
    # Entries are always objects or lists; provenance values never are.
    if key in PROVENANCE_KEYS:
        return True
    return key in Provenance.model_fields and not isinstance(value, (dict, list))


class _NormalizedMap(Provenance):
    """
    A container of entries keyed by unique name, plus container provenance.

    On the wire the entries sit next to ``_url`` / ``_version`` in one JSON
    object; in Python they live under ``entries``.
    """

    entries: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _split_provenance(cls, data: Any) -> Any:
        if isinstance(data, dict) and "entries" not in data:
            provenance = {k: v for k, v in data.items() if _is_provenance_key(k, v)}
            entries = {k: v for k, v in data.items() if k not in provenance}
            return {**provenance, "entries": entries}
        return data

    @model_validator(mode="after")
    def _check_unique_names(self):
        for key, entry in self.entries.items():
            unique_name = getattr(entry, "unique_name", None)
            if unique_name is not None and unique_name != key:
                raise ValueError(f"key {key!r} !== uniqueName {unique_name!r}")
        return self

    @model_serializer(mode="wrap")
    def _inline_entries(self, handler) -> Dict[str, Any]:
        data = handler(self)
        entries = data.pop("entries", {})
        data.update(entries)
        return data

    def __getitem__(self, name: str) -> Any:
        return self.entries[name]

    def __contains__(self, name: object) -> bool:
        return name in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, name: str, default: Any = None) -> Any:
        return self.entries.get(name, default)

    def names(self) -> List[str]:
        return list(self.entries.keys())

    def items(self) -> Iterator[Tuple[str, Any]]:
        return iter(self.entries.items())


class NormalizedCores(_NormalizedMap):
    entries: Dict[str, NormalizedCore] = Field(default_factory=dict)


class NormalizedSystems(_NormalizedMap):
    entries: Dict[str, NormalizedSystem] = Field(default_factory=dict)


class NormalizedReleases(_NormalizedMap):
    entries: Dict[str, List[NormalizedRelease]] = Field(default_factory=dict)


class NormalizedCatalog(CatalogHeader, Provenance):
    """
    A catalog whose versioned references have all been resolved.

    This is the snapshot persisted verbatim in the store (``json`` / ``latestJson``).
    """

    cores: Optional[NormalizedCores] = None
    systems: Optional[NormalizedSystems] = None
    releases: Optional[NormalizedReleases] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, text: str) -> "NormalizedCatalog":
        return cls.model_validate_json(text)


# ---------------------------------------------------------------------------
# Store rows
# ---------------------------------------------------------------------------


class CatalogRow(Document):
    """
    A persisted catalog.

    Persisted at: <DATA_DIR>/catalogs/<id>/catalog.json
    """

    id: int
    name: str
    unique_name: str = Field(alias="uniqueName")
    url: str
    version: Optional[str] = None
    priority: int = 0
    last_update_at: Optional[datetime] = Field(default=None, alias="lastUpdateAt")
    update_pending: bool = Field(default=False, alias="updatePending")
    current_json: str = Field(alias="json", description="Current (installed) normalized snapshot.")
    latest_json: Optional[str] = Field(
        default=None,
        alias="latestJson",
        description="Pending newer snapshot found by the last check, if any.",
    )

    _snapshots: Optional[Tuple[NormalizedCatalog, Optional[NormalizedCatalog]]] = PrivateAttr(default=None)

    def snapshots(self) -> Tuple[NormalizedCatalog, Optional[NormalizedCatalog]]:
        """Parse (and cache) the current and latest snapshots of this row."""
        if self._snapshots is None:
            current = NormalizedCatalog.from_json(self.current_json)
            latest = NormalizedCatalog.from_json(self.latest_json) if self.latest_json else None
            self._snapshots = (current, latest)
        return self._snapshots


class CoreRow(Document):
    """
    An installed core.

    Persisted at: <DATA_DIR>/catalogs/<catalog id>/cores/<uniqueName>.json
    """

    id: int
    catalog_id: int = Field(alias="catalogId")
    name: str
    unique_name: str = Field(alias="uniqueName")
    rbf_path: Optional[str] = Field(default=None, alias="rbfPath")
    systems: List[str] = Field(default_factory=list)


class SystemRow(Document):
    """
    An installed system.

    Persisted at: <DATA_DIR>/catalogs/<catalog id>/systems/<uniqueName>.json
    """

    id: int
    catalog_id: int = Field(alias="catalogId")
    name: str
    unique_name: str = Field(alias="uniqueName")
    db_path: Optional[str] = Field(default=None, alias="dbPath")


# ---------------------------------------------------------------------------
# API request/response models
# ---------------------------------------------------------------------------


class CreateCatalogRequest(BaseModel):
    url: str = Field(description="URL of the catalog (scheme optional, `catalog.json` optional).")
    priority: int = Field(default=0, description="Lower priorities are listed first.")


class InstallSelection(BaseModel):
    """
    Which entries of a catalog to install. ``None`` means every entry.
    """

    cores: Optional[List[str]] = Field(default=None, description="Unique names of cores to install.")
    systems: Optional[List[str]] = Field(default=None, description="Unique names of systems to install.")


class InstallReport(Document):
    catalog_id: int = Field(alias="catalogId")
    cores: List[CoreRow] = Field(default_factory=list)
    systems: List[SystemRow] = Field(default_factory=list)
    skipped: bool = Field(default=False, description="True when nothing was selected.")
