"""
Document schemas used by the normalizer.

A schema validates a raw JSON value and, once validated, tags it with
provenance. Entry schemas (core, system, release list) produce Normalized
models directly. Container schemas produce a :class:`ResolvedContainer` whose
entries are still raw versioned references, resolved in a second pass.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from corecatalog.domain.errors import ValidationError
from corecatalog.domain.references import parse_reference
from corecatalog.domain.models import (
    PROVENANCE_KEYS,
    Catalog,
    Core,
    NormalizedCore,
    NormalizedRelease,
    NormalizedSystem,
    Release,
    System,
)

T = TypeVar("T")


def _errors_of(exc: PydanticValidationError) -> List[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


class Schema(Generic[T]):
    """A named validator plus a provenance tagger."""

    def __init__(
        self,
        name: str,
        adapter: TypeAdapter,
        tag: Callable[[Any, Optional[str], Optional[str]], T],
    ):
        self.name = name
        self._adapter = adapter
        self._tag = tag

    def __repr__(self) -> str:
        return f"Schema({self.name})"

    def validate(self, value: Any, url: Optional[str] = None) -> Any:
        """Validate ``value`` and return its parsed form, or raise ValidationError."""
        try:
            return self._adapter.validate_python(value)
        except PydanticValidationError as e:
            raise ValidationError(_errors_of(e), url=url) from e

    def conforms(self, value: Any) -> bool:
        try:
            self._adapter.validate_python(value)
        except PydanticValidationError:
            return False
        return True

    def tag(self, value: Any, url: Optional[str], version: Optional[str]) -> T:
        """Validate ``value`` and attach provenance to it."""
        self.validate(value, url)
        try:
            return self._tag(value, url, version)
        except PydanticValidationError as e:
            raise ValidationError(_errors_of(e), url=url) from e


@dataclass
class ResolvedContainer:
    """A container document whose entries are not resolved yet."""

    entries: Dict[str, Any] = field(default_factory=dict)
    source_url: Optional[str] = None
    source_version: Optional[str] = None


def _with_provenance(value: Any, url: Optional[str], version: Optional[str]) -> Dict[str, Any]:
    data = dict(value)
    data["_url"] = url
    if version is not None:
        data["_version"] = version
    return data


def _entry_tagger(model) -> Callable[[Any, Optional[str], Optional[str]], Any]:
    def tag(value: Any, url: Optional[str], version: Optional[str]):
        return model.model_validate(_with_provenance(value, url, version))

    return tag


def _release_list_tagger(value: Any, url: Optional[str], version: Optional[str]) -> List[NormalizedRelease]:
    return [
        NormalizedRelease.model_validate(_with_provenance(release, url, version))
        for release in value
    ]


def _container_tagger(entry_schema: Schema) -> Callable[[Any, Optional[str], Optional[str]], ResolvedContainer]:
    def tag(value: Any, url: Optional[str], version: Optional[str]) -> ResolvedContainer:
        if not isinstance(value, dict):
            raise ValidationError(f"{entry_schema.name} container must be an object", url=url)
        entries = {k: v for k, v in value.items() if k not in PROVENANCE_KEYS}
        for key, entry in entries.items():
            _check_reference_shape(key, entry, entry_schema, url)
        return ResolvedContainer(entries=entries, source_url=url, source_version=version)

    return tag


def _check_reference_shape(key: str, entry: Any, entry_schema: Schema, url: Optional[str]) -> None:
    """
    Every entry of a container must be a URL, a ``{url, version}`` object or an
    inline value of the entry schema. Inline entries must be keyed by their
    own ``uniqueName``.
    """
    parse_reference(entry, entry_schema, url=url)
    if isinstance(entry, dict) and "uniqueName" in entry and entry["uniqueName"] != key:
        raise ValidationError(
            f"key {key!r} !== uniqueName {entry['uniqueName']!r}",
            url=url,
        )


_ANY_OBJECT = TypeAdapter(Dict[str, Any])

CATALOG: Schema[Catalog] = Schema(
    "Catalog", TypeAdapter(Catalog), lambda value, url, version: Catalog.model_validate(value)
)

CORE: Schema[NormalizedCore] = Schema("Core", TypeAdapter(Core), _entry_tagger(NormalizedCore))
SYSTEM: Schema[NormalizedSystem] = Schema("System", TypeAdapter(System), _entry_tagger(NormalizedSystem))
RELEASE_LIST: Schema[List[NormalizedRelease]] = Schema(
    "Release[]", TypeAdapter(List[Release]), _release_list_tagger
)

CORES: Schema[ResolvedContainer] = Schema("Cores", _ANY_OBJECT, _container_tagger(CORE))
SYSTEMS: Schema[ResolvedContainer] = Schema("Systems", _ANY_OBJECT, _container_tagger(SYSTEM))
RELEASES: Schema[ResolvedContainer] = Schema("Releases", _ANY_OBJECT, _container_tagger(RELEASE_LIST))

# Entry schema for each container schema.
ENTRY_SCHEMAS: Dict[str, Schema] = {
    CORES.name: CORE,
    SYSTEMS.name: SYSTEM,
    RELEASES.name: RELEASE_LIST,
}
