"""
Versioned references.

Any catalog field typed as a versioned reference may hold inline data, a URL
string, or a ``{url, version}`` object. :func:`parse_reference` turns the raw
JSON value into one of two named variants before resolution, so the resolver
only ever matches on :class:`Inline` or :class:`Remote`.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from corecatalog.domain.errors import ValidationError
from corecatalog.domain.models import Version
from corecatalog.domain.versions import format_version

if TYPE_CHECKING:
    from corecatalog.domain.schemas import Schema


_VERSION = TypeAdapter(Version)


@dataclass(frozen=True)
class Inline:
    """A value that already conforms to its schema."""

    value: Any


@dataclass(frozen=True)
class Remote:
    """A document to fetch, relative to the referencing document's URL."""

    url: str
    version: Optional[str] = None


Reference = Union[Inline, Remote]


def _is_version(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        _VERSION.validate_python(value)
    except PydanticValidationError:
        return False
    return True


def parse_reference(value: Any, schema: "Schema", url: Optional[str] = None) -> Reference:
    """
    Classify a raw versioned-reference value.

    - a string is a URL;
    - a mapping with a string ``url`` and a valid ``version`` is a versioned URL;
    - anything that validates against ``schema`` is inline data.

    Raises ValidationError if the value is none of these.
    """
    if isinstance(value, str):
        if not value:
            raise ValidationError("Empty URL reference", url=url)
        return Remote(url=value)

    if (
        isinstance(value, Mapping)
        and isinstance(value.get("url"), str)
        and value.get("url")
        and _is_version(value.get("version"))
    ):
        return Remote(url=value["url"], version=format_version(value["version"]))

    if schema.conforms(value):
        return Inline(value=value)

    raise ValidationError(f"Invalid value for schema {schema.name}.", url=url)
