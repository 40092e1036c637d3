"""
Version ordering for catalog documents.

Versions in catalogs are loosely "semver-ish" strings or plain numbers. They are
compared segment by segment (split on ``.``): numerically when both segments are
finite numbers, lexicographically otherwise. A missing version always sorts
lowest, and when every shared segment is equal the longer version wins
(``0.2.3-1`` > ``0.2.3`` and ``0.2.3.1`` > ``0.2.3``).
"""
from __future__ import annotations

import math
from collections.abc import Mapping
from functools import cmp_to_key
from typing import Any, Optional, Sequence, TypeVar

from corecatalog.domain.errors import PreconditionFailed

T = TypeVar("T")

LATEST_TAG = "latest"
PRERELEASE_TAGS = ("alpha", "beta")


def format_version(value: Any) -> str:
    """Render a version scalar the way it appears in JSON (``2.0`` -> ``"2"``)."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def version_of(value: Any) -> Optional[str]:
    """
    Extract the version of a bare scalar, a mapping or a model.

    Mappings expose ``version`` or ``_version``; models expose ``version`` or
    ``source_version`` (the alias of ``_version``). ``None`` means "no version".
    """
    if isinstance(value, Mapping):
        value = value.get("version") if value.get("version") is not None else value.get("_version")
    elif value is not None and not isinstance(value, (str, int, float)):
        version = getattr(value, "version", None)
        value = version if version is not None else getattr(value, "source_version", None)

    if value is None:
        return None
    return format_version(value)


def _as_number(segment: str) -> Optional[float]:
    if "_" in segment:
        return None
    try:
        number = float(segment)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def _compare_segment(a: str, b: str) -> int:
    a_number, b_number = _as_number(a), _as_number(b)
    if a_number is not None and b_number is not None:
        return _sign(a_number - b_number)
    return (a > b) - (a < b)


def compare(a: Any, b: Any) -> int:
    """
    Compare two versions (or versioned values).

    Returns -1 if ``a`` is older than ``b``, 0 if equal and 1 if newer.
    """
    a_version, b_version = version_of(a), version_of(b)

    if a_version is None:
        return 0 if b_version is None else -1
    if b_version is None:
        return 1

    a_parts = a_version.split(".")
    b_parts = b_version.split(".")
    for a_part, b_part in zip(a_parts, b_parts):
        result = _compare_segment(a_part, b_part)
        if result != 0:
            return result

    return _sign(len(a_parts) - len(b_parts))


def compare_desc(a: Any, b: Any) -> int:
    """Reverse of :func:`compare`, for sorting newest first."""
    return -compare(a, b)


def sort_desc(values: Sequence[T]) -> list[T]:
    """Sort newest first. Equal versions keep their original order."""
    return sorted(values, key=cmp_to_key(compare_desc))


def _tags(release: Any) -> Sequence[str]:
    if isinstance(release, Mapping):
        return release.get("tags") or []
    return getattr(release, "tags", None) or []


def get_latest_tag_of(releases: Sequence[T], tag: str) -> Optional[T]:
    """Return the highest release carrying ``tag``, if any."""
    tagged = sort_desc([r for r in releases if tag in _tags(r)])
    return tagged[0] if tagged else None


def latest_of(releases: Sequence[T]) -> Optional[T]:
    """
    Select the release to install from a list.

    1. The highest version tagged ``latest``.
    2. Otherwise the highest version not tagged ``alpha`` or ``beta``.
    3. Otherwise the first release, in the order given.
    """
    tagged = get_latest_tag_of(releases, LATEST_TAG)
    if tagged is not None:
        return tagged

    stable = sort_desc(
        [r for r in releases if not any(t in PRERELEASE_TAGS for t in _tags(r))]
    )
    if stable:
        return stable[0]

    return releases[0] if releases else None


def assert_version_lt(a: Any, b: Any, message: Optional[str] = None) -> None:
    if compare(a, b) >= 0:
        raise PreconditionFailed(
            message
            or f"Version {version_of(a)!r} should be lower than {version_of(b)!r}."
        )


def assert_version_gt(a: Any, b: Any, message: Optional[str] = None) -> None:
    if compare(a, b) <= 0:
        raise PreconditionFailed(
            message
            or f"Version {version_of(a)!r} should be greater than {version_of(b)!r}."
        )
