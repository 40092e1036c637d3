"""
Compute the update set between an installed catalog snapshot and a newer one.
"""
from __future__ import annotations

from typing import Optional

from corecatalog.domain.models import (
    CatalogRow,
    NormalizedCatalog,
    NormalizedCores,
    NormalizedReleases,
    NormalizedSystems,
)
from corecatalog.domain.versions import compare, latest_of


def _is_newer(latest_entry, current_entry) -> bool:
    # An entry missing from the installed snapshot is always part of the update.
    return current_entry is None or compare(latest_entry, current_entry) > 0


def _empty_like(container, model):
    """An empty container carrying the provenance of ``container``."""
    if container is None:
        return model(entries={})
    return model(
        source_url=container.source_url,
        source_version=container.source_version,
        entries={},
    )


def diff(current: NormalizedCatalog, latest: Optional[NormalizedCatalog] = None) -> NormalizedCatalog:
    """
    Return the entries of ``latest`` that are strictly newer than in ``current``.

    The result carries the top-level metadata of ``latest`` (or ``current`` when
    there is no latest) and container provenance copied from ``latest``. When
    ``latest`` is missing or not newer than ``current`` every container is empty.

    Both snapshots must come from the same catalog.
    """
    empty = (latest if latest is not None else current).model_copy(
        update={
            "cores": NormalizedCores(),
            "systems": NormalizedSystems(),
            "releases": NormalizedReleases(),
        }
    )

    if latest is None or compare(current, latest) >= 0:
        return empty

    cores = _empty_like(latest.cores, NormalizedCores)
    if latest.cores is not None:
        for name, core in latest.cores.items():
            installed = current.cores.get(name) if current.cores is not None else None
            if _is_newer(core, installed):
                cores.entries[name] = core

    systems = _empty_like(latest.systems, NormalizedSystems)
    if latest.systems is not None:
        for name, system in latest.systems.items():
            installed = current.systems.get(name) if current.systems is not None else None
            if _is_newer(system, installed):
                systems.entries[name] = system

    releases = _empty_like(latest.releases, NormalizedReleases)
    if latest.releases is not None:
        for name, release_list in latest.releases.items():
            installed = current.releases.get(name) if current.releases is not None else None
            # Only the selected release of each side is compared.
            if _is_newer(latest_of(release_list), latest_of(installed) if installed is not None else None):
                releases.entries[name] = release_list

    return empty.model_copy(update={"cores": cores, "systems": systems, "releases": releases})


def latest_diff(row: CatalogRow) -> NormalizedCatalog:
    """
    The update set of a stored catalog: its pending latest snapshot diffed
    against its current one. Empty when no newer snapshot is pending.
    """
    current, latest = row.snapshots()
    return diff(current, latest)
