"""
Fetch a catalog and resolve every versioned reference in it.

Resolution happens in two fixed passes below the catalog: first each container
(cores, systems, releases), then every entry of that container, relative to the
container's own URL. The schema fixes the depth at catalog -> container -> entry,
so there is no open-ended recursion.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional
from urllib.parse import urljoin

from corecatalog.domain import schemas
from corecatalog.domain.errors import CatalogError, NetworkError, ValidationError
from corecatalog.domain.models import (
    NormalizedCatalog,
    NormalizedCores,
    NormalizedReleases,
    NormalizedSystems,
)
from corecatalog.domain.references import Inline, Remote, parse_reference
from corecatalog.domain.schemas import ResolvedContainer, Schema
from corecatalog.services.platform import Network, Prompt

logger = logging.getLogger(__name__)

CATALOG_DOCUMENT_NAME = "catalog.json"

RETRY_CHOICES = ("Retry fetching", "Cancel")


class WellKnownCatalogs(str, Enum):
    """Catalogs that are officially known."""

    # The basic stable catalog.
    ONE_FPGA = "https://catalog.1fpga.cloud/catalog.json"

    # The beta catalog (not yet available).
    ONE_FPGA_BETA = "https://catalog.1fpga.cloud/beta.json"

    # Only exists in development.
    LOCAL_TEST = "http://localhost:8081/catalog.json"


def normalize_url(url: str) -> str:
    url = url.strip()
    if not url.startswith("https://") and not url.startswith("http://"):
        url = "https://" + url
    return url


class Normalizer:
    """
    Resolves catalogs into provenance-tagged snapshots.

    ``prompt`` is asked Retry/Cancel when a nested document cannot be fetched;
    without one, fetch errors propagate immediately.
    """

    def __init__(self, network: Network, prompt: Optional[Prompt] = None):
        self.network = network
        self.prompt = prompt

    async def _fetch_json(self, url: str, allow_retry: bool) -> Any:
        while True:
            try:
                return await self.network.fetch_json(url)
            except NetworkError as e:
                if not allow_retry or self.prompt is None:
                    logger.warning(f"Error fetching JSON: {e}")
                    raise

                choice = await self.prompt.choose(
                    "Error fetching JSON",
                    f"URL: {url}\n\n{e}\n",
                    RETRY_CHOICES,
                )
                if choice == 1:
                    e.cancelled = True
                    raise

    async def fetch_and_validate(self, url: str, schema: Schema, allow_retry: bool = True) -> Any:
        """Fetch ``url`` and validate it. Returns the raw JSON value."""
        value = await self._fetch_json(url, allow_retry)
        schema.validate(value, url=url)
        return value

    async def resolve(self, base_url: Optional[str], value: Any, schema: Schema) -> Any:
        """
        Resolve one versioned reference against ``base_url``.

        URLs (bare or ``{url, version}``) are fetched, validated and tagged with
        the resolved ``_url`` (and ``_version``); inline values are tagged with
        ``_url = base_url``.
        """
        reference = parse_reference(value, schema, url=base_url)

        if isinstance(reference, Remote):
            url = urljoin(base_url or "", reference.url)
            logger.debug(f"Resolving {schema.name} at {url}")
            raw = await self.fetch_and_validate(url, schema, allow_retry=True)
            return schema.tag(raw, url, reference.version)

        if isinstance(reference, Inline):
            return schema.tag(reference.value, base_url, None)

        raise ValidationError(f"Invalid value for schema {schema.name}.", url=base_url)

    async def _resolve_container(self, base_url: str, value: Any, schema: Schema, model):
        if value is None:
            return None

        container: ResolvedContainer = await self.resolve(base_url, value, schema)
        entry_schema = schemas.ENTRY_SCHEMAS[schema.name]

        entries = {}
        for name, entry in container.entries.items():
            entries[name] = await self.resolve(container.source_url, entry, entry_schema)

        try:
            return model(
                source_url=container.source_url,
                source_version=container.source_version,
                entries=entries,
            )
        except ValueError as e:
            raise ValidationError(str(e), url=container.source_url) from e

    async def resolve_catalog(self, url: str) -> NormalizedCatalog:
        """Fetch the catalog at ``url`` (no interactive retry) and resolve its containers."""
        raw = await self.fetch_and_validate(url, schemas.CATALOG, allow_retry=False)
        catalog = schemas.CATALOG.tag(raw, url, None)

        cores = await self._resolve_container(url, catalog.cores, schemas.CORES, NormalizedCores)
        systems = await self._resolve_container(url, catalog.systems, schemas.SYSTEMS, NormalizedSystems)
        releases = await self._resolve_container(url, catalog.releases, schemas.RELEASES, NormalizedReleases)

        return NormalizedCatalog(
            name=catalog.name,
            unique_name=catalog.unique_name,
            version=catalog.version,
            source_url=url,
            cores=cores,
            systems=systems,
            releases=releases,
        )

    async def fetch_and_normalize_catalog(self, url: str) -> NormalizedCatalog:
        """
        Fetch and normalize a catalog, trying the usual URL variants on failure.

        On any error other than ValidationError: retry at ``<url>/catalog.json``
        if the URL does not already point at it, then retry ``http://`` as
        ``https://``, then give up.
        """
        url = normalize_url(url)
        logger.info(f"Fetching catalog {url}")

        try:
            return await self.resolve_catalog(url)
        except ValidationError:
            raise
        except NetworkError as e:
            if e.cancelled:
                raise
            return await self._fall_back(url, e)
        except CatalogError as e:
            return await self._fall_back(url, e)

    async def _fall_back(self, url: str, error: CatalogError) -> NormalizedCatalog:
        logger.error(f"Error fetching catalog: {error}")

        if not url.endswith("/" + CATALOG_DOCUMENT_NAME):
            return await self.fetch_and_normalize_catalog(
                url.rstrip("/") + "/" + CATALOG_DOCUMENT_NAME
            )
        if url.startswith("http://"):
            return await self.fetch_and_normalize_catalog("https://" + url[len("http://"):])
        raise error
