"""Fetching everything a comparison needs from both instances."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import TypeAdapter

from cmsync.domain.errors import ContentStoreError, NetworkError
from cmsync.domain.fingerprint import compute_fingerprint
from cmsync.domain.model import (
    ContentEntry,
    ContentTypeRef,
    ContentTypeSchema,
    FileAsset,
    SchemaCatalog,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from cmsync.config import SyncConfig
    from cmsync.domain.fingerprint import FingerprintCache
    from cmsync.domain.model import Page
    from cmsync.domain.ports import ContentStore

log = getLogger(__name__)


@dataclass(slots=True, kw_only=True)
class SidePrefetch:
    """Entries (by content type uid) and files of one instance."""

    instance: str
    entries: dict[str, list[ContentEntry]] = field(
        default_factory=dict["str", "list[ContentEntry]"]
    )
    files: list[FileAsset] = field(default_factory=list["FileAsset"])


@dataclass(slots=True, kw_only=True)
class ComparisonPrefetch:
    content_types: list[ContentTypeRef]
    source: SidePrefetch
    target: SidePrefetch
    fetched_at: datetime


_PREFETCH_ADAPTER = TypeAdapter(ComparisonPrefetch)


def dump_prefetch(prefetch: ComparisonPrefetch) -> str:
    return _PREFETCH_ADAPTER.dump_json(prefetch).decode("utf-8")


def load_prefetch(payload: str) -> ComparisonPrefetch:
    return _PREFETCH_ADAPTER.validate_json(payload)


async def fetch_catalog(store: ContentStore) -> SchemaCatalog:
    content_types, components = await asyncio.gather(
        store.list_content_types(), store.list_components()
    )
    return SchemaCatalog.build(content_types, components)


async def prefetch_comparison_data(
    source: ContentStore,
    target: ContentStore,
    *,
    config: SyncConfig,
    fingerprint_cache: FingerprintCache | None = None,
) -> ComparisonPrefetch:
    """Fetch both sides concurrently.

    Content types are the union of the ``api::`` types of both instances; a type that only
    exists on one side is fetched from that side only.
    """

    source_catalog, target_catalog = await asyncio.gather(
        fetch_catalog(source), fetch_catalog(target)
    )
    source_types = {schema.uid: schema for schema in source_catalog.api_types()}
    target_types = {schema.uid: schema for schema in target_catalog.api_types()}
    refs = [
        (source_types.get(uid) or target_types[uid]).ref()
        for uid in sorted(source_types.keys() | target_types.keys())
    ]

    log.info(
        f"Prefetching {len(refs)} content type(s) from {source.instance} and {target.instance}"
    )
    source_side, target_side = await asyncio.gather(
        _fetch_side(source, source_catalog, config=config, fingerprint_cache=fingerprint_cache),
        _fetch_side(target, target_catalog, config=config, fingerprint_cache=fingerprint_cache),
    )
    return ComparisonPrefetch(
        content_types=refs,
        source=source_side,
        target=target_side,
        fetched_at=utcnow(),
    )


async def _fetch_side(
    store: ContentStore,
    catalog: SchemaCatalog,
    *,
    config: SyncConfig,
    fingerprint_cache: FingerprintCache | None,
) -> SidePrefetch:
    semaphore = asyncio.Semaphore(config.fetch_concurrency)

    async def fetch_type(schema: ContentTypeSchema) -> tuple[str, list[ContentEntry]]:
        async with semaphore:
            entries = await fetch_all_pages(
                lambda page: store.list_entries(
                    schema, catalog, page=page, page_size=config.page_size
                )
            )
        log.debug(f"{store.instance}: {len(entries)} entr(ies) of {schema.uid}")
        return schema.uid, entries

    fetched = await asyncio.gather(*(fetch_type(schema) for schema in catalog.api_types()))
    files = await fetch_all_pages(
        lambda page: store.list_files(page=page, page_size=config.page_size)
    )
    files = await fingerprint_files(
        store,
        files,
        concurrency=config.fingerprint_concurrency,
        cache=fingerprint_cache,
    )
    return SidePrefetch(instance=store.instance, entries=dict(fetched), files=files)


async def fetch_all_pages[T](fetch_page: Callable[[int], Awaitable[Page[T]]]) -> list[T]:
    """Walk a page-based listing from page 1 until the reported page count."""

    items: list[T] = []
    page_number = 1
    while True:
        page = await fetch_page(page_number)
        items.extend(page.items)
        if page_number >= page.page_count or not page.items:
            return items
        page_number += 1


async def fingerprint_files(
    store: ContentStore,
    files: list[FileAsset],
    *,
    concurrency: int,
    cache: FingerprintCache | None = None,
) -> list[FileAsset]:
    """Attach fingerprints, downloading at most ``concurrency`` files at a time.

    A file that cannot be downloaded keeps no fingerprint and is later compared by metadata.
    """

    semaphore = asyncio.Semaphore(concurrency)

    async def fingerprint(file: FileAsset) -> FileAsset:
        metadata = file.metadata
        if cache is not None:
            cached = cache.lookup(store.instance, metadata.document_id, metadata.updated_at)
            if cached is not None:
                cached_fingerprint, size_bytes = cached
                return file.with_fingerprint(
                    cached_fingerprint,
                    size_bytes if size_bytes is not None else file.effective_size,
                )

        async with semaphore:
            try:
                data = await store.download_file(file)
            except (ContentStoreError, NetworkError) as exc:
                log.warning(f"{store.instance}: could not download {metadata.name}: {exc}")
                return file
            computed = await asyncio.to_thread(
                compute_fingerprint, data, metadata.mime, metadata.ext
            )

        if cache is not None:
            cache.store(
                store.instance, metadata.document_id, metadata.updated_at, computed, len(data)
            )
        return file.with_fingerprint(computed, len(data))

    return list(await asyncio.gather(*(fingerprint(file) for file in files)))
