"""Applying content entries (singles and collections) to the target instance."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Any

from cmsync.domain.comparison.links import inject_links, root_field, strip_links
from cmsync.domain.comparison.normalize import strip_for_write
from cmsync.domain.errors import ContentStoreError, SyncError, classify_remote_failure
from cmsync.domain.model import ContentEntry, ContentKind, Direction

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from cmsync.domain.merge.files import FileApplier
    from cmsync.domain.merge.run import MergeRun
    from cmsync.domain.model import ContentTypeSchema, Link, SchemaCatalog
    from cmsync.domain.planning import PlanItem
    from cmsync.domain.ports import ContentStore

log = getLogger(__name__)

NOT_FOUND_FOR_DELETION = "Target entry not found for deletion"

OPERATION_CREATE = "create"
OPERATION_UPDATE = "update"
OPERATION_DELETE = "delete"
OPERATION_PATCH = "patch-links"


def operation_for(item: PlanItem) -> str:
    if item.direction is Direction.TO_CREATE:
        return OPERATION_CREATE
    if item.direction is Direction.TO_UPDATE:
        return OPERATION_UPDATE
    return OPERATION_DELETE


@dataclass(slots=True)
class ContentApplier:
    """Writes selected entries to the target, rewriting links to target identities."""

    store: ContentStore
    catalog: SchemaCatalog
    workers: int = 4

    async def apply_batch(self, run: MergeRun, batch: Sequence[PlanItem]) -> None:
        semaphore = asyncio.Semaphore(self.workers)

        async def apply(item: PlanItem) -> None:
            async with semaphore:
                await self.apply_item(run, item)

        await asyncio.gather(*(apply(item) for item in batch))

    async def apply_cycle_members(self, run: MergeRun, members: Iterable[PlanItem]) -> None:
        """Apply cycle members one by one, without the links that close the cycle."""

        for item in members:
            if not item.is_delete:
                await self.apply_item(run, item)

    async def apply_item(self, run: MergeRun, item: PlanItem) -> None:
        operation = operation_for(item)
        blocker = run.blocking_failure(item)
        if blocker is not None:
            run.skip(item, operation, blocker)
            return

        result = run.result_for(item)
        source = _entry(result.source)
        schema = self.catalog.content_types.get(item.content_type)
        if source is None or schema is None:
            run.fail(item, operation, f"No source entry or target schema for {item.label}")
            return

        links = [link for link in source.links if not run.is_deferred(link)]
        payload = self.write_payload(run, source, schema, links)
        try:
            if schema.kind is ContentKind.SINGLE:
                ref = await self.store.update_entry(
                    schema, "", payload, locale=source.metadata.locale
                )
            elif item.direction is Direction.TO_CREATE:
                ref = await self.store.create_entry(schema, payload, locale=source.metadata.locale)
            else:
                target = _entry(result.target)
                target_document_id = (
                    target.document_id
                    if target is not None
                    else run.document_map.get((item.content_type, item.document_id), "")
                )
                ref = await self.store.update_entry(
                    schema, target_document_id, payload, locale=source.metadata.locale
                )
        except SyncError as exc:
            run.fail(item, operation, describe_failure(classify_remote_failure(exc)))
            return

        run.remember_target(
            item,
            ref,
            source_id=source.id,
            source_updated_at=source.metadata.updated_at,
            source_hash=source.content_hash,
            locale=source.metadata.locale,
        )
        run.succeed(item, operation)

    async def patch_deferred(self, run: MergeRun) -> None:
        """Write the link fields held back while cycle members did not exist yet."""

        for item in run.plan.items():
            if item.is_delete or item.is_file:
                continue
            outcome = run.outcomes.get(item.key)
            if outcome is None or not outcome.success:
                continue
            source = _entry(run.result_for(item).source)
            schema = self.catalog.content_types.get(item.content_type)
            if source is None or schema is None:
                continue
            deferred_roots = {
                root_field(link.field) for link in source.links if run.is_deferred(link)
            }
            if not deferred_roots:
                continue

            full_payload = self.write_payload(run, source, schema, source.links)
            payload = {
                root: full_payload[root] for root in sorted(deferred_roots) if root in full_payload
            }
            target_document_id = run.document_map.get((item.content_type, item.document_id), "")
            try:
                await self.store.update_entry(
                    schema, target_document_id, payload, locale=source.metadata.locale
                )
            except SyncError as exc:
                message = describe_failure(classify_remote_failure(exc))
                run.fail(item, OPERATION_PATCH, f"Deferred links not written: {message}")
                continue
            log.debug(f"Patched deferred links {sorted(deferred_roots)} of {item.label}")

    async def delete_batch(
        self, run: MergeRun, batch: Sequence[PlanItem], files: FileApplier | None = None
    ) -> None:
        semaphore = asyncio.Semaphore(self.workers)

        async def delete(item: PlanItem) -> None:
            async with semaphore:
                if item.is_file and files is not None:
                    await files.delete_item(run, item)
                else:
                    await self.delete_item(run, item)

        await asyncio.gather(*(delete(item) for item in batch))

    async def delete_item(self, run: MergeRun, item: PlanItem) -> None:
        blocker = run.blocking_failure(item)
        if blocker is not None:
            run.skip(item, OPERATION_DELETE, blocker)
            return

        target = _entry(run.result_for(item).target)
        schema = self.catalog.content_types.get(item.content_type)
        if target is None or schema is None:
            run.fail(item, OPERATION_DELETE, NOT_FOUND_FOR_DELETION)
            return

        try:
            await self.store.delete_entry(schema, target.document_id)
        except ContentStoreError as exc:
            if exc.status_code == 404:
                if schema.kind is ContentKind.SINGLE:
                    run.forget_target(item, target.document_id)
                    run.succeed(item, OPERATION_DELETE, NOT_FOUND_FOR_DELETION)
                else:
                    run.fail(item, OPERATION_DELETE, NOT_FOUND_FOR_DELETION)
                return
            run.fail(item, OPERATION_DELETE, describe_failure(classify_remote_failure(exc)))
            return
        except SyncError as exc:
            run.fail(item, OPERATION_DELETE, describe_failure(classify_remote_failure(exc)))
            return

        run.forget_target(item, target.document_id)
        run.succeed(item, OPERATION_DELETE)

    def write_payload(
        self,
        run: MergeRun,
        source: ContentEntry,
        schema: ContentTypeSchema,
        links: Iterable[Link],
    ) -> dict[str, Any]:
        payload = strip_for_write(strip_links(source.raw, schema, self.catalog))
        values: dict[str, list[Any]] = defaultdict(list)
        for link in sorted(links, key=lambda link: (link.field, link.order)):
            value = run.target_value(link)
            if value is None:
                log.debug(f"No target counterpart for {link.field} of {source.document_id}")
                continue
            values[link.field].append(value)
        return inject_links(payload, values)


def describe_failure(error: SyncError) -> str:
    body = getattr(error, "body", None)
    status = getattr(error, "status_code", None)
    text = f"{type(error).__name__}: {error}"
    if status is not None:
        text += f" (status {status})"
    if body:
        text += f" {body}"
    return text


def _entry(value: object) -> ContentEntry | None:
    return value if isinstance(value, ContentEntry) else None
