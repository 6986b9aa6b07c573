"""Uploading, replacing and deleting media files on the target instance."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from cmsync.domain.errors import ContentStoreError, SyncError, classify_remote_failure
from cmsync.domain.merge.content import (
    NOT_FOUND_FOR_DELETION,
    OPERATION_DELETE,
    describe_failure,
    operation_for,
)
from cmsync.domain.model import Direction, FileAsset
from cmsync.domain.ports import FileUpload

if TYPE_CHECKING:
    from collections.abc import Sequence

    from cmsync.domain.merge.run import MergeRun
    from cmsync.domain.model import Folder
    from cmsync.domain.planning import PlanItem
    from cmsync.domain.ports import ContentStore

log = getLogger(__name__)

DEFAULT_MIME = "application/octet-stream"


@dataclass(slots=True)
class FileApplier:
    """Copies source files to the target; folders are created on demand."""

    source: ContentStore
    target: ContentStore
    max_parallel_uploads: int = 4
    _folders: dict[str, int] | None = field(default=None, init=False)
    _folder_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    async def apply_batch(self, run: MergeRun, batch: Sequence[PlanItem]) -> None:
        semaphore = asyncio.Semaphore(self.max_parallel_uploads)

        async def apply(item: PlanItem) -> None:
            async with semaphore:
                await self.apply_item(run, item)

        await asyncio.gather(*(apply(item) for item in batch))

    async def apply_item(self, run: MergeRun, item: PlanItem) -> None:
        operation = operation_for(item)
        result = run.result_for(item)
        source = result.source if isinstance(result.source, FileAsset) else None
        target = result.target if isinstance(result.target, FileAsset) else None
        if source is None:
            run.fail(item, operation, f"No source file for {item.label}")
            return

        metadata = source.metadata
        replace_id = target.id if item.direction is Direction.TO_UPDATE and target else None
        try:
            folder_id = await self.ensure_folder(metadata.folder_path)
            data = await self.source.download_file(source)
            ref = await self.target.upload_file(
                data,
                FileUpload(
                    name=metadata.name,
                    mime=metadata.mime or DEFAULT_MIME,
                    alternative_text=metadata.alternative_text,
                    caption=metadata.caption,
                    folder_id=folder_id,
                ),
                replace_id=replace_id,
            )
        except SyncError as exc:
            run.fail(item, operation, describe_failure(classify_remote_failure(exc)))
            return

        run.remember_target(
            item,
            ref,
            source_id=source.id,
            source_updated_at=metadata.updated_at,
            source_hash=source.fingerprint.value if source.fingerprint else None,
            locale=metadata.locale,
        )
        run.succeed(item, operation)

    async def delete_item(self, run: MergeRun, item: PlanItem) -> None:
        blocker = run.blocking_failure(item)
        if blocker is not None:
            run.skip(item, OPERATION_DELETE, blocker)
            return
        result = run.result_for(item)
        target = result.target if isinstance(result.target, FileAsset) else None
        if target is None:
            run.fail(item, OPERATION_DELETE, NOT_FOUND_FOR_DELETION)
            return

        try:
            await self.target.delete_file(target.id)
        except ContentStoreError as exc:
            message = (
                NOT_FOUND_FOR_DELETION
                if exc.status_code == 404
                else describe_failure(classify_remote_failure(exc))
            )
            run.fail(item, OPERATION_DELETE, message)
            return
        except SyncError as exc:
            run.fail(item, OPERATION_DELETE, describe_failure(classify_remote_failure(exc)))
            return

        run.forget_target(item, target.document_id)
        run.succeed(item, OPERATION_DELETE)

    async def ensure_folder(self, folder_path: str | None) -> int | None:
        """Id of the target folder at ``folder_path`` (``/a/b``), creating missing segments."""

        segments = [segment for segment in (folder_path or "").split("/") if segment]
        if not segments:
            return None
        async with self._folder_lock:
            if self._folders is None:
                self._folders = _index_folders(await self.target.list_folders())
            parent_id: int | None = None
            path = ""
            for segment in segments:
                path = f"{path}/{segment}"
                folder_id = self._folders.get(path)
                if folder_id is None:
                    folder = await self.target.create_folder(segment, parent_id)
                    log.info(f"Created folder {path} on {self.target.instance}")
                    folder_id = folder.id
                    self._folders[path] = folder_id
                parent_id = folder_id
            return parent_id


def _index_folders(folders: Sequence[Folder]) -> dict[str, int]:
    by_id = {folder.id: folder for folder in folders}
    index: dict[str, int] = {}
    for folder in folders:
        if folder.full_path:
            index[folder.full_path] = folder.id
            continue
        names = [folder.name]
        parent = by_id.get(folder.parent_id) if folder.parent_id is not None else None
        while parent is not None:
            names.append(parent.name)
            parent = by_id.get(parent.parent_id) if parent.parent_id is not None else None
        index["/" + "/".join(reversed(names))] = folder.id
    return index
