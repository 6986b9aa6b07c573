"""Ports for talking to a content-store instance."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cmsync.domain.model import (
        ContentEntry,
        ContentTypeSchema,
        EntryRef,
        FileAsset,
        Folder,
        Page,
        SchemaCatalog,
    )


@dataclass(frozen=True, slots=True, kw_only=True)
class FileUpload:
    name: str
    mime: str
    alternative_text: str | None = None
    caption: str | None = None
    folder_id: int | None = None


@runtime_checkable
class ContentStore(Protocol):
    """Async client contract for one instance; pagination is page based."""

    @property
    def instance(self) -> str: ...

    async def login(self) -> str: ...

    async def list_content_types(self) -> list[ContentTypeSchema]: ...

    async def list_components(self) -> list[ContentTypeSchema]: ...

    async def list_entries(
        self,
        content_type: ContentTypeSchema,
        catalog: SchemaCatalog,
        *,
        page: int,
        page_size: int,
    ) -> Page[ContentEntry]: ...

    async def list_files(self, *, page: int, page_size: int) -> Page[FileAsset]: ...

    async def list_folders(self) -> list[Folder]: ...

    async def create_folder(self, name: str, parent_id: int | None) -> Folder: ...

    async def download_file(self, file: FileAsset) -> bytes: ...

    async def create_entry(
        self,
        content_type: ContentTypeSchema,
        payload: dict[str, Any],
        *,
        locale: str | None = None,
    ) -> EntryRef: ...

    async def update_entry(
        self,
        content_type: ContentTypeSchema,
        document_id: str,
        payload: dict[str, Any],
        *,
        locale: str | None = None,
    ) -> EntryRef: ...

    async def delete_entry(self, content_type: ContentTypeSchema, document_id: str) -> None: ...

    async def upload_file(
        self,
        data: bytes,
        upload: FileUpload,
        *,
        replace_id: int | None = None,
    ) -> EntryRef: ...

    async def delete_file(self, file_id: int) -> None: ...

    async def aclose(self) -> None: ...


ContentStoreFactory = Callable[[str], ContentStore]
