"""Pydantic models describing the content-store REST payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class StoreBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class LoginData(StoreBaseModel):
    token: str


class LoginResponse(StoreBaseModel):
    data: LoginData


class SchemaPayload(StoreBaseModel):
    kind: str | None = None
    collection_name: str = Field(default="", alias="collectionName")
    singular_name: str = Field(default="", alias="singularName")
    plural_name: str = Field(default="", alias="pluralName")
    display_name: str = Field(default="", alias="displayName")
    attributes: dict[str, dict[str, Any]] = Field(default_factory=dict[str, dict[str, Any]])


class ContentTypePayload(StoreBaseModel):
    uid: str
    schema_: SchemaPayload = Field(alias="schema")


class ContentTypesResponse(StoreBaseModel):
    data: list[ContentTypePayload]


class ComponentsResponse(StoreBaseModel):
    data: list[ContentTypePayload]


class Pagination(StoreBaseModel):
    page: int = 1
    page_size: int = Field(default=25, alias="pageSize")
    page_count: int = Field(default=1, alias="pageCount")
    total: int | None = None


class ResponseMeta(StoreBaseModel):
    pagination: Pagination | None = None


class CollectionResponse(StoreBaseModel):
    data: list[dict[str, Any]]
    meta: ResponseMeta = Field(default_factory=ResponseMeta)


class SingleResponse(StoreBaseModel):
    data: dict[str, Any] | None = None


class EntryResponse(StoreBaseModel):
    """Body of a create/update call."""

    data: dict[str, Any]


class FilePayload(StoreBaseModel):
    id: int
    document_id: str = Field(alias="documentId")
    name: str
    alternative_text: str | None = Field(default=None, alias="alternativeText")
    caption: str | None = None
    mime: str | None = None
    ext: str | None = None
    size: float | None = None
    url: str | None = None
    hash: str | None = None
    folder_path: str | None = Field(default=None, alias="folderPath")
    locale: str | None = None
    updated_at: str | None = Field(default=None, alias="updatedAt")

    _normalize_text = field_validator("alternative_text", "caption", "locale", mode="before")(
        _blank_to_none
    )


class FilesResponse(StoreBaseModel):
    results: list[dict[str, Any]]
    pagination: Pagination = Field(default_factory=Pagination)


class FolderPayload(StoreBaseModel):
    id: int
    name: str
    path: str = ""
    path_id: int | None = Field(default=None, alias="pathId")
    parent: int | dict[str, Any] | None = None

    @property
    def parent_id(self) -> int | None:
        if isinstance(self.parent, dict):
            value = self.parent.get("id")
            return value if isinstance(value, int) else None
        return self.parent


class FoldersResponse(StoreBaseModel):
    data: list[FolderPayload]


class FolderResponse(StoreBaseModel):
    data: FolderPayload


class UploadedFile(StoreBaseModel):
    id: int
    document_id: str = Field(alias="documentId")
    updated_at: str | None = Field(default=None, alias="updatedAt")
