"""HTTP client for a content-store instance (Strapi v5 style REST API)."""

from __future__ import annotations

import asyncio
import json
import time
from logging import getLogger
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ValidationError

from cmsync.adapters.http_resilience import ResilientClient
from cmsync.domain.errors import ContentStoreError, NetworkError
from cmsync.domain.model import (
    ComponentAttribute,
    ContentKind,
    DynamicZoneAttribute,
    MediaAttribute,
    Page,
    RelationAttribute,
)

from .schema import (
    CollectionResponse,
    ComponentsResponse,
    ContentTypesResponse,
    EntryResponse,
    FilesResponse,
    FolderResponse,
    FoldersResponse,
    LoginResponse,
    SingleResponse,
    UploadedFile,
)
from .translator import (
    entry_ref,
    folder_paths,
    parse_content_type,
    parse_entry,
    parse_file,
    parse_folders,
    uploaded_ref,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from cmsync.config.http_resilience import ResilienceConfig
    from cmsync.config.instances import InstanceConfig
    from cmsync.domain.model import (
        ContentEntry,
        ContentTypeSchema,
        EntryRef,
        FileAsset,
        Folder,
        SchemaCatalog,
    )
    from cmsync.domain.ports import FileUpload

log = getLogger(__name__)

LOGIN_TTL_SECONDS = 20 * 60
MAX_POPULATE_DEPTH = 4
_BODY_LOG_LIMIT = 2000


class ContentStoreClient:
    """Implements the ``ContentStore`` port over one instance's REST API.

    Content endpoints authenticate with the instance API token. Upload and folder endpoints are
    admin routes and use a JWT obtained from ``/admin/login`` (cached for twenty minutes).
    """

    def __init__(
        self,
        config: InstanceConfig,
        *,
        client_factory: Callable[[ResilienceConfig], ResilientClient] | None = None,
    ) -> None:
        self._config = config
        self._client = (client_factory or ResilientClient)(config.resilience)
        self._login_lock = asyncio.Lock()
        self._admin_token: str | None = None
        self._admin_token_at = 0.0
        self._folder_paths: dict[str, str] | None = None

    @property
    def instance(self) -> str:
        return self._config.name

    async def __aenter__(self) -> ContentStoreClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # Authentication --------------------------------------------------------

    async def login(self) -> str:
        async with self._login_lock:
            now = time.monotonic()
            if self._admin_token is not None and now - self._admin_token_at < LOGIN_TTL_SECONDS:
                return self._admin_token
            if not self._config.username or not self._config.password:
                raise ContentStoreError(
                    f"Instance {self.instance} has no admin credentials configured"
                )
            response = await self._send(
                "POST",
                "/admin/login",
                json={"email": self._config.username, "password": self._config.password},
                authenticated=False,
            )
            token = self._validate(LoginResponse, response).data.token
            self._admin_token = token
            self._admin_token_at = now
            log.info(f"Logged in to {self.instance} as {self._config.username}")
            return token

    # Schemas ---------------------------------------------------------------

    async def list_content_types(self) -> list[ContentTypeSchema]:
        response = await self._send("GET", "/api/content-type-builder/content-types")
        payload = self._validate(ContentTypesResponse, response)
        return [parse_content_type(item) for item in payload.data]

    async def list_components(self) -> list[ContentTypeSchema]:
        response = await self._send("GET", "/api/content-type-builder/components")
        payload = self._validate(ComponentsResponse, response)
        return [parse_content_type(item, component=True) for item in payload.data]

    # Entries ---------------------------------------------------------------

    async def list_entries(
        self,
        content_type: ContentTypeSchema,
        catalog: SchemaCatalog,
        *,
        page: int,
        page_size: int,
    ) -> Page[ContentEntry]:
        params = populate_params(content_type, catalog)
        if content_type.kind is ContentKind.SINGLE:
            try:
                response = await self._send(
                    "GET", f"/api/{content_type.api_path}", params=params
                )
            except ContentStoreError as exc:
                if exc.status_code == 404:
                    return Page(items=[], page=1, page_count=1, total=0)
                raise
            single = self._validate(SingleResponse, response)
            items = [single.data] if single.data else []
            return Page(
                items=[parse_entry(item, content_type, catalog) for item in items],
                page=1,
                page_count=1,
                total=len(items),
            )

        params["pagination[page]"] = str(page)
        params["pagination[pageSize]"] = str(page_size)
        response = await self._send("GET", f"/api/{content_type.api_path}", params=params)
        collection = self._validate(CollectionResponse, response)
        pagination = collection.meta.pagination
        return Page(
            items=[parse_entry(item, content_type, catalog) for item in collection.data],
            page=pagination.page if pagination else page,
            page_count=pagination.page_count if pagination else 1,
            total=pagination.total if pagination else len(collection.data),
        )

    async def create_entry(
        self,
        content_type: ContentTypeSchema,
        payload: dict[str, Any],
        *,
        locale: str | None = None,
    ) -> EntryRef:
        method = "PUT" if content_type.kind is ContentKind.SINGLE else "POST"
        response = await self._send(
            method,
            f"/api/{content_type.api_path}",
            json={"data": payload},
            params=_locale_params(locale),
        )
        return entry_ref(self._validate(EntryResponse, response).data)

    async def update_entry(
        self,
        content_type: ContentTypeSchema,
        document_id: str,
        payload: dict[str, Any],
        *,
        locale: str | None = None,
    ) -> EntryRef:
        response = await self._send(
            "PUT",
            _entry_path(content_type, document_id),
            json={"data": payload},
            params=_locale_params(locale),
        )
        return entry_ref(self._validate(EntryResponse, response).data)

    async def delete_entry(self, content_type: ContentTypeSchema, document_id: str) -> None:
        await self._send("DELETE", _entry_path(content_type, document_id))

    # Files -----------------------------------------------------------------

    async def list_files(self, *, page: int, page_size: int) -> Page[FileAsset]:
        paths = await self._folder_path_index()
        response = await self._send(
            "GET",
            "/upload/files",
            params={"sort": "createdAt:DESC", "page": str(page), "pageSize": str(page_size)},
            admin=True,
        )
        files = self._validate(FilesResponse, response)
        return Page(
            items=[parse_file(item, paths) for item in files.results],
            page=files.pagination.page,
            page_count=files.pagination.page_count,
            total=files.pagination.total,
        )

    async def list_folders(self) -> list[Folder]:
        response = await self._send("GET", "/upload/folders", admin=True)
        folders = parse_folders(self._validate(FoldersResponse, response).data)
        self._folder_paths = folder_paths(folders)
        return folders

    async def create_folder(self, name: str, parent_id: int | None) -> Folder:
        response = await self._send(
            "POST",
            "/upload/folders",
            json={"name": name, "parent": parent_id},
            admin=True,
        )
        created = self._validate(FolderResponse, response).data
        self._folder_paths = None
        return parse_folders([created])[0]

    async def download_file(self, file: FileAsset) -> bytes:
        url = file.metadata.url
        if not url:
            raise ContentStoreError(f"File {file.document_id} on {self.instance} has no url")
        response = await self._send("GET", url, authenticated=not url.startswith("http"))
        return response.content

    async def upload_file(
        self,
        data: bytes,
        upload: FileUpload,
        *,
        replace_id: int | None = None,
    ) -> EntryRef:
        file_info: dict[str, Any] = {"name": upload.name}
        if upload.caption is not None:
            file_info["caption"] = upload.caption
        if upload.alternative_text is not None:
            file_info["alternativeText"] = upload.alternative_text
        if upload.folder_id is not None:
            file_info["folder"] = upload.folder_id
        response = await self._send(
            "POST",
            "/upload",
            params={"id": str(replace_id)} if replace_id is not None else None,
            files={"files": (upload.name, data, upload.mime)},
            data={"fileInfo": json.dumps(file_info)},
            admin=True,
        )
        try:
            body = response.json()
            uploaded = body[0] if isinstance(body, list) and body else body
            return uploaded_ref(UploadedFile.model_validate(uploaded))
        except (ValueError, ValidationError) as exc:
            raise ContentStoreError(
                f"Unexpected upload response from {self.instance}",
                status_code=response.status_code,
                body=response.text[:_BODY_LOG_LIMIT],
            ) from exc

    async def delete_file(self, file_id: int) -> None:
        await self._send("DELETE", f"/api/upload/files/{file_id}")

    # Plumbing --------------------------------------------------------------

    async def _folder_path_index(self) -> dict[str, str]:
        if self._folder_paths is None:
            await self.list_folders()
        assert self._folder_paths is not None
        return self._folder_paths

    async def _send(
        self,
        method: str,
        url: str,
        *,
        authenticated: bool = True,
        admin: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        headers: dict[str, str] = {}
        if admin:
            headers["Authorization"] = f"Bearer {await self.login()}"
        elif authenticated:
            headers["Authorization"] = f"Bearer {self._config.api_token}"
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            log.error(f"{method} {url} on {self.instance} failed: {exc}")
            raise NetworkError(f"{method} {url} on {self.instance} failed: {exc}") from exc

        if response.is_error:
            body = response.text[:_BODY_LOG_LIMIT]
            log.error(f"{method} {url} on {self.instance} -> {response.status_code}: {body}")
            raise ContentStoreError(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        return response

    def _validate[TModel: BaseModel](self, model: type[TModel], response: httpx.Response) -> TModel:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ContentStoreError(
                f"Unexpected payload from {response.request.method} {response.request.url}",
                status_code=response.status_code,
                body=response.text[:_BODY_LOG_LIMIT],
            ) from exc


def populate_params(
    content_type: ContentTypeSchema,
    catalog: SchemaCatalog,
    *,
    prefix: str = "populate",
    depth: int = 0,
) -> dict[str, str]:
    """Query parameters populating links and components down to ``MAX_POPULATE_DEPTH``."""

    params: dict[str, str] = {}
    for name, attribute in content_type.attributes.items():
        key = f"{prefix}[{name}]"
        if isinstance(attribute, (RelationAttribute, MediaAttribute)):
            params[key] = "true"
        elif isinstance(attribute, ComponentAttribute):
            component = catalog.components.get(attribute.component or "")
            nested = (
                populate_params(
                    component, catalog, prefix=f"{key}[populate]", depth=depth + 1
                )
                if component is not None and depth < MAX_POPULATE_DEPTH
                else {}
            )
            params.update(nested or {f"{key}[populate]": "*"})
        elif isinstance(attribute, DynamicZoneAttribute):
            params[f"{key}[populate]"] = "*"
    return params


def _entry_path(content_type: ContentTypeSchema, document_id: str) -> str:
    if content_type.kind is ContentKind.SINGLE or not document_id:
        return f"/api/{content_type.api_path}"
    return f"/api/{content_type.api_path}/{document_id}"


def _locale_params(locale: str | None) -> dict[str, str] | None:
    return {"locale": locale} if locale else None
