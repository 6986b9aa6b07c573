from __future__ import annotations

import asyncio
from collections.abc import Callable  # noqa: TC003
from typing import Any

import httpx
import pytest

from cmsync.adapters.content_store import ContentStoreClient, populate_params
from cmsync.adapters.http_resilience import ResilienceConfig, ResilientClient
from cmsync.config import InstanceConfig
from cmsync.domain.errors import ContentStoreError, NetworkError
from cmsync.domain.model import ContentKind, FileAsset, FileMetadata, RelationAttribute
from cmsync.domain.ports import FileUpload
from tests.helpers.content import (
    ARTICLE,
    AUTHOR,
    article,
    article_schema,
    author_schema,
    blog_catalog,
    homepage_schema,
    ref,
)

BASE_URL = "https://cms.example.test"

type Handler = Callable[[httpx.Request], httpx.Response]


def _make_client_factory(handler: Handler) -> Callable[[ResilienceConfig], ResilientClient]:
    async def async_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)

    def factory(resilience: ResilienceConfig) -> ResilientClient:
        client = ResilientClient(resilience)
        client._client = httpx.AsyncClient(  # noqa: SLF001  # type: ignore[reportPrivateUsage]
            base_url=BASE_URL, transport=httpx.MockTransport(async_handler)
        )
        return client

    return factory


def _client(
    handler: Handler,
    *,
    username: str | None = "admin@example.test",
    password: str | None = "secret",
) -> ContentStoreClient:
    config = InstanceConfig(
        name="staging",
        base_url=BASE_URL,
        api_token="api-token",
        username=username,
        password=password,
        resilience=ResilienceConfig(name="test", base_url=BASE_URL, cache=None),
    )
    return ContentStoreClient(config, client_factory=_make_client_factory(handler))


def _run[T](client: ContentStoreClient, call: Callable[[ContentStoreClient], Any]) -> T:
    async def scenario() -> T:
        async with client:
            return await call(client)

    return asyncio.run(scenario())


def test_list_entries_paginates_and_populates_links() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "data": [article("art-1", "Hello", id=1, author=ref("auth-1", 5))],
                "meta": {"pagination": {"page": 2, "pageSize": 2, "pageCount": 3, "total": 5}},
            },
        )

    page = _run(
        _client(handler),
        lambda client: client.list_entries(article_schema(), blog_catalog(), page=2, page_size=2),
    )

    (request,) = seen
    assert request.url.path == "/api/articles"
    assert request.headers["Authorization"] == "Bearer api-token"
    assert request.url.params["pagination[page]"] == "2"
    assert request.url.params["pagination[pageSize]"] == "2"
    assert request.url.params["populate[author]"] == "true"
    assert request.url.params["populate[seo][populate]"] == "*"
    assert (page.page, page.page_count, page.total) == (2, 3, 5)
    (entry,) = page.items
    assert entry.document_id == "art-1"
    assert entry.metadata.unique_key == "title=Hello"
    assert [(link.field, link.target_document_id) for link in entry.links] == [("author", "auth-1")]
    assert "author" not in entry.clean


def test_missing_single_type_is_an_empty_page() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/homepage"
        return httpx.Response(404, json={"error": {"status": 404, "name": "NotFoundError"}})

    page = _run(
        _client(handler),
        lambda client: client.list_entries(homepage_schema(), blog_catalog(), page=1, page_size=10),
    )

    assert page.items == []
    assert page.total == 0


def test_single_type_entry_is_returned_as_one_item_page() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert "pagination[page]" not in request.url.params
        return httpx.Response(
            200, json={"data": {"id": 1, "documentId": "home-1", "headline": "Welcome"}}
        )

    page = _run(
        _client(handler),
        lambda client: client.list_entries(homepage_schema(), blog_catalog(), page=1, page_size=10),
    )

    (entry,) = page.items
    assert entry.document_id == "home-1"
    assert entry.clean == {"headline": "Welcome"}


def test_list_content_types_parses_attribute_variants() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/content-type-builder/content-types"
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "uid": ARTICLE,
                        "schema": {
                            "kind": "collectionType",
                            "collectionName": "articles",
                            "singularName": "article",
                            "pluralName": "articles",
                            "displayName": "Article",
                            "attributes": {
                                "title": {"type": "string", "unique": True, "required": True},
                                "author": {
                                    "type": "relation",
                                    "relation": "manyToOne",
                                    "target": AUTHOR,
                                    "inversedBy": "articles",
                                },
                            },
                        },
                    }
                ]
            },
        )

    (schema,) = _run(_client(handler), lambda client: client.list_content_types())

    assert schema.uid == ARTICLE
    assert schema.kind is ContentKind.COLLECTION
    assert schema.api_path == "articles"
    assert schema.unique_attributes() == ("title",)
    author_field = schema.attributes["author"]
    assert isinstance(author_field, RelationAttribute)
    assert author_field.bidirectional


def test_admin_routes_log_in_once_and_resolve_folder_paths() -> None:
    logins: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/admin/login":
            logins.append(request)
            return httpx.Response(200, json={"data": {"token": "jwt-token"}})
        assert request.headers["Authorization"] == "Bearer jwt-token"
        if request.url.path == "/upload/folders":
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"id": 1, "name": "media", "path": "/1", "pathId": 1},
                        {
                            "id": 2,
                            "name": "logos",
                            "path": "/1/2",
                            "pathId": 2,
                            "parent": {"id": 1},
                        },
                    ]
                },
            )
        assert request.url.path == "/upload/files"
        return httpx.Response(
            200,
            json={
                "results": [
                    {
                        "id": 7,
                        "documentId": "file-7",
                        "name": "logo.png",
                        "mime": "image/png",
                        "folderPath": "/1/2",
                        "caption": "  ",
                    }
                ],
                "pagination": {"page": 1, "pageSize": 10, "pageCount": 1, "total": 1},
            },
        )

    async def scenario(client: ContentStoreClient) -> list[FileAsset]:
        first = await client.list_files(page=1, page_size=10)
        second = await client.list_files(page=1, page_size=10)
        return first.items + second.items

    files = _run(_client(handler), scenario)

    assert len(logins) == 1
    assert b"admin@example.test" in logins[0].content
    assert files[0].metadata.folder_path == "/media/logos"
    assert files[0].metadata.caption is None


def test_admin_routes_require_credentials() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected request {request.url}")

    client = _client(handler, username=None, password=None)

    with pytest.raises(ContentStoreError, match="no admin credentials"):
        _run(client, lambda client: client.list_folders())


def test_upload_file_sends_file_info_and_replace_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/admin/login":
            return httpx.Response(200, json={"data": {"token": "jwt-token"}})
        seen.append(request)
        return httpx.Response(
            201, json=[{"id": 9, "documentId": "file-9", "updatedAt": "2024-06-01T00:00:00Z"}]
        )

    upload = FileUpload(name="cover.png", mime="image/png", alternative_text="Cover", folder_id=2)
    uploaded = _run(
        _client(handler), lambda client: client.upload_file(b"png-bytes", upload, replace_id=7)
    )

    (request,) = seen
    assert request.method == "POST"
    assert request.url.path == "/upload"
    assert request.url.params["id"] == "7"
    assert b'"alternativeText": "Cover"' in request.content
    assert b'"folder": 2' in request.content
    assert b"png-bytes" in request.content
    assert uploaded.id == 9
    assert uploaded.document_id == "file-9"


def test_upload_with_non_json_answer_is_a_content_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/admin/login":
            return httpx.Response(200, json={"data": {"token": "jwt-token"}})
        return httpx.Response(
            200, text="<html>maintenance</html>", headers={"content-type": "text/html"}
        )

    upload = FileUpload(name="cover.png", mime="image/png")

    with pytest.raises(ContentStoreError, match="Unexpected upload response") as excinfo:
        _run(_client(handler), lambda client: client.upload_file(b"png-bytes", upload))

    assert excinfo.value.status_code == 200
    assert excinfo.value.body == "<html>maintenance</html>"


def test_download_file_only_authenticates_relative_urls() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"payload")

    def asset(url: str) -> FileAsset:
        return FileAsset(metadata=FileMetadata(id=1, document_id="file-1", name="a.png", url=url))

    async def scenario(client: ContentStoreClient) -> list[bytes]:
        return [
            await client.download_file(asset("/uploads/a.png")),
            await client.download_file(asset("https://cdn.example.test/a.png")),
        ]

    contents = _run(_client(handler), scenario)

    assert contents == [b"payload", b"payload"]
    assert seen[0].headers["Authorization"] == "Bearer api-token"
    assert "Authorization" not in seen[1].headers


def test_writes_use_type_specific_routes() -> None:
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(200, json={"data": {"id": 3, "documentId": "doc-3"}})

    async def scenario(client: ContentStoreClient) -> None:
        await client.create_entry(author_schema(), {"name": "Ada"})
        await client.create_entry(homepage_schema(), {"headline": "Hi"}, locale="en")
        await client.update_entry(author_schema(), "doc-3", {"name": "Ada L."})
        await client.delete_entry(author_schema(), "doc-3")
        await client.delete_file(12)

    _run(_client(handler), scenario)

    assert seen == [
        ("POST", "/api/authors"),
        ("PUT", "/api/homepage"),
        ("PUT", "/api/authors/doc-3"),
        ("DELETE", "/api/authors/doc-3"),
        ("DELETE", "/api/upload/files/12"),
    ]


def test_error_status_becomes_content_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(409, json={"error": {"message": "title must be unique"}})

    with pytest.raises(ContentStoreError) as excinfo:
        _run(_client(handler), lambda client: client.create_entry(author_schema(), {"name": "A"}))

    assert excinfo.value.status_code == 409
    assert excinfo.value.body is not None
    assert "must be unique" in excinfo.value.body


def test_transport_failure_becomes_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError, match="connection refused"):
        _run(_client(handler), lambda client: client.list_components())


def test_unexpected_payload_is_reported() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(ContentStoreError, match="Unexpected payload"):
        _run(_client(handler), lambda client: client.list_components())


def test_populate_params_cover_links_and_components() -> None:
    params = populate_params(article_schema(), blog_catalog())

    assert params == {
        "populate[author]": "true",
        "populate[related]": "true",
        "populate[cover]": "true",
        "populate[seo][populate]": "*",
    }
