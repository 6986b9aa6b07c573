"""Translate content-store payloads into domain objects."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Any

from cmsync.domain.comparison.links import extract_links, strip_links
from cmsync.domain.comparison.normalize import clean_payload, payload_hash
from cmsync.domain.model import (
    ComponentAttribute,
    ContentEntry,
    ContentKind,
    ContentTypeSchema,
    DynamicZoneAttribute,
    EntryMetadata,
    EntryRef,
    EnumerationAttribute,
    FileAsset,
    FileMetadata,
    Folder,
    MediaAttribute,
    RelationAttribute,
    ScalarAttribute,
    UnknownAttribute,
)
from cmsync.domain.model.schema import SCALAR_ATTRIBUTE_TYPES

from .schema import FilePayload

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from cmsync.domain.model import Attribute, SchemaCatalog

    from .schema import ContentTypePayload, FolderPayload, UploadedFile

log = getLogger(__name__)


def parse_attribute(name: str, raw: Mapping[str, Any]) -> Attribute:
    attribute_type = str(raw.get("type", ""))
    common: dict[str, Any] = {
        "name": name,
        "type": attribute_type,
        "required": bool(raw.get("required", False)),
        "unique": bool(raw.get("unique", False)),
        "private": bool(raw.get("private", False)),
    }
    if attribute_type in SCALAR_ATTRIBUTE_TYPES:
        return ScalarAttribute(**common)
    if attribute_type == "enumeration":
        return EnumerationAttribute(**common, values=frozenset(raw.get("enum") or ()))
    if attribute_type == "relation":
        return RelationAttribute(
            **common,
            relation=raw.get("relation"),
            target=raw.get("target"),
            inversed_by=raw.get("inversedBy"),
            mapped_by=raw.get("mappedBy"),
        )
    if attribute_type == "media":
        return MediaAttribute(
            **common,
            multiple=bool(raw.get("multiple", False)),
            allowed_types=frozenset(raw.get("allowedTypes") or ()),
        )
    if attribute_type == "component":
        return ComponentAttribute(
            **common,
            component=raw.get("component"),
            repeatable=bool(raw.get("repeatable", False)),
        )
    if attribute_type == "dynamiczone":
        return DynamicZoneAttribute(**common, components=frozenset(raw.get("components") or ()))
    log.debug(f"Unknown attribute type {attribute_type!r} for {name}")
    return UnknownAttribute(**common, raw=dict(raw))


def parse_content_type(
    payload: ContentTypePayload, *, component: bool = False
) -> ContentTypeSchema:
    schema = payload.schema_
    if component:
        kind = ContentKind.COMPONENT
    elif schema.kind == ContentKind.SINGLE:
        kind = ContentKind.SINGLE
    else:
        kind = ContentKind.COLLECTION
    return ContentTypeSchema(
        uid=payload.uid,
        kind=kind,
        collection_name=schema.collection_name,
        singular_name=schema.singular_name,
        plural_name=schema.plural_name,
        display_name=schema.display_name,
        attributes={
            name: parse_attribute(name, raw) for name, raw in schema.attributes.items()
        },
    )


def parse_entry(
    raw: Mapping[str, Any], schema: ContentTypeSchema, catalog: SchemaCatalog
) -> ContentEntry:
    """Build a comparison-ready entry: links extracted, clean payload hashed."""

    payload = dict(raw)
    links = tuple(extract_links(payload, schema, catalog))
    clean = clean_payload(strip_links(payload, schema, catalog))
    return ContentEntry(
        metadata=EntryMetadata(
            id=payload.get("id"),
            document_id=str(payload.get("documentId") or payload.get("id") or ""),
            locale=payload.get("locale"),
            updated_at=payload.get("updatedAt"),
            unique_key=unique_key(payload, schema),
        ),
        raw=payload,
        clean=clean,
        content_hash=payload_hash(clean),
        links=links,
    )


def unique_key(raw: Mapping[str, Any], schema: ContentTypeSchema) -> str | None:
    names = schema.unique_attributes()
    values = [(name, raw.get(name)) for name in names]
    if not values or any(value is None for _, value in values):
        return None
    return "|".join(f"{name}={value}" for name, value in values)


def parse_folders(payloads: Sequence[FolderPayload]) -> list[Folder]:
    """Folders with ``full_path`` rebuilt from the numeric path ids."""

    names_by_path_id = {
        payload.path_id: payload.name for payload in payloads if payload.path_id is not None
    }
    folders: list[Folder] = []
    for payload in payloads:
        segments = [segment for segment in payload.path.split("/") if segment]
        names = [
            names_by_path_id.get(int(segment), segment) if segment.isdigit() else segment
            for segment in segments
        ]
        full_path = "/" + "/".join(names) if names else f"/{payload.name}"
        folders.append(
            Folder(
                id=payload.id,
                name=payload.name,
                path=payload.path,
                path_id=payload.path_id,
                parent_id=payload.parent_id,
                full_path=full_path,
            )
        )
    return folders


def folder_paths(folders: Sequence[Folder]) -> dict[str, str]:
    """Map the id-based folder path (``/1/3``) to the name path (``/media/logos``)."""

    return {folder.path: folder.full_path for folder in folders if folder.path}


def parse_file(raw: Mapping[str, Any], paths: Mapping[str, str]) -> FileAsset:
    payload = FilePayload.model_validate(raw)
    folder_path = payload.folder_path
    if folder_path in {None, "", "/"}:
        folder_path = None
    else:
        folder_path = paths.get(folder_path, folder_path)
    return FileAsset(
        metadata=FileMetadata(
            id=payload.id,
            document_id=payload.document_id,
            name=payload.name,
            mime=payload.mime,
            ext=payload.ext,
            size=payload.size,
            url=payload.url,
            hash=payload.hash,
            alternative_text=payload.alternative_text,
            caption=payload.caption,
            folder_path=folder_path,
            locale=payload.locale,
            updated_at=payload.updated_at,
        ),
        raw=dict(raw),
    )


def entry_ref(data: Mapping[str, Any]) -> EntryRef:
    return EntryRef(
        id=data.get("id"),
        document_id=str(data.get("documentId") or ""),
        updated_at=data.get("updatedAt"),
    )


def uploaded_ref(uploaded: UploadedFile) -> EntryRef:
    return EntryRef(
        id=uploaded.id,
        document_id=uploaded.document_id,
        updated_at=uploaded.updated_at,
    )
