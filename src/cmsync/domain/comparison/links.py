"""Schema-aware handling of relation and media fields inside entry payloads.

Link fields are addressed by dotted paths. Fields nested in a repeatable component or a dynamic
zone carry the item index, e.g. ``sections.2.image``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cmsync.domain.model import (
    FILE_CONTENT_TYPE,
    FILES_TABLE,
    ComponentAttribute,
    DynamicZoneAttribute,
    Link,
    MediaAttribute,
    RelationAttribute,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from cmsync.domain.model import ContentTypeSchema, SchemaCatalog

COMPONENT_KEY = "__component"


def extract_links(
    raw: Mapping[str, Any],
    schema: ContentTypeSchema,
    catalog: SchemaCatalog,
    *,
    prefix: str = "",
) -> list[Link]:
    links: list[Link] = []
    for name, attribute in schema.attributes.items():
        value = raw.get(name)
        if value is None:
            continue
        path = f"{prefix}{name}"
        if isinstance(attribute, RelationAttribute):
            if attribute.target is None or not attribute.target.startswith("api::"):
                continue
            table = catalog.table_for(attribute.target) or attribute.target
            links.extend(
                Link(
                    field=path,
                    target_content_type=attribute.target,
                    target_table=table,
                    target_id=_int_or_none(item.get("id")),
                    target_document_id=item.get("documentId"),
                    order=order,
                    relation=attribute.relation,
                    bidirectional=attribute.bidirectional,
                )
                for order, item in enumerate(_related_items(value))
            )
        elif isinstance(attribute, MediaAttribute):
            links.extend(
                Link(
                    field=path,
                    target_content_type=FILE_CONTENT_TYPE,
                    target_table=FILES_TABLE,
                    target_id=_int_or_none(item.get("id")),
                    target_document_id=item.get("documentId"),
                    order=order,
                    relation="morphMany" if attribute.multiple else "morphOne",
                )
                for order, item in enumerate(_related_items(value))
            )
        elif isinstance(attribute, ComponentAttribute):
            component = catalog.components.get(attribute.component or "")
            if component is None:
                continue
            if isinstance(value, list):
                for index, item in enumerate(value):
                    if isinstance(item, dict):
                        links.extend(
                            extract_links(item, component, catalog, prefix=f"{path}.{index}.")
                        )
            elif isinstance(value, dict):
                links.extend(extract_links(value, component, catalog, prefix=f"{path}."))
        elif isinstance(attribute, DynamicZoneAttribute) and isinstance(value, list):
            for index, item in enumerate(value):
                if not isinstance(item, dict):
                    continue
                component = catalog.components.get(item.get(COMPONENT_KEY, ""))
                if component is not None:
                    links.extend(extract_links(item, component, catalog, prefix=f"{path}.{index}."))
    return links


def strip_links(
    raw: Mapping[str, Any],
    schema: ContentTypeSchema,
    catalog: SchemaCatalog,
) -> dict[str, Any]:
    """Copy of ``raw`` without relation and media fields, at any component depth."""

    stripped: dict[str, Any] = {}
    for key, value in raw.items():
        attribute = schema.attributes.get(key)
        if isinstance(attribute, (RelationAttribute, MediaAttribute)):
            continue
        if isinstance(attribute, ComponentAttribute):
            component = catalog.components.get(attribute.component or "")
            if component is not None:
                value = _strip_component_value(value, component, catalog)
        elif isinstance(attribute, DynamicZoneAttribute) and isinstance(value, list):
            value = [_strip_zone_item(item, catalog) for item in value]
        stripped[key] = value
    return stripped


def inject_links(payload: dict[str, Any], values: Mapping[str, list[Any]]) -> dict[str, Any]:
    """Set ``{"set": [...]}`` relation values at dotted paths of ``payload`` (in place)."""

    for path, path_values in values.items():
        parts = path.split(".")
        container: Any = payload
        for part in parts[:-1]:
            if isinstance(container, list):
                index = int(part)
                if index >= len(container):
                    container = None
                    break
                container = container[index]
            elif isinstance(container, dict):
                container = container.setdefault(part, {})
            else:
                container = None
                break
        if isinstance(container, dict):
            container[parts[-1]] = {"set": list(path_values)}
    return payload


def root_field(path: str) -> str:
    return path.split(".", 1)[0]


def _strip_component_value(value: Any, component: ContentTypeSchema, catalog: SchemaCatalog) -> Any:
    if isinstance(value, list):
        return [
            strip_links(item, component, catalog) if isinstance(item, dict) else item
            for item in value
        ]
    if isinstance(value, dict):
        return strip_links(value, component, catalog)
    return value


def _strip_zone_item(item: Any, catalog: SchemaCatalog) -> Any:
    if not isinstance(item, dict):
        return item
    component = catalog.components.get(item.get(COMPONENT_KEY, ""))
    if component is None:
        return dict(item)
    return strip_links(item, component, catalog)


def _related_items(value: Any) -> list[dict[str, Any]]:
    if isinstance(value, dict) and "data" in value and len(value) <= 2:
        value = value["data"]
    if value is None:
        return []
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    return []


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None
