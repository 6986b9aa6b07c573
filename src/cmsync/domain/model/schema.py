"""Content-type and component schema model.

Attribute definitions arrive as loosely typed JSON. They are parsed into one of a closed set of
variants so that consumers (compatibility checks, link extraction) can dispatch on the variant
instead of probing dictionary keys. Unrecognised attribute types become ``UnknownAttribute`` and
keep their raw payload for forward compatibility.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from cmsync.domain.model.enums import FILES_TABLE, ContentKind

SCALAR_ATTRIBUTE_TYPES = frozenset(
    {
        "string",
        "text",
        "richtext",
        "blocks",
        "email",
        "password",
        "uid",
        "integer",
        "biginteger",
        "float",
        "decimal",
        "boolean",
        "date",
        "time",
        "datetime",
        "timestamp",
        "json",
    }
)


@dataclass(frozen=True, slots=True, kw_only=True)
class AttributeBase:
    name: str
    type: str
    required: bool = False
    unique: bool = False
    private: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class ScalarAttribute(AttributeBase):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class EnumerationAttribute(AttributeBase):
    values: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True, kw_only=True)
class RelationAttribute(AttributeBase):
    relation: str | None = None
    target: str | None = None
    inversed_by: str | None = None
    mapped_by: str | None = None

    @property
    def bidirectional(self) -> bool:
        return self.inversed_by is not None or self.mapped_by is not None

    @property
    def multiple(self) -> bool:
        return self.relation is not None and self.relation.endswith("Many")


@dataclass(frozen=True, slots=True, kw_only=True)
class MediaAttribute(AttributeBase):
    multiple: bool = False
    allowed_types: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True, kw_only=True)
class ComponentAttribute(AttributeBase):
    component: str | None = None
    repeatable: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class DynamicZoneAttribute(AttributeBase):
    components: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True, kw_only=True)
class UnknownAttribute(AttributeBase):
    raw: dict[str, Any] = field(default_factory=dict[str, Any])


type Attribute = (
    ScalarAttribute
    | EnumerationAttribute
    | RelationAttribute
    | MediaAttribute
    | ComponentAttribute
    | DynamicZoneAttribute
    | UnknownAttribute
)


@dataclass(frozen=True, slots=True, kw_only=True)
class ContentTypeSchema:
    """Schema of one content type (or component, when ``kind`` is COMPONENT)."""

    uid: str
    kind: ContentKind
    collection_name: str
    singular_name: str = ""
    plural_name: str = ""
    display_name: str = ""
    attributes: dict[str, Attribute] = field(default_factory=dict["str", "Attribute"])

    @property
    def table_name(self) -> str:
        return self.collection_name

    @property
    def api_path(self) -> str:
        """REST path segment: singular for single types, plural for collections."""

        if self.kind is ContentKind.SINGLE:
            return self.singular_name
        return self.plural_name

    @property
    def is_api_type(self) -> bool:
        return self.uid.startswith("api::")

    def unique_attributes(self) -> tuple[str, ...]:
        return tuple(
            sorted(
                name
                for name, attribute in self.attributes.items()
                if attribute.unique and isinstance(attribute, ScalarAttribute)
            )
        )

    def ref(self) -> ContentTypeRef:
        return ContentTypeRef(
            uid=self.uid,
            kind=self.kind,
            table_name=self.table_name,
            api_path=self.api_path,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class ContentTypeRef:
    """Serialisable subset of a schema needed after fetching."""

    uid: str
    kind: ContentKind
    table_name: str
    api_path: str


@dataclass(frozen=True, slots=True)
class SchemaCatalog:
    """Content types and components of one instance, indexed by uid."""

    content_types: dict[str, ContentTypeSchema]
    components: dict[str, ContentTypeSchema]

    @classmethod
    def build(
        cls,
        content_types: list[ContentTypeSchema],
        components: list[ContentTypeSchema],
    ) -> SchemaCatalog:
        return cls(
            content_types={schema.uid: schema for schema in content_types},
            components={schema.uid: schema for schema in components},
        )

    def api_types(self) -> list[ContentTypeSchema]:
        return sorted(
            (schema for schema in self.content_types.values() if schema.is_api_type),
            key=lambda schema: schema.uid,
        )

    def table_for(self, uid: str | None) -> str | None:
        if uid is None:
            return None
        if uid.startswith("plugin::upload.file"):
            return FILES_TABLE
        schema = self.content_types.get(uid)
        return schema.table_name if schema is not None else None
