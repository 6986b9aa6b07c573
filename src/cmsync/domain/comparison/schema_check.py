"""Structural compatibility of two instances' schemas."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from cmsync.domain.errors import SchemaIncompatible
from cmsync.domain.model import (
    ComponentAttribute,
    DynamicZoneAttribute,
    EnumerationAttribute,
    MediaAttribute,
    RelationAttribute,
    ScalarAttribute,
    UnknownAttribute,
)

if TYPE_CHECKING:
    from cmsync.domain.model import Attribute, ContentTypeSchema, SchemaCatalog


class MismatchKind(StrEnum):
    MISSING_IN_TARGET = "MISSING_IN_TARGET"
    MISSING_IN_SOURCE = "MISSING_IN_SOURCE"
    TYPE_CHANGED = "TYPE_CHANGED"
    RELATION_CHANGED = "RELATION_CHANGED"
    ENUM_CHANGED = "ENUM_CHANGED"
    COMPONENT_CHANGED = "COMPONENT_CHANGED"
    REQUIRED_ADDED = "REQUIRED_ADDED"
    KIND_CHANGED = "KIND_CHANGED"


@dataclass(frozen=True, slots=True, kw_only=True)
class AttributeMismatch:
    name: str
    kind: MismatchKind
    source_value: str | None = None
    target_value: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class SchemaIncompatibility:
    uid: str
    is_component: bool
    mismatches: list[AttributeMismatch] = field(default_factory=list["AttributeMismatch"])


@dataclass(slots=True, kw_only=True)
class SchemaCompatibility:
    missing_in_target: list[str] = field(default_factory=list[str])
    missing_in_source: list[str] = field(default_factory=list[str])
    incompatible: list[SchemaIncompatibility] = field(
        default_factory=list["SchemaIncompatibility"]
    )

    @property
    def is_compatible(self) -> bool:
        return not (self.missing_in_target or self.missing_in_source or self.incompatible)

    def raise_for_incompatibility(self) -> None:
        if self.is_compatible:
            return
        details = [f"{item.uid}: {len(item.mismatches)} mismatch(es)" for item in self.incompatible]
        if self.missing_in_target:
            details.append(f"missing in target: {', '.join(self.missing_in_target)}")
        if self.missing_in_source:
            details.append(f"missing in source: {', '.join(self.missing_in_source)}")
        raise SchemaIncompatible(
            "Schemas are not compatible; " + "; ".join(details),
            missing_in_target=tuple(self.missing_in_target),
        )


def check_schema_compatibility(source: SchemaCatalog, target: SchemaCatalog) -> SchemaCompatibility:
    """Compare content types and components present in both catalogs, attribute by attribute."""

    source_types = {schema.uid: schema for schema in source.api_types()}
    target_types = {schema.uid: schema for schema in target.api_types()}

    result = SchemaCompatibility(
        missing_in_target=sorted(source_types.keys() - target_types.keys()),
        missing_in_source=sorted(target_types.keys() - source_types.keys()),
    )

    for uid in sorted(source_types.keys() & target_types.keys()):
        mismatches = _compare_schema(source_types[uid], target_types[uid])
        if mismatches:
            result.incompatible.append(
                SchemaIncompatibility(uid=uid, is_component=False, mismatches=mismatches)
            )

    for uid in sorted(source.components.keys() & target.components.keys()):
        mismatches = _compare_schema(source.components[uid], target.components[uid])
        if mismatches:
            result.incompatible.append(
                SchemaIncompatibility(uid=uid, is_component=True, mismatches=mismatches)
            )

    return result


def _compare_schema(
    source: ContentTypeSchema, target: ContentTypeSchema
) -> list[AttributeMismatch]:
    mismatches: list[AttributeMismatch] = []
    if source.kind is not target.kind:
        mismatches.append(
            AttributeMismatch(
                name="",
                kind=MismatchKind.KIND_CHANGED,
                source_value=str(source.kind),
                target_value=str(target.kind),
            )
        )

    for name in sorted(source.attributes.keys() | target.attributes.keys()):
        source_attribute = source.attributes.get(name)
        target_attribute = target.attributes.get(name)
        if target_attribute is None:
            mismatches.append(AttributeMismatch(name=name, kind=MismatchKind.MISSING_IN_TARGET))
            continue
        if source_attribute is None:
            if target_attribute.required:
                mismatches.append(
                    AttributeMismatch(name=name, kind=MismatchKind.MISSING_IN_SOURCE)
                )
            continue
        mismatches.extend(_compare_attribute(source_attribute, target_attribute))
    return mismatches


def _compare_attribute(source: Attribute, target: Attribute) -> list[AttributeMismatch]:
    name = source.name
    if type(source) is not type(target) or source.type != target.type:
        return [
            AttributeMismatch(
                name=name,
                kind=MismatchKind.TYPE_CHANGED,
                source_value=source.type,
                target_value=target.type,
            )
        ]

    mismatches: list[AttributeMismatch] = []
    if target.required and not source.required:
        mismatches.append(AttributeMismatch(name=name, kind=MismatchKind.REQUIRED_ADDED))

    if isinstance(source, RelationAttribute):
        assert isinstance(target, RelationAttribute)
        if source.relation != target.relation or source.target != target.target:
            mismatches.append(
                AttributeMismatch(
                    name=name,
                    kind=MismatchKind.RELATION_CHANGED,
                    source_value=f"{source.relation} -> {source.target}",
                    target_value=f"{target.relation} -> {target.target}",
                )
            )
    elif isinstance(source, EnumerationAttribute):
        assert isinstance(target, EnumerationAttribute)
        if source.values != target.values:
            mismatches.append(
                AttributeMismatch(
                    name=name,
                    kind=MismatchKind.ENUM_CHANGED,
                    source_value=",".join(sorted(source.values)),
                    target_value=",".join(sorted(target.values)),
                )
            )
    elif isinstance(source, ComponentAttribute):
        assert isinstance(target, ComponentAttribute)
        if source.component != target.component or source.repeatable != target.repeatable:
            mismatches.append(
                AttributeMismatch(
                    name=name,
                    kind=MismatchKind.COMPONENT_CHANGED,
                    source_value=f"{source.component} repeatable={source.repeatable}",
                    target_value=f"{target.component} repeatable={target.repeatable}",
                )
            )
    elif isinstance(source, DynamicZoneAttribute):
        assert isinstance(target, DynamicZoneAttribute)
        if source.components != target.components:
            mismatches.append(
                AttributeMismatch(
                    name=name,
                    kind=MismatchKind.COMPONENT_CHANGED,
                    source_value=",".join(sorted(source.components)),
                    target_value=",".join(sorted(target.components)),
                )
            )
    elif isinstance(source, MediaAttribute):
        assert isinstance(target, MediaAttribute)
        if source.multiple != target.multiple:
            mismatches.append(
                AttributeMismatch(
                    name=name,
                    kind=MismatchKind.TYPE_CHANGED,
                    source_value=f"media multiple={source.multiple}",
                    target_value=f"media multiple={target.multiple}",
                )
            )
    elif isinstance(source, UnknownAttribute):
        assert isinstance(target, UnknownAttribute)
        if source.raw != target.raw:
            mismatches.append(
                AttributeMismatch(
                    name=name,
                    kind=MismatchKind.TYPE_CHANGED,
                    source_value=source.type,
                    target_value=target.type,
                )
            )
    else:
        assert isinstance(source, ScalarAttribute)

    return mismatches
