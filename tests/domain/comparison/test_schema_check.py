from __future__ import annotations

from dataclasses import replace

import pytest

from cmsync.domain.comparison import MismatchKind, check_schema_compatibility
from cmsync.domain.errors import SchemaIncompatible
from cmsync.domain.model import (
    Attribute,
    ComponentAttribute,
    ContentKind,
    ContentTypeSchema,
    EnumerationAttribute,
    SchemaCatalog,
)
from tests.helpers.content import (
    ARTICLE,
    SEO,
    article_schema,
    blog_catalog,
    blog_schemas,
    content_type,
    relation,
    scalar,
    seo_component,
)


def _catalog_with(*overrides: ContentTypeSchema) -> SchemaCatalog:
    content_types, components = blog_schemas()
    by_uid = {schema.uid: schema for schema in [*content_types, *components]}
    for schema in overrides:
        by_uid[schema.uid] = schema
    return SchemaCatalog.build(
        [schema for schema in by_uid.values() if schema.kind is not ContentKind.COMPONENT],
        [schema for schema in by_uid.values() if schema.kind is ContentKind.COMPONENT],
    )


def _with_attributes(uid: str, **attributes: Attribute) -> ContentTypeSchema:
    base = blog_catalog().content_types.get(uid) or blog_catalog().components[uid]
    return replace(base, attributes={**base.attributes, **attributes})


def test_identical_catalogs_are_compatible() -> None:
    result = check_schema_compatibility(blog_catalog(), blog_catalog())

    assert result.is_compatible
    result.raise_for_incompatibility()


def test_content_type_missing_on_one_side() -> None:
    tags = content_type("api::tag.tag", [scalar("label")])

    result = check_schema_compatibility(_catalog_with(tags), blog_catalog())

    assert result.missing_in_target == ["api::tag.tag"]
    assert result.missing_in_source == []
    with pytest.raises(SchemaIncompatible) as excinfo:
        result.raise_for_incompatibility()
    assert excinfo.value.missing_in_target == ("api::tag.tag",)


def test_attribute_level_mismatches_are_reported() -> None:
    source = _catalog_with(
        _with_attributes(
            ARTICLE,
            author=relation("author", "api::author.author", "manyToMany"),
            category=EnumerationAttribute(
                name="category", type="enumeration", values=frozenset({"news"})
            ),
            body=scalar("body", "text"),
            subtitle=scalar("subtitle"),
        )
    )
    target = _catalog_with(
        _with_attributes(
            ARTICLE, slug=scalar("slug", "uid", required=True), summary=scalar("summary")
        )
    )

    result = check_schema_compatibility(source, target)

    (incompatibility,) = result.incompatible
    assert incompatibility.uid == ARTICLE
    assert not incompatibility.is_component
    assert {(mismatch.name, mismatch.kind) for mismatch in incompatibility.mismatches} == {
        ("author", MismatchKind.RELATION_CHANGED),
        ("category", MismatchKind.ENUM_CHANGED),
        ("body", MismatchKind.TYPE_CHANGED),
        ("subtitle", MismatchKind.MISSING_IN_TARGET),
        ("slug", MismatchKind.MISSING_IN_SOURCE),
    }


def test_newly_required_attribute_is_flagged() -> None:
    target = _catalog_with(
        _with_attributes(ARTICLE, body=scalar("body", "richtext", required=True))
    )

    result = check_schema_compatibility(blog_catalog(), target)

    (incompatibility,) = result.incompatible
    assert [mismatch.kind for mismatch in incompatibility.mismatches] == [
        MismatchKind.REQUIRED_ADDED
    ]


def test_component_changes_are_checked() -> None:
    component = replace(
        seo_component(), attributes={"meta_title": scalar("meta_title", "text")}
    )
    repeatable = _with_attributes(
        ARTICLE,
        seo=ComponentAttribute(name="seo", type="component", component=SEO, repeatable=True),
    )

    result = check_schema_compatibility(_catalog_with(component, repeatable), blog_catalog())

    by_uid = {item.uid: item for item in result.incompatible}
    assert by_uid[SEO].is_component
    assert by_uid[SEO].mismatches[0].kind is MismatchKind.TYPE_CHANGED
    assert by_uid[ARTICLE].mismatches[0].kind is MismatchKind.COMPONENT_CHANGED


def test_kind_change_is_reported() -> None:
    single = replace(article_schema(), kind=ContentKind.SINGLE)

    result = check_schema_compatibility(_catalog_with(single), blog_catalog())

    (incompatibility,) = result.incompatible
    assert incompatibility.mismatches[0].kind is MismatchKind.KIND_CHANGED
