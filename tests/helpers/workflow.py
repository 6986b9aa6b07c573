"""Drive a merge request through the wizard against fake stores."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from cmsync.domain.model import MergeRequestStatus
from tests.helpers.content import blog_schemas

if TYPE_CHECKING:
    from cmsync.domain.merge import MergeOrchestrator
    from tests.helpers.stores import StoreRegistry


def install_blog(stores: StoreRegistry) -> None:
    content_types, components = blog_schemas()
    stores.source.install(content_types, components)
    stores.target.install(*blog_schemas())


def compared_merge_request(orchestrator: MergeOrchestrator, name: str = "release") -> int:
    """Create a staging to prod merge request and run its schema check and comparison."""

    merge_request = orchestrator.create_merge_request(name, "staging", "prod")
    assert merge_request.id is not None
    verdict = asyncio.run(orchestrator.check_schema(merge_request.id))
    assert verdict.is_compatible
    asyncio.run(orchestrator.compare(merge_request.id))
    return merge_request.id


def advance_to_collections(orchestrator: MergeOrchestrator, merge_request_id: int) -> None:
    for status in (
        MergeRequestStatus.MERGED_FILES,
        MergeRequestStatus.MERGED_SINGLES,
        MergeRequestStatus.MERGED_COLLECTIONS,
    ):
        orchestrator.advance(merge_request_id, status)
