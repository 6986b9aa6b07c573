"""Classification of prefetched entries and files into comparison results.

Content entries are paired per content type: by stored document mapping first, then by
identical document id, then by identical unique-attribute key. A pair is IDENTICAL when the
cleaned payload hashes agree and the source links, translated to target document ids, equal
the target links.

Files are paired by mapping or document id, then by fingerprint. Fingerprint pairings are
returned as new document mappings so the next comparison pairs them directly.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from difflib import SequenceMatcher
from logging import getLogger
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Literal

from pydantic import TypeAdapter

from cmsync.domain.comparison.normalize import payload_hash, without_field_path
from cmsync.domain.fingerprint import fingerprints_match, hamming_distance
from cmsync.domain.model import (
    FILE_CONTENT_TYPE,
    FILES_TABLE,
    CompareState,
    ComparisonReport,
    ComparisonResult,
    ContentKind,
    DocumentMapping,
    EntryRelationship,
    FileComparisonResult,
    FingerprintMethod,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from cmsync.domain.comparison.prefetch import ComparisonPrefetch
    from cmsync.domain.model import (
        ContentEntry,
        ContentTypeRef,
        Exclusion,
        FileAsset,
        Link,
    )

log = getLogger(__name__)

FINGERPRINT_SIZE_TOLERANCE = 0.25
METADATA_SIZE_TOLERANCE = 0.20
NAME_SIMILARITY_RATIO = 0.8

_REPORT_ADAPTER = TypeAdapter(ComparisonReport)

type Side = Literal["source", "target"]
type AnyResult = ComparisonResult | FileComparisonResult


def dump_report(report: ComparisonReport) -> str:
    return _REPORT_ADAPTER.dump_json(report).decode("utf-8")


def load_report(payload: str) -> ComparisonReport:
    return _REPORT_ADAPTER.validate_json(payload)


@dataclass(slots=True)
class LinkResolver:
    """Resolves links of one side's entries to the comparison results they point at."""

    by_document: dict[tuple[str, str], AnyResult] = field(
        default_factory=dict["tuple[str, str]", "AnyResult"]
    )
    by_id: dict[tuple[str, int], AnyResult] = field(
        default_factory=dict["tuple[str, int]", "AnyResult"]
    )

    @classmethod
    def for_side(cls, report: ComparisonReport, side: Side) -> LinkResolver:
        resolver = cls()
        for result in report.files:
            asset = result.source if side == "source" else result.target
            if asset is not None:
                resolver.by_document[(FILES_TABLE, asset.document_id)] = result
                resolver.by_id[(FILES_TABLE, asset.id)] = result
        for result in report.content_results():
            entry = result.source if side == "source" else result.target
            if entry is None:
                continue
            resolver.by_document[(result.table_name, entry.document_id)] = result
            if entry.id is not None:
                resolver.by_id[(result.table_name, entry.id)] = result
        return resolver

    def resolve(self, link: Link) -> AnyResult | None:
        if link.target_document_id is not None:
            found = self.by_document.get((link.target_table, link.target_document_id))
            if found is not None:
                return found
        if link.target_id is not None:
            return self.by_id.get((link.target_table, link.target_id))
        return None


@dataclass(slots=True)
class ComparisonOutcome:
    report: ComparisonReport
    new_mappings: list[DocumentMapping] = field(default_factory=list["DocumentMapping"])


@dataclass(slots=True)
class ComparisonEngine:
    hamming_threshold: int = 10

    def compare(
        self,
        prefetch: ComparisonPrefetch,
        *,
        mappings: Sequence[DocumentMapping] = (),
        exclusions: Sequence[Exclusion] = (),
    ) -> ComparisonOutcome:
        excluded_documents = {
            (exclusion.content_type, exclusion.document_id)
            for exclusion in exclusions
            if exclusion.excludes_document
        }
        excluded_fields: dict[tuple[str, str], list[str]] = defaultdict(list)
        for exclusion in exclusions:
            if exclusion.field_path is not None:
                excluded_fields[(exclusion.content_type, exclusion.document_id)].append(
                    exclusion.field_path
                )
        mapped_targets: dict[tuple[str, str], str] = {
            (mapping.content_type, mapping.source_document_id): mapping.target_document_id
            for mapping in mappings
            if mapping.target_document_id is not None
        }

        file_pairs, file_only_source, file_only_target, new_mappings = self._pair_files(
            prefetch, mapped_targets, excluded_documents
        )

        content_pairs: dict[str, list[tuple[ContentEntry, ContentEntry]]] = {}
        content_only: dict[str, tuple[list[ContentEntry], list[ContentEntry]]] = {}
        for ref in prefetch.content_types:
            source_entries = _without_excluded(
                prefetch.source.entries.get(ref.uid, []), ref.uid, excluded_documents
            )
            target_entries = _without_excluded(
                prefetch.target.entries.get(ref.uid, []), ref.uid, excluded_documents
            )
            pairs, only_source, only_target = _pair_entries(
                ref, source_entries, target_entries, mapped_targets
            )
            content_pairs[ref.uid] = [
                _apply_field_exclusions(source, target, ref.uid, excluded_fields)
                for source, target in pairs
            ]
            content_only[ref.uid] = (only_source, only_target)

        # Source document id to target document id, per table, for link translation.
        translation: dict[tuple[str, str], str] = {
            (FILES_TABLE, source.document_id): target.document_id for source, target in file_pairs
        }
        for ref in prefetch.content_types:
            for source, target in content_pairs[ref.uid]:
                translation[(ref.table_name, source.document_id)] = target.document_id
        source_ids = _id_index(prefetch, "source")
        target_ids = _id_index(prefetch, "target")

        report = ComparisonReport()
        for source, target in file_pairs:
            report.files.append(
                FileComparisonResult(
                    state=self._classify_files(source, target), source=source, target=target
                )
            )
        report.files.extend(
            FileComparisonResult(state=CompareState.ONLY_IN_SOURCE, source=source)
            for source in file_only_source
        )
        report.files.extend(
            FileComparisonResult(state=CompareState.ONLY_IN_TARGET, target=target)
            for target in file_only_target
        )
        report.files.sort(key=lambda result: result.document_id)

        for ref in prefetch.content_types:
            results: list[ComparisonResult] = []
            for source, target in content_pairs[ref.uid]:
                identical = source.content_hash == target.content_hash and _link_keys(
                    source.links, source_ids, translation
                ) == _link_keys(target.links, target_ids, None)
                results.append(
                    ComparisonResult(
                        table_name=ref.table_name,
                        content_type=ref.uid,
                        kind=ref.kind,
                        state=CompareState.IDENTICAL if identical else CompareState.DIFFERENT,
                        source=source,
                        target=target,
                    )
                )
            only_source, only_target = content_only[ref.uid]
            results.extend(
                ComparisonResult(
                    table_name=ref.table_name,
                    content_type=ref.uid,
                    kind=ref.kind,
                    state=CompareState.ONLY_IN_SOURCE,
                    source=source,
                )
                for source in only_source
            )
            results.extend(
                ComparisonResult(
                    table_name=ref.table_name,
                    content_type=ref.uid,
                    kind=ref.kind,
                    state=CompareState.ONLY_IN_TARGET,
                    target=target,
                )
                for target in only_target
            )
            if not results:
                continue
            if ref.kind is ContentKind.SINGLE:
                report.singles[ref.table_name] = results[0]
            else:
                report.collections[ref.table_name] = sorted(
                    results, key=lambda result: result.document_id
                )

        report.relationships = build_relationships(report)
        log.info(
            "Comparison finished: "
            + ", ".join(f"{state}={count}" for state, count in report.counts().items())
        )
        return ComparisonOutcome(
            report=report,
            new_mappings=[
                replace(
                    mapping,
                    source_instance=prefetch.source.instance,
                    target_instance=prefetch.target.instance,
                )
                for mapping in new_mappings
            ],
        )

    # Files -----------------------------------------------------------------

    def _pair_files(
        self,
        prefetch: ComparisonPrefetch,
        mapped_targets: dict[tuple[str, str], str],
        excluded_documents: set[tuple[str, str]],
    ) -> tuple[
        list[tuple[FileAsset, FileAsset]],
        list[FileAsset],
        list[FileAsset],
        list[DocumentMapping],
    ]:
        sources = [
            file
            for file in prefetch.source.files
            if (FILE_CONTENT_TYPE, file.document_id) not in excluded_documents
        ]
        remaining = {
            file.document_id: file
            for file in prefetch.target.files
            if (FILE_CONTENT_TYPE, file.document_id) not in excluded_documents
        }

        pairs: list[tuple[FileAsset, FileAsset]] = []
        by_document_id: list[FileAsset] = []
        for source in sources:
            target_document_id = mapped_targets.get((FILE_CONTENT_TYPE, source.document_id))
            target = remaining.pop(target_document_id, None) if target_document_id else None
            if target is None:
                by_document_id.append(source)
            else:
                pairs.append((source, target))

        unmatched: list[FileAsset] = []
        for source in by_document_id:
            candidate = remaining.get(source.document_id)
            if candidate is None or candidate.metadata.locale != source.metadata.locale:
                unmatched.append(source)
                continue
            del remaining[candidate.document_id]
            pairs.append((source, candidate))

        new_mappings: list[DocumentMapping] = []
        only_source: list[FileAsset] = []
        for source in unmatched:
            target = self._fingerprint_candidate(source, remaining.values())
            if target is None:
                only_source.append(source)
                continue
            del remaining[target.document_id]
            pairs.append((source, target))
            new_mappings.append(_file_mapping(source, target))
            log.debug(f"Paired file {source.metadata.name} by fingerprint")

        return pairs, only_source, list(remaining.values()), new_mappings

    def _fingerprint_candidate(
        self, source: FileAsset, candidates: Iterable[FileAsset]
    ) -> FileAsset | None:
        if source.fingerprint is None:
            return None
        best: tuple[int, int, FileAsset] | None = None
        for candidate in candidates:
            if candidate.fingerprint is None:
                continue
            if not fingerprints_match(
                source.fingerprint, candidate.fingerprint, threshold=self.hamming_threshold
            ):
                continue
            if _sizes_disagree(source, candidate, FINGERPRINT_SIZE_TOLERANCE) and not (
                names_similar(source.metadata.name, candidate.metadata.name)
            ):
                continue
            rank = (
                0 if candidate.metadata.locale == source.metadata.locale else 1,
                _fingerprint_distance(source, candidate),
            )
            if best is None or rank < best[:2]:
                best = (*rank, candidate)
        return best[2] if best is not None else None

    def _classify_files(self, source: FileAsset, target: FileAsset) -> CompareState:
        if source.fingerprint is not None and target.fingerprint is not None:
            if fingerprints_match(
                source.fingerprint, target.fingerprint, threshold=self.hamming_threshold
            ) and not (
                _sizes_disagree(source, target, FINGERPRINT_SIZE_TOLERANCE)
                and not names_similar(source.metadata.name, target.metadata.name)
            ):
                return CompareState.IDENTICAL
            return CompareState.DIFFERENT

        left, right = source.metadata, target.metadata
        same = (
            not _sizes_disagree(source, target, METADATA_SIZE_TOLERANCE)
            and left.folder_path == right.folder_path
            and left.name == right.name
            and left.alternative_text == right.alternative_text
            and left.caption == right.caption
        )
        return CompareState.IDENTICAL if same else CompareState.DIFFERENT


def build_relationships(report: ComparisonReport) -> list[EntryRelationship]:
    """Edges between compared entries, resolved on the side each entry lives on."""

    relationships: list[EntryRelationship] = []
    resolvers = {
        "source": LinkResolver.for_side(report, "source"),
        "target": LinkResolver.for_side(report, "target"),
    }
    for result in report.content_results():
        side: Side = "source" if result.source is not None else "target"
        entry = result.source if result.source is not None else result.target
        assert entry is not None
        for link in entry.links:
            linked = resolvers[side].resolve(link)
            if linked is None:
                continue
            relationships.append(
                EntryRelationship(
                    source_content_type=result.content_type,
                    source_table=result.table_name,
                    source_document_id=result.document_id,
                    field=link.field,
                    target_content_type=linked.content_type,
                    target_table=linked.table_name,
                    target_document_id=linked.document_id,
                    relation=link.relation,
                    bidirectional=link.bidirectional,
                    compare_status=linked.state,
                )
            )
    return relationships


def names_similar(left: str, right: str) -> bool:
    left_stem = _name_stem(left)
    right_stem = _name_stem(right)
    if not left_stem or not right_stem:
        return False
    if left_stem == right_stem or left_stem in right_stem or right_stem in left_stem:
        return True
    return SequenceMatcher(None, left_stem, right_stem).ratio() >= NAME_SIMILARITY_RATIO


def _name_stem(name: str) -> str:
    stem = PurePosixPath(name.lower()).stem
    return "".join(char for char in stem if char.isalnum())


def _sizes_disagree(left: FileAsset, right: FileAsset, tolerance: float) -> bool:
    left_size = left.effective_size
    right_size = right.effective_size
    largest = max(left_size, right_size)
    if largest == 0:
        return False
    return abs(left_size - right_size) / largest > tolerance


def _fingerprint_distance(left: FileAsset, right: FileAsset) -> int:
    assert left.fingerprint is not None
    assert right.fingerprint is not None
    if left.fingerprint.method is FingerprintMethod.IMAGE_DHASH64:
        return hamming_distance(left.fingerprint.value, right.fingerprint.value)
    return 0


def _file_mapping(source: FileAsset, target: FileAsset) -> DocumentMapping:
    now = utcnow()
    return DocumentMapping(
        source_instance="",
        target_instance="",
        content_type=FILE_CONTENT_TYPE,
        source_document_id=source.document_id,
        source_id=source.id,
        source_updated_at=source.metadata.updated_at,
        source_hash=source.fingerprint.value if source.fingerprint else None,
        target_id=target.id,
        target_document_id=target.document_id,
        target_updated_at=target.metadata.updated_at,
        target_hash=target.fingerprint.value if target.fingerprint else None,
        locale=source.metadata.locale,
        created_at=now,
        updated_at=now,
    )


def _without_excluded(
    entries: list[ContentEntry], content_type: str, excluded: set[tuple[str, str]]
) -> list[ContentEntry]:
    return [entry for entry in entries if (content_type, entry.document_id) not in excluded]


def _pair_entries(
    ref: ContentTypeRef,
    sources: list[ContentEntry],
    targets: list[ContentEntry],
    mapped_targets: dict[tuple[str, str], str],
) -> tuple[list[tuple[ContentEntry, ContentEntry]], list[ContentEntry], list[ContentEntry]]:
    if ref.kind is ContentKind.SINGLE:
        if sources and targets:
            return [(sources[0], targets[0])], [], []
        return [], sources[:1], targets[:1]

    remaining = {entry.document_id: entry for entry in targets}
    pairs: list[tuple[ContentEntry, ContentEntry]] = []
    # Stored mappings claim their targets before any document id match.
    by_document_id: list[ContentEntry] = []
    for source in sources:
        target_document_id = mapped_targets.get((ref.uid, source.document_id))
        target = remaining.pop(target_document_id, None) if target_document_id else None
        if target is None:
            by_document_id.append(source)
        else:
            pairs.append((source, target))

    unmatched: list[ContentEntry] = []
    for source in by_document_id:
        target = remaining.pop(source.document_id, None)
        if target is None:
            unmatched.append(source)
        else:
            pairs.append((source, target))

    only_source: list[ContentEntry] = []
    by_key: dict[str, list[ContentEntry]] = defaultdict(list)
    for target in remaining.values():
        if target.metadata.unique_key:
            by_key[target.metadata.unique_key].append(target)
    for source in unmatched:
        key = source.metadata.unique_key
        candidates = [
            candidate
            for candidate in (by_key.get(key, []) if key else [])
            if candidate.document_id in remaining
        ]
        if len(candidates) != 1:
            only_source.append(source)
            continue
        target = candidates[0]
        del remaining[target.document_id]
        pairs.append((source, target))

    return pairs, only_source, list(remaining.values())


def _apply_field_exclusions(
    source: ContentEntry,
    target: ContentEntry,
    content_type: str,
    excluded_fields: dict[tuple[str, str], list[str]],
) -> tuple[ContentEntry, ContentEntry]:
    paths = excluded_fields.get((content_type, source.document_id), []) + (
        excluded_fields.get((content_type, target.document_id), [])
        if target.document_id != source.document_id
        else []
    )
    if not paths:
        return source, target
    return _strip_paths(source, paths), _strip_paths(target, paths)


def _strip_paths(entry: ContentEntry, paths: list[str]) -> ContentEntry:
    clean = entry.clean
    for path in paths:
        clean = without_field_path(clean, path)
    links = tuple(
        link
        for link in entry.links
        if not any(link.field == path or link.field.startswith(f"{path}.") for path in paths)
    )
    return replace(entry, clean=clean, content_hash=payload_hash(clean), links=links)


def _id_index(prefetch: ComparisonPrefetch, side: Side) -> dict[tuple[str, int], str]:
    """(table, numeric id) to document id, for links that only carry numeric ids."""

    data = prefetch.source if side == "source" else prefetch.target
    index: dict[tuple[str, int], str] = {
        (FILES_TABLE, file.id): file.document_id for file in data.files
    }
    for ref in prefetch.content_types:
        for entry in data.entries.get(ref.uid, []):
            if entry.id is not None:
                index[(ref.table_name, entry.id)] = entry.document_id
    return index


def _link_keys(
    links: Iterable[Link],
    ids: dict[tuple[str, int], str],
    translation: dict[tuple[str, str], str] | None,
) -> list[tuple[str, str, str]]:
    keys: list[tuple[str, str, str]] = []
    for link in links:
        document_id = link.target_document_id
        if document_id is None and link.target_id is not None:
            document_id = ids.get((link.target_table, link.target_id))
        if document_id is None:
            document_id = f"#{link.target_id}"
        elif translation is not None:
            document_id = translation.get((link.target_table, document_id), document_id)
        keys.append((link.field, link.target_table, document_id))
    return sorted(keys)
