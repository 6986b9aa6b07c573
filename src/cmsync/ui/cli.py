from __future__ import annotations

import argparse
import json
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from cmsync.app import (
    build_orchestrator,
    check_schema,
    compare,
    complete_merge,
    list_snapshots,
    restore_snapshot,
    take_snapshot,
)
from cmsync.config import configure_logging
from cmsync.domain.model import CompareMode, CompareState, Direction, MergeRequestStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import FrameType

    from cmsync.domain.merge import MergeOrchestrator

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile and merge content between instances")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", help="Create a merge request")
    create.add_argument("--name", required=True, help="Name of the merge request")
    create.add_argument("--source", required=True, help="Source instance name")
    create.add_argument("--target", required=True, help="Target instance name")
    create.add_argument("--description", help="Optional description")

    subparsers.add_parser("list", help="List merge requests")

    delete = subparsers.add_parser("delete", help="Delete a merge request")
    delete.add_argument("merge_request_id", type=int)

    schema = subparsers.add_parser("schema", help="Check schema compatibility")
    schema.add_argument("merge_request_id", type=int)
    schema.add_argument("--force", action="store_true", help="Fetch schemas again")

    compare_parser = subparsers.add_parser("compare", help="Compare source and target content")
    compare_parser.add_argument("merge_request_id", type=int)
    compare_parser.add_argument(
        "--mode",
        choices=[str(mode) for mode in CompareMode],
        default=str(CompareMode.COMPARE),
        help="compare reuses fetched data, full refetches, cache only fetches "
        "(default: %(default)s)",
    )

    select = subparsers.add_parser("select", help="Select or deselect differences")
    select.add_argument("merge_request_id", type=int)
    select.add_argument("table", help="Table name (or 'files')")
    select.add_argument("document_ids", nargs="*", help="Document ids (default: all of a kind)")
    select.add_argument(
        "--direction",
        choices=[str(direction) for direction in Direction],
        required=True,
    )
    select.add_argument("--deselect", action="store_true", help="Remove the selections")
    select.add_argument(
        "--with-dependencies",
        action="store_true",
        help="Also select linked entries that need syncing (single document only)",
    )
    select.add_argument(
        "--kind",
        choices=[str(state) for state in CompareState if state is not CompareState.IDENTICAL],
        help="Classification targeted when no document id is given",
    )

    plan = subparsers.add_parser("plan", help="Preview the sync plan")
    plan.add_argument("merge_request_id", type=int)
    plan.add_argument("--json", action="store_true", help="Dump the full plan as JSON")

    advance = subparsers.add_parser("advance", help="Move to a wizard checkpoint")
    advance.add_argument("merge_request_id", type=int)
    advance.add_argument(
        "status",
        choices=[
            str(MergeRequestStatus.MERGED_FILES),
            str(MergeRequestStatus.MERGED_SINGLES),
            str(MergeRequestStatus.MERGED_COLLECTIONS),
        ],
    )

    complete = subparsers.add_parser("complete", help="Apply the selections to the target")
    complete.add_argument("merge_request_id", type=int)
    complete.add_argument(
        "--no-snapshot", action="store_true", help="Do not snapshot the target first"
    )
    complete.add_argument(
        "--allow-without-snapshot",
        action="store_true",
        help="Continue when the snapshot cannot be taken",
    )

    snapshot = subparsers.add_parser("snapshot", help="Snapshot commands")
    snapshot_sub = snapshot.add_subparsers(dest="snapshot_command", required=True)
    snapshot_take = snapshot_sub.add_parser("take", help="Snapshot the target database")
    snapshot_take.add_argument("merge_request_id", type=int)
    snapshot_restore = snapshot_sub.add_parser("restore", help="Restore the target database")
    snapshot_restore.add_argument("merge_request_id", type=int)
    snapshot_restore.add_argument("--name", help="Snapshot name (default: latest)")
    snapshot_restore.add_argument(
        "--yes", action="store_true", help="Confirm overwriting the target database"
    )
    snapshot_list = snapshot_sub.add_parser("list", help="List snapshots and activities")
    snapshot_list.add_argument("merge_request_id", type=int)

    mappings = subparsers.add_parser("mappings", help="Document mapping commands")
    mappings_sub = mappings.add_subparsers(dest="mappings_command", required=True)
    mappings_list = mappings_sub.add_parser("list", help="List mappings of the instance pair")
    mappings_list.add_argument("merge_request_id", type=int)
    mappings_list.add_argument("--content-type", help="Filter by content type uid")
    mappings_set = mappings_sub.add_parser("set", help="Map a source entry to a target entry")
    mappings_set.add_argument("merge_request_id", type=int)
    mappings_set.add_argument("--content-type", required=True)
    mappings_set.add_argument("--source-document-id", required=True)
    mappings_set.add_argument("--target-document-id", required=True)
    mappings_set.add_argument("--locale")
    mappings_delete = mappings_sub.add_parser("delete", help="Delete a mapping")
    mappings_delete.add_argument("merge_request_id", type=int)
    mappings_delete.add_argument("mapping_id", type=int)

    exclusions = subparsers.add_parser("exclusions", help="Exclusion commands")
    exclusions_sub = exclusions.add_subparsers(dest="exclusions_command", required=True)
    exclusions_list = exclusions_sub.add_parser("list", help="List exclusions")
    exclusions_list.add_argument("merge_request_id", type=int)
    exclusions_add = exclusions_sub.add_parser("add", help="Exclude a document or a field")
    exclusions_add.add_argument("merge_request_id", type=int)
    exclusions_add.add_argument("content_type")
    exclusions_add.add_argument("document_id")
    exclusions_add.add_argument("--field", help="Dotted field path; omit to skip the document")
    exclusions_remove = exclusions_sub.add_parser("remove", help="Remove an exclusion")
    exclusions_remove.add_argument("merge_request_id", type=int)
    exclusions_remove.add_argument("exclusion_id", type=int)

    return parser.parse_args(list(argv))


def _validate(args: argparse.Namespace) -> None:
    if args.command == "select" and args.with_dependencies:
        if len(args.document_ids) != 1:
            raise ValueError("--with-dependencies needs exactly one document id")
        if args.deselect:
            raise ValueError("--with-dependencies cannot be combined with --deselect")
    if args.command == "select" and args.kind and args.document_ids:
        raise ValueError("--kind only applies when no document id is given")
    if args.command == "complete" and args.no_snapshot and args.allow_without_snapshot:
        raise ValueError("--allow-without-snapshot has no effect with --no-snapshot")


# Command handlers ----------------------------------------------------------


def _create(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    merge_request = orchestrator.create_merge_request(
        args.name, args.source, args.target, description=args.description
    )
    log.info(f"Created merge request {merge_request.id}")


def _list(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    _ = args
    for merge_request in orchestrator.list_merge_requests():
        log.info(
            f"{merge_request.id}: {merge_request.name} "
            f"{merge_request.source_instance} -> {merge_request.target_instance} "
            f"[{merge_request.status}]"
        )


def _delete(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    orchestrator.delete_merge_request(args.merge_request_id)
    log.info(f"Deleted merge request {args.merge_request_id}")


def _schema(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    verdict = check_schema(args.merge_request_id, force=args.force, orchestrator=orchestrator)
    if verdict.is_compatible:
        log.info("Schemas are compatible")
        return
    for uid in verdict.missing_in_target:
        log.warning(f"Missing in target: {uid}")
    for uid in verdict.missing_in_source:
        log.warning(f"Missing in source: {uid}")
    for incompatibility in verdict.incompatible:
        for mismatch in incompatibility.mismatches:
            log.warning(f"{incompatibility.uid}.{mismatch.name}: {mismatch.kind}")
    verdict.raise_for_incompatibility()


def _compare(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    report = compare(args.merge_request_id, CompareMode(args.mode), orchestrator=orchestrator)
    if report is None:
        log.info("Comparison data cached")


def _select(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    direction = Direction(args.direction)
    selections = orchestrator.selections
    if args.with_dependencies:
        touched = selections.set_selection(
            args.merge_request_id,
            args.table,
            args.document_ids[0],
            direction,
            True,
            with_dependencies=True,
        )
        log.info(f"Selected {len(touched)} item(s)")
        return
    changed = selections.bulk_set(
        args.merge_request_id,
        args.table,
        direction,
        not args.deselect,
        select_all_kind=CompareState(args.kind) if args.kind else None,
        document_ids=args.document_ids or None,
    )
    log.info(f"{'Deselected' if args.deselect else 'Selected'} {changed} item(s)")


def _plan(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    plan = orchestrator.plan(args.merge_request_id)
    if args.json:
        sys.stdout.write(json.dumps(plan.to_payload(), indent=2) + "\n")
        return
    for index, batch in enumerate(plan.batches):
        log.info(f"Batch {index}: " + ", ".join(item.label for item in batch))
    if plan.cycle_members:
        log.info("Cycle members: " + ", ".join(item.label for item in plan.cycle_members))
    for missing in plan.missing_dependencies:
        log.warning(
            f"Missing dependency {missing.table_name}:{missing.document_id}.{missing.field} "
            f"-> {missing.target_table}:{missing.target_document_id} ({missing.reason})"
        )


def _advance(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    merge_request = orchestrator.advance(args.merge_request_id, MergeRequestStatus(args.status))
    log.info(f"Merge request {merge_request.id} is {merge_request.status}")


def _complete(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    merge_request = complete_merge(
        args.merge_request_id,
        take_snapshot=not args.no_snapshot,
        allow_without_snapshot=args.allow_without_snapshot,
        orchestrator=orchestrator,
    )
    log.info(f"Merge request {merge_request.id} finished as {merge_request.status}")
    if merge_request.status is MergeRequestStatus.FAILED:
        raise RuntimeError(f"Merge request {merge_request.id} failed")


def _snapshot(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    if args.snapshot_command == "take":
        snapshot = take_snapshot(args.merge_request_id, orchestrator=orchestrator)
        log.info(f"Snapshot {snapshot.schema_name} taken")
    elif args.snapshot_command == "restore":
        snapshot = restore_snapshot(
            args.merge_request_id, args.name, confirm=args.yes, orchestrator=orchestrator
        )
        log.info(f"Restored {snapshot.target_instance} from {snapshot.schema_name}")
    else:
        for snapshot in list_snapshots(args.merge_request_id, orchestrator=orchestrator):
            log.info(f"{snapshot.schema_name} created {snapshot.created_at}")
        assert orchestrator.snapshots is not None
        for activity in orchestrator.snapshots.list_activities(args.merge_request_id):
            log.info(
                f"{activity.activity_type} {activity.status} {activity.schema_name or '-'}: "
                f"{activity.message or ''}"
            )


def _mappings(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    if args.mappings_command == "list":
        for mapping in orchestrator.list_mappings(args.merge_request_id, args.content_type):
            log.info(
                f"{mapping.id}: {mapping.content_type} {mapping.source_document_id} -> "
                f"{mapping.target_document_id or '(unresolved)'}"
            )
    elif args.mappings_command == "set":
        mapping = orchestrator.upsert_mapping(
            args.merge_request_id,
            content_type=args.content_type,
            source_document_id=args.source_document_id,
            target_document_id=args.target_document_id,
            locale=args.locale,
        )
        log.info(f"Stored mapping {mapping.id}")
    else:
        orchestrator.delete_mapping(args.merge_request_id, args.mapping_id)
        log.info(f"Deleted mapping {args.mapping_id}")


def _exclusions(orchestrator: MergeOrchestrator, args: argparse.Namespace) -> None:
    if args.exclusions_command == "list":
        for exclusion in orchestrator.list_exclusions(args.merge_request_id):
            field = f".{exclusion.field_path}" if exclusion.field_path else ""
            log.info(f"{exclusion.id}: {exclusion.content_type} {exclusion.document_id}{field}")
    elif args.exclusions_command == "add":
        exclusion = orchestrator.add_exclusion(
            args.merge_request_id, args.content_type, args.document_id, args.field
        )
        log.info(f"Stored exclusion {exclusion.id}")
    else:
        orchestrator.remove_exclusion(args.merge_request_id, args.exclusion_id)
        log.info(f"Removed exclusion {args.exclusion_id}")


_HANDLERS: dict[str, Callable[[MergeOrchestrator, argparse.Namespace], None]] = {
    "create": _create,
    "list": _list,
    "delete": _delete,
    "schema": _schema,
    "compare": _compare,
    "select": _select,
    "plan": _plan,
    "advance": _advance,
    "complete": _complete,
    "snapshot": _snapshot,
    "mappings": _mappings,
    "exclusions": _exclusions,
}


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args: argparse.Namespace
    try:
        parsed_args = _parse_args(args_list)
        _validate(parsed_args)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        handler = _HANDLERS.get(parsed_args.command)
        if handler is None:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301
        handler(build_orchestrator(), parsed_args)
    except Exception:
        log.exception(f"Command {parsed_args.command} failed")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
