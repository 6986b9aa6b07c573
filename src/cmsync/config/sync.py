"""Tuning knobs for comparison and merge execution."""

from __future__ import annotations

from dataclasses import dataclass

from .env import int_env_var

DEFAULT_FETCH_CONCURRENCY = 4
DEFAULT_FINGERPRINT_CONCURRENCY = 6
DEFAULT_MAX_PARALLEL_UPLOADS = 4
DEFAULT_APPLY_WORKERS = 4
DEFAULT_PAGE_SIZE = 100
DEFAULT_HAMMING_THRESHOLD = 10
DEFAULT_SNAPSHOT_KEEP = 3
DEFAULT_PROGRESS_BUFFER = 256


@dataclass(frozen=True, slots=True)
class SyncConfig:
    fetch_concurrency: int = DEFAULT_FETCH_CONCURRENCY
    fingerprint_concurrency: int = DEFAULT_FINGERPRINT_CONCURRENCY
    max_parallel_uploads: int = DEFAULT_MAX_PARALLEL_UPLOADS
    apply_workers: int = DEFAULT_APPLY_WORKERS
    page_size: int = DEFAULT_PAGE_SIZE
    hamming_threshold: int = DEFAULT_HAMMING_THRESHOLD
    snapshot_keep: int = DEFAULT_SNAPSHOT_KEEP
    progress_buffer: int = DEFAULT_PROGRESS_BUFFER


def get_sync_config() -> SyncConfig:
    return SyncConfig(
        fetch_concurrency=int_env_var("CMSYNC_FETCH_CONCURRENCY", DEFAULT_FETCH_CONCURRENCY),
        fingerprint_concurrency=int_env_var(
            "CMSYNC_FINGERPRINT_CONCURRENCY", DEFAULT_FINGERPRINT_CONCURRENCY
        ),
        max_parallel_uploads=int_env_var(
            "CMSYNC_MAX_PARALLEL_UPLOADS", DEFAULT_MAX_PARALLEL_UPLOADS
        ),
        apply_workers=int_env_var("CMSYNC_APPLY_WORKERS", DEFAULT_APPLY_WORKERS),
        page_size=int_env_var("CMSYNC_PAGE_SIZE", DEFAULT_PAGE_SIZE),
        hamming_threshold=int_env_var(
            "CMSYNC_HAMMING_THRESHOLD", DEFAULT_HAMMING_THRESHOLD, minimum=0
        ),
        snapshot_keep=int_env_var("CMSYNC_SNAPSHOT_KEEP", DEFAULT_SNAPSHOT_KEEP),
        progress_buffer=int_env_var("CMSYNC_PROGRESS_BUFFER", DEFAULT_PROGRESS_BUFFER),
    )
