"""Content-derived identities for binary assets.

Images get a 64-bit difference hash so that re-encoded or rescaled copies collide, PDFs hash
their extracted text so that re-saved documents collide, anything else hashes raw bytes.
"""

from __future__ import annotations

import hashlib
import io
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Final

from PIL import Image
from pypdf import PdfReader

from cmsync.domain.model import Fingerprint, FingerprintCacheEntry, FingerprintMethod, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable

    from cmsync.domain.ports import SyncUnitOfWork

log = getLogger(__name__)

DHASH_WIDTH: Final[int] = 9
DHASH_HEIGHT: Final[int] = 8
_VECTOR_MIME_TYPES: Final[frozenset[str]] = frozenset({"image/svg+xml", "image/svg"})


def compute_fingerprint(data: bytes, mime: str | None, ext: str | None) -> Fingerprint:
    """Dispatch on the asset type; any decoding failure degrades to a raw byte hash."""

    normalized_mime = (mime or "").lower()
    normalized_ext = (ext or "").lower().lstrip(".")

    if normalized_mime.startswith("image/") and normalized_mime not in _VECTOR_MIME_TYPES:
        try:
            return Fingerprint(dhash64(data), FingerprintMethod.IMAGE_DHASH64)
        except Exception as exc:  # noqa: BLE001
            log.warning(f"Image fingerprint failed ({normalized_mime}), hashing bytes: {exc}")
    elif normalized_mime == "application/pdf" or normalized_ext == "pdf":
        try:
            return Fingerprint(pdf_text_sha256(data), FingerprintMethod.PDF_TEXT_SHA256)
        except Exception as exc:  # noqa: BLE001
            log.warning(f"PDF fingerprint failed, hashing bytes: {exc}")

    return Fingerprint(bytes_sha256(data), FingerprintMethod.BYTES_SHA256)


def dhash64(data: bytes) -> str:
    with Image.open(io.BytesIO(data)) as image:
        grayscale = image.convert("L").resize(
            (DHASH_WIDTH, DHASH_HEIGHT), Image.Resampling.LANCZOS
        )
        pixels = grayscale.tobytes()

    value = 0
    for row in range(DHASH_HEIGHT):
        offset = row * DHASH_WIDTH
        for column in range(DHASH_WIDTH - 1):
            left = pixels[offset + column]
            right = pixels[offset + column + 1]
            value = (value << 1) | int(left > right)
    return f"{value:016x}"


def pdf_text_sha256(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    page_texts = [page.extract_text() or "" for page in reader.pages]
    normalized = " ".join(" ".join(page_texts).lower().split())
    digest_input = f"{len(reader.pages)}\n{normalized}"
    return hashlib.sha256(digest_input.encode("utf-8")).hexdigest()


def bytes_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hamming_distance(left: str, right: str) -> int:
    """Number of differing bits between two hex-encoded hashes of equal resolution."""

    if len(left) != len(right):
        raise ValueError(
            f"Cannot compare hashes of different resolution ({len(left)} vs {len(right)} hex chars)"
        )
    return (int(left, 16) ^ int(right, 16)).bit_count()


def fingerprints_match(left: Fingerprint, right: Fingerprint, *, threshold: int) -> bool:
    if left.method is not right.method:
        return False
    if left.value == right.value:
        return True
    if left.method is FingerprintMethod.IMAGE_DHASH64:
        try:
            return hamming_distance(left.value, right.value) <= threshold
        except ValueError:
            return False
    return False


@dataclass(slots=True)
class FingerprintCache:
    """Fingerprints keyed by (instance, document id, last-known update timestamp)."""

    unit_of_work_factory: Callable[[], SyncUnitOfWork]

    def lookup(
        self,
        instance: str,
        document_id: str,
        updated_at: str | None,
    ) -> tuple[Fingerprint, int | None] | None:
        if updated_at is None:
            return None
        with self.unit_of_work_factory() as uow:
            entry = uow.repositories.fingerprints.get(instance, document_id)
            if entry is None or entry.updated_at != updated_at:
                return None
            entry.last_used_at = utcnow()
            uow.commit()
            return Fingerprint(entry.value, entry.method), entry.size_bytes

    def store(
        self,
        instance: str,
        document_id: str,
        updated_at: str | None,
        fingerprint: Fingerprint,
        size_bytes: int,
    ) -> None:
        if updated_at is None:
            return
        now = utcnow()
        with self.unit_of_work_factory() as uow:
            repository = uow.repositories.fingerprints
            entry = repository.get(instance, document_id)
            if entry is None:
                repository.add(
                    FingerprintCacheEntry(
                        instance=instance,
                        document_id=document_id,
                        updated_at=updated_at,
                        value=fingerprint.value,
                        method=fingerprint.method,
                        size_bytes=size_bytes,
                        created_at=now,
                        last_used_at=now,
                    )
                )
            else:
                entry.updated_at = updated_at
                entry.value = fingerprint.value
                entry.method = fingerprint.method
                entry.size_bytes = size_bytes
                entry.last_used_at = now
            uow.commit()
