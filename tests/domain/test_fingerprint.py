from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from cmsync.domain.fingerprint import (
    FingerprintCache,
    compute_fingerprint,
    fingerprints_match,
    hamming_distance,
)
from cmsync.domain.model import Fingerprint, FingerprintMethod
from tests.helpers.media import gradient_image, image_bytes, pdf_bytes

if TYPE_CHECKING:
    from collections.abc import Callable

    from cmsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork

THRESHOLD = 10


def test_reencoded_image_stays_within_threshold() -> None:
    image = gradient_image()
    high = compute_fingerprint(image_bytes(image, "JPEG", quality=95), "image/jpeg", "jpg")
    low = compute_fingerprint(image_bytes(image, "JPEG", quality=50), "image/jpeg", "jpg")
    resized = compute_fingerprint(
        image_bytes(image.resize((128, 96))), "image/png", ".png"
    )

    assert high.method is FingerprintMethod.IMAGE_DHASH64
    assert len(high.value) == 16
    assert fingerprints_match(high, low, threshold=THRESHOLD)
    assert fingerprints_match(high, resized, threshold=THRESHOLD)


def test_different_images_exceed_threshold() -> None:
    forward = compute_fingerprint(image_bytes(gradient_image()), "image/png", "png")
    backward = compute_fingerprint(
        image_bytes(gradient_image(reverse=True)), "image/png", "png"
    )

    assert hamming_distance(forward.value, backward.value) > THRESHOLD
    assert not fingerprints_match(forward, backward, threshold=THRESHOLD)


def test_pdf_fingerprint_ignores_case_and_whitespace() -> None:
    first = pdf_bytes("Quarterly   Report")
    second = pdf_bytes("quarterly report")

    left = compute_fingerprint(first, "application/pdf", "pdf")
    right = compute_fingerprint(second, None, ".PDF")

    assert first != second
    assert left.method is FingerprintMethod.PDF_TEXT_SHA256
    assert left == right


def test_pdf_fingerprint_distinguishes_text() -> None:
    left = compute_fingerprint(pdf_bytes("Invoice 1001"), "application/pdf", "pdf")
    right = compute_fingerprint(pdf_bytes("Invoice 1002"), "application/pdf", "pdf")

    assert left != right
    assert not fingerprints_match(left, right, threshold=THRESHOLD)


def test_undecodable_assets_fall_back_to_byte_hash() -> None:
    broken_image = compute_fingerprint(b"not really a png", "image/png", "png")
    svg = compute_fingerprint(b"<svg xmlns='http://www.w3.org/2000/svg'/>", "image/svg+xml", "svg")
    text = compute_fingerprint(b"plain", "text/plain", "txt")

    assert {broken_image.method, svg.method, text.method} == {
        FingerprintMethod.BYTES_SHA256
    }
    assert text.value == compute_fingerprint(b"plain", None, None).value


def test_hamming_distance_requires_equal_resolution() -> None:
    assert hamming_distance("00ff", "00fe") == 1

    with pytest.raises(ValueError, match="different resolution"):
        hamming_distance("00ff", "00ff00ff")


def test_fingerprints_of_different_methods_never_match() -> None:
    left = Fingerprint("0" * 16, FingerprintMethod.IMAGE_DHASH64)
    right = Fingerprint("0" * 16, FingerprintMethod.BYTES_SHA256)

    assert not fingerprints_match(left, right, threshold=64)


def test_fingerprint_cache_keys_on_update_timestamp(
    sqlite_unit_of_work: Callable[[], SqlAlchemySyncUnitOfWork],
) -> None:
    cache = FingerprintCache(sqlite_unit_of_work)
    fingerprint = Fingerprint("00ff00ff00ff00ff", FingerprintMethod.IMAGE_DHASH64)

    assert cache.lookup("staging", "file-1", "2024-05-01") is None
    cache.store("staging", "file-1", "2024-05-01", fingerprint, 2048)

    assert cache.lookup("staging", "file-1", "2024-05-01") == (fingerprint, 2048)
    assert cache.lookup("staging", "file-1", "2024-06-01") is None
    assert cache.lookup("staging", "file-1", None) is None

    updated = Fingerprint("ffff", FingerprintMethod.BYTES_SHA256)
    cache.store("staging", "file-1", "2024-06-01", updated, 10)
    assert cache.lookup("staging", "file-1", "2024-06-01") == (updated, 10)
    assert cache.lookup("staging", "file-1", "2024-05-01") is None
