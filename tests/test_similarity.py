"""Tests for the color-histogram verifier and its background worker."""

from __future__ import annotations

import threading
from io import BytesIO
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from errors import DECODE_ERROR, VERIFICATION_FAILED, DecodeError
from fakes import BLUE, RED, FakeImageCodec, solid
from image_codec import PillowImageCodec
from models import VerificationResult
from similarity import PhotoVerificationWorker, SimilarityVerifier, color_histogram, cosine_similarity


def _save(tmp_path: Path, name: str, color: tuple[int, int, int], size: tuple[int, int] = (64, 64)) -> Path:
    path = tmp_path / name
    Image.new("RGB", size, color).save(path)
    return path


def _gradient(tmp_path: Path, name: str, seed: int) -> Path:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(80, 120, 3), dtype=np.uint8)
    path = tmp_path / name
    Image.fromarray(pixels).save(path)
    return path


# ---------------------------------------------------------------
# Histogram math
# ---------------------------------------------------------------

def test_histogram_has_48_bins_normalized_per_channel() -> None:
    hist = color_histogram(solid(RED))

    assert hist.shape == (48,)
    assert hist.sum() == pytest.approx(3.0)
    assert hist[15] == pytest.approx(1.0)  # red channel, top bin
    assert hist[16] == pytest.approx(1.0)  # green channel, bottom bin
    assert hist[32] == pytest.approx(1.0)  # blue channel, bottom bin


def test_cosine_of_zero_vector_is_zero() -> None:
    assert cosine_similarity(np.zeros(48), np.ones(48)) == 0.0


# ---------------------------------------------------------------
# Verifier with real images
# ---------------------------------------------------------------

def test_identical_image_matches_itself(tmp_path: Path) -> None:
    path = _gradient(tmp_path, "ref.png", seed=1)
    verifier = SimilarityVerifier()
    verifier.set_reference(path)

    result = verifier.verify(path, threshold=0.85)

    assert result.is_similar is True
    assert result.similarity >= 0.999


def test_red_and_blue_are_dissimilar(tmp_path: Path) -> None:
    red = _save(tmp_path, "red.png", RED)
    blue = _save(tmp_path, "blue.png", BLUE)
    verifier = SimilarityVerifier()
    verifier.set_reference(red)

    result = verifier.verify(blue, threshold=0.85)

    assert result.is_similar is False
    assert result.similarity < 0.5
    assert result.similarity == pytest.approx(1 / 3, abs=1e-6)


def test_compare_is_commutative(tmp_path: Path) -> None:
    a = _gradient(tmp_path, "a.png", seed=1)
    b = _gradient(tmp_path, "b.png", seed=2)
    verifier = SimilarityVerifier()

    assert verifier.compare(a, b) == pytest.approx(verifier.compare(b, a))


def test_resolution_does_not_matter(tmp_path: Path) -> None:
    small = _save(tmp_path, "small.png", (40, 200, 90), size=(20, 20))
    large = _save(tmp_path, "large.png", (40, 200, 90), size=(640, 480))
    verifier = SimilarityVerifier()

    assert verifier.compare(small, large) >= 0.999


def test_bytes_handle_is_accepted(tmp_path: Path) -> None:
    buffer = BytesIO()
    Image.new("RGB", (32, 32), RED).save(buffer, format="PNG")
    verifier = SimilarityVerifier()
    verifier.set_reference(_save(tmp_path, "red.png", RED))

    assert verifier.verify(buffer.getvalue(), threshold=0.9).is_similar is True


def test_transparent_areas_are_composited_on_white(tmp_path: Path) -> None:
    path = tmp_path / "clear.png"
    Image.new("RGBA", (10, 10), (255, 0, 0, 0)).save(path)

    pixels = PillowImageCodec().decode(path)

    assert pixels.shape == (100, 100, 3)
    assert (pixels == 255).all()


# ---------------------------------------------------------------
# Failure modes
# ---------------------------------------------------------------

def test_no_reference_fails_without_raising(tmp_path: Path) -> None:
    verifier = SimilarityVerifier()

    result = verifier.verify(_save(tmp_path, "red.png", RED), threshold=0.5)

    assert result.is_similar is False
    assert result.similarity == 0.0
    assert result.code == VERIFICATION_FAILED
    assert result.error


def test_undecodable_capture_fails_without_raising(tmp_path: Path) -> None:
    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"not an image")
    verifier = SimilarityVerifier()
    verifier.set_reference(_save(tmp_path, "red.png", RED))

    result = verifier.verify(broken, threshold=0.5)

    assert result.is_similar is False
    assert result.similarity == 0.0
    assert result.code == DECODE_ERROR


def test_missing_file_raises_from_compare(tmp_path: Path) -> None:
    verifier = SimilarityVerifier()
    with pytest.raises(DecodeError):
        verifier.compare(tmp_path / "missing.png", _save(tmp_path, "red.png", RED))


def test_reset_and_replace_reference() -> None:
    verifier = SimilarityVerifier(codec=FakeImageCodec())
    verifier.set_reference("bad")
    assert verifier.verify("good", threshold=0.85).is_similar is False

    verifier.set_reference("ref")
    assert verifier.verify("good", threshold=0.85).is_similar is True

    verifier.reset()
    assert verifier.ready is False
    assert verifier.verify("good", threshold=0.85).code == VERIFICATION_FAILED


def test_score_equal_to_threshold_is_similar() -> None:
    verifier = SimilarityVerifier(codec=FakeImageCodec())
    verifier.set_reference("ref")
    threshold = verifier.compare("ref", "bad")

    result = verifier.verify("bad", threshold=threshold)

    assert result.similarity == threshold
    assert result.is_similar is True
    assert verifier.verify("bad", threshold=threshold + 1e-9).is_similar is False


def test_reference_histogram_is_cached() -> None:
    codec = FakeImageCodec()
    verifier = SimilarityVerifier(codec=codec)
    verifier.set_reference("ref")

    verifier.verify("good", threshold=0.85)
    verifier.verify("bad", threshold=0.85)

    assert codec.decoded.count("ref") == 1


# ---------------------------------------------------------------
# Background worker
# ---------------------------------------------------------------

class _GatedCodec(FakeImageCodec):
    def __init__(self) -> None:
        super().__init__()
        self.gate = threading.Event()

    def decode(self, handle: object) -> np.ndarray:
        self.gate.wait(timeout=2)
        return super().decode(handle)


def test_worker_reports_result() -> None:
    verifier = SimilarityVerifier(codec=FakeImageCodec())
    verifier.set_reference("ref")
    worker = PhotoVerificationWorker(verifier)
    results: list[VerificationResult] = []

    assert worker.submit("good", 0.85, results.append) is True
    worker.join(timeout=2)

    assert len(results) == 1
    assert results[0].is_similar is True


def test_worker_rejects_concurrent_jobs_and_drops_cancelled() -> None:
    codec = _GatedCodec()
    verifier = SimilarityVerifier(codec=codec)
    verifier.set_reference("ref")
    worker = PhotoVerificationWorker(verifier)
    results: list[VerificationResult] = []

    assert worker.submit("good", 0.85, results.append) is True
    assert worker.submit("good", 0.85, results.append) is False

    worker.cancel()
    codec.gate.set()
    worker.join(timeout=2)

    assert results == []
    assert worker.busy is False


def test_cancelled_job_can_be_replaced_while_still_decoding() -> None:
    codec = _GatedCodec()
    verifier = SimilarityVerifier(codec=codec)
    verifier.set_reference("ref")
    worker = PhotoVerificationWorker(verifier)
    results: list[VerificationResult] = []

    assert worker.submit("bad", 0.85, results.append) is True
    worker.cancel()
    assert worker.busy is True

    assert worker.submit("good", 0.85, results.append) is True
    codec.gate.set()
    worker.join(timeout=2)

    assert len(results) == 1
    assert results[0].is_similar is True
