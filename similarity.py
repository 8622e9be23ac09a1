"""Color-histogram photo verification.

Both images are decoded to 100x100 RGB, each channel is bucketed into 16
bins (width 256/16), the three histograms are concatenated into a 48-vector
and divided by the pixel count. The score is the cosine similarity of the two
vectors, so it is commutative and identical images score 1.0.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

import numpy as np

from errors import DECODE_ERROR, VERIFICATION_FAILED, AlarmEngineError
from image_codec import PillowImageCodec
from interfaces import ImageCodec
from logger import setup_logger
from models import ImageHandle, VerificationResult

logger = setup_logger("similarity")

BINS = 16
BIN_WIDTH = 256 // BINS


def color_histogram(pixels: np.ndarray) -> np.ndarray:
    """48-bin RGB histogram normalized by pixel count."""
    rgb = np.asarray(pixels)[..., :3].reshape(-1, 3).astype(np.int64)
    total = rgb.shape[0]
    if total == 0:
        raise ValueError("image has no pixels")
    bins = np.clip(rgb // BIN_WIDTH, 0, BINS - 1)
    parts = [np.bincount(bins[:, channel], minlength=BINS) for channel in range(3)]
    return np.concatenate(parts).astype(np.float64) / total


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    norm = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    score = float(np.dot(a, b)) / norm
    return min(max(score, 0.0), 1.0)


class SimilarityVerifier:
    def __init__(self, codec: Optional[ImageCodec] = None) -> None:
        self._codec = codec or PillowImageCodec()
        self._reference: Optional[ImageHandle] = None
        self._reference_hist: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self._reference is not None

    def set_reference(self, handle: ImageHandle) -> None:
        """Replace any prior reference; decoding is deferred to the first verify."""
        with self._lock:
            self._reference = handle
            self._reference_hist = None

    def reset(self) -> None:
        with self._lock:
            self._reference = None
            self._reference_hist = None

    def compare(self, first: ImageHandle, second: ImageHandle) -> float:
        """Similarity of two arbitrary images; raises DecodeError if either is unreadable."""
        return cosine_similarity(self._histogram(first), self._histogram(second))

    def verify(self, captured: ImageHandle, threshold: float) -> VerificationResult:
        """Score ``captured`` against the reference; never raises."""
        try:
            with self._lock:
                if self._reference is None:
                    return VerificationResult(
                        is_similar=False,
                        similarity=0.0,
                        error="no reference photo set",
                        code=VERIFICATION_FAILED,
                    )
                if self._reference_hist is None:
                    self._reference_hist = self._histogram(self._reference)
                reference_hist = self._reference_hist
            similarity = cosine_similarity(reference_hist, self._histogram(captured))
        except AlarmEngineError as exc:
            logger.info("Photo verification failed: %s", exc.message)
            return VerificationResult(False, 0.0, error=exc.message, code=exc.code)
        except Exception as exc:
            logger.warning("Photo comparison raised: %s", exc)
            return VerificationResult(False, 0.0, error=str(exc), code=DECODE_ERROR)

        is_similar = similarity >= threshold
        logger.info("Photo similarity %.3f (threshold %.2f): %s", similarity, threshold, is_similar)
        return VerificationResult(is_similar=is_similar, similarity=similarity)

    def _histogram(self, handle: ImageHandle) -> np.ndarray:
        return color_histogram(self._codec.decode(handle))


ResultCallback = Callable[[VerificationResult], None]


class PhotoVerificationWorker:
    """Runs ``verify`` on a background thread; a cancelled job never reports."""

    def __init__(self, verifier: SimilarityVerifier) -> None:
        self._verifier = verifier
        self._thread: Optional[threading.Thread] = None
        self._cancel_event = threading.Event()

    @property
    def busy(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def submit(self, captured: ImageHandle, threshold: float, on_result: ResultCallback) -> bool:
        """Start a verification job; returns False if a live job is still running.

        A cancelled job that is still decoding is replaced; it never reports.
        """
        if self.busy and not self._cancel_event.is_set():
            return False
        self._cancel_event = threading.Event()
        cancel_event = self._cancel_event
        self._thread = threading.Thread(
            target=self._run,
            args=(captured, threshold, on_result, cancel_event),
            daemon=True,
        )
        self._thread.start()
        return True

    def cancel(self) -> None:
        self._cancel_event.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def _run(
        self,
        captured: ImageHandle,
        threshold: float,
        on_result: ResultCallback,
        cancel_event: threading.Event,
    ) -> None:
        result = self._verifier.verify(captured, threshold)
        if cancel_event.is_set():
            return
        on_result(result)
