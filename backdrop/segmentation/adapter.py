"""
Segmentation Adapter.

Wraps an opaque (possibly slow, possibly broken) segmentation model behind a
uniform asynchronous interface:

    UNINITIALIZED -> LOADING -> READY
                     LOADING -> FAILED   (terminal, pipeline runs in passthrough)

- ``initialize()`` is idempotent; concurrent callers share one load
- ``request_mask(frame)`` is fire-and-forget with at most one request in
  flight
- Finished masks are collected with ``poll()``; masks that finish after
  ``shutdown()`` are dropped
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Optional
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from backdrop.core.contracts import Frame, Mask, SegmenterStatus
from backdrop.core.errors import SegmentationModelError


class SegmentationModel(ABC):
    """Abstract base class for person segmentation models.

    Implementations run on the adapter's worker thread, never on the drive
    loop, so they are free to block.
    """

    @abstractmethod
    def load(self) -> None:
        """Load weights and build the inference graph.

        Raises:
            SegmentationModelError: If the model cannot be loaded
        """

    @abstractmethod
    def predict(self, pixels: NDArray[np.uint8]) -> NDArray:
        """Compute foreground confidence for an RGBA frame.

        Args:
            pixels: H x W x 4 RGBA frame

        Returns:
            Confidence at the model's native resolution, either float in
            [0, 1] or uint8 in [0, 255]
        """

    def close(self) -> None:
        """Release model resources."""


def to_mask_values(raw: NDArray) -> NDArray[np.uint8]:
    """Convert model output to a uint8 confidence buffer."""
    values = np.asarray(raw)

    if values.ndim == 3 and values.shape[2] == 1:
        values = values[..., 0]
    if values.ndim != 2:
        raise SegmentationModelError(f"Model returned a {values.shape} mask, expected H x W")

    if values.dtype == np.uint8:
        return values.copy()

    return np.clip(np.rint(values.astype(np.float32) * 255.0), 0, 255).astype(np.uint8)


class SegmentationAdapter:
    """
    Asynchronous front end to a segmentation model.

    Guarantees:
    - The drive loop never waits on the model
    - At most one mask request outstanding
    - Load or request errors end in FAILED, never in an exception on the loop
    """

    def __init__(
        self,
        model: SegmentationModel,
        executor: Optional[Executor] = None,
    ):
        """
        Initialize segmentation adapter.

        Args:
            model: Segmentation model to wrap
            executor: Worker for load and inference (default: one thread)
        """
        self._model = model
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="segmentation"
        )

        self._lock = threading.Lock()
        self._status = SegmenterStatus.UNINITIALIZED
        self._init_future: Optional[Future] = None
        self._last_error: Optional[BaseException] = None

        # Request state
        self._in_flight_frame_id: Optional[int] = None
        self._completed: Optional[Mask] = None
        self._closed = False

        # Stats
        self._requests_issued = 0
        self._masks_dropped = 0

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def initialize(self) -> Future:
        """
        Start loading the model (once).

        Returns:
            Future resolving to READY or FAILED (a load interrupted by
            ``shutdown()`` is FAILED; an adapter closed before it was ever
            initialized resolves to UNINITIALIZED); every caller gets the
            same future
        """
        with self._lock:
            if self._init_future is not None:
                return self._init_future

            future: Future = Future()
            self._init_future = future

            if self._closed:
                future.set_result(self._status)
                return future

            self._status = SegmenterStatus.LOADING

        logger.info("Segmentation model loading")
        self._executor.submit(self._load)
        return future

    def _load(self):
        try:
            self._model.load()
        except Exception as e:
            logger.error(f"Segmentation model failed to load: {e}")
            with self._lock:
                self._status = SegmenterStatus.FAILED
                self._last_error = e
            self._resolve_init()
            return

        with self._lock:
            closed = self._closed
            if not closed:
                self._status = SegmenterStatus.READY

        if closed:
            # shutdown() already moved the status to FAILED and closed the
            # model before it finished loading; release what load() built
            logger.info("Segmentation model finished loading after shutdown")
            self._close_model()
        else:
            logger.info("Segmentation model ready")
        self._resolve_init()

    def _close_model(self):
        try:
            self._model.close()
        except Exception as e:
            logger.warning(f"Error closing segmentation model: {e}")

    def _resolve_init(self):
        """Complete the shared initialization future with the current status."""
        with self._lock:
            future = self._init_future
            if future is None or future.done():
                return
            future.set_result(self._status)

    def shutdown(self):
        """
        Stop accepting requests and release the model.

        Does not wait for an in-flight request; its result is dropped.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._completed = None
            if self._status is SegmenterStatus.LOADING:
                self._status = SegmenterStatus.FAILED
                self._last_error = SegmentationModelError(
                    "Adapter shut down before the model finished loading"
                )

        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

        # A load cancelled before it started would otherwise never resolve
        self._resolve_init()
        self._close_model()

        logger.info("Segmentation adapter shutdown")

    # ------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------

    def request_mask(self, frame: Frame) -> Optional[Future]:
        """
        Ask for the mask of ``frame`` without waiting for it.

        Args:
            frame: Frame to segment

        Returns:
            Future resolving to the Mask, or None if the model is not ready
            or a previous request is still unresolved
        """
        with self._lock:
            if self._closed or self._status is not SegmenterStatus.READY:
                return None
            if self._in_flight_frame_id is not None:
                return None

            self._in_flight_frame_id = frame.frame_id
            self._requests_issued += 1

        return self._executor.submit(self._run_request, frame)

    def _run_request(self, frame: Frame) -> Optional[Mask]:
        try:
            mask = Mask(
                frame_id=frame.frame_id,
                values=to_mask_values(self._model.predict(frame.pixels)),
                frame=frame,
            )
        except Exception as e:
            logger.error(f"Segmentation failed on frame {frame.frame_id}: {e}")
            with self._lock:
                self._in_flight_frame_id = None
                self._status = SegmenterStatus.FAILED
                self._last_error = e
            raise SegmentationModelError(str(e)) from e

        with self._lock:
            self._in_flight_frame_id = None
            if self._closed:
                self._masks_dropped += 1
                return None
            if self._completed is not None:
                # Never collected; the newer mask supersedes it
                self._masks_dropped += 1
            self._completed = mask

        return mask

    def poll(self) -> Optional[Mask]:
        """
        Take the most recent finished mask, if any.

        Returns:
            The mask (removed from the adapter) or None
        """
        with self._lock:
            mask = self._completed
            self._completed = None
            return mask

    def discard(self, mask: Mask):
        """Record that a polled mask was stale and never composited."""
        with self._lock:
            self._masks_dropped += 1
        logger.debug(f"Dropped stale mask for frame {mask.frame_id}")

    # ------------------------------------------------------------
    # State
    # ------------------------------------------------------------

    @property
    def status(self) -> SegmenterStatus:
        with self._lock:
            return self._status

    @property
    def is_ready(self) -> bool:
        return self.status is SegmenterStatus.READY

    @property
    def has_pending_request(self) -> bool:
        with self._lock:
            return self._in_flight_frame_id is not None

    @property
    def last_error(self) -> Optional[BaseException]:
        return self._last_error

    @property
    def requests_issued(self) -> int:
        return self._requests_issued

    @property
    def masks_dropped(self) -> int:
        return self._masks_dropped
