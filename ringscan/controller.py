"""Live acquisition: decide when a camera feed holds a readable code.

Phases:
    SCANNING  -> CAPTURING   after ``required_detections`` strong frames
    CAPTURING -> DONE        when a decode passes the plausibility gate
    CAPTURING -> SCANNING    on an implausible decode or a capture failure

Each frame candidate updates an exponential moving average of confidence.
The detection threshold drops a little while the average is high, so a
steady view commits sooner but a single noisy frame cannot. Strong frames
increment a detection counter, weak ones decay it by one.

On commit the controller first tries the frame thumbnail (cheap, no
camera round trip) and only then a full-resolution capture.

Threading: ``LiveScanSession.run`` is the control loop. Frame analysis is
pushed to a single worker; at most one analysis is in flight and frames
arriving meanwhile (or inside the throttle window) are dropped. Controller
state is only touched on the control loop, so it needs no locks.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

import structlog

from .analyzer import Frame, FrameAnalyzer, ScanCandidate
from .bits import bits_to_string, check_plausible
from .config import ScanConfig
from .decoder import RingDecodeResult, decode_rings
from .errors import CaptureFailure, DecodeImplausible
from .image import RGBImage
from .renderer import render_evidence

logger = structlog.get_logger(__name__)

CaptureFn = Callable[[], bytes]

THRESHOLD_BASE = 0.75
THRESHOLD_PIVOT = 0.6
THRESHOLD_GAIN = 0.25
THRESHOLD_MIN = 0.60
THRESHOLD_MAX = 0.85


class ScanPhase(str, Enum):
    SCANNING = "scanning"
    CAPTURING = "capturing"
    DONE = "done"


@dataclass
class AcquisitionState:
    """Mutable state of one scanning session.

    Attributes:
        consecutive_detections: Hysteresis counter, never negative.
        confidence_ema: Smoothed frame confidence in [0, 1].
        progress: consecutive_detections / required_detections, in [0, 1].
        scanning_active: False once capturing, finished or cancelled.
        phase: Current acquisition phase.
        last_confidence: Confidence of the most recent candidate.
    """

    consecutive_detections: int = 0
    confidence_ema: float = 0.0
    progress: float = 0.0
    scanning_active: bool = True
    phase: ScanPhase = ScanPhase.SCANNING
    last_confidence: float = 0.0

    def reset_detections(self) -> None:
        self.consecutive_detections = 0
        self.progress = 0.0


@dataclass(frozen=True)
class ScanResult:
    """Final output of a live scan.

    Attributes:
        product_bits: Logical product ring bits.
        date_bits: Logical date ring bits.
        evidence_image: JPEG of what was decoded (thumbnail or annotated capture).
        source: "preview" or "capture".
    """

    product_bits: list[int]
    date_bits: list[int]
    evidence_image: bytes
    source: str


def _clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


class AcquisitionController:
    """Hysteresis + plausibility state machine for one scanning session."""

    def __init__(
        self,
        config: ScanConfig | None = None,
        capture: CaptureFn | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or ScanConfig()
        self.state = AcquisitionState()
        self._capture = capture
        self._clock = clock
        self._analysis_pending = False
        self._throttle_until: float | None = None
        self.capture_attempts = 0
        self.frames_dropped = 0

    @property
    def analysis_pending(self) -> bool:
        return self._analysis_pending

    def adaptive_threshold(self) -> float:
        """Confidence a frame must exceed to count as a detection."""
        ema = _clamp(self.state.confidence_ema, 0.0, 1.0)
        adjust = (ema - THRESHOLD_PIVOT) * THRESHOLD_GAIN
        return _clamp(THRESHOLD_BASE - adjust, THRESHOLD_MIN, THRESHOLD_MAX)

    def admit_frame(self, now: float | None = None) -> bool:
        """Claim the analysis slot for a new frame.

        Returns False (drop the frame) unless scanning is active, no
        analysis is pending and the throttle window has elapsed.
        """
        st = self.state
        if not st.scanning_active or st.phase is not ScanPhase.SCANNING:
            return False
        now = self._clock() if now is None else now
        throttled = self._throttle_until is not None and now < self._throttle_until
        if self._analysis_pending or throttled:
            self.frames_dropped += 1
            return False
        self._throttle_until = now + self.config.throttle_ms / 1000.0
        self._analysis_pending = True
        return True

    def abandon_analysis(self) -> None:
        """Release the analysis slot without a candidate."""
        self._analysis_pending = False

    def on_candidate(self, candidate: ScanCandidate) -> ScanResult | None:
        """Fold one frame candidate into the session.

        Returns:
            ScanResult when this candidate completes the scan, else None.
        """
        self._analysis_pending = False
        st = self.state
        if not st.scanning_active or st.phase is not ScanPhase.SCANNING:
            logger.debug("candidate_discarded", phase=st.phase.value, active=st.scanning_active)
            return None

        confidence = _clamp(candidate.confidence, 0.0, 1.0)
        alpha = self.config.ema_alpha
        st.confidence_ema = _clamp(alpha * confidence + (1 - alpha) * st.confidence_ema, 0.0, 1.0)
        st.last_confidence = confidence
        threshold = self.adaptive_threshold()

        if confidence > threshold:
            st.consecutive_detections += 1
        else:
            st.consecutive_detections = max(0, st.consecutive_detections - 1)
        required = self.config.required_detections
        st.progress = _clamp(st.consecutive_detections / required, 0.0, 1.0)

        logger.debug(
            "candidate_scored",
            confidence=round(confidence, 3),
            ema=round(st.confidence_ema, 3),
            threshold=round(threshold, 3),
            detections=st.consecutive_detections,
            progress=round(st.progress, 2),
        )

        if st.consecutive_detections >= required and self.config.auto_capture:
            return self._commit(candidate)
        return None

    def resume(self) -> None:
        """Return to scanning after a rejected or failed capture."""
        st = self.state
        st.phase = ScanPhase.SCANNING
        st.scanning_active = True
        st.reset_detections()

    def cancel(self) -> None:
        """End the session. Pending results are discarded when they arrive."""
        self.state.scanning_active = False
        self._throttle_until = None

    def _commit(self, candidate: ScanCandidate) -> ScanResult | None:
        st = self.state
        st.phase = ScanPhase.CAPTURING
        st.scanning_active = False
        self.capture_attempts += 1
        logger.info(
            "capture_triggered",
            attempt=self.capture_attempts,
            confidence=round(candidate.confidence, 3),
            center=candidate.center_estimate,
            has_thumbnail=candidate.thumbnail is not None,
        )

        result = self._try_preview(candidate)
        if result is None:
            try:
                result = self._capture_and_decode()
            except DecodeImplausible as e:
                logger.warning("capture_implausible", bits=bits_to_string(e.bits))
                self.resume()
                return None
            except CaptureFailure as e:
                logger.warning("capture_failed", error=str(e))
                self.resume()
                return None

        st.phase = ScanPhase.DONE
        logger.info(
            "scan_complete",
            source=result.source,
            product_bits=bits_to_string(result.product_bits),
            date_bits=bits_to_string(result.date_bits),
        )
        return result

    def _check(self, decoded: RingDecodeResult) -> None:
        ring = self.config.ring
        check_plausible(decoded.product_bits, ring.product.data_bits)
        if len(decoded.date_bits) != ring.date.data_bits:
            raise DecodeImplausible(decoded.date_bits, ring.date.data_bits)

    def _try_preview(self, candidate: ScanCandidate) -> ScanResult | None:
        if candidate.thumbnail is None:
            return None
        try:
            image = RGBImage.from_bytes(candidate.thumbnail)
            decoded = decode_rings(image, self.config.ring)
            self._check(decoded)
        except (ValueError, DecodeImplausible) as e:
            logger.debug("preview_decode_rejected", error=str(e))
            return None
        return ScanResult(
            product_bits=decoded.product_bits,
            date_bits=decoded.date_bits,
            evidence_image=candidate.thumbnail,
            source="preview",
        )

    def _capture_and_decode(self) -> ScanResult:
        if self._capture is None:
            raise CaptureFailure("No high-resolution capture source configured")
        try:
            data = self._capture()
        except Exception as e:
            raise CaptureFailure(f"Capture failed: {e}") from e

        try:
            image = RGBImage.from_bytes(data)
        except ValueError as e:
            raise CaptureFailure(str(e)) from e

        decoded = decode_rings(image, self.config.ring)
        self._check(decoded)
        evidence = render_evidence(image, decoded, self.config.ring, self.config.evidence_quality)
        return ScanResult(
            product_bits=decoded.product_bits,
            date_bits=decoded.date_bits,
            evidence_image=evidence,
            source="capture",
        )


class LiveScanSession:
    """Runs one live scan: frames in, at most one ScanResult out.

    ``run`` is the control loop and must be called from a single thread.
    ``cancel`` may be called from any thread.
    """

    def __init__(
        self,
        frames: Iterable[Frame],
        capture: CaptureFn | None = None,
        config: ScanConfig | None = None,
        analyzer: FrameAnalyzer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or ScanConfig()
        self.controller = AcquisitionController(self.config, capture, clock)
        self.analyzer = analyzer or FrameAnalyzer.from_config(self.config)
        self._frames: Iterator[Frame] = iter(frames)
        self._cancelled = threading.Event()
        self._pending: Future[ScanCandidate] | None = None

    @property
    def state(self) -> AcquisitionState:
        return self.controller.state

    def cancel(self) -> None:
        self._cancelled.set()

    def _collect(self, block: bool) -> ScanResult | None:
        """Hand a finished analysis to the controller (on the control loop)."""
        future = self._pending
        if future is None or (not block and not future.done()):
            return None
        self._pending = None
        try:
            candidate = future.result()
        except Exception as e:
            logger.warning("frame_analysis_lost", error=str(e))
            self.controller.abandon_analysis()
            return None
        if self._cancelled.is_set():
            self.controller.abandon_analysis()
            return None
        return self.controller.on_candidate(candidate)

    def run(self) -> ScanResult | None:
        """Consume frames until a result, cancellation, or end of stream."""
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ring-analyzer")
        logger.info(
            "live_scan_started",
            required_detections=self.config.required_detections,
            throttle_ms=self.config.throttle_ms,
            auto_capture=self.config.auto_capture,
        )
        try:
            for frame in self._frames:
                if self._cancelled.is_set():
                    break
                result = self._collect(block=False)
                if result is not None:
                    return result
                if self.controller.admit_frame():
                    self._pending = executor.submit(self.analyzer.analyze, frame)

            if self._cancelled.is_set():
                logger.info("live_scan_cancelled", frames_dropped=self.controller.frames_dropped)
                return None
            return self._collect(block=True)
        finally:
            self.controller.cancel()
            close = getattr(self._frames, "close", None)
            if close is not None:
                close()
            executor.shutdown(wait=False)


def start_live_scan(
    frames: Iterable[Frame],
    capture: CaptureFn | None = None,
    config: ScanConfig | None = None,
) -> ScanResult | None:
    """Scan a frame stream until a code is read.

    Args:
        frames: Camera frames, newest last.
        capture: Returns encoded high-resolution image bytes on demand.
        config: Acquisition settings.

    Returns:
        ScanResult, or None if the stream ended or the scan was cancelled.
    """
    return LiveScanSession(frames, capture, config).run()
