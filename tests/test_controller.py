"""Tests for the live acquisition controller and scan session."""

import random
import threading
import time

import pytest

from ringscan.analyzer import Frame, ScanCandidate
from ringscan.config import ScanConfig
from ringscan.controller import (
    THRESHOLD_MAX,
    THRESHOLD_MIN,
    AcquisitionController,
    LiveScanSession,
    ScanPhase,
    start_live_scan,
)
from ringscan.image import RGBImage
from ringscan.renderer import render_code, render_png

PRODUCT = [1, 0, 1, 1, 0, 0, 1, 0, 0]
DATE = [0, 1, 0, 0, 1, 1, 0, 0, 1]

STRONG = ScanCandidate(confidence=1.0, center_estimate=(0, 0))
WEAK = ScanCandidate(confidence=0.1, center_estimate=(0, 0))


class CountingCapture:
    """Capture source that returns fixed image bytes and counts calls."""

    def __init__(self, data: bytes | None = None, error: Exception | None = None):
        self.data = data
        self.error = error
        self.calls = 0

    def __call__(self) -> bytes:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.data


class SlowAnalyzer:
    """Analyzer stub that sleeps and records how many calls overlap."""

    def __init__(self, delay: float = 0.05):
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def analyze(self, frame) -> ScanCandidate:
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        return ScanCandidate(confidence=0.0, center_estimate=(0, 0))


def _controller(capture=None, **overrides) -> AcquisitionController:
    return AcquisitionController(ScanConfig(**overrides), capture=capture, clock=lambda: 0.0)


class TestHysteresis:
    def test_ema_and_detections_stay_bounded(self):
        ctrl = _controller(auto_capture=False)
        rng = random.Random(42)
        for _ in range(300):
            ctrl.on_candidate(ScanCandidate(confidence=rng.random(), center_estimate=(0, 0)))
            st = ctrl.state
            assert 0.0 <= st.confidence_ema <= 1.0
            assert st.consecutive_detections >= 0
            assert 0.0 <= st.progress <= 1.0
            assert THRESHOLD_MIN <= ctrl.adaptive_threshold() <= THRESHOLD_MAX

    def test_out_of_range_confidence_is_clamped(self):
        ctrl = _controller(auto_capture=False)
        ctrl.on_candidate(ScanCandidate(confidence=5.0, center_estimate=(0, 0)))
        assert ctrl.state.confidence_ema <= 1.0
        ctrl.on_candidate(ScanCandidate(confidence=-3.0, center_estimate=(0, 0)))
        assert ctrl.state.confidence_ema >= 0.0

    def test_weak_frames_decay_detections(self):
        ctrl = _controller(auto_capture=False, required_detections=4)
        for _ in range(3):
            ctrl.on_candidate(STRONG)
        assert ctrl.state.consecutive_detections == 3
        assert ctrl.state.progress == pytest.approx(0.75)
        ctrl.on_candidate(WEAK)
        assert ctrl.state.consecutive_detections == 2
        for _ in range(5):
            ctrl.on_candidate(WEAK)
        assert ctrl.state.consecutive_detections == 0
        assert ctrl.state.progress == 0.0

    def test_threshold_lowers_with_high_ema(self):
        ctrl = _controller(auto_capture=False)
        idle = ctrl.adaptive_threshold()
        for _ in range(10):
            ctrl.on_candidate(STRONG)
        assert ctrl.adaptive_threshold() < idle

    def test_auto_capture_off_never_captures(self):
        capture = CountingCapture(render_png(PRODUCT, DATE))
        ctrl = _controller(capture, auto_capture=False)
        for _ in range(10):
            assert ctrl.on_candidate(STRONG) is None
        assert capture.calls == 0
        assert ctrl.state.phase is ScanPhase.SCANNING


class TestCommit:
    def test_exactly_one_capture(self):
        capture = CountingCapture(render_png(PRODUCT, DATE))
        ctrl = _controller(capture, required_detections=3)
        assert ctrl.on_candidate(STRONG) is None
        assert ctrl.on_candidate(STRONG) is None
        result = ctrl.on_candidate(STRONG)

        assert result is not None
        assert result.source == "capture"
        assert result.product_bits == PRODUCT
        assert result.date_bits == DATE
        assert result.evidence_image[:2] == b"\xff\xd8"
        assert ctrl.state.phase is ScanPhase.DONE
        assert not ctrl.state.scanning_active

        for _ in range(5):
            assert ctrl.on_candidate(STRONG) is None
        assert capture.calls == 1
        assert ctrl.capture_attempts == 1

    def test_reentrant_candidate_during_capture(self):
        png = render_png(PRODUCT, DATE)
        seen = []

        def capture():
            seen.append(ctrl.on_candidate(STRONG))
            seen.append(ctrl.admit_frame(now=100.0))
            return png

        ctrl = _controller(capture, required_detections=2)
        ctrl.on_candidate(STRONG)
        result = ctrl.on_candidate(STRONG)
        assert result is not None
        assert seen == [None, False]
        assert ctrl.capture_attempts == 1

    def test_implausible_capture_resumes(self):
        capture = CountingCapture(render_png([0] * 9, DATE))
        ctrl = _controller(capture, required_detections=2)
        ctrl.on_candidate(STRONG)
        assert ctrl.on_candidate(STRONG) is None

        st = ctrl.state
        assert capture.calls == 1
        assert st.phase is ScanPhase.SCANNING
        assert st.scanning_active
        assert st.consecutive_detections == 0
        assert st.progress == 0.0

    def test_all_ones_is_implausible(self):
        capture = CountingCapture(render_png([1] * 9, DATE))
        ctrl = _controller(capture, required_detections=1)
        assert ctrl.on_candidate(STRONG) is None
        assert ctrl.state.phase is ScanPhase.SCANNING

    def test_capture_failure_resumes(self):
        capture = CountingCapture(error=OSError("camera busy"))
        ctrl = _controller(capture, required_detections=2)
        ctrl.on_candidate(STRONG)
        assert ctrl.on_candidate(STRONG) is None
        assert ctrl.state.phase is ScanPhase.SCANNING
        assert ctrl.state.scanning_active
        assert ctrl.state.consecutive_detections == 0

    def test_unreadable_capture_resumes(self):
        ctrl = _controller(CountingCapture(b"garbage"), required_detections=1)
        assert ctrl.on_candidate(STRONG) is None
        assert ctrl.state.phase is ScanPhase.SCANNING

    def test_missing_capture_source_resumes(self):
        ctrl = _controller(None, required_detections=1)
        assert ctrl.on_candidate(STRONG) is None
        assert ctrl.state.scanning_active

    def test_rescan_after_failure(self):
        capture = CountingCapture(error=OSError("camera busy"))
        ctrl = _controller(capture, required_detections=1)
        assert ctrl.on_candidate(STRONG) is None
        capture.error = None
        capture.data = render_png(PRODUCT, DATE)
        result = ctrl.on_candidate(STRONG)
        assert result is not None
        assert capture.calls == 2


class TestPreview:
    def test_preview_decode_skips_capture(self):
        thumb = RGBImage.from_pil(render_code(PRODUCT, DATE, size=240)).encode("JPEG", 75)
        capture = CountingCapture(render_png(PRODUCT, DATE))
        ctrl = _controller(capture, required_detections=1)
        result = ctrl.on_candidate(
            ScanCandidate(confidence=1.0, center_estimate=(120, 120), thumbnail=thumb)
        )
        assert result is not None
        assert result.source == "preview"
        assert result.product_bits == PRODUCT
        assert result.date_bits == DATE
        assert result.evidence_image == thumb
        assert capture.calls == 0

    def test_bad_thumbnail_falls_back_to_capture(self):
        capture = CountingCapture(render_png(PRODUCT, DATE))
        ctrl = _controller(capture, required_detections=1)
        result = ctrl.on_candidate(
            ScanCandidate(confidence=1.0, center_estimate=(0, 0), thumbnail=b"not jpeg")
        )
        assert result is not None
        assert result.source == "capture"
        assert capture.calls == 1


class TestAdmission:
    def test_throttle_and_pending(self):
        ctrl = _controller(throttle_ms=160, auto_capture=False)
        assert ctrl.admit_frame(now=0.0)
        assert ctrl.analysis_pending
        assert not ctrl.admit_frame(now=0.05)
        ctrl.on_candidate(WEAK)
        assert not ctrl.analysis_pending
        assert not ctrl.admit_frame(now=0.1)
        assert ctrl.admit_frame(now=0.2)
        assert ctrl.frames_dropped == 2

    def test_abandon_releases_slot(self):
        ctrl = _controller(throttle_ms=0)
        assert ctrl.admit_frame(now=0.0)
        ctrl.abandon_analysis()
        assert ctrl.admit_frame(now=0.0)

    def test_cancel_discards_late_result(self):
        capture = CountingCapture(render_png(PRODUCT, DATE))
        ctrl = _controller(capture, required_detections=1, throttle_ms=0)
        assert ctrl.admit_frame(now=0.0)
        ctrl.cancel()
        assert ctrl.on_candidate(STRONG) is None
        assert ctrl.state.consecutive_detections == 0
        assert capture.calls == 0
        assert not ctrl.admit_frame(now=1.0)


def _frames(count: int, size: int = 480, delay: float = 0.01, product=PRODUCT):
    frame = Frame.from_image(RGBImage.from_pil(render_code(product, DATE, size=size)))
    for _ in range(count):
        time.sleep(delay)
        yield frame


class TestLiveScanSession:
    def test_end_to_end(self):
        capture = CountingCapture(render_png(PRODUCT, DATE))
        config = ScanConfig(throttle_ms=0, required_detections=2)
        result = start_live_scan(_frames(200), capture, config)
        assert result is not None
        assert result.source in ("preview", "capture")
        assert result.product_bits == PRODUCT
        assert result.date_bits == DATE
        assert capture.calls <= 1

    def test_blank_stream_returns_none(self):
        chroma = bytes([128]) * 1024
        blank = Frame(planes=(bytes(64 * 64), chroma, chroma), width=64, height=64)
        config = ScanConfig(throttle_ms=0)
        session = LiveScanSession([blank] * 20, config=config)
        assert session.run() is None
        assert session.state.consecutive_detections == 0
        assert not session.state.scanning_active

    def test_one_analysis_in_flight(self):
        chroma = bytes([128]) * 1024
        blank = Frame(planes=(bytes(64 * 64), chroma, chroma), width=64, height=64)

        def frames():
            for _ in range(60):
                time.sleep(0.005)
                yield blank

        analyzer = SlowAnalyzer(delay=0.05)
        session = LiveScanSession(frames(), config=ScanConfig(throttle_ms=0), analyzer=analyzer)
        assert session.run() is None
        assert analyzer.max_active == 1
        assert analyzer.calls >= 2
        assert session.controller.frames_dropped > 0

    def test_cancel_before_run(self):
        capture = CountingCapture(render_png(PRODUCT, DATE))
        session = LiveScanSession(_frames(50), capture, ScanConfig(throttle_ms=0))
        session.cancel()
        assert session.run() is None
        assert capture.calls == 0

    def test_cancel_from_another_thread(self):
        capture = CountingCapture(render_png(PRODUCT, DATE))
        session = LiveScanSession(
            _frames(1000, delay=0.005), capture, ScanConfig(throttle_ms=0, auto_capture=False)
        )
        timer = threading.Timer(0.2, session.cancel)
        timer.start()
        try:
            assert session.run() is None
        finally:
            timer.cancel()
        assert capture.calls == 0
        assert not session.state.scanning_active
