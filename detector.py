# detector.py — pipeline context: two camera sessions, one in-flight detection, one snapshot
import asyncio, enum, logging, time
from typing import Dict, Optional

from camera import CameraSession, Frame, list_cameras, open_capture
from color_classify import (PROFILES, ColorRegions, DetectionResult, extract_roi, enhance_pair,
                            segment, filter_components, summarize, select_dominant)
from config import CROP_FRAC, FRAME_W, FRAME_H, CAPTURE_TIMEOUT_SEC
from debug_recorder import DebugRecorder, DebugSnapshot
from errors import DetectionError, ProcessingError, SessionNotInitializedError

log = logging.getLogger("detector")


class PipelineState(enum.Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    EXTRACTING = "extracting"
    ENHANCING = "enhancing"
    SEGMENTING = "segmenting"
    FILTERING = "filtering"
    SELECTING = "selecting"
    RECORDING = "recording"


class PipelineContext:
    """Owned by the caller; holds the sessions, the lock and the debug snapshot.

    Detection, re-initialization and board captures all run under one
    asyncio.Lock, so a reader of `get_debug_data()` only ever sees a finished
    snapshot.
    """

    def __init__(self, opener=open_capture, profiles=PROFILES, crop_frac=CROP_FRAC,
                 frame_size=(FRAME_W, FRAME_H), capture_timeout=CAPTURE_TIMEOUT_SEC):
        self._opener = opener
        self.profiles = tuple(profiles)
        self.crop_frac = crop_frac
        self.frame_size = frame_size
        self.capture_timeout = capture_timeout
        self.main_session: Optional[CameraSession] = None
        self.card_session: Optional[CameraSession] = None
        self.recorder = DebugRecorder()
        self.state = PipelineState.IDLE
        self._lock = asyncio.Lock()

    # ---- Sessions ----------------------------------------------------------
    @property
    def ready(self) -> bool:
        return bool(self.main_session and self.main_session.is_open and
                    self.card_session and self.card_session.is_open)

    def list_cameras(self, candidates=None):
        return list_cameras(candidates, opener=self._opener)

    async def initialize_detection(self, main_camera_id: str, card_camera_id: str) -> bool:
        """(Re)open both sessions. Old handles are closed first; False on failure."""
        async with self._lock:
            self._close_sessions()
            w, h = self.frame_size
            main = CameraSession(main_camera_id, w, h, opener=self._opener)
            card = CameraSession(card_camera_id, w, h, opener=self._opener)
            try:
                main.open()
                card.open()
            except DetectionError as e:
                main.close(); card.close()
                log.error("Camera init failed (main=%s card=%s): %s", main_camera_id, card_camera_id, e)
                return False
            self.main_session, self.card_session = main, card
            log.info("Both cameras initialized (main=%s card=%s)", main_camera_id, card_camera_id)
            return True

    def _close_sessions(self):
        for s in (self.main_session, self.card_session):
            if s is not None:
                s.close()
        self.main_session = self.card_session = None

    async def close(self):
        async with self._lock:
            self._close_sessions()

    async def capture_board(self) -> Frame:
        async with self._lock:
            if not (self.main_session and self.main_session.is_open):
                raise SessionNotInitializedError("main camera not initialized")
            return await self.main_session.capture(self.capture_timeout)

    # ---- Detection ---------------------------------------------------------
    def get_debug_data(self) -> Optional[DebugSnapshot]:
        return self.recorder.snapshot

    async def detect_card(self) -> DetectionResult:
        async with self._lock:
            if not self.ready:
                raise SessionNotInitializedError("card detection camera not initialized")
            started = time.perf_counter()
            self.state = PipelineState.CAPTURING
            try:
                frame = await self.card_session.capture(self.capture_timeout)
            except DetectionError as e:
                self._record_failure(e, started)
                raise
            return self._process(frame, started)

    async def detect_frame(self, frame: Frame) -> DetectionResult:
        """Stages 2..7 on an already captured frame."""
        async with self._lock:
            return self._process(frame, time.perf_counter())

    def _process(self, frame: Frame, started: float) -> DetectionResult:
        crop = None
        masks: Dict = {}
        regions: Dict[str, ColorRegions] = {}
        try:
            self.state = PipelineState.EXTRACTING
            crop = extract_roi(getattr(frame, "pixels", frame), self.crop_frac)

            self.state = PipelineState.ENHANCING
            hsv, sharp = enhance_pair(crop)

            self.state = PipelineState.SEGMENTING
            masks = {p.name: segment(hsv, p, sharp=sharp) for p in self.profiles}

            self.state = PipelineState.FILTERING
            regions = {name: summarize(filter_components(m)) for name, m in masks.items()}

            self.state = PipelineState.SELECTING
            result = select_dominant(regions, tuple(p.name for p in self.profiles))
        except DetectionError as e:
            self._record_failure(e, started, crop, masks, regions)
            raise
        except Exception as e:
            err = ProcessingError(f"{self.state.value} failed: {e}")
            self._record_failure(err, started, crop, masks, regions)
            raise err from e

        self.state = PipelineState.RECORDING
        self.recorder.record(crop, masks, regions, result.color, _ms_since(started))
        self.state = PipelineState.IDLE
        log.info("Detected %s (boxes=%d areas=%s)", result.color, result.num_boxes, list(result.areas))
        return result

    def _record_failure(self, err, started, crop=None, masks=None, regions=None):
        stage = self.state.value
        self.state = PipelineState.RECORDING
        self.recorder.record(crop, masks, regions, None, _ms_since(started),
                             error=f"{type(err).__name__}: {err}")
        self.state = PipelineState.IDLE
        log.warning("Detection failed during %s: %s", stage, err)


def _ms_since(t0):
    return (time.perf_counter() - t0) * 1000.0
