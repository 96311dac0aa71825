# camera.py — capture sessions for the board camera and the card camera
import asyncio, logging, threading, time
import cv2, numpy as np
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from config import FRAME_W, FRAME_H, CAMERA_FOURCC, CAMERA_PROBE_MAX, CAPTURE_TIMEOUT_SEC
from errors import CaptureError

log = logging.getLogger("camera")

READ_RETRY_SEC = 0.05


@dataclass(frozen=True)
class Frame:
    pixels: np.ndarray
    width: int
    height: int
    channels: str = "BGR"

    @classmethod
    def from_array(cls, arr, channels="BGR") -> "Frame":
        px = np.array(arr, copy=True)
        px.setflags(write=False)
        h, w = px.shape[:2] if px.ndim >= 2 else (0, 0)
        return cls(px, int(w), int(h), channels)


@dataclass(frozen=True)
class CameraInfo:
    device_id: str
    label: str

    def to_dict(self):
        return {"deviceId": self.device_id, "label": self.label}


def _device_arg(device_id: str):
    """All-digit ids are OpenCV indices; anything else is a path/URL."""
    s = str(device_id).strip()
    return int(s) if s.isdigit() else s

def open_capture(device_id: str, width: Optional[int] = None, height: Optional[int] = None):
    cap = cv2.VideoCapture(_device_arg(device_id))
    if not cap.isOpened():
        return cap
    try:
        if CAMERA_FOURCC:
            cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*CAMERA_FOURCC[:4]))
        if width:  cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        if height: cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
    except cv2.error as e:
        log.warning("camera %s ignored resolution hints: %s", device_id, e)
    return cap

Opener = Callable[..., object]


class CameraSession:
    """One open camera handle. `capture()` is the only async entry point.

    A capture that timed out may still be blocked in read() on an executor
    thread. close() never releases a handle under that thread; the reader
    releases it on its way out instead.
    """

    def __init__(self, device_id: str, width=FRAME_W, height=FRAME_H, opener: Opener = open_capture):
        self.device_id = device_id
        self.width = width
        self.height = height
        self._opener = opener
        self._cap = None
        self._read_lock = threading.Lock()    # one read() at a time
        self._handle_lock = threading.Lock()  # guards _cap / _reading handoff
        self._reading = None                  # handle currently inside read()

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def open(self):
        if self._cap is not None:
            return
        cap = self._opener(self.device_id, self.width, self.height)
        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            raise CaptureError(f"camera {self.device_id!r} could not be opened")
        self._cap = cap
        log.info("Camera %s opened (%s)", self.device_id, self.native_size())

    def close(self):
        with self._handle_lock:
            cap, self._cap = self._cap, None
            busy = cap is not None and cap is self._reading
        if cap is None:
            return
        if busy:
            log.info("Camera %s closing mid-read; reader will release it", self.device_id)
            return
        self._release(cap)

    def _release(self, cap):
        try:
            cap.release()
        except Exception as e:
            log.warning("camera %s release failed: %s", self.device_id, e)
        log.info("Camera %s closed", self.device_id)

    def native_size(self, cap=None):
        """Source-reported (w, h), or the configured fallback if not known yet."""
        cap = cap if cap is not None else self._cap
        if cap is None:
            return (FRAME_W, FRAME_H)
        w = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        h = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        if w <= 0 or h <= 0:
            return (FRAME_W, FRAME_H)
        return (w, h)

    async def capture(self, timeout: float = CAPTURE_TIMEOUT_SEC) -> Frame:
        if self._cap is None:
            raise CaptureError(f"camera {self.device_id!r} is not open")
        loop = asyncio.get_running_loop()
        deadline = time.monotonic() + timeout
        try:
            px = await asyncio.wait_for(loop.run_in_executor(None, self._sample, deadline), timeout)
        except asyncio.TimeoutError:
            raise CaptureError(f"camera {self.device_id!r} not ready after {timeout:.1f}s") from None
        return Frame.from_array(px)

    def _sample(self, deadline):
        # executor thread: block on read() until a non-empty frame or the deadline
        with self._read_lock:
            with self._handle_lock:
                cap = self._cap
                self._reading = cap
            try:
                while cap is not None and cap is self._cap and time.monotonic() < deadline:
                    ok, raw = cap.read()
                    if ok and raw is not None and raw.size > 0:
                        w, h = self.native_size(cap)
                        if raw.shape[1] != w or raw.shape[0] != h:
                            raw = cv2.resize(raw, (w, h), interpolation=cv2.INTER_AREA)
                        return raw
                    time.sleep(READ_RETRY_SEC)
            finally:
                with self._handle_lock:
                    self._reading = None
                    orphaned = cap is not None and cap is not self._cap
                if orphaned:
                    self._release(cap)
        raise CaptureError(f"camera {self.device_id!r} produced no frame")


def list_cameras(candidates: Optional[Iterable[str]] = None, opener: Opener = open_capture) -> List[CameraInfo]:
    """Probe candidate ids (default 0..CAMERA_PROBE_MAX-1) and report the ones that open."""
    if candidates is None:
        candidates = [str(i) for i in range(CAMERA_PROBE_MAX)]
    found = []
    for dev in candidates:
        cap = None
        try:
            cap = opener(dev, None, None)
            if cap is None or not cap.isOpened():
                continue
            w = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
            h = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
            found.append(CameraInfo(str(dev), f"Camera {dev} ({w}x{h})"))
        except cv2.error as e:
            log.debug("probe %s failed: %s", dev, e)
        finally:
            if cap is not None:
                cap.release()
    return found
