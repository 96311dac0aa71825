import time

import cv2
import numpy as np
import pytest

GRAY = (128, 128, 128)

BGR = {
    "red": (0, 0, 255),
    "orange": (0, 128, 255),
    "yellow": (0, 255, 255),
    "green": (0, 255, 0),
    "blue": (255, 0, 0),
    "purple": (255, 0, 128),
}


def make_frame(patches=(), width=1280, height=720, background=GRAY):
    """Solid background with rectangular patches (color_bgr, w, h, dx, dy).

    dx/dy offset the patch center from the frame center.
    """
    frame = np.full((height, width, 3), background, dtype=np.uint8)
    for color, w, h, dx, dy in patches:
        x0 = width // 2 + dx - w // 2
        y0 = height // 2 + dy - h // 2
        frame[y0:y0 + h, x0:x0 + w] = color
    return frame


class FakeCapture:
    """cv2.VideoCapture stand-in serving one frame (or nothing)."""

    def __init__(self, frame=None, opened=True, report_size=True):
        self.frame = frame
        self.opened = opened
        self.report_size = report_size
        self.released = False
        self.reads = 0
        self.props = {}

    def isOpened(self):
        return self.opened and not self.released

    def read(self):
        self.reads += 1
        if self.frame is None:
            return False, None
        return True, self.frame.copy()

    def get(self, prop):
        if not self.report_size or self.frame is None:
            return 0.0
        if prop == cv2.CAP_PROP_FRAME_WIDTH:
            return float(self.frame.shape[1])
        if prop == cv2.CAP_PROP_FRAME_HEIGHT:
            return float(self.frame.shape[0])
        return 0.0

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def release(self):
        self.released = True


class SlowCapture(FakeCapture):
    """read() blocks for `delay` seconds; notes a release() that lands mid-read."""

    def __init__(self, frame, delay):
        super().__init__(frame)
        self.delay = delay
        self.in_read = False
        self.released_during_read = False

    def read(self):
        self.in_read = True
        try:
            time.sleep(self.delay)
            return super().read()
        finally:
            self.in_read = False

    def release(self):
        if self.in_read:
            self.released_during_read = True
        super().release()


class FakeRig:
    """Opener over a dict of device id -> frame; unknown ids do not open."""

    def __init__(self, frames):
        self.frames = dict(frames)
        self.opened = []

    def __call__(self, device_id, width=None, height=None):
        if device_id not in self.frames:
            return FakeCapture(opened=False)
        cap = FakeCapture(self.frames[device_id])
        self.opened.append((device_id, cap))
        return cap

    def captures(self, device_id):
        return [c for d, c in self.opened if d == device_id]


@pytest.fixture
def rig():
    return FakeRig({"cam1": make_frame(), "cam2": make_frame()})
