import os

import numpy as np

from color_classify import ColorRegions
from debug_recorder import DebugRecorder


def _mask():
    m = np.zeros((20, 20), dtype=np.uint8)
    m[5:15, 5:15] = 255
    return m


def test_record_keeps_masks_only_for_colors_with_regions() -> None:
    rec = DebugRecorder()
    regions = {"red": ColorRegions(1, (100,)), "blue": ColorRegions()}
    snap = rec.record(np.zeros((20, 20, 3), np.uint8), {"red": _mask(), "blue": _mask()},
                      regions, "red", 12.5)
    assert rec.snapshot is snap
    assert list(snap.masks) == ["red"]
    assert snap.ok and snap.dominant == "red"
    assert snap.to_dict()["regions"]["red"] == {"count": 1, "areas": [100]}
    assert snap.to_dict()["masks"] == ["red"]


def test_failure_drops_dominant_and_keeps_error() -> None:
    rec = DebugRecorder()
    snap = rec.record(None, None, None, "red", 3.0, error="CaptureError: timeout")
    assert not snap.ok
    assert snap.dominant is None
    assert snap.error == "CaptureError: timeout"
    assert snap.to_dict()["source_shape"] is None


def test_unbuildable_snapshot_degrades_instead_of_raising() -> None:
    class Weird:
        def __array__(self, *a, **k):
            raise RuntimeError("no pixels")

    rec = DebugRecorder()
    snap = rec.record(Weird(), None, None, "red", 1.0)
    assert snap.error.startswith("snapshot incomplete")
    assert rec.snapshot is snap


def test_dump_writes_source_and_masks(tmp_path) -> None:
    rec = DebugRecorder()
    assert rec.dump(str(tmp_path)) == []
    rec.record(np.zeros((20, 20, 3), np.uint8), {"green": _mask()},
               {"green": ColorRegions(1, (100,))}, "green", 1.0)
    written = rec.dump(str(tmp_path / "out"))
    names = sorted(os.path.basename(p) for p in written)
    assert len(names) == 2
    assert names[0].startswith("mask_green_") and names[1].startswith("source_")
    assert all(os.path.exists(p) for p in written)
