# debug_recorder.py — single latest snapshot of a detection attempt
import os, time, logging
import cv2, numpy as np
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from color_classify import ColorRegions

log = logging.getLogger("debug_recorder")

_EMPTY = MappingProxyType({})


def _frozen(img):
    if img is None:
        return None
    out = np.array(img, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class DebugSnapshot:
    source: Optional[np.ndarray] = None
    masks: Mapping[str, np.ndarray] = field(default_factory=lambda: _EMPTY)
    regions: Mapping[str, ColorRegions] = field(default_factory=lambda: _EMPTY)
    dominant: Optional[str] = None
    elapsed_ms: float = 0.0
    error: Optional[str] = None
    timestamp: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        """JSON-safe summary (no pixels)."""
        return {
            "dominant": self.dominant,
            "elapsed_ms": round(self.elapsed_ms, 2),
            "error": self.error,
            "timestamp": self.timestamp,
            "source_shape": list(self.source.shape) if self.source is not None else None,
            "masks": sorted(self.masks),
            "regions": {k: v.to_dict() for k, v in self.regions.items()},
        }


class DebugRecorder:
    def __init__(self):
        self._snapshot: Optional[DebugSnapshot] = None

    @property
    def snapshot(self) -> Optional[DebugSnapshot]:
        return self._snapshot

    def record(self, source=None, masks=None, regions=None, dominant=None,
               elapsed_ms=0.0, error=None) -> DebugSnapshot:
        """Swap in a new snapshot. Never raises; falls back to a partial one."""
        regions = dict(regions or {})
        try:
            kept = {name: _frozen(m) for name, m in (masks or {}).items()
                    if regions.get(name, ColorRegions()).count > 0}
            snap = DebugSnapshot(
                source=_frozen(source),
                masks=MappingProxyType(kept),
                regions=MappingProxyType(regions),
                dominant=None if error else dominant,
                elapsed_ms=float(elapsed_ms),
                error=error,
                timestamp=time.time(),
            )
        except Exception as e:
            log.warning("snapshot build failed, keeping partial: %s", e)
            msg = f"{error}; " if error else ""
            snap = DebugSnapshot(elapsed_ms=float(elapsed_ms or 0.0),
                                 error=f"{msg}snapshot incomplete: {e}",
                                 timestamp=time.time())
        self._snapshot = snap
        return snap

    def dump(self, out_dir) -> list:
        """Write the current crop and masks as PNGs; returns written paths."""
        snap = self._snapshot
        if snap is None:
            return []
        written = []
        try:
            os.makedirs(out_dir, exist_ok=True)
            ts = time.strftime("%Y%m%d-%H%M%S", time.localtime(snap.timestamp))
            if snap.source is not None:
                p = os.path.join(out_dir, f"source_{ts}.png")
                if cv2.imwrite(p, snap.source): written.append(p)
            for name, mask in snap.masks.items():
                p = os.path.join(out_dir, f"mask_{name}_{ts}.png")
                if cv2.imwrite(p, mask): written.append(p)
        except (OSError, cv2.error) as e:
            log.warning("debug dump to %s failed: %s", out_dir, e)
        return written
