# color_classify.py — HSV segmentation + component voting for colored game cards
import cv2, numpy as np
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Mapping, Optional, Tuple

from config import (CROP_FRAC, SATURATION_GAIN, BLUR_KSIZE, MORPH_KSIZE,
                    AREA_MIN, AREA_MAX, ASPECT_MIN, ASPECT_MAX, MAX_REGIONS)
from errors import InvalidFrameError, ProcessingError

HSV = Tuple[int, int, int]

NO_CARD = "none"


@dataclass(frozen=True)
class ColorProfile:
    name: str
    lower: HSV
    upper: HSV
    wrap_lower: Optional[HSV] = None
    wrap_upper: Optional[HSV] = None
    extra_cleanup: bool = False

    @property
    def needs_wraparound(self) -> bool:
        return self.wrap_lower is not None and self.wrap_upper is not None


# OpenCV HSV scale: H 0..180, S/V 0..255. Order here is the final tie-break.
PROFILES: Tuple[ColorProfile, ...] = (
    ColorProfile("red",    (170, 100,  70), (180, 255, 255),
                 wrap_lower=(0, 100, 70), wrap_upper=(5, 255, 255)),
    ColorProfile("orange", (  6, 100, 100), ( 20, 255, 255), extra_cleanup=True),
    ColorProfile("yellow", ( 21, 100, 100), ( 35, 255, 255)),
    ColorProfile("green",  ( 36,  80,  60), ( 85, 255, 255)),
    ColorProfile("blue",   ( 90, 100,  60), (124, 255, 255)),
    ColorProfile("purple", (125,  60,  50), (165, 255, 255)),
)
COLOR_ORDER: Tuple[str, ...] = tuple(p.name for p in PROFILES)


@dataclass(frozen=True)
class RegionCandidate:
    area: int
    width: int
    height: int

    @property
    def aspect(self) -> float:
        return self.width / float(self.height)


@dataclass(frozen=True)
class ColorRegions:
    count: int = 0
    areas: Tuple[int, ...] = ()

    @property
    def total_area(self) -> int:
        return sum(self.areas)

    def to_dict(self) -> dict:
        return {"count": self.count, "areas": list(self.areas)}


@dataclass(frozen=True)
class DetectionResult:
    color: str
    num_boxes: int = 0
    areas: Tuple[int, ...] = ()
    confidence: float = 0.0

    @property
    def detected(self) -> bool:
        return self.color != NO_CARD

    @classmethod
    def none(cls) -> "DetectionResult":
        return cls(NO_CARD)

    def to_payload(self) -> dict:
        """Shape the display expects for a drawn card."""
        return {
            "name": f"{self.color} card" if self.detected else "no card detected",
            "color": self.color,
            "numBoxes": self.num_boxes,
            "areas": list(self.areas),
            "confidence": self.confidence,
        }


# -------------- ROI --------------
def extract_roi(frame, frac=CROP_FRAC):
    """Centered crop, `frac` of each frame dimension (at least 1px)."""
    if frame is None or getattr(frame, "ndim", 0) < 2:
        raise InvalidFrameError("frame is not an image buffer")
    h, w = frame.shape[:2]
    if w <= 0 or h <= 0:
        raise InvalidFrameError(f"frame has zero area ({w}x{h})")
    cw = max(1, int(round(w * frac)))
    ch = max(1, int(round(h * frac)))
    x0 = (w - cw) // 2
    y0 = (h - ch) // 2
    return frame[y0:y0 + ch, x0:x0 + cw].copy()


# -------------- enhancement --------------
def enhance_pair(crop_bgr, gain=SATURATION_GAIN, ksize=BLUR_KSIZE):
    """Lab chroma boost, then (blurred HSV, unblurred HSV) of the boosted crop."""
    if crop_bgr is None or crop_bgr.ndim != 3 or crop_bgr.shape[2] != 3 or crop_bgr.size == 0:
        raise ProcessingError(f"expected a non-empty 3-channel BGR crop, got shape "
                              f"{getattr(crop_bgr, 'shape', None)}")
    if crop_bgr.dtype != np.uint8:
        crop_bgr = np.clip(crop_bgr, 0, 255).astype(np.uint8)

    lab = cv2.cvtColor(crop_bgr, cv2.COLOR_BGR2LAB).astype(np.float32)
    lab[..., 1:] = (lab[..., 1:] - 128.0) * gain + 128.0
    lab = np.clip(lab, 0, 255).astype(np.uint8)
    boosted = cv2.cvtColor(lab, cv2.COLOR_LAB2BGR)

    k = ksize if ksize % 2 == 1 else ksize + 1
    blurred = cv2.GaussianBlur(boosted, (k, k), 0)
    return cv2.cvtColor(blurred, cv2.COLOR_BGR2HSV), cv2.cvtColor(boosted, cv2.COLOR_BGR2HSV)

def enhance(crop_bgr, gain=SATURATION_GAIN, ksize=BLUR_KSIZE):
    """Lab chroma boost → Gaussian blur → HSV."""
    return enhance_pair(crop_bgr, gain, ksize)[0]


# -------------- segmentation --------------
@lru_cache(maxsize=8)
def _kernel(k):
    return cv2.getStructuringElement(cv2.MORPH_RECT, (k, k))

def _open_close(mask, k):
    kern = _kernel(k)
    mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, kern)
    return cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kern)

def _in_range(hsv, lo, hi):
    return cv2.inRange(hsv, np.array(lo, dtype=np.uint8), np.array(hi, dtype=np.uint8))

def _profile_mask(hsv, profile: ColorProfile):
    mask = _in_range(hsv, profile.lower, profile.upper)
    if profile.needs_wraparound:
        mask = cv2.bitwise_or(mask, _in_range(hsv, profile.wrap_lower, profile.wrap_upper))
    return mask

def segment(hsv, profile: ColorProfile, morph_ksize=MORPH_KSIZE, sharp=None):
    """Binary mask for one profile.

    `sharp` is the unblurred HSV from enhance_pair(); when given, a pixel must
    match both before and after the blur, so the blur halo around a card does
    not count toward its area.
    """
    mask = _profile_mask(hsv, profile)
    if sharp is not None:
        mask = cv2.bitwise_and(mask, _profile_mask(sharp, profile))
    if profile.extra_cleanup:
        mask = _open_close(mask, 3)
    return _open_close(mask, morph_ksize)

def segment_all(hsv, profiles=PROFILES, morph_ksize=MORPH_KSIZE, sharp=None) -> Dict[str, np.ndarray]:
    return {p.name: segment(hsv, p, morph_ksize, sharp) for p in profiles}


# -------------- component filter --------------
def filter_components(mask, area_min=AREA_MIN, area_max=AREA_MAX,
                      aspect_min=ASPECT_MIN, aspect_max=ASPECT_MAX,
                      max_regions=MAX_REGIONS) -> List[RegionCandidate]:
    """8-connected components inside the area/aspect guards, largest first."""
    n, _labels, stats, _centroids = cv2.connectedComponentsWithStats(mask, connectivity=8)
    kept = []
    for i in range(1, n):  # label 0 is background
        w = int(stats[i, cv2.CC_STAT_WIDTH])
        h = int(stats[i, cv2.CC_STAT_HEIGHT])
        area = int(stats[i, cv2.CC_STAT_AREA])
        if not (area_min <= area <= area_max): continue
        cand = RegionCandidate(area, w, h)
        if not (aspect_min <= cand.aspect <= aspect_max): continue
        kept.append(cand)
    kept.sort(key=lambda c: c.area, reverse=True)
    return kept[:max_regions]

def summarize(candidates) -> ColorRegions:
    return ColorRegions(len(candidates), tuple(c.area for c in candidates))


# -------------- dominant color --------------
def select_dominant(regions: Mapping[str, ColorRegions], order=COLOR_ORDER) -> DetectionResult:
    """Most regions wins; ties → larger total area → earlier in `order`."""
    rank = {name: i for i, name in enumerate(order)}
    live = [(name, r) for name, r in regions.items() if r.count > 0]
    if not live:
        return DetectionResult.none()
    name, best = min(live, key=lambda kv: (-kv[1].count, -kv[1].total_area,
                                           rank.get(kv[0], len(rank)), kv[0]))
    return DetectionResult(name, best.count, best.areas, 1.0)


def classify_image(frame_bgr, profiles=PROFILES):
    """Whole pipeline on a still image, no camera/lock/recorder.

    Returns (result, crop, masks, regions) so callers can keep the evidence.
    """
    crop = extract_roi(frame_bgr)
    hsv, sharp = enhance_pair(crop)
    masks = segment_all(hsv, profiles, sharp=sharp)
    regions = {name: summarize(filter_components(m)) for name, m in masks.items()}
    return select_dominant(regions, tuple(p.name for p in profiles)), crop, masks, regions
