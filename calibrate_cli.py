#!/usr/bin/env python3
"""
Threshold check for the color profiles.

Grab one frame from the card camera (or read an image), crop + enhance it the
same way the detector does, then print the median HSV of the crop and which
profiles it falls inside. Masks can be saved for side-by-side inspection.

  python calibrate_cli.py --camera 1
  python calibrate_cli.py --image samples/orange.png --save ./calib
"""
import os, sys, asyncio, argparse, logging
import cv2, numpy as np

from camera import CameraSession
from color_classify import PROFILES, extract_roi, enhance_pair, segment, filter_components, summarize
from config import CARD_CAMERA_ID, CROP_FRAC, LOG_FORMAT
from errors import DetectionError

log = logging.getLogger("calibrate")


def profile_hits(hsv_px, profiles=PROFILES):
    """Names of profiles whose bounds contain a single HSV triple."""
    h, s, v = (int(x) for x in hsv_px)
    def inside(lo, hi): return all(lo[i] <= c <= hi[i] for i, c in enumerate((h, s, v)))
    hits = []
    for p in profiles:
        if inside(p.lower, p.upper) or (p.needs_wraparound and inside(p.wrap_lower, p.wrap_upper)):
            hits.append(p.name)
    return hits


def report(frame, crop_frac=CROP_FRAC, save_dir=None):
    crop = extract_roi(frame, crop_frac)
    hsv, sharp = enhance_pair(crop)
    med = np.median(hsv.reshape(-1, 3), axis=0).astype(int)
    print(f"crop {crop.shape[1]}x{crop.shape[0]}  median HSV = {tuple(med)}  "
          f"→ {', '.join(profile_hits(med)) or 'no profile'}")
    for p in PROFILES:
        mask = segment(hsv, p, sharp=sharp)
        regions = summarize(filter_components(mask))
        cover = 100.0 * cv2.countNonZero(mask) / mask.size
        print(f"  {p.name:<7} cover={cover:5.1f}%  regions={regions.count} areas={list(regions.areas)}")
        if save_dir:
            cv2.imwrite(os.path.join(save_dir, f"mask_{p.name}.png"), mask)
    if save_dir:
        cv2.imwrite(os.path.join(save_dir, "crop.png"), crop)
        print(f"saved crop + masks to {save_dir}")


async def _grab(camera_id):
    session = CameraSession(camera_id)
    session.open()
    try:
        return (await session.capture()).pixels
    finally:
        session.close()


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    ap = argparse.ArgumentParser(description="Check color profile thresholds against a real card")
    ap.add_argument("--camera", default=CARD_CAMERA_ID)
    ap.add_argument("--image", help="use an image file instead of the camera")
    ap.add_argument("--crop-frac", type=float, default=CROP_FRAC)
    ap.add_argument("--save", help="directory for crop/mask PNGs")
    args = ap.parse_args(argv)

    try:
        if args.image:
            frame = cv2.imread(args.image)
            if frame is None:
                print(f"[ERROR] could not read image: {args.image}")
                return 1
        else:
            frame = asyncio.run(_grab(args.camera))
        if args.save:
            os.makedirs(args.save, exist_ok=True)
        report(frame, args.crop_frac, args.save)
    except DetectionError as e:
        print(f"[ERROR] {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
