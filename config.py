# config.py — env-driven tunables shared by the detector, the CLIs and the HTTP bridge
import os
from dotenv import load_dotenv

# ---------------- env ----------------
if os.path.exists("env"): load_dotenv("env")

def _b(k, d="0"): return os.getenv(k, d).strip().lower() in ("1", "true", "yes")

def _s(k, d=""):
    raw = os.getenv(k, d)
    return raw.split("#", 1)[0].strip().strip('"').strip("'")

def _i(k, d): return int(_s(k, str(d)) or d)
def _f(k, d): return float(_s(k, str(d)) or d)

QUIET_LOGS = _b("QUIET_LOGS", "1")
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"

# ---- cameras ----
MAIN_CAMERA_ID      = _s("MAIN_CAMERA_ID", "0")
CARD_CAMERA_ID      = _s("CARD_CAMERA_ID", "1")
FRAME_W             = _i("FRAME_W", 1280)
FRAME_H             = _i("FRAME_H", 720)
CAMERA_FOURCC       = _s("CAMERA_FOURCC", "")
CAMERA_PROBE_MAX    = _i("CAMERA_PROBE_MAX", 6)
CAPTURE_TIMEOUT_SEC = _f("CAPTURE_TIMEOUT_SEC", 3.0)

# ---- ROI / enhancement ----
CROP_FRAC       = _f("CROP_FRAC", 0.30)
SATURATION_GAIN = _f("SATURATION_GAIN", 1.2)
BLUR_KSIZE      = _i("BLUR_KSIZE", 5)
MORPH_KSIZE     = _i("MORPH_KSIZE", 5)

# ---- component guards ----
AREA_MIN    = _i("AREA_MIN", 100)
AREA_MAX    = _i("AREA_MAX", 15000)
ASPECT_MIN  = _f("ASPECT_MIN", 0.3)
ASPECT_MAX  = _f("ASPECT_MAX", 3.0)
MAX_REGIONS = _i("MAX_REGIONS", 2)

# ---- card reader ----
SETTLE_MS          = _i("SETTLE_MS", 1000)
READER_PORT        = _s("READER_PORT", "")
READER_BAUD        = _i("READER_BAUD", 115200)
READER_TIMEOUT_SEC = _f("READER_TIMEOUT_SEC", 5.0)

# ---- display / debug ----
DISPLAY_WS_URL  = _s("DISPLAY_WS_URL", "ws://localhost:8089")
DEBUG_HTTP_HOST = _s("DEBUG_HTTP_HOST", "0.0.0.0")
DEBUG_HTTP_PORT = _i("DEBUG_HTTP_PORT", 8787)
DEBUG_DIR       = _s("DEBUG_DUMP_DIR", "./debug")
SAVE_MASKS      = _b("SAVE_MASKS", "0")
DASH_ROWS       = _i("DASH_ROWS", 6)
DASH_BIGTEXT    = _b("DASH_BIGTEXT", "1")
