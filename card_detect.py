#!/usr/bin/env python3
# Board Game — Card Color Detector
# draw → settle → capture → classify → push to display, with a live terminal dashboard

import sys, time, asyncio, argparse, logging
from collections import deque

import cv2
from pyfiglet import Figlet

from config import (LOG_FORMAT, QUIET_LOGS, MAIN_CAMERA_ID, CARD_CAMERA_ID, SETTLE_MS,
                    DEBUG_DIR, SAVE_MASKS, DASH_ROWS, DASH_BIGTEXT, DISPLAY_WS_URL, DEBUG_HTTP_PORT)
from card_reader import CardReader, SimCardReader
from color_classify import classify_image
from debug_server import DebugServer
from detector import PipelineContext
from display_link import DisplayLink
from errors import DetectionError, ReaderError

log = logging.getLogger("card_detect")

RESET = "\033[0m"; BOLD = "\033[1m"; GREEN = "\033[1;32m"; RED = "\033[1;31m"
YELLOW = "\033[1;33m"; GRAY = "\033[90m"; BLUE = "\033[34m"

ANSI_BY_COLOR = {
    "red": "\033[1;31m", "orange": "\033[38;5;208m", "yellow": "\033[1;33m",
    "green": "\033[1;32m", "blue": "\033[1;34m", "purple": "\033[1;35m",
}

# ---------------- dashboard ----------------
events = deque(maxlen=max(1, DASH_ROWS))

def log_event(s: str):
    ts = time.strftime("%H:%M:%S"); events.appendleft(f"{ts}  {s}")


def render_dashboard(ctx, display, last_result=None, draws=0):
    if sys.stdout.isatty():
        sys.stdout.write("\033[2J\033[H")
    else:
        print("\n" + "=" * 72 + "\n")

    print(f"{BOLD}{BLUE}=== BOARD GAME — CARD COLOR DETECTOR ==={RESET}")
    d_ok = display is not None and display.is_connected
    d_color = GREEN if d_ok else RED
    url = display.url if display is not None else "(disabled)"
    print(f"{BOLD}Display : {d_color}{url}{RESET}   [{d_color}{'UP' if d_ok else 'DOWN'}{RESET}]")
    cams = (f"main={ctx.main_session.device_id} card={ctx.card_session.device_id}"
            if ctx.ready else "not initialized")
    print(f"{BOLD}Cameras : {GREEN if ctx.ready else RED}{cams}{RESET}   draws={draws}")

    if last_result is not None:
        color = last_result.color
        tint = ANSI_BY_COLOR.get(color, GRAY)
        if DASH_BIGTEXT and last_result.detected:
            for line in Figlet(font="big").renderText(color.upper()).rstrip().splitlines():
                print(tint + line + RESET)
        print(f"{BOLD}Card:{RESET} {tint}{color}{RESET}  boxes={last_result.num_boxes} "
              f"areas={list(last_result.areas)} conf={last_result.confidence:.1f}")

    snap = ctx.get_debug_data()
    if snap is not None:
        print(f"{GRAY}last run {snap.elapsed_ms:.0f} ms"
              f"{'  error: ' + snap.error if snap.error else ''}{RESET}")

    if events:
        print(f"{GRAY}" + "-" * 72 + f"{RESET}")
        print("Recent events:")
        for line in list(events):
            low = line.lower()
            if "fail" in low or "not detected" in low: color = RED
            elif "detected" in low: color = GREEN
            else: color = GRAY
            print("  " + color + line + RESET)
    sys.stdout.flush()


# ---------------- one draw ----------------
async def draw_and_detect(ctx, reader, display=None, settle_ms=SETTLE_MS):
    """Actuate the reader, wait for the card to settle, classify. Errors are reported, not raised."""
    try:
        await reader.draw_card()
    except ReaderError as e:
        log_event(f"draw failed: {e}")
        if display is not None: display.send_card_not_detected(str(e))
        return None

    await asyncio.sleep(settle_ms / 1000.0)

    try:
        result = await ctx.detect_card()
    except DetectionError as e:
        log_event(f"card not detected: {e}")
        if display is not None: display.send_card_not_detected(str(e))
        return None
    finally:
        if SAVE_MASKS:
            ctx.recorder.dump(DEBUG_DIR)

    if result.detected:
        log_event(f"detected {result.color} (boxes={result.num_boxes})")
    else:
        log_event("card not detected (no color matched)")
    if display is not None: display.send_card_drawn(result)
    return result


async def _wait_trigger(interval):
    if interval and interval > 0:
        await asyncio.sleep(interval)
        return True
    loop = asyncio.get_running_loop()
    line = await loop.run_in_executor(None, sys.stdin.readline)
    return line != "" and line.strip().lower() not in ("q", "quit", "exit")


async def run(args):
    ctx = PipelineContext()
    if not await ctx.initialize_detection(args.main_camera, args.card_camera):
        print(f"{RED}[ERROR] could not open cameras main={args.main_camera} card={args.card_camera}{RESET}")
        return 1

    reader = SimCardReader() if args.sim_reader else CardReader(port=args.reader_port)
    try:
        reader.connect()
    except ReaderError as e:
        print(f"{RED}[ERROR] {e}{RESET}")
        await ctx.close()
        return 1

    display = None
    if not args.no_display:
        display = DisplayLink(url=args.display_url, on_event=log_event)
        display.start()

    server = DebugServer(ctx, port=args.http_port)
    await server.start()
    log_event("detector ready — press Enter to draw (q to quit)" if not args.interval
              else f"auto draw every {args.interval:.1f}s")

    last = None; draws = 0
    try:
        while True:
            render_dashboard(ctx, display, last, draws)
            if not await _wait_trigger(args.interval):
                break
            draws += 1
            last = await draw_and_detect(ctx, reader, display, settle_ms=args.settle_ms)
    finally:
        await server.stop()
        if display is not None: display.stop()
        reader.close()
        await ctx.close()
    return 0


def classify_file(path):
    img = cv2.imread(path)
    if img is None:
        print(f"{RED}[ERROR] could not read image: {path}{RESET}")
        return 1
    try:
        result, _crop, _masks, regions = classify_image(img)
    except DetectionError as e:
        print(f"{RED}card not detected: {e}{RESET}")
        return 1
    for name, r in regions.items():
        print(f"  {name:<7} count={r.count} areas={list(r.areas)}")
    print(f"{BOLD}{path}:{RESET} {result.color} (boxes={result.num_boxes}, conf={result.confidence:.1f})")
    return 0


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Board game card color detector")
    p.add_argument("--main-camera", default=MAIN_CAMERA_ID, help="board camera id (index, path or URL)")
    p.add_argument("--card-camera", default=CARD_CAMERA_ID, help="card-draw camera id")
    p.add_argument("--reader-port", default=None, help="card reader serial port / pyserial URL")
    p.add_argument("--sim-reader", action="store_true", help="no dispenser attached; draws always succeed")
    p.add_argument("--display-url", default=DISPLAY_WS_URL)
    p.add_argument("--no-display", action="store_true", help="do not connect to the display")
    p.add_argument("--http-port", type=int, default=DEBUG_HTTP_PORT, help="debug bridge port (0 = off)")
    p.add_argument("--settle-ms", type=int, default=SETTLE_MS)
    p.add_argument("--interval", type=float, default=0.0, help="auto-draw every N seconds instead of Enter")
    p.add_argument("--list-cameras", action="store_true")
    p.add_argument("--image", help="classify a still image and exit")
    p.add_argument("--debug", action="store_true")
    return p.parse_args(argv)


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    args = parse_args(argv)
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif QUIET_LOGS:
        logging.getLogger().setLevel(logging.WARNING)
        logging.getLogger("websocket").setLevel(logging.WARNING)
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    if args.list_cameras:
        for cam in PipelineContext().list_cameras():
            print(f"{cam.device_id:>4}  {cam.label}")
        return 0
    if args.image:
        return classify_file(args.image)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
