# display_link.py — persistent WS connection to the game display (card results out)
import json, os, random, threading, time, logging
from websocket import WebSocketApp

from config import DISPLAY_WS_URL

PING_INTERVAL = int(os.getenv("WS_PING_INTERVAL_SEC", "20"))
PING_TIMEOUT  = int(os.getenv("WS_PING_TIMEOUT_SEC", "10"))

log = logging.getLogger("DisplayLink")


class DisplayLink:
    def __init__(self, url: str = DISPLAY_WS_URL, max_retries: int = 0, retry_delay: float = 3.0,
                 on_event=None, role: str = "detector"):
        self.url = url
        self.max_retries = max_retries   # 0 = retry forever
        self.retry_delay = retry_delay
        self.role = role

        self._on_event = on_event
        self._ws = None
        self._thread = None
        self._lock = threading.RLock()
        self._should_run = threading.Event()
        self._connected = threading.Event()
        self._retry_count = 0

    # ---- Lifecycle ---------------------------------------------------------
    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._should_run.set()
        self._thread = threading.Thread(target=self._run_forever, name="display-link", daemon=True)
        self._thread.start()

    def stop(self):
        self._should_run.clear()
        with self._lock:
            ws, self._ws = self._ws, None
        if ws is not None:
            try: ws.close()
            except Exception as e: log.debug("close: %s", e)
        if self._thread: self._thread.join(timeout=2)
        self._connected.clear()

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    def wait_connected(self, timeout: float = 1.5) -> bool:
        return self._connected.wait(timeout)

    # ---- Outbound ----------------------------------------------------------
    def send_card_drawn(self, result) -> bool:
        return self.send_json({"command": "card_drawn", "data": result.to_payload()})

    def send_card_not_detected(self, error: str) -> bool:
        return self.send_json({"command": "card_not_detected", "data": {"error": str(error)}})

    def send_json(self, payload: dict) -> bool:
        """Thread-safe send; True only if handed to the socket."""
        data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        with self._lock:
            if self._ws is not None and self.is_connected:
                try:
                    self._ws.send(data)
                    log.info("Sent WS: %s", data)
                    return True
                except Exception as e:
                    log.error("WS send failed: %s", e)
                    self._emit(f"[display] send failed: {e}")
            else:
                log.warning("WS not connected; can't send: %s", data)
                self._emit("[display] not connected; send skipped")
        return False

    # ---- Internals ---------------------------------------------------------
    def _run_forever(self):
        while self._should_run.is_set():
            try:
                ws = WebSocketApp(self.url, on_open=self._on_open, on_message=self._on_message,
                                  on_error=self._on_error, on_close=self._on_close)
                with self._lock:
                    self._ws = ws
                ws.run_forever(ping_interval=PING_INTERVAL, ping_timeout=PING_TIMEOUT)
            except Exception as e:
                log.exception("WS run_forever crashed: %s", e)

            self._connected.clear()
            if not self._should_run.is_set():
                break
            if self.max_retries and self._retry_count >= self.max_retries:
                log.error("Display link: max retry attempts reached; giving up.")
                self._emit("[display] giving up")
                break

            self._retry_count += 1
            delay = self.backoff(self.retry_delay, self._retry_count)
            log.info("Retrying display link in %.1fs (attempt %d)", delay, self._retry_count)
            self._emit(f"[display] reconnect in {delay:.1f}s")
            time.sleep(delay)

    @staticmethod
    def backoff(base: float, n: int, rnd=random) -> float:
        return base * min(5, 1 + 0.25 * n) * (0.75 + 0.5 * rnd.random())

    def _on_open(self, ws):
        self._retry_count = 0
        self._connected.set()
        log.info("Display link opened: %s", self.url)
        self._emit("[display] OPEN")
        self.send_json({"command": "hello", "role": self.role})

    def _on_message(self, ws, msg):
        log.debug("WS message: %s", msg)

    def _on_error(self, ws, err):
        log.error("WS error: %s", err)
        self._emit(f"[display] ERROR: {err}")

    def _on_close(self, ws, status, msg):
        self._connected.clear()
        log.info("WS closed (%s): %s", status, msg)
        self._emit(f"[display] CLOSE ({status})")

    def _emit(self, s: str):
        if self._on_event is None:
            return
        try:
            self._on_event(s)
        except Exception as e:
            log.debug("event hook failed: %s", e)
