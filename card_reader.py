# card_reader.py — card dispenser over USB serial (Arduino), plus a no-hardware simulator
import asyncio, glob, json, logging, threading, time
from typing import Optional

import serial  # pip install pyserial

from config import READER_PORT, READER_BAUD, READER_TIMEOUT_SEC
from errors import ReaderError

log = logging.getLogger("card_reader")

SUCCESS_STATUSES = ("SUCCESS", "OK")
DRAW_COMMAND = {"command": "draw_card"}
RESET_WAIT_SEC = 1.8  # UNO R4 resets on open


def auto_find_serial():
    """First macOS/Linux USB modem-looking device, if any."""
    cands = sorted(glob.glob("/dev/tty.usbmodem*") + glob.glob("/dev/ttyACM*"))
    return cands[0] if cands else None


def parse_status(line: str) -> Optional[str]:
    """Status from a reader line: JSON {"status": ...} or a bare word. None = not a status line."""
    line = line.strip()
    if not line:
        return None
    if line.startswith("{"):
        try:
            j = json.loads(line)
        except json.JSONDecodeError:
            return None
        status = j.get("status") if isinstance(j, dict) else None
        return str(status).upper() if status is not None else None
    return line.upper()


class CardReader:
    def __init__(self, port: Optional[str] = None, baud: int = READER_BAUD,
                 timeout: float = READER_TIMEOUT_SEC, reset_wait: float = RESET_WAIT_SEC):
        self.port = port or READER_PORT or auto_find_serial()
        self.baud = baud
        self.timeout = timeout
        self.reset_wait = reset_wait
        self.ser = None
        self._io_lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self.ser is not None

    def connect(self):
        if self.ser is not None:
            return
        if not self.port:
            raise ReaderError("no card reader serial port configured/found")
        log.info("Opening card reader: %s @ %d", self.port, self.baud)
        try:
            self.ser = serial.serial_for_url(self.port, self.baud, timeout=0.2, write_timeout=1.0)
        except (serial.SerialException, ValueError) as e:
            raise ReaderError(f"could not open {self.port}: {e}") from e
        if self.reset_wait:
            time.sleep(self.reset_wait)
        log.info("Card reader connected.")

    def close(self):
        ser, self.ser = self.ser, None
        if ser is None:
            return
        try:
            ser.close()
        except serial.SerialException as e:
            log.warning("Card reader close failed: %r", e)
        log.info("Card reader closed.")

    async def draw_card(self) -> str:
        if self.ser is None:
            raise ReaderError("card reader not connected")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._draw_blocking)

    def _draw_blocking(self) -> str:
        with self._io_lock:
            ser = self.ser
            if ser is None:
                raise ReaderError("card reader not connected")
            try:
                ser.reset_input_buffer()
                ser.write((json.dumps(DRAW_COMMAND, separators=(",", ":")) + "\n").encode())
                status = self._await_status(ser)
            except serial.SerialException as e:
                raise ReaderError(f"serial I/O failed: {e}") from e
        if status not in SUCCESS_STATUSES:
            raise ReaderError(f"card reader reported {status}")
        log.info("Card drawn (%s)", status)
        return status

    def _await_status(self, ser) -> str:
        buf = bytearray()
        deadline = time.monotonic() + self.timeout
        while time.monotonic() < deadline:
            chunk = ser.read(256)
            if not chunk:
                continue
            buf.extend(chunk)
            while True:
                nl = buf.find(b"\n")
                if nl == -1:
                    break
                line = buf[:nl].decode(errors="ignore")
                del buf[:nl + 1]
                status = parse_status(line)
                if status is not None:
                    return status
                log.debug("reader: ignoring %r", line)
        raise ReaderError(f"no status from card reader within {self.timeout:.1f}s")


class SimCardReader:
    """Stand-in when no dispenser is attached: always draws."""

    def __init__(self):
        self.is_connected = False
        self.draws = 0

    def connect(self):
        self.is_connected = True
        log.info("Simulated card reader connected")

    def close(self):
        self.is_connected = False

    async def draw_card(self) -> str:
        if not self.is_connected:
            raise ReaderError("card reader not connected")
        self.draws += 1
        return "SUCCESS"
