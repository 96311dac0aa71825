import json
import random

from color_classify import DetectionResult
from display_link import DisplayLink


class FakeWS:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send(self, data):
        if self.fail:
            raise OSError("broken pipe")
        self.sent.append(json.loads(data))


def _connected_link(ws, events=None):
    link = DisplayLink(url="ws://display.test:8089", on_event=(events.append if events is not None else None))
    link._ws = ws
    link._connected.set()
    return link


def test_send_without_connection_is_skipped() -> None:
    events = []
    link = DisplayLink(url="ws://display.test:8089", on_event=events.append)
    assert link.send_json({"command": "ping"}) is False
    assert any("not connected" in e for e in events)


def test_card_drawn_payload() -> None:
    ws = FakeWS()
    link = _connected_link(ws)
    assert link.send_card_drawn(DetectionResult("yellow", 2, (900, 400), 1.0))
    assert ws.sent == [{"command": "card_drawn",
                        "data": {"name": "yellow card", "color": "yellow", "numBoxes": 2,
                                 "areas": [900, 400], "confidence": 1.0}}]


def test_card_not_detected_payload() -> None:
    ws = FakeWS()
    link = _connected_link(ws)
    assert link.send_card_not_detected("CaptureError: camera not ready")
    assert ws.sent[0] == {"command": "card_not_detected",
                          "data": {"error": "CaptureError: camera not ready"}}


def test_send_failure_returns_false_and_emits() -> None:
    events = []
    link = _connected_link(FakeWS(fail=True), events)
    assert link.send_json({"command": "ping"}) is False
    assert any("send failed" in e for e in events)


def test_open_marks_connected_and_says_hello() -> None:
    ws = FakeWS()
    link = DisplayLink(url="ws://display.test:8089")
    link._ws = ws
    link._retry_count = 4
    link._on_open(ws)
    assert link.is_connected
    assert link._retry_count == 0
    assert ws.sent == [{"command": "hello", "role": "detector"}]

    link._on_close(ws, 1000, "bye")
    assert not link.is_connected


def test_backoff_grows_and_is_capped() -> None:
    rnd = random.Random(7)
    first = [DisplayLink.backoff(2.0, 1, rnd) for _ in range(50)]
    late = [DisplayLink.backoff(2.0, 40, rnd) for _ in range(50)]
    assert all(2.0 * 1.25 * 0.75 <= d <= 2.0 * 1.25 * 1.25 for d in first)
    assert all(2.0 * 5 * 0.75 <= d <= 2.0 * 5 * 1.25 for d in late)


def test_event_hook_errors_do_not_escape() -> None:
    def _boom(_msg):
        raise RuntimeError("hook broke")

    link = DisplayLink(url="ws://display.test:8089", on_event=_boom)
    assert link.send_json({"command": "ping"}) is False
