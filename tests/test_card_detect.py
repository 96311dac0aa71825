import asyncio

import cv2

import calibrate_cli
import card_detect
from card_reader import SimCardReader
from detector import PipelineContext
from errors import ReaderError

from conftest import BGR, FakeRig, make_frame


class FakeDisplay:
    def __init__(self):
        self.drawn = []
        self.failed = []
        self.url = "ws://fake"
        self.is_connected = True

    def send_card_drawn(self, result):
        self.drawn.append(result)
        return True

    def send_card_not_detected(self, error):
        self.failed.append(error)
        return True


class JammedReader:
    async def draw_card(self):
        raise ReaderError("card reader reported JAMMED")


def _ready_ctx(frame):
    ctx = PipelineContext(opener=FakeRig({"cam1": make_frame(), "cam2": frame}), capture_timeout=0.5)
    return ctx


def test_draw_then_detect_pushes_result_to_display() -> None:
    ctx = _ready_ctx(make_frame([(BGR["blue"], 60, 60, 0, 0)]))
    reader = SimCardReader(); reader.connect()
    display = FakeDisplay()

    async def _run():
        await ctx.initialize_detection("cam1", "cam2")
        return await card_detect.draw_and_detect(ctx, reader, display, settle_ms=0)

    result = asyncio.run(_run())
    assert result.color == "blue"
    assert display.drawn == [result]
    assert reader.draws == 1
    card_detect.render_dashboard(ctx, display, result, draws=1)


def test_reader_failure_skips_detection() -> None:
    ctx = _ready_ctx(make_frame([(BGR["blue"], 60, 60, 0, 0)]))
    display = FakeDisplay()

    async def _run():
        await ctx.initialize_detection("cam1", "cam2")
        return await card_detect.draw_and_detect(ctx, JammedReader(), display, settle_ms=0)

    assert asyncio.run(_run()) is None
    assert ctx.get_debug_data() is None
    assert display.failed and "JAMMED" in display.failed[0]


def test_detection_failure_is_reported_not_raised() -> None:
    ctx = _ready_ctx(None)
    ctx.capture_timeout = 0.2
    reader = SimCardReader(); reader.connect()
    display = FakeDisplay()

    async def _run():
        await ctx.initialize_detection("cam1", "cam2")
        return await card_detect.draw_and_detect(ctx, reader, display, settle_ms=0)

    assert asyncio.run(_run()) is None
    assert display.failed and "cam2" in display.failed[0]
    assert ctx.get_debug_data().error is not None
    card_detect.render_dashboard(ctx, None)


def test_classify_file(tmp_path, capsys) -> None:
    path = str(tmp_path / "card.png")
    cv2.imwrite(path, make_frame([(BGR["green"], 60, 60, 0, 0)]))
    assert card_detect.classify_file(path) == 0
    assert "green" in capsys.readouterr().out
    assert card_detect.classify_file(str(tmp_path / "missing.png")) == 1


def test_calibrate_profile_hits() -> None:
    assert calibrate_cli.profile_hits((2, 200, 200)) == ["red"]
    assert calibrate_cli.profile_hits((176, 200, 200)) == ["red"]
    assert calibrate_cli.profile_hits((60, 200, 200)) == ["green"]
    assert calibrate_cli.profile_hits((60, 10, 200)) == []


def test_calibrate_image_saves_masks(tmp_path, capsys) -> None:
    img = str(tmp_path / "card.png")
    cv2.imwrite(img, make_frame([(BGR["yellow"], 200, 150, 0, 0)]))
    out = tmp_path / "calib"
    assert calibrate_cli.main(["--image", img, "--save", str(out)]) == 0
    text = capsys.readouterr().out
    assert "yellow" in text
    assert (out / "crop.png").exists()
    assert (out / "mask_yellow.png").exists()
