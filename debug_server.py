# debug_server.py — read-only HTTP view of the detector (snapshot, masks, board still)
import asyncio, logging
import cv2
from aiohttp import web  # pip install aiohttp

from config import DEBUG_HTTP_HOST, DEBUG_HTTP_PORT
from errors import DetectionError

log = logging.getLogger("debug_server")


def _encode(img, ext):
    ok, buf = cv2.imencode(ext, img)
    if not ok:
        raise web.HTTPInternalServerError(text=f"could not encode {ext}")
    return buf.tobytes()


def build_app(ctx) -> web.Application:
    """Routes over a PipelineContext; nothing here mutates detection state."""
    app = web.Application()

    async def _health(_req):
        return web.Response(text="ok")

    async def _cameras(_req):
        # probing opens every candidate device; keep that off the loop
        cams = await asyncio.get_running_loop().run_in_executor(None, ctx.list_cameras)
        return web.json_response({"cameras": [c.to_dict() for c in cams]})

    async def _debug(_req):
        snap = ctx.get_debug_data()
        return web.json_response({"snapshot": snap.to_dict() if snap else None,
                                  "state": ctx.state.value, "ready": ctx.ready})

    async def _source(_req):
        snap = ctx.get_debug_data()
        if snap is None or snap.source is None:
            raise web.HTTPNotFound(text="no source crop recorded")
        return web.Response(body=_encode(snap.source, ".png"), content_type="image/png")

    async def _mask(req):
        color = req.match_info["color"]
        snap = ctx.get_debug_data()
        mask = snap.masks.get(color) if snap else None
        if mask is None:
            raise web.HTTPNotFound(text=f"no mask for {color}")
        return web.Response(body=_encode(mask, ".png"), content_type="image/png")

    async def _board(_req):
        try:
            frame = await ctx.capture_board()
        except DetectionError as e:
            raise web.HTTPServiceUnavailable(text=str(e))
        return web.Response(body=_encode(frame.pixels, ".jpg"), content_type="image/jpeg")

    app.add_routes([
        web.get("/health", _health),
        web.get("/healthz", _health),
        web.get("/cameras", _cameras),
        web.get("/debug", _debug),
        web.get("/debug/source.png", _source),
        web.get("/debug/mask/{color}.png", _mask),
        web.get("/board.jpg", _board),
    ])
    return app


class DebugServer:
    def __init__(self, ctx, host: str = DEBUG_HTTP_HOST, port: int = DEBUG_HTTP_PORT):
        self.ctx = ctx
        self.host = host
        self.port = port
        self._runner = None

    async def start(self):
        if self._runner is not None or not self.port:
            return
        self._runner = web.AppRunner(build_app(self.ctx))
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("Debug bridge listening on http://%s:%d  (GET /debug)", self.host, self.port)

    async def stop(self):
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
