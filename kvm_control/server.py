"""
HTTP control panel for KVM Control.
Exposes the session controller as a small JSON API for a browser UI.
"""

import asyncio
import logging
from typing import Optional

from aiohttp import web

from .config import Config, get_config, get_local_ip
from .errors import ConfigFieldError, InvalidConfig, InvalidTransition, KvmControlError
from .session import SessionController, create_controller

logger = logging.getLogger(__name__)


class ControlPanelServer:
    """
    JSON control panel over a SessionController.

    Routes:
    - GET  /ping, /status, /config, /presets, /monitors, /url, /logs
    - POST /start, /stop, /presets/{name}
    - PATCH /config
    """

    def __init__(self, controller: SessionController, config: Optional[Config] = None):
        """Initialize the server."""
        self.controller = controller
        self.config = config or get_config()

        self.http_runner: Optional[web.AppRunner] = None

        # Shutdown event
        self.shutdown_event = asyncio.Event()

        self.http_app = web.Application()
        self._setup_http_routes()

    def _setup_http_routes(self) -> None:
        """Setup HTTP routes."""
        router = self.http_app.router
        router.add_get("/ping", self._handle_ping)
        router.add_get("/status", self._handle_status)
        router.add_post("/start", self._handle_start)
        router.add_post("/stop", self._handle_stop)
        router.add_get("/config", self._handle_get_config)
        router.add_patch("/config", self._handle_patch_config)
        router.add_get("/presets", self._handle_presets)
        router.add_post("/presets/{name}", self._handle_apply_preset)
        router.add_get("/monitors", self._handle_monitors)
        router.add_get("/url", self._handle_url)
        router.add_get("/logs", self._handle_logs)

    def _status_response(self, status: int = 200) -> web.Response:
        return web.json_response(self.controller.snapshot(), status=status)

    async def _handle_ping(self, request: web.Request) -> web.Response:
        """Simple ping endpoint."""
        return web.Response(text="pong")

    async def _handle_status(self, request: web.Request) -> web.Response:
        """Return session status."""
        return self._status_response()

    async def _handle_start(self, request: web.Request) -> web.Response:
        port = self.config.port
        if request.can_read_body:
            try:
                body = await request.json()
            except ValueError:
                return web.json_response({"error": "Invalid JSON body"}, status=400)
            if not isinstance(body, dict):
                return web.json_response({"error": "Expected a JSON object"}, status=400)
            port = body.get("port", port)

        try:
            await self.controller.start(port)
        except InvalidTransition as e:
            return web.json_response({"error": str(e)}, status=409)
        except InvalidConfig:
            return self._status_response(status=400)
        except KvmControlError:
            return self._status_response(status=502)

        return self._status_response()

    async def _handle_stop(self, request: web.Request) -> web.Response:
        try:
            await self.controller.stop()
        except InvalidTransition as e:
            return web.json_response({"error": str(e)}, status=409)
        except KvmControlError:
            return self._status_response(status=502)

        return self._status_response()

    async def _handle_get_config(self, request: web.Request) -> web.Response:
        reconciler = self.controller.reconciler
        return web.json_response({
            "settings": reconciler.config.to_dict(),
            "codec": reconciler.selected_codec,
        })

    async def _handle_patch_config(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"error": "Invalid JSON body"}, status=400)

        if not isinstance(body, dict):
            return web.json_response({"error": "Expected a JSON object"}, status=400)

        try:
            self.controller.reconciler.update(body)
        except ConfigFieldError as e:
            return web.json_response({"error": str(e)}, status=400)

        return await self._handle_get_config(request)

    async def _handle_presets(self, request: web.Request) -> web.Response:
        return web.json_response({
            preset.name: dict(preset.values) for preset in self.controller.reconciler.presets
        })

    async def _handle_apply_preset(self, request: web.Request) -> web.Response:
        # Unknown names are ignored, same as the reconciler
        self.controller.reconciler.apply_preset(request.match_info["name"])
        return await self._handle_get_config(request)

    async def _handle_monitors(self, request: web.Request) -> web.Response:
        registry = self.controller.monitors
        return web.json_response({
            "monitors": [monitor.to_dict() for monitor in registry.monitors],
            "selected": self.controller.reconciler.config.selected_monitor,
            "error": registry.last_error,
        })

    async def _handle_url(self, request: web.Request) -> web.Response:
        return web.json_response({"url": self.controller.connection_url()})

    async def _handle_logs(self, request: web.Request) -> web.Response:
        try:
            debug_log, error_log = await self.controller.get_logs()
        except KvmControlError as e:
            return web.json_response({"error": str(e)}, status=502)
        return web.json_response({"debug": debug_log, "error": error_log})

    async def start(self) -> None:
        """Start the HTTP server and the status poll."""
        await self.controller.poll()
        self.controller.start_polling()

        self.http_runner = web.AppRunner(self.http_app)
        await self.http_runner.setup()
        site = web.TCPSite(self.http_runner, self.config.panel_host, self.config.panel_port)
        await site.start()

        display_host = self.config.panel_host
        if display_host == "0.0.0.0":
            display_host = get_local_ip()

        print(f"\n🖥️  KVM Control panel started!")
        print(f"   Panel:   http://{display_host}:{self.config.panel_port}/status")
        print(f"   Backend: {self.config.backend_endpoint}\n")

    async def stop(self) -> None:
        """Stop the HTTP server and the status poll."""
        if self.http_runner:
            await self.http_runner.cleanup()
            self.http_runner = None

        await self.controller.close()

        print("\n🖥️  KVM Control panel stopped.\n")

    async def run_forever(self) -> None:
        """Run the panel until interrupted."""
        await self.start()

        try:
            await self.shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()


def run_server(config: Optional[Config] = None) -> None:
    """Run the control panel (blocking)."""
    config = config or get_config()
    server = ControlPanelServer(create_controller(config), config)

    try:
        asyncio.run(server.run_forever())
    except KeyboardInterrupt:
        print("\nShutting down...")
