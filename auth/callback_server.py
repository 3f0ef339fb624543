from __future__ import annotations

import asyncio
import html
import logging
import socket
import sys
from typing import Awaitable, Callable

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Route

from auth.urls import LoopbackAddress

LOGGER = logging.getLogger("gitmcp.oauth")

CallbackHandler = Callable[[dict[str, str]], Awaitable[None]]

_PAGE_TEMPLATE = """<html>
  <head><title>{title}</title></head>
  <body style="font-family: sans-serif; text-align: center; padding: 50px;">
    <h1>{title}</h1>
    <p>{message}</p>
    <script>setTimeout(() => window.close(), 2000);</script>
  </body>
</html>
"""


def render_page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        _PAGE_TEMPLATE.format(title=html.escape(title), message=html.escape(message)),
        status_code=status_code,
    )


def build_callback_app(path: str, on_callback: CallbackHandler) -> Starlette:
    async def callback_route(request: Request) -> Response:
        params = {key: value for key, value in request.query_params.items()}
        try:
            await on_callback(params)
        except Exception as error:
            LOGGER.warning("OAuth callback rejected: %s", error)
            return render_page("Authentication Failed", str(error), 400)
        return render_page("Authentication Successful!", "You can now close this window.")

    return Starlette(routes=[Route(path, callback_route, methods=["GET"])])


class CallbackListener:
    """Serves the OAuth redirect URI on a loopback port for one attempt.

    The socket is bound before uvicorn starts so that a busy port surfaces as
    an ``OSError`` to the caller, and it is always closed on exit.
    """

    def __init__(
        self,
        address: LoopbackAddress,
        on_callback: CallbackHandler,
        *,
        poll_interval: float = 0.01,
    ) -> None:
        self.address = address
        self.app = build_callback_app(address.path, on_callback)
        self._poll_interval = poll_interval
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        if sys.platform != "win32":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.address.host, self.address.port))
        except OSError:
            sock.close()
            raise
        self._socket = sock

        config = uvicorn.Config(
            self.app,
            log_config=None,
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                await self.stop()
                raise RuntimeError("OAuth callback listener stopped during startup.")
            await asyncio.sleep(self._poll_interval)

        LOGGER.info(
            "OAuth callback server started on http://%s:%s%s",
            self.address.host,
            self.address.port,
            self.address.path,
        )

    async def stop(self) -> None:
        try:
            if self._server is not None:
                self._server.should_exit = True
            if self._task is not None:
                await self._task
        finally:
            if self._socket is not None:
                self._socket.close()
            self._socket = None
            self._server = None
            self._task = None
            LOGGER.debug("OAuth callback server stopped")

    async def __aenter__(self) -> "CallbackListener":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
