"""
HTTP surface of the handoff channel, served over a Unix socket.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from typing import Optional

from fastapi import FastAPI

from ..errors import IPCTransportError
from .protocol import Ack, AddWorkItemRequest, HandoffHandler, ProbeReply

LOG = logging.getLogger(__name__)

STARTUP_TIMEOUT_S = 5.0
SHUTDOWN_TIMEOUT_S = 5.0


def create_handoff_app(handler: HandoffHandler) -> FastAPI:
    app = FastAPI(title="mediacore handoff channel", docs_url=None, redoc_url=None, openapi_url=None)

    @app.post("/probe", response_model=ProbeReply)
    def probe() -> ProbeReply:
        return handler.probe()

    @app.post("/work-items", response_model=Ack)
    def add_work_item(payload: AddWorkItemRequest) -> Ack:
        try:
            return handler.add_work_item(payload)
        except Exception as exc:
            LOG.exception("Handoff of '%s' failed", payload.reference)
            return Ack(ok=False, error=str(exc))

    return app


class HandoffServer:
    """
    Runs the handoff app with uvicorn on an already bound socket.
    """

    def __init__(self, handler: HandoffHandler, sock: socket.socket) -> None:
        import uvicorn

        self._sock = sock
        config = uvicorn.Config(
            app=create_handoff_app(handler),
            log_config=None,
            log_level="warning",
            lifespan="off",
            access_log=False,
        )
        self._server = uvicorn.Server(config=config)
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._server.run,
            kwargs={"sockets": [self._sock]},
            name="handoff-server",
            daemon=True,
        )
        self._thread.start()
        deadline = time.monotonic() + STARTUP_TIMEOUT_S
        while not self._server.started:
            if not self._thread.is_alive():
                raise IPCTransportError("handoff server exited during startup")
            if time.monotonic() > deadline:
                self.stop()
                raise IPCTransportError("handoff server did not start in time")
            time.sleep(0.01)

    def stop(self) -> None:
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(SHUTDOWN_TIMEOUT_S)
            if self._thread.is_alive():
                LOG.warning("Handoff server did not stop within %.1fs", SHUTDOWN_TIMEOUT_S)
            self._thread = None
