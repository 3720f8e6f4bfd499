"""
Transports carrying the handoff protocol.

A transport offers three operations: :meth:`Transport.claim` tries to become
the holder of a channel name, :meth:`Transport.probe` and
:meth:`Transport.add_work_item` talk to the current holder.  Calls to the
holder block without a timeout.
"""

from __future__ import annotations

import errno
import logging
import os
import socket
import threading
from pathlib import Path
from typing import Dict, Optional, Type, TypeVar

import httpx

from ..errors import IPCTransportError
from ..utils.paths import runtime_dir
from .protocol import Ack, AddWorkItemRequest, HandoffHandler, ProbeReply

LOG = logging.getLogger(__name__)

LIVENESS_TIMEOUT_S = 1.0

ModelT = TypeVar("ModelT", ProbeReply, Ack)


class ChannelClaim:
    """
    Ownership of a channel name.  Releasing it lets another process claim it.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        self._release()

    def _release(self) -> None:
        """
        Give the name back.  Subclasses override when required.
        """


class Transport:
    """
    Base class for handoff transports.
    """

    def claim(self, name: str, handler: HandoffHandler) -> Optional[ChannelClaim]:
        """
        Become the holder of ``name``; ``None`` when somebody else holds it.
        """

        raise NotImplementedError

    def probe(self, name: str) -> ProbeReply:
        raise NotImplementedError

    def add_work_item(self, name: str, request: AddWorkItemRequest) -> Ack:
        raise NotImplementedError


# --------------------------------------------------------------------------- in-process


class _MemoryClaim(ChannelClaim):
    def __init__(self, bus: "MemoryBus", name: str) -> None:
        super().__init__(name)
        self._bus = bus

    def _release(self) -> None:
        self._bus._drop(self.name)


class MemoryBus(Transport):
    """
    Channel registry shared by instances living in the same process.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holders: Dict[str, HandoffHandler] = {}

    def holder(self, name: str) -> Optional[HandoffHandler]:
        with self._lock:
            return self._holders.get(name)

    def claim(self, name: str, handler: HandoffHandler) -> Optional[ChannelClaim]:
        with self._lock:
            if name in self._holders:
                return None
            self._holders[name] = handler
        return _MemoryClaim(self, name)

    def _drop(self, name: str) -> None:
        with self._lock:
            self._holders.pop(name, None)

    def _require_holder(self, name: str) -> HandoffHandler:
        handler = self.holder(name)
        if handler is None:
            raise IPCTransportError(f"nobody holds channel '{name}'")
        return handler

    def probe(self, name: str) -> ProbeReply:
        handler = self._require_holder(name)
        try:
            return handler.probe()
        except Exception as exc:
            raise IPCTransportError(f"probe of '{name}' failed: {exc}") from exc

    def add_work_item(self, name: str, request: AddWorkItemRequest) -> Ack:
        handler = self._require_holder(name)
        try:
            return handler.add_work_item(request)
        except Exception as exc:
            raise IPCTransportError(f"handoff to '{name}' failed: {exc}") from exc


# --------------------------------------------------------------------------- unix socket


class _SocketClaim(ChannelClaim):
    def __init__(self, name: str, path: Path, sock: socket.socket, server) -> None:
        super().__init__(name)
        self.path = path
        self._sock = sock
        self._server = server

    def _release(self) -> None:
        try:
            self._server.stop()
        finally:
            self._sock.close()
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                LOG.warning("Cannot remove channel socket %s: %s", self.path, exc)


class UnixSocketTransport(Transport):
    """
    One Unix socket per channel name in the session runtime directory.

    The holder serves the handoff app (see :mod:`mediacore.ipc.server`);
    callers speak HTTP over the socket with ``httpx``.
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self.directory = Path(directory) if directory is not None else runtime_dir()

    def address(self, name: str) -> Path:
        return self.directory / f"{name}.sock"

    @staticmethod
    def _is_alive(path: Path) -> bool:
        probe = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        probe.settimeout(LIVENESS_TIMEOUT_S)
        try:
            probe.connect(str(path))
        except OSError:
            return False
        finally:
            probe.close()
        return True

    def _bind(self, path: Path) -> Optional[socket.socket]:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(str(path))
        except OSError as exc:
            sock.close()
            if exc.errno != errno.EADDRINUSE:
                raise IPCTransportError(f"cannot bind channel socket {path}: {exc}") from exc
            if self._is_alive(path):
                return None
            LOG.info("Removing stale channel socket %s", path)
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            return self._bind(path)
        sock.listen(16)
        return sock

    def claim(self, name: str, handler: HandoffHandler) -> Optional[ChannelClaim]:
        from .server import HandoffServer

        try:
            self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise IPCTransportError(f"cannot create runtime directory {self.directory}: {exc}") from exc

        path = self.address(name)
        sock = self._bind(path)
        if sock is None:
            return None
        os.chmod(path, 0o600)
        server = HandoffServer(handler, sock)
        try:
            server.start()
        except IPCTransportError:
            sock.close()
            path.unlink(missing_ok=True)
            raise
        return _SocketClaim(name, path, sock, server)

    def _client(self, name: str) -> httpx.Client:
        transport = httpx.HTTPTransport(uds=str(self.address(name)))
        return httpx.Client(transport=transport, base_url="http://mediacore", timeout=None)

    def _call(self, name: str, endpoint: str, model: Type[ModelT], payload: Optional[dict] = None) -> ModelT:
        try:
            with self._client(name) as client:
                response = client.post(endpoint, json=payload or {})
                response.raise_for_status()
                return model.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            raise IPCTransportError(f"{endpoint} on channel '{name}' failed: {exc}") from exc

    def probe(self, name: str) -> ProbeReply:
        return self._call(name, "/probe", ProbeReply)

    def add_work_item(self, name: str, request: AddWorkItemRequest) -> Ack:
        return self._call(name, "/work-items", Ack, request.model_dump())
