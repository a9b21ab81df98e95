"""Loopback HTTP endpoint that accepts pushed usage snapshots."""

import errno
import json
import socket
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from usage_relay.logger import get_logger
from usage_relay.models import UsageSnapshot
from usage_relay.store import EphemeralFileStore, Subscriber

log = get_logger("server")

USAGE_PATH = "/usage"
ADDRESS_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _notify(subscriber: Subscriber | None, snapshot: UsageSnapshot):
    if subscriber is None:
        return
    try:
        subscriber(snapshot)
    except Exception:
        log.exception("subscriber_failed")


def create_app(store: EphemeralFileStore, subscriber: Subscriber | None = None) -> FastAPI:
    """Build the relay app.

    The push body only has to be JSON. It is persisted verbatim and handed to
    the subscriber through the lenient :meth:`UsageSnapshot.from_dict`, so a
    payload such as ``{}`` is accepted rather than re-validated here.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.try_rehydrate(lambda snapshot: _notify(subscriber, snapshot))
        yield
        store.stop()
        log.info("relay_stopped")

    app = FastAPI(title="usage-relay", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

    @app.middleware("http")
    async def single_route(request: Request, call_next):
        if request.method == "OPTIONS":
            response = Response(status_code=204)
        elif request.method == "POST" and request.url.path == USAGE_PATH:
            response = await call_next(request)
        else:
            response = Response(status_code=404)
        response.headers.update(CORS_HEADERS)
        return response

    @app.post(USAGE_PATH)
    async def push_usage(request: Request):
        body = await request.body()
        try:
            payload = json.loads(body)
        except ValueError:
            log.warning("push_rejected", size=len(body))
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)

        store.write(payload)
        _notify(subscriber, UsageSnapshot.from_dict(payload))
        return {"success": True}

    return app


class LocalRelayServer:
    """Serves :func:`create_app` on a loopback socket it binds itself.

    Binding up front lets an occupied port be reported as "another instance
    is already serving" instead of uvicorn exiting the process.
    """

    def __init__(
        self,
        store: EphemeralFileStore,
        subscriber: Subscriber | None = None,
        host: str = "127.0.0.1",
        port: int = 19876,
    ):
        self.store = store
        self.host = host
        self.port = port
        self.app = create_app(store, subscriber)

    def bind(self) -> socket.socket | None:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        if sys.platform != "win32":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as exc:
            sock.close()
            if exc.errno in ADDRESS_IN_USE:
                log.info("relay_port_in_use", host=self.host, port=self.port)
                return None
            raise
        return sock

    def serve(self) -> bool:
        """Run until interrupted. Returns False if the port was already taken."""
        sock = self.bind()
        if sock is None:
            return False
        config = uvicorn.Config(self.app, log_config=None, access_log=False)
        server = uvicorn.Server(config)
        log.info("relay_listening", host=self.host, port=self.port, path=str(self.store.path))
        try:
            server.run(sockets=[sock])
        finally:
            sock.close()
        return True
