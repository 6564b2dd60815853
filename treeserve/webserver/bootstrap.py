"""
Transport Bootstrap Module.

Creates the listeners for a resolved ServerConfig and runs them on one
asyncio event loop:

    plain:  HTTP listener on (host, http_port) serving static content
    tls:    HTTPS listener on (host, https_port) serving static content,
            plus an HTTP listener on (host, http_port) redirecting to it

Each listener is supervised independently; a listener that cannot bind
is marked FAILED and logged without affecting the others. Unreadable TLS
credentials are fatal and propagate out of build().
"""

import asyncio
import contextlib
import enum
from dataclasses import dataclass
from typing import Callable, List, Optional

import uvicorn
from fastapi import FastAPI

from treeserve.core.logging_config import get_logger
from treeserve.services.socket_server import SyncOptions, make_socket_server
from treeserve.webserver.config import (
    PlainTransport,
    ServerConfig,
    TLSLoadError,
    TlsTransport,
)
from treeserve.webserver.server import create_app, create_redirect_app

logger = get_logger(__name__)

SyncFactory = Callable[[FastAPI, SyncOptions], object]


class ListenerState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    FAILED = "failed"


@dataclass(frozen=True)
class TlsCredentials:
    """
    Key and certificate paths that were checked to be readable.

    uvicorn loads the material itself from these paths.
    """

    key_path: str
    cert_path: str


def load_tls_credentials(transport: TlsTransport) -> TlsCredentials:
    """
    Checks the TLS key and certificate can be read from disk.

    Read errors are not caught; a misconfigured TLS setup stops the
    process before any listener exists.

    Raises:
        TLSLoadError: If no certificate path was given with the key.
        OSError: If either file cannot be read.
    """
    if not transport.cert_path:
        raise TLSLoadError("--sslCert is required when --sslKey is given")
    for path in (transport.key_path, transport.cert_path):
        with open(path, "rb") as f:
            f.read(1)
    return TlsCredentials(transport.key_path, transport.cert_path)


class _ListenerServer(uvicorn.Server):
    """uvicorn Server reporting back once its socket is bound."""

    def __init__(self, config: uvicorn.Config, on_started: Callable[[], None]) -> None:
        super().__init__(config)
        self._on_started = on_started

    def capture_signals(self):
        # Several servers share one loop; swapping process signal handlers
        # per server would leave them pointing at whichever exited last.
        return contextlib.nullcontext()

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            self._on_started()


class Listener:
    """
    One bound socket and the app it serves.
    """

    def __init__(
        self,
        name: str,
        app: FastAPI,
        host: str,
        port: int,
        credentials: Optional[TlsCredentials] = None,
    ) -> None:
        """
        Args:
            name: Label used in log messages, e.g. "HTTP" or "HTTPS".
            app: ASGI application to serve.
            host: Interface or hostname to bind.
            port: Port to bind.
            credentials: TLS key/cert; None for a plain listener.
        """
        self.name = name
        self.app = app
        self.host = host
        self.port = port
        self.credentials = credentials
        self.state = ListenerState.IDLE
        self.error: Optional[BaseException] = None

        uv_config = uvicorn.Config(
            app,
            host=host,
            port=port,
            ssl_keyfile=credentials.key_path if credentials else None,
            ssl_certfile=credentials.cert_path if credentials else None,
            log_config=None,
            log_level="info",
            loop="asyncio",
        )
        if credentials:
            # Builds the SSL context now so bad key material fails startup
            uv_config.load()
        self.server = _ListenerServer(uv_config, self._on_bound)

    @property
    def scheme(self) -> str:
        return "https" if self.credentials else "http"

    @property
    def address(self) -> Optional[tuple]:
        """Effective (address, port) once listening."""
        for server in getattr(self.server, "servers", []):
            for sock in server.sockets:
                return sock.getsockname()[:2]
        return None

    def _on_bound(self) -> None:
        self.state = ListenerState.LISTENING
        address = self.address or (self.host, self.port)
        logger.info(
            f"{self.name} listening on {self.scheme}://{address[0]}:{address[1]}"
        )

    async def serve(self) -> None:
        """
        Binds and serves until asked to exit.

        Never raises for a bind failure: the listener is marked FAILED and
        the error is logged.
        """
        self.state = ListenerState.STARTING
        try:
            await self.server.serve()
        except (OSError, SystemExit) as e:
            # uvicorn logs the OSError and exits with SystemExit(1) on bind errors
            self.state = ListenerState.FAILED
            self.error = e
            logger.error(
                f"{self.name} listener failed to bind {self.host}:{self.port}: {e}"
            )
            return
        if self.state is not ListenerState.LISTENING:
            self.state = ListenerState.FAILED
            logger.error(f"{self.name} listener on {self.host}:{self.port} did not start")

    def request_exit(self) -> None:
        self.server.should_exit = True


class TransportBootstrapper:
    """
    Builds and runs the listeners for one ServerConfig.
    """

    def __init__(
        self,
        config: ServerConfig,
        sync_factory: SyncFactory = make_socket_server,
    ) -> None:
        self.config = config
        self.sync_factory = sync_factory
        self.listeners: List[Listener] = []
        self.content_listener: Optional[Listener] = None
        self.redirect_listener: Optional[Listener] = None
        self.sync_server: Optional[object] = None
        self._built = False

    def build(self) -> List[Listener]:
        """
        Creates the listeners (without binding) and attaches the sync
        endpoint when a backend is configured.

        Returns:
            List[Listener]: The content listener, then the redirect
            listener when TLS is enabled.
        """
        if self._built:
            return self.listeners

        transport = self.config.transport
        host = self.config.host
        if isinstance(transport, TlsTransport):
            credentials = load_tls_credentials(transport)
            self.content_listener = Listener(
                "HTTPS",
                create_app(self.config.static_dir),
                host,
                transport.port,
                credentials=credentials,
            )
            self.redirect_listener = Listener(
                "HTTP", create_redirect_app(), host, transport.redirect_port
            )
        elif isinstance(transport, PlainTransport):
            self.content_listener = Listener(
                "HTTP", create_app(self.config.static_dir), host, transport.port
            )
        else:
            raise TypeError(f"Unsupported transport mode: {transport!r}")

        self.listeners = [self.content_listener]
        if self.redirect_listener is not None:
            self.listeners.append(self.redirect_listener)

        self.sync_server = attach_sync_endpoint(
            self.config, self.content_listener, self.sync_factory
        )
        self._built = True
        return self.listeners

    async def serve(self) -> None:
        """Runs every listener concurrently until all of them have stopped."""
        listeners = self.build()
        logger.info("Starting production server")
        await asyncio.gather(*(self._supervise(listener) for listener in listeners))

    async def _supervise(self, listener: Listener) -> None:
        await listener.serve()
        if listener.state is ListenerState.LISTENING:
            # Stopped on request; take the others down with it
            for other in self.listeners:
                if other is not listener:
                    other.request_exit()

    def run(self) -> None:
        asyncio.run(self.serve())


def attach_sync_endpoint(
    config: ServerConfig,
    listener: Listener,
    factory: SyncFactory = make_socket_server,
) -> Optional[object]:
    """
    Mounts the sync endpoint on the content listener's app.

    Does nothing when no backend is configured. The backend settings are
    forwarded to the factory unchanged.

    Returns:
        The object returned by the factory, or None when not attached.
    """
    backend = config.backend
    if backend is None:
        return None
    options = SyncOptions(
        kind=backend.kind,
        folder=backend.folder,
        password=backend.password,
        path=config.socket_path,
    )
    logger.info(f"Attaching {backend.kind.value} sync endpoint to {listener.name} listener")
    return factory(listener.app, options)
