"""
Socket Server Module.

Real-time sync endpoint for document clients. A client opens a WebSocket,
joins a document with the server password, then reads and writes keys of
that document's store. Every request carries an ``id`` that is echoed in
the matching ``callback`` reply.

Request types:
    join: {"type": "join", "id", "docname", "clientId", "password"}
    get:  {"type": "get", "id", "key"}
    set:  {"type": "set", "id", "key", "value"}
"""

import asyncio
import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI
from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from treeserve.core.logging_config import get_logger
from treeserve.services.sync_store import (
    InvalidDocnameError,
    StoreRegistry,
    validate_docname,
)
from treeserve.webserver.config import BackendKind

logger = get_logger(__name__)


@dataclass(frozen=True)
class SyncOptions:
    """Options handed to make_socket_server by the sync attachment."""

    kind: BackendKind
    folder: Optional[str]
    password: Optional[str]
    path: str


class _Session:
    """State of one connected client."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.docname: Optional[str] = None
        self.client_id: Optional[str] = None


class SyncServer:
    """
    Serves the sync protocol for every client connected to one endpoint.
    """

    def __init__(self, options: SyncOptions) -> None:
        self.options = options
        self.registry = StoreRegistry(options.kind, options.folder)
        self._password = options.password or ""
        # docname -> sessions joined to it
        self._joined: Dict[str, Dict[int, _Session]] = {}
        # Store calls run on one worker thread, off the listeners' event loop
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync-store")

    async def endpoint(self, websocket: WebSocket) -> None:
        """WebSocket endpoint; runs for the lifetime of one connection."""
        await websocket.accept()
        session = _Session(websocket)
        logger.debug(f"Sync client connected from {websocket.client}")
        try:
            while True:
                text = await websocket.receive_text()
                reply = await self._dispatch(session, text)
                if reply is not None:
                    await websocket.send_text(json.dumps(reply))
        except WebSocketDisconnect:
            logger.debug(f"Sync client {session.client_id} disconnected")
        finally:
            self._leave(session)

    async def _run_store(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    async def _dispatch(self, session: _Session, text: str) -> Optional[Dict[str, Any]]:
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Dropping malformed sync message")
            return _callback(None, error="Malformed message")
        if not isinstance(message, dict):
            return _callback(None, error="Malformed message")

        msg_id = message.get("id")
        msg_type = message.get("type")

        if msg_type == "join":
            return await self._join(session, message)

        if session.docname is None:
            return _callback(msg_id, error="Not joined to a document")

        store = await self._run_store(self.registry.get_store, session.docname)
        if msg_type == "get":
            result = await self._run_store(store.get, str(message.get("key")))
            return _callback(msg_id, result=result)
        if msg_type == "set":
            value = message.get("value")
            if not isinstance(value, str):
                value = json.dumps(value)
            await self._run_store(store.set, str(message.get("key")), value)
            return _callback(msg_id)

        return _callback(msg_id, error=f"Unknown message type: {msg_type!r}")

    async def _join(self, session: _Session, message: Dict[str, Any]) -> Dict[str, Any]:
        msg_id = message.get("id")
        if (message.get("password") or "") != self._password:
            logger.warning(f"Rejected sync client {message.get('clientId')}: wrong password")
            return _callback(msg_id, error="Wrong password!")
        try:
            docname = validate_docname(message.get("docname"))
        except InvalidDocnameError as e:
            return _callback(msg_id, error=str(e))

        self._leave(session)
        session.docname = docname
        session.client_id = message.get("clientId")

        peers = self._joined.setdefault(docname, {})
        notice = json.dumps({"type": "joined", "clientId": session.client_id})
        for peer in list(peers.values()):
            try:
                await peer.websocket.send_text(notice)
            except (RuntimeError, WebSocketDisconnect):
                logger.debug(f"Could not notify sync client {peer.client_id}")
        peers[id(session)] = session

        # Open the store now so backend errors surface on join
        await self._run_store(self.registry.get_store, docname)
        logger.info(f"Sync client {session.client_id} joined document {docname!r}")
        return _callback(msg_id)

    def _leave(self, session: _Session) -> None:
        if session.docname is None:
            return
        peers = self._joined.get(session.docname, {})
        peers.pop(id(session), None)
        if not peers:
            self._joined.pop(session.docname, None)
        session.docname = None


def _callback(msg_id: Any, result: Any = None, error: Optional[str] = None) -> Dict[str, Any]:
    return {"type": "callback", "id": msg_id, "result": result, "error": error}


def make_socket_server(app: FastAPI, options: SyncOptions) -> SyncServer:
    """
    Mounts a sync endpoint on an application.

    The route is placed ahead of every other route so a catch-all static
    mount cannot shadow it.

    Args:
        app: The application served by the chosen listener.
        options: Backend selection, password and mount path.

    Returns:
        SyncServer: The server handling the mounted endpoint.
    """
    server = SyncServer(options)
    app.router.routes.insert(0, WebSocketRoute(options.path, endpoint=server.endpoint))
    logger.info(f"Sync endpoint ({options.kind.value} backend) mounted at {options.path}")
    return server
