"""
Nostr relay transport over WebSockets.

An asyncio loop runs in a daemon thread; each session gets its own
connection task. The owner thread only schedules work onto the loop and
hears back through the TransportListener.
"""

import asyncio
import concurrent.futures
import json
import threading
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import WebSocketException

from ..errors import TransportError
from ..logger import get_logger
from ..utils.canonical_json import canonicalize_bytes
from .base import BaseTransport

log = get_logger(__name__)


class _Connection:
    """One session's relay connection."""

    def __init__(self, session_id: str, endpoint: str, subscription: Dict[str, Any]):
        self.session_id = session_id
        self.endpoint = endpoint
        self.subscription = subscription
        self.sub_id = f"kw-{session_id[:16]}"
        self.future: Optional[concurrent.futures.Future] = None
        self.ws = None


class RelayTransport(BaseTransport):
    name = "relay"

    def __init__(self, open_timeout: float = 10.0):
        super().__init__()
        self.open_timeout = open_timeout
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._connections: Dict[str, _Connection] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Loop management
    # ------------------------------------------------------------------
    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=self._loop.run_forever,
                    name="keyward-relay",
                    daemon=True,
                )
                self._thread.start()
                log.info("Relay I/O loop started")
            return self._loop

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    def connect(self, session_id: str, endpoint: str, subscription: Optional[Dict[str, Any]] = None) -> None:
        loop = self._ensure_loop()
        conn = _Connection(session_id, endpoint, subscription or {})
        with self._lock:
            if session_id in self._connections:
                raise TransportError(f"Session {session_id[:8]}... already has a relay connection")
            # Registered before the coroutine can run, so close() always finds it
            self._connections[session_id] = conn
            conn.future = asyncio.run_coroutine_threadsafe(self._run(conn), loop)

    def send(self, session_id: str, data: bytes) -> None:
        with self._lock:
            conn = self._connections.get(session_id)
            ws = conn.ws if conn is not None else None
        if ws is None or self._loop is None:
            raise TransportError(f"Session {session_id[:8]}... has no open relay connection")

        frame = '["EVENT",' + data.decode('utf-8') + ']'
        future = asyncio.run_coroutine_threadsafe(ws.send(frame), self._loop)
        future.add_done_callback(lambda f: self._on_sent(session_id, f))

    def close(self, session_id: str) -> None:
        with self._lock:
            conn = self._connections.pop(session_id, None)
        if conn is not None:
            conn.future.cancel()
            log.info(f"[RELAY] closing session {session_id[:8]}...")

    def close_all(self) -> None:
        with self._lock:
            session_ids = list(self._connections)
        for session_id in session_ids:
            self.close(session_id)
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._loop.stop)
            if self._thread is not None:
                self._thread.join(timeout=5)
            self._loop = None
            self._thread = None

    def healthz(self) -> dict:
        with self._lock:
            open_count = sum(1 for conn in self._connections.values() if conn.ws is not None)
        return {"status": "ok", "transport": self.name, "connections": open_count}

    # ------------------------------------------------------------------
    # I/O loop side
    # ------------------------------------------------------------------
    def _is_current(self, conn: _Connection) -> bool:
        with self._lock:
            return self._connections.get(conn.session_id) is conn

    def _finish(self, conn: _Connection, reason: Optional[str] = None) -> None:
        """Unregister the connection; report the reason only if it was still registered."""
        with self._lock:
            current = self._connections.get(conn.session_id) is conn
            if current:
                del self._connections[conn.session_id]
            conn.ws = None
        if current and reason is not None:
            self.listener.on_error(conn.session_id, reason)

    async def _run(self, conn: _Connection) -> None:
        session_id = conn.session_id
        log.info(f"[RELAY] connecting {session_id[:8]}... to {conn.endpoint}")
        try:
            async with websockets.connect(conn.endpoint, open_timeout=self.open_timeout) as ws:
                with self._lock:
                    conn.ws = ws
                await ws.send(json.dumps(["REQ", conn.sub_id, conn.subscription]))
                if not self._is_current(conn):
                    return
                self.listener.on_connected(session_id)

                async for raw in ws:
                    if not self._is_current(conn):
                        break
                    self._handle_frame(session_id, conn.sub_id, raw)

            self._finish(conn, "Relay closed the connection")
        except asyncio.CancelledError:
            log.debug(f"[RELAY] session {session_id[:8]}... cancelled")
            raise
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            log.warning(f"[RELAY] session {session_id[:8]}... connection error: {e}")
            self._finish(conn, f"Relay connection failed: {e}")
        finally:
            self._finish(conn)

    def _handle_frame(self, session_id: str, sub_id: str, raw) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            log.debug("[RELAY] unparseable frame ignored")
            return
        if not isinstance(frame, list) or not frame:
            return

        kind = frame[0]
        if kind == "EVENT" and len(frame) >= 3 and frame[1] == sub_id and isinstance(frame[2], dict):
            self.listener.on_message(session_id, canonicalize_bytes(frame[2]))
        elif kind == "OK" and len(frame) >= 3 and frame[2] is False:
            log.warning(f"[RELAY] event rejected: {frame[3] if len(frame) > 3 else ''}")
        elif kind == "NOTICE":
            log.info(f"[RELAY] notice: {frame[1] if len(frame) > 1 else ''}")
        elif kind == "CLOSED" and len(frame) >= 2 and frame[1] == sub_id:
            self.listener.on_error(session_id, "Relay closed the subscription")
        elif kind == "EOSE":
            log.debug(f"[RELAY] end of stored events for {session_id[:8]}...")

    def _on_sent(self, session_id: str, future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            log.warning(f"[RELAY] send failed for {session_id[:8]}...: {error}")
            self.listener.on_error(session_id, f"Relay send failed: {error}")
