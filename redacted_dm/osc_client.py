from __future__ import annotations

import contextlib
import threading
from typing import Callable, Optional

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State
from websockets.sync.client import connect as ws_connect


StatusCallback = Callable[[bool, str], None]


class OscClient:
    """Sends pre-encoded control messages to a relay over a websocket.

    Connection changes are reported through `on_status(connected, message)`.
    Sends while disconnected are dropped and return False.
    """

    def __init__(self, on_status: Optional[StatusCallback] = None, open_timeout: float = 3.0):
        self.on_status = on_status
        self.open_timeout = float(open_timeout)
        self.url: Optional[str] = None
        self._ws = None
        self._stack: Optional[contextlib.ExitStack] = None
        self._watcher: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        ws = self._ws
        return ws is not None and ws.state is State.OPEN

    def connect(self, host: str, port: int) -> bool:
        self.disconnect()
        url = f"ws://{host}:{int(port)}"
        self.url = url
        stack = contextlib.ExitStack()
        try:
            # Held open until disconnect() unwinds the stack
            ws = stack.enter_context(ws_connect(url, open_timeout=self.open_timeout))
        except (OSError, TimeoutError, WebSocketException) as e:
            self._notify(False, f"Connection error: is the relay running at {url}? ({e})")
            return False
        with self._lock:
            self._ws, self._stack = ws, stack
        self._watcher = threading.Thread(target=self._watch, args=(ws,), daemon=True)
        self._watcher.start()
        self._notify(True, f"Connected to {url}")
        return True

    def disconnect(self) -> None:
        with self._lock:
            stack = self._stack
            self._ws, self._stack = None, None
        self._close(stack)

    def send(self, payload: bytes) -> bool:
        ws = self._ws
        if ws is None or ws.state is not State.OPEN:
            return False
        try:
            ws.send(bytes(payload))
            return True
        except (ConnectionClosed, OSError) as e:
            self._drop(ws, f"Send failed: {e}")
            return False

    def _watch(self, ws) -> None:
        # The relay never replies; recv() only returns by raising on close
        try:
            for _ in ws:
                pass
        except ConnectionClosed:
            pass
        self._drop(ws, "Disconnected")

    def _drop(self, ws, message: str) -> None:
        with self._lock:
            if self._ws is not ws:
                return
            stack = self._stack
            self._ws, self._stack = None, None
        self._close(stack)
        self._notify(False, message)

    def _close(self, stack: Optional[contextlib.ExitStack]) -> None:
        if stack is None:
            return
        try:
            stack.close()
        except Exception as e:
            print(f"[osc-client] close failed: {e}", flush=True)

    def _notify(self, connected: bool, message: str) -> None:
        print(f"[osc-client] {message}", flush=True)
        if self.on_status:
            try:
                self.on_status(connected, message)
            except Exception as e:
                print(f"[osc-client] status callback raised: {e!r}", flush=True)
