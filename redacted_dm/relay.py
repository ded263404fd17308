from __future__ import annotations

import argparse
import asyncio
import os
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Dict, Mapping, Optional, Tuple

import websockets
from websockets.exceptions import ConnectionClosedError

from redacted_dm.codec import NAMESPACE, Decoded, DecodeResult, decode, step_address, trigger_address

"""Websocket -> UDP relay for control messages.

Browsers and sandboxed players cannot send raw UDP, so they connect here over a
websocket and send pre-encoded binary messages. Each binary frame is forwarded
unmodified as one datagram to the configured destination (DAW, Max/MSP,
SuperCollider, TouchDesigner...). Text frames are logged and dropped.
"""


@dataclass(frozen=True)
class RelayConfig:
    ws_host: str = "0.0.0.0"
    ws_port: int = 8080
    osc_host: str = "127.0.0.1"
    osc_port: int = 57120
    namespace: str = NAMESPACE

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RelayConfig":
        env = os.environ if environ is None else environ
        return cls(
            ws_host=env.get("WS_HOST", cls.ws_host),
            ws_port=int(env.get("WS_PORT", cls.ws_port)),
            osc_host=env.get("OSC_HOST", cls.osc_host),
            osc_port=int(env.get("OSC_PORT", cls.osc_port)),
            namespace=env.get("OSC_NAMESPACE", cls.namespace),
        )

    @property
    def destination(self) -> Tuple[str, int]:
        return (self.osc_host, self.osc_port)


def describe(result: DecodeResult, size: int, namespace: str = NAMESPACE) -> str:
    """One human-readable log line for a decoded (or undecodable) payload."""
    if not isinstance(result, Decoded):
        return f"[osc]     {size} raw bytes (decode error)"
    a = result.args
    if result.address == trigger_address(namespace) and result.type_tags == ",iif":
        return f"[trigger] area={a[0]}  redacted={a[1]}  vel={a[2]:.2f}"
    if result.address == step_address(namespace) and result.type_tags == ",iii":
        return f"[step]    area={a[0]}  step={a[1]}  redacted={'yes' if a[2] else 'no'}"
    return f"[osc]     {result.address} ({size} bytes)"


class _DatagramSender(asyncio.DatagramProtocol):
    def __init__(self, relay: "RelayService") -> None:
        self.relay = relay

    def error_received(self, exc: Exception) -> None:
        # Asynchronous send failure (e.g. ICMP port unreachable); log only
        self.relay.metrics["send_errors"] += 1
        host, port = self.relay.config.destination
        print(f"[udp] send to {host}:{port} failed: {exc}", flush=True)


class RelayService:
    """Accepts websocket clients and forwards their binary frames as datagrams.

    Connections share nothing but the read-only destination. Forwarding never
    waits on decoding and never retries.
    """

    def __init__(self, config: Optional[RelayConfig] = None) -> None:
        self.config = config or RelayConfig()
        self.metrics: Dict[str, int] = {
            "clients": 0,
            "received": 0,
            "forwarded": 0,
            "dropped_text": 0,
            "decode_errors": 0,
            "send_errors": 0,
        }
        self._server: Any = None
        self._transport: Optional[asyncio.DatagramTransport] = None

    @property
    def port(self) -> int:
        """Port actually bound (useful when configured with port 0)."""
        if self._server is None:
            return self.config.ws_port
        return int(list(self._server.sockets)[0].getsockname()[1])

    def banner(self) -> str:
        host, port = self.config.destination
        return f"Redacted DM relay: ws://{self.config.ws_host}:{self.port}\nForwarding OSC -> udp://{host}:{port}\n"

    async def start(self) -> None:
        if self._server is not None:
            return
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _DatagramSender(self), remote_addr=self.config.destination
        )
        self._server = await websockets.serve(
            self._handler,
            self.config.ws_host,
            self.config.ws_port,
            process_request=self._process_request,
        )
        host, port = self.config.destination
        print("---------------------------------------------", flush=True)
        print("  Redacted DM: websocket -> OSC relay", flush=True)
        print(f"  websocket  : ws://{self.config.ws_host}:{self.port}", flush=True)
        print(f"  OSC target : udp://{host}:{port}", flush=True)
        print("---------------------------------------------", flush=True)

    async def stop(self) -> None:
        server, self._server = self._server, None
        if server is not None:
            server.close()
            await server.wait_closed()
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()

    async def serve_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Future()
        finally:
            await self.stop()

    def forward(self, payload: bytes) -> None:
        """Log a best-effort decode, then send the original bytes unchanged."""
        self.metrics["received"] += 1
        result = decode(payload)
        if not isinstance(result, Decoded):
            self.metrics["decode_errors"] += 1
        print(describe(result, len(payload), self.config.namespace), flush=True)
        transport = self._transport
        if transport is None or transport.is_closing():
            self.metrics["send_errors"] += 1
            print("[udp] relay not started; payload dropped", flush=True)
            return
        try:
            transport.sendto(payload)
        except (OSError, ValueError) as e:
            self.metrics["send_errors"] += 1
            host, port = self.config.destination
            print(f"[udp] send to {host}:{port} failed: {e}", flush=True)
            return
        self.metrics["forwarded"] += 1

    def _process_request(self, connection, request):
        # Plain HTTP (no upgrade) gets the informational banner
        if request.headers.get("Upgrade", "").lower() != "websocket":
            return connection.respond(HTTPStatus.OK, self.banner())
        return None

    async def _handler(self, ws, *maybe_path) -> None:
        remote = getattr(ws, "remote_address", None)
        print(f"[ws] client connected from {remote}", flush=True)
        self.metrics["clients"] += 1
        try:
            async for message in ws:
                if isinstance(message, str):
                    self.metrics["dropped_text"] += 1
                    print("[ws] received non-binary message; ignoring", flush=True)
                    continue
                self.forward(message)
        except ConnectionClosedError as e:
            print(f"[ws] error from {remote}: {e}", flush=True)
        finally:
            self.metrics["clients"] -= 1
            print(f"[ws] client disconnected from {remote}", flush=True)


def main(argv=None):
    defaults = RelayConfig.from_env()
    ap = argparse.ArgumentParser(description="Forward binary websocket frames to a UDP OSC destination")
    ap.add_argument("--ws-host", default=defaults.ws_host, help="Listen address (env WS_HOST)")
    ap.add_argument("--ws-port", type=int, default=defaults.ws_port, help="Listen port (env WS_PORT, default 8080)")
    ap.add_argument("--osc-host", default=defaults.osc_host, help="Datagram destination host (env OSC_HOST)")
    ap.add_argument("--osc-port", type=int, default=defaults.osc_port, help="Datagram destination port (env OSC_PORT, default 57120)")
    ap.add_argument("--namespace", default=defaults.namespace, help="Address namespace used for log labels")
    args = ap.parse_args(argv)

    config = RelayConfig(
        ws_host=args.ws_host,
        ws_port=args.ws_port,
        osc_host=args.osc_host,
        osc_port=args.osc_port,
        namespace=args.namespace,
    )
    try:
        asyncio.run(RelayService(config).serve_forever())
    except KeyboardInterrupt:
        print("[ws] shutting down", flush=True)


if __name__ == "__main__":
    main()
