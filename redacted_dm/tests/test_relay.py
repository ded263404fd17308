from __future__ import annotations

import asyncio
import contextlib
import socket
import unittest

import pytest
import websockets

from redacted_dm.codec import decode, encode, step_message, trigger_message
from redacted_dm.relay import RelayConfig, RelayService, describe


def _udp_receiver() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.setblocking(False)
    return sock


async def _recv(sock: socket.socket, timeout: float = 2.0) -> bytes:
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(loop.sock_recv(sock, 4096), timeout=timeout)


class TestRelayForwarding(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.udp = _udp_receiver()
        config = RelayConfig(ws_host="127.0.0.1", ws_port=0, osc_port=self.udp.getsockname()[1])
        self.relay = RelayService(config)
        await self.relay.start()
        self.ws = await websockets.connect(f"ws://127.0.0.1:{self.relay.port}")

    async def asyncTearDown(self):
        with contextlib.suppress(Exception):
            await self.ws.close()
        await self.relay.stop()
        self.udp.close()

    async def test_binary_forwarded_unchanged(self):
        msg = trigger_message(2, 5, 0.75)
        await self.ws.send(msg)
        self.assertEqual(await _recv(self.udp), msg)
        step = step_message(2, 9, True)
        await self.ws.send(step)
        self.assertEqual(await _recv(self.udp), step)
        self.assertEqual(self.relay.metrics["forwarded"], 2)
        self.assertEqual(self.relay.metrics["decode_errors"], 0)

    async def test_text_frames_dropped(self):
        await self.ws.send("/redacted-dm/trigger 0 0 1.0")
        sentinel = step_message(0, 0, False)
        await self.ws.send(sentinel)
        self.assertEqual(await _recv(self.udp), sentinel)
        self.assertEqual(self.relay.metrics["dropped_text"], 1)
        self.assertEqual(self.relay.metrics["forwarded"], 1)

    async def test_undecodable_binary_still_forwarded(self):
        junk = b"\x00\x01garbage"
        await self.ws.send(junk)
        self.assertEqual(await _recv(self.udp), junk)
        self.assertEqual(self.relay.metrics["decode_errors"], 1)

    async def test_clients_counted(self):
        second = await websockets.connect(f"ws://127.0.0.1:{self.relay.port}")
        await self.ws.send(step_message(0, 0, False))
        await second.send(step_message(1, 1, False))
        await _recv(self.udp)
        await _recv(self.udp)
        self.assertEqual(self.relay.metrics["clients"], 2)
        await second.close()


class TestRelayUnit(unittest.TestCase):
    def test_from_env(self):
        cfg = RelayConfig.from_env({"WS_PORT": "9001", "OSC_HOST": "10.0.0.2", "OSC_PORT": "7000"})
        self.assertEqual(cfg.ws_port, 9001)
        self.assertEqual(cfg.ws_host, "0.0.0.0")
        self.assertEqual(cfg.destination, ("10.0.0.2", 7000))

    def test_defaults(self):
        cfg = RelayConfig.from_env({})
        self.assertEqual((cfg.ws_port, cfg.osc_host, cfg.osc_port), (8080, "127.0.0.1", 57120))

    def test_describe(self):
        trig = trigger_message(1, 3, 0.5)
        self.assertEqual(describe(decode(trig), len(trig)), "[trigger] area=1  redacted=3  vel=0.50")
        step = step_message(0, 7, False)
        self.assertEqual(describe(decode(step), len(step)), "[step]    area=0  step=7  redacted=no")
        other = encode("/other", [("i", 1)])
        self.assertEqual(describe(decode(other), len(other)), f"[osc]     /other ({len(other)} bytes)")
        self.assertEqual(describe(decode(b"xyz"), 3), "[osc]     3 raw bytes (decode error)")

    def test_forward_before_start_is_dropped(self):
        relay = RelayService(RelayConfig(ws_port=0))
        relay.forward(step_message(0, 0, False))
        self.assertEqual(relay.metrics["send_errors"], 1)
        self.assertEqual(relay.metrics["forwarded"], 0)


@pytest.mark.asyncio
async def test_plain_http_gets_banner():
    relay = RelayService(RelayConfig(ws_host="127.0.0.1", ws_port=0, osc_port=57999))
    await relay.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", relay.port)
        writer.write(b"GET / HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n")
        await writer.drain()
        data = b""
        while b"udp://127.0.0.1:57999" not in data:
            chunk = await asyncio.wait_for(reader.read(4096), timeout=2.0)
            if not chunk:
                break
            data += chunk
        writer.close()
        assert data.startswith(b"HTTP/1.1 200")
        assert b"Forwarding OSC -> udp://127.0.0.1:57999" in data
    finally:
        await relay.stop()
