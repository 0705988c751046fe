from __future__ import annotations

import asyncio
import contextlib
import json
import socket
import unittest

from miditimer.ws_server import serve_metrics


def _free_port() -> int:
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    addr, port = s.getsockname()
    s.close()
    return port


async def _connect(url: str):
    import websockets  # type: ignore
    for _ in range(50):
        try:
            return await websockets.connect(url)
        except Exception:
            await asyncio.sleep(0.05)
    raise RuntimeError("failed to connect to WS server")


class FakeTimer:
    def __init__(self):
        self.dispatched = 0

    def get_metrics(self):
        self.dispatched += 1
        return {"state": "running", "dispatched": self.dispatched}


class TestWSMetrics(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.timer = FakeTimer()
        self.port = _free_port()
        self.server_task = asyncio.create_task(serve_metrics(self.timer, "127.0.0.1", self.port, interval=0.05))
        self.ws = await _connect(f"ws://127.0.0.1:{self.port}")

    async def asyncTearDown(self):
        with contextlib.suppress(Exception):
            await self.ws.close()
        self.server_task.cancel()
        with contextlib.suppress(BaseException):
            await self.server_task

    async def test_hello_then_periodic_metrics(self):
        hello = json.loads(await asyncio.wait_for(self.ws.recv(), timeout=2.0))
        self.assertEqual(hello["type"], "hello")
        seen = []
        for _ in range(20):
            obj = json.loads(await asyncio.wait_for(self.ws.recv(), timeout=2.0))
            if obj.get("type") == "metrics":
                seen.append(obj["payload"]["dispatched"])
            if len(seen) >= 2:
                break
        self.assertEqual(len(seen), 2)
        self.assertLess(seen[0], seen[1])

    async def test_ping_pong(self):
        await self.ws.send(json.dumps({"type": "ping", "id": 9}))
        for _ in range(20):
            obj = json.loads(await asyncio.wait_for(self.ws.recv(), timeout=2.0))
            if obj.get("type") == "pong":
                self.assertEqual(obj["id"], 9)
                return
        self.fail("no pong received")


if __name__ == "__main__":
    unittest.main()
