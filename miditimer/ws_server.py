from __future__ import annotations

import asyncio
import json
import threading
import time
from typing import Any, Optional, Set


async def serve_metrics(controller, host: str = "127.0.0.1", port: int = 8765, interval: float = 1.0):
    """Serve controller.get_metrics() to every connected client each interval."""
    try:
        import websockets  # type: ignore
    except Exception:
        print("[ws] websockets not installed; cannot serve metrics")
        return

    clients: Set[Any] = set()

    async def broadcast(obj):
        if not clients:
            return
        msg = json.dumps(obj)
        await asyncio.gather(*[c.send(msg) for c in list(clients)], return_exceptions=True)

    async def metrics_task():
        while True:
            await broadcast({"type": "metrics", "ts": time.time(), "payload": controller.get_metrics()})
            await asyncio.sleep(interval)

    async def handler(ws, *maybe_path):
        await ws.send(json.dumps({"type": "hello", "ts": time.time(), "payload": {"protocol": 1}}))
        clients.add(ws)
        try:
            async for message in ws:
                try:
                    obj = json.loads(message)
                except Exception:
                    continue
                if obj.get("type") == "ping":
                    await ws.send(json.dumps({"type": "pong", "ts": time.time(), "id": obj.get("id")}))
                elif obj.get("type") == "getMetrics":
                    await ws.send(json.dumps({"type": "metrics", "ts": time.time(), "payload": controller.get_metrics()}))
        finally:
            clients.discard(ws)

    async with websockets.serve(handler, host, port):
        print(f"[ws] serving metrics on ws://{host}:{port}", flush=True)
        task = asyncio.create_task(metrics_task())
        try:
            await asyncio.Future()
        finally:
            task.cancel()


def start_ws_server(controller, host: str = "127.0.0.1", port: int = 8765, interval: float = 1.0) -> Optional[threading.Thread]:
    """Run serve_metrics on a daemon thread; returns the thread."""

    def _runner():
        asyncio.run(serve_metrics(controller, host, port, interval))

    th = threading.Thread(target=_runner, name="ws-metrics", daemon=True)
    th.start()
    return th
