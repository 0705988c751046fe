from __future__ import annotations

import argparse
import math
import random
import signal
import sys
from typing import Optional

from miditimer.generator import GeneratorSettings
from miditimer.stats import format_report
from miditimer.timer import TimerController, TimerReport
from miditimer.transport import LoopbackTransport, Transport, TransportUnavailable, open_transport
from miditimer.ws_server import start_ws_server


def run(
    seconds: float,
    transport: Transport,
    channel: int = 0,
    seed: Optional[int] = None,
    settle: float = 0.0,
    ws: bool = False,
    ws_port: int = 8765,
    debug: bool = False,
    settings: Optional[GeneratorSettings] = None,
) -> TimerReport:
    rng = random.Random(seed) if seed is not None else None
    timer = TimerController(transport, channel=channel, rng=rng, settings=settings, settle=settle, debug=debug)

    def shutdown(*_):
        timer.request_stop()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    if ws:
        start_ws_server(timer, port=ws_port)
    try:
        report = timer.run(seconds)
    finally:
        transport.close()
    print(format_report(report), flush=True)
    return report


def main():
    ap = argparse.ArgumentParser(description="Measure MIDI round-trip latency through a loopback")
    ap.add_argument("--seconds", type=float, default=60.0, help="Measurement duration (default: 60)")
    ap.add_argument("--in-port", help="Substring to match MIDI input port (default: first)")
    ap.add_argument("--out-port", help="Substring to match MIDI output port (default: first)")
    ap.add_argument("--channel", type=int, default=0, help="MIDI channel 0-15")
    ap.add_argument("--loopback", action="store_true", help="Use an in-process loopback instead of MIDI ports")
    ap.add_argument("--latency-ms", type=float, default=2.0, help="Echo latency for --loopback")
    ap.add_argument("--settle", type=float, default=0.0, help="Seconds to wait for trailing echoes after draining")
    ap.add_argument("--seed", type=int, help="Seed the note generator for repeatable runs")
    ap.add_argument("--ws", action="store_true", help="Broadcast live metrics on ws://127.0.0.1:<ws-port>")
    ap.add_argument("--ws-port", type=int, default=8765)
    ap.add_argument("--debug", action="store_true", help="Trace every dispatch and echo")
    args = ap.parse_args()

    if not math.isfinite(args.seconds) or args.seconds <= 0:
        ap.error("--seconds must be a positive, finite number")
    if not 0 <= args.channel <= 15:
        ap.error("--channel must be in 0..15")

    if args.loopback:
        transport: Transport = LoopbackTransport(latency=args.latency_ms / 1000.0)
    else:
        try:
            transport = open_transport(args.in_port, args.out_port, debug=args.debug)
        except TransportUnavailable as e:
            print(f"[timer] {e}", file=sys.stderr)
            sys.exit(1)

    run(
        args.seconds,
        transport,
        channel=args.channel,
        seed=args.seed,
        settle=args.settle,
        ws=args.ws,
        ws_port=args.ws_port,
        debug=args.debug,
    )


if __name__ == "__main__":
    main()
