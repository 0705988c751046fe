from __future__ import annotations

import argparse
import signal
import sys
import threading
from typing import Optional

from miditimer.events import NoteEvent
from miditimer.transport import Transport, TransportUnavailable, open_transport


def describe(event: NoteEvent) -> str:
    return f"[monitor] {event.kind} key={event.key} vel={event.velocity} t={event.timestamp:.6f}"


def attach(transport: Transport, out=None) -> None:
    """Print every incoming note on/off from `transport`."""
    stream = out or sys.stdout

    def on_event(event: NoteEvent) -> None:
        print(describe(event), file=stream, flush=True)

    transport.subscribe(on_event)


def run_monitor(port_filter: Optional[str]) -> None:
    transport = open_transport(in_filter=port_filter, need_output=False)
    done = threading.Event()

    def shutdown(*_):
        done.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)
    attach(transport)
    print("[monitor] Control-C to quit...", flush=True)
    done.wait()
    transport.close()


def main():
    ap = argparse.ArgumentParser(description="Print incoming MIDI note on/off events")
    ap.add_argument("--port", help="Substring to match MIDI input port")
    args = ap.parse_args()
    try:
        run_monitor(args.port)
    except TransportUnavailable as e:
        print(f"[monitor] {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
