from __future__ import annotations

import argparse
import asyncio


async def run(url: str, payload: bytes, repeat: int, interval: float) -> None:
    import websockets

    async with websockets.connect(url) as ws:
        for i in range(repeat):
            await ws.send(payload)
            print(f"sent {len(payload)} bytes ({i + 1}/{repeat})")
            if i + 1 < repeat:
                await asyncio.sleep(interval)


def main():
    from redacted_dm.codec import NAMESPACE, step_message, trigger_message

    ap = argparse.ArgumentParser(description="Send a single control message to a relay")
    ap.add_argument("--url", default="ws://127.0.0.1:8080")
    ap.add_argument("--namespace", default=NAMESPACE)
    ap.add_argument("--repeat", type=int, default=1)
    ap.add_argument("--interval", type=float, default=0.25, help="Seconds between repeats")
    sub = ap.add_subparsers(dest="cmd", required=True)
    p_trig = sub.add_parser("trigger")
    p_trig.add_argument("--area", type=int, default=0)
    p_trig.add_argument("--redacted", type=int, default=0)
    p_trig.add_argument("--velocity", type=float, default=1.0)
    p_step = sub.add_parser("step")
    p_step.add_argument("--area", type=int, default=0)
    p_step.add_argument("--step", type=int, default=0)
    p_step.add_argument("--is-redacted", action="store_true")
    args = ap.parse_args()

    try:
        if args.cmd == "trigger":
            payload = trigger_message(args.area, args.redacted, args.velocity, args.namespace)
        else:
            payload = step_message(args.area, args.step, args.is_redacted, args.namespace)
    except ValueError as e:
        ap.error(str(e))
    asyncio.run(run(args.url, payload, max(1, args.repeat), args.interval))


if __name__ == "__main__":
    main()
