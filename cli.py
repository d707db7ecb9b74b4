from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Health Check Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Show controller status")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--level", default=None, help="Only show INFO|WARN|ERROR events")

    s_runs = sub.add_parser("runs", help="Show recent full reconcile passes")
    s_runs.add_argument("--limit", type=int, default=10)

    sub.add_parser("reconcile", help="Run a full reconcile pass now")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "status":
        r = requests.get(f"{base}/health", timeout=10)
        _print(r.json())
        return 0 if r.ok and r.json().get("status") == "ok" else 1

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.level:
            params["level"] = args.level
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    if args.cmd == "runs":
        _print(requests.get(f"{base}/reconcile/runs", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "reconcile":
        # A full pass talks to every agent in turn; allow it time.
        r = requests.post(f"{base}/reconcile", timeout=300)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
