from __future__ import annotations

import argparse
import json
import os
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Essential Container Reaper CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    p.add_argument("--user", default=os.getenv("ECR_ADMIN_USER", "admin"))
    p.add_argument("--password", default=os.getenv("ECR_ADMIN_PASSWORD", "change-me"))
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("units", help="Show pods being evaluated or acted on")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_act = sub.add_parser("actions", help="Show remedial actions taken")
    s_act.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    auth = (args.user, args.password)

    if args.cmd == "units":
        r = requests.get(f"{base}/units", auth=auth, timeout=10)
    elif args.cmd in ("events", "actions"):
        r = requests.get(f"{base}/{args.cmd}", params={"limit": args.limit}, auth=auth, timeout=10)
    else:
        return 2

    _print(r.json())
    return 0 if r.ok else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
