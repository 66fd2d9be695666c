#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json

from marketbridge.core import missing_env
from marketbridge.venues import list_venues


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="List supported venues and their credential status")
    p.add_argument("--json", action="store_true", help="Print machine-readable output")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    venues = list_venues()
    if args.json:
        print(json.dumps([v.as_dict() for v in venues], indent=2))
        return

    print("=" * 60)
    for info in venues:
        missing = missing_env(info.venue)
        creds = "ready" if not missing else f"missing {', '.join(missing)}"
        stream = "stream" if info.has_stream else "rest"
        print(f"{info.name:<12} {info.scheme.value:<18} {stream:<7} {creds}")
    print("=" * 60)


if __name__ == "__main__":
    main()
