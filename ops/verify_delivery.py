from __future__ import annotations

import argparse
import json
import os
import sys
from types import SimpleNamespace
from typing import Any
import urllib.parse
import urllib.request
import urllib.error

from app.services.hashing import verify_record_hash


DEFAULT_BASE_URL = os.getenv("POD_BASE_URL", "http://localhost:8000")

DEFAULT_TIMEOUT_SECONDS = 30


def http_get(url: str) -> dict[str, Any]:
    req = urllib.request.Request(url=url, method="GET", headers={"Accept": "application/json"})
    try:
        with urllib.request.urlopen(req, timeout=DEFAULT_TIMEOUT_SECONDS) as resp:
            raw = resp.read().decode("utf-8")
            return json.loads(raw) if raw else {}
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        print(f"HTTP {e.code} {e.reason} for {url}", file=sys.stderr)
        if body:
            print(body, file=sys.stderr)
        return {"error": {"status": e.code, "reason": e.reason, "body": body}}
    except urllib.error.URLError as e:
        print(f"Network error for {url}: {e}", file=sys.stderr)
        return {"error": {"reason": str(e)}}


def verify_payload(record: dict[str, Any]) -> dict[str, Any]:
    ns = SimpleNamespace(**record)
    return {
        "id": record.get("id"),
        "status": record.get("status"),
        "onchain_hash": record.get("onchain_hash"),
        "onchain_txhash": record.get("onchain_txhash"),
        "hash_matches": verify_record_hash(ns),
    }


def main() -> int:
    p = argparse.ArgumentParser(description="Recompute a delivery's record hash and compare it with the anchored one.")
    p.add_argument("delivery_id")
    p.add_argument("--base-url", default=DEFAULT_BASE_URL)
    args = p.parse_args()

    base_url = args.base_url.rstrip("/")
    record = http_get(f"{base_url}/v1/deliveries/{urllib.parse.quote(args.delivery_id, safe='')}")
    if "error" in record:
        return 1

    if not record.get("onchain_hash"):
        print(f"Delivery {args.delivery_id} has no anchored hash (status={record.get('status')})", file=sys.stderr)
        return 1

    report = verify_payload(record)
    print(json.dumps(report, indent=2, ensure_ascii=False))
    return 0 if report["hash_matches"] else 1

if __name__ == "__main__":
    raise SystemExit(main())
