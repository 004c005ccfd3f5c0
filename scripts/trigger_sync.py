#!/usr/bin/env python3
"""
Hits the sync endpoint once with the cron secret, for schedulers that can
only run commands.

    CRON_SECRET=... python scripts/trigger_sync.py --url http://localhost:8000
"""
import argparse
import asyncio
import json
import os
import sys

import httpx

sys.path.append(os.getcwd())

DEFAULT_URL = "http://localhost:8000"
SYNC_PATH = "/api/v1/sync/translations"

async def trigger(base_url: str, secret: str, timeout: float) -> int:
    async with httpx.AsyncClient(timeout=timeout) as client:
        try:
            resp = await client.post(
                f"{base_url.rstrip('/')}{SYNC_PATH}",
                headers={"Authorization": f"Bearer {secret}"},
            )
        except httpx.HTTPError as e:
            print(f"Sync request failed: {e}", file=sys.stderr)
            return 1

    try:
        body = resp.json()
    except ValueError:
        body = resp.text
    print(json.dumps(body, indent=2) if not isinstance(body, str) else body)

    return 0 if resp.status_code == 200 else 1

def main() -> int:
    parser = argparse.ArgumentParser(description="Trigger one translation sync pass")
    parser.add_argument("--url", default=os.environ.get("SYNC_BASE_URL", DEFAULT_URL))
    parser.add_argument("--timeout", type=float, default=300.0)
    args = parser.parse_args()

    from translation_sync.settings import settings

    secret = os.environ.get("CRON_SECRET") or settings.CRON_SECRET
    if not secret:
        print("CRON_SECRET is not set", file=sys.stderr)
        return 2

    return asyncio.run(trigger(args.url, secret, args.timeout))

if __name__ == "__main__":
    sys.exit(main())
