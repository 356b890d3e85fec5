#!/usr/bin/env python3
"""Programmatic dispatch example.

This runs the dispatcher in-process, without the HTTP server:

* load settings from `.env`
* bring the bridge fleet up (dry-run sessions unless configured otherwise)
* submit one transaction and wait for its outcome

The role set is passed as an argument and must exist in `roles.json`.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Sequence

from transaction_bridge.dispatcher.config import DispatcherSettings
from transaction_bridge.dispatcher.logging import configure_logging
from transaction_bridge.dispatcher.runtime import BridgeRuntime
from transaction_bridge.errors import DuplicateSubmissionError


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Submit one SPP (programmatic example).")
    parser.add_argument("--role", required=True, help='Role set from roles.json, e.g. "dinas-a"')
    parser.add_argument("--year", type=int, required=True, help="Fiscal year of the bridge to use")
    parser.add_argument("--title", required=True, help="SPP title (used for duplicate detection)")
    parser.add_argument("--amount", type=int, default=0, help="Amount in rupiah")
    return parser.parse_args(argv)


async def _submit(runtime: BridgeRuntime, payload: dict) -> int:
    await runtime.start()
    try:
        try:
            item = runtime.submit(kind="spp", payload=payload)
        except DuplicateSubmissionError as exc:
            print(str(exc))
            return 0
        print(f"Queued {item.id} (dedup key {item.dedup_key})")
        outcome = await runtime.wait_for(item.id, pending_deadline=60)
    finally:
        await runtime.stop()

    print(json.dumps(outcome.model_dump(mode="json"), indent=2))
    return 0 if outcome.status.value == "done" else 1


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = DispatcherSettings()
    configure_logging(settings.log_level, fmt="text")

    payload = {
        "role": args.role,
        "year": args.year,
        "title": args.title,
        "amount": args.amount,
    }
    return asyncio.run(_submit(BridgeRuntime(settings), payload))


if __name__ == "__main__":
    raise SystemExit(main())
