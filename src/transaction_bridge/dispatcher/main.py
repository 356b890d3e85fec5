"""CLI entrypoint for the transaction bridge."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError

from transaction_bridge import __version__
from transaction_bridge.dispatcher.config import DispatcherSettings
from transaction_bridge.dispatcher.logging import configure_logging
from transaction_bridge.dispatcher.runtime import BridgeRuntime
from transaction_bridge.errors import (
    ConfigurationError,
    DuplicateSubmissionError,
    NoCapableWorkerError,
    ReadinessTimeoutError,
    UnknownKindError,
)
from transaction_bridge.workers.registry import WorkerRegistry, build_workers
from transaction_bridge.workqueue.models import OutcomeEntry, WorkItemStatus

logger = logging.getLogger(__name__)


def _parse_payload(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    payload = json.loads(value)
    if not isinstance(payload, dict):
        raise ValueError("--payload must be a JSON object")
    return payload


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transaction-bridge",
        description="Queue and dispatch finance-system transactions to automation bridges",
    )
    parser.add_argument(
        "--version", action="version", version=f"transaction-bridge {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "check-config",
        help="Load settings, bridges and roles, then print the fleet",
    )

    run_once = subparsers.add_parser(
        "run-once",
        help="Start the fleet, run a single item to completion and print its outcome",
    )
    run_once.add_argument("--kind", required=True, help="Work item kind, e.g. 'spp' or 'noop'")
    run_once.add_argument(
        "--year",
        type=int,
        default=None,
        help="Fiscal year used to pick a bridge (overrides payload['year'])",
    )
    run_once.add_argument("--payload", default=None, help="Item payload as a JSON object")
    run_once.add_argument(
        "--pending-timeout",
        type=float,
        default=60.0,
        help="Give up when no bridge has taken the item after this many seconds",
    )

    subparsers.add_parser(
        "saved-queue",
        help="Print the items saved by the last graceful shutdown",
    )

    return parser


def _describe_fleet(workers: WorkerRegistry) -> list[dict[str, Any]]:
    return [
        {
            "name": w.name,
            "year": w.year_affinity,
            "accepts": sorted(w.accepted_kinds) if w.accepted_kinds is not None else None,
            "kinds": w.handled_kinds(),
        }
        for w in workers
    ]


async def _run_once(
    runtime: BridgeRuntime, *, kind: str, payload: dict[str, Any], pending_timeout: float
) -> OutcomeEntry:
    await runtime.start()
    try:
        item = runtime.submit(kind=kind, payload=payload)
        return await runtime.wait_for(item.id, pending_deadline=pending_timeout)
    finally:
        await runtime.stop()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = DispatcherSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level, fmt=settings.log_format)

    try:
        if args.command == "check-config":
            workers = build_workers(settings)
            print(json.dumps({"bridges": _describe_fleet(workers)}, indent=2))
            return 0

        if args.command == "saved-queue":
            path = settings.state_path / "saved-queue.json"
            if not path.exists():
                print(f"No saved queue at {path}")
                return 0
            print(path.read_text(encoding="utf-8").rstrip())
            return 0

        if args.command == "run-once":
            payload = _parse_payload(args.payload)
            if args.year is not None:
                payload["year"] = args.year
            # run-once never restores or saves queue state.
            runtime = BridgeRuntime(settings.model_copy(update={"persist_queue": False, "noop": False}))
            outcome = asyncio.run(
                _run_once(
                    runtime,
                    kind=args.kind,
                    payload=payload,
                    pending_timeout=args.pending_timeout,
                )
            )
            print(json.dumps(outcome.model_dump(mode="json"), indent=2, ensure_ascii=False))
            return 0 if outcome.status is WorkItemStatus.DONE else 1

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except (ConfigurationError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    except (UnknownKindError, DuplicateSubmissionError) as e:
        logger.warning(str(e))
        print(str(e), file=sys.stderr)
        return 2

    except NoCapableWorkerError as e:
        print(str(e), file=sys.stderr)
        return 1

    except ReadinessTimeoutError as e:
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
