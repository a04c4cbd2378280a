from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import TYPE_CHECKING

from .config import Settings, redact_database_url
from .errors import TickAborted, TickInProgress

if TYPE_CHECKING:
    from .store import MarketStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Market simulation tick engine")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database schema")
    subparsers.add_parser("seed", help="Insert starter companies, stocks, crypto and players")

    tick_cmd = subparsers.add_parser("tick", help="Run one market tick")
    tick_cmd.add_argument("--seed", default=None, help="Deterministic RNG seed")

    subparsers.add_parser("run", help="Run ticks on TICK_INTERVAL_MINUTES until stopped")
    subparsers.add_parser("serve", help="Serve the HTTP trigger and query API")

    reset_cmd = subparsers.add_parser("reset", help="Delete all simulation data")
    reset_cmd.add_argument("--yes", action="store_true", help="Confirm the reset")
    return parser


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_store(settings: Settings) -> "MarketStore":
    if settings.store_backend == "memory":
        from .memory_store import InMemoryStore
        from .seed import generate_seed_content

        store = InMemoryStore()
        # Stub mode starts from the starter market so ticks have something to move.
        store.seed(generate_seed_content())
        return store

    from .db import PostgresStore

    store = PostgresStore(settings.database_url)
    store.ensure_schema()
    return store


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    logger = logging.getLogger(__name__)
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    logger.info(
        "startup store_backend=%s database_source=%s database_target=%s tick_interval_minutes=%s ticks_per_year=%s worker_count=%s stock_volatility=%s crypto_volatility=%s mean_reversion_strength=%s bot_budget_cents=%s",
        settings.store_backend,
        settings.database_url_source,
        redact_database_url(settings.database_url),
        settings.tick_interval_minutes,
        settings.ticks_per_year,
        settings.worker_count,
        settings.stock_default_volatility,
        settings.crypto_default_volatility,
        settings.mean_reversion_strength,
        settings.bot_budget_cents,
    )

    if args.command == "init-db":
        if settings.store_backend == "memory":
            print("STORE_BACKEND=memory has no schema to initialize")
            return 0
        from .db import PostgresStore

        store = PostgresStore(settings.database_url)
        try:
            store.ensure_schema()
        finally:
            store.close()
        print("Schema initialized")
        return 0

    if args.command == "reset" and not args.yes:
        print("Refusing to reset without --yes")
        return 2

    from .notifications import TelegramNotifier
    from .orchestrator import TickOrchestrator

    store = build_store(settings)
    try:
        if args.command == "seed":
            if settings.store_backend == "memory":
                print("STORE_BACKEND=memory seeds itself on startup")
                return 0
            from .seed import generate_seed_content

            print(json.dumps(store.seed(generate_seed_content()), indent=2))
            return 0

        if args.command == "reset":
            print(json.dumps(store.reset_all(), indent=2))
            return 0

        notifier = TelegramNotifier(settings)
        orchestrator = TickOrchestrator(
            settings,
            store,
            notifier=notifier,
            rng_seed=getattr(args, "seed", None),
        )

        if args.command == "tick":
            try:
                record = orchestrator.run_tick()
            except TickInProgress as exc:
                print(json.dumps({"error": "tick_in_progress", "detail": str(exc)}, indent=2))
                return 3
            except TickAborted as exc:
                notifier.notify_operational_alerts([f"❌ Market tick aborted: {exc}"])
                print(json.dumps({"error": "tick_aborted", "detail": str(exc)}, indent=2))
                return 1
            print(json.dumps(record.to_dict(), indent=2))
            return 0

        if args.command == "run":
            orchestrator.run_forever()
            return 0

        if args.command == "serve":
            from .api import create_app

            app = create_app(settings, store, orchestrator)
            app.run(host=settings.api_host, port=settings.api_port, threaded=True)
            return 0
    finally:
        store.close()

    return 1


if __name__ == "__main__":
    sys.exit(main())
