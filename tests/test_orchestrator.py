from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
import threading
from types import SimpleNamespace
import unittest

from market_sim.errors import PersistenceFailure, TickAborted, TickInProgress
from market_sim.memory_store import InMemoryStore
from market_sim.models import CRYPTO, STOCK, PriceUpdate, Stock, TickLease, TickRecord
from market_sim.orchestrator import TickOrchestrator
from market_sim.seed import generate_seed_content

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _settings(**overrides: object) -> SimpleNamespace:
    values: dict[str, object] = {
        "tick_interval_minutes": 5,
        "ticks_per_year": 105_120,
        "stock_default_volatility": 0.6,
        "crypto_default_volatility": 1.2,
        "mean_reversion_strength": 0.05,
        "trend_bias_weight": 0.3,
        "fundamental_price_floor_cents": 1,
        "bot_budget_cents": 10_000_000,
        "bot_max_product_price_cents": 5_000_000,
        "worker_count": 4,
        "tick_deadline_seconds": 240.0,
        "tick_lease_seconds": 600,
        "history_retention_days": 30,
        "history_prune_every_ticks": 12,
        "loan_interest_enabled": True,
        "loan_interest_interval_minutes": 20,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _seeded(store: InMemoryStore | None = None) -> InMemoryStore:
    store = store or InMemoryStore()
    store.seed(generate_seed_content(NOW))
    return store


def _orchestrator(store: InMemoryStore, **kwargs: object) -> TickOrchestrator:
    kwargs.setdefault("rng_seed", "test")
    kwargs.setdefault("clock", lambda: NOW)
    return TickOrchestrator(_settings(), store, **kwargs)  # type: ignore[arg-type]


class _BlockingStore(InMemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def list_stocks(self) -> list[Stock]:
        self.entered.set()
        self.release.wait(timeout=5)
        return super().list_stocks()


class _GuardFailureStore(InMemoryStore):
    def acquire_tick_guard(self, now_utc: datetime, lease_seconds: int) -> TickLease:
        raise PersistenceFailure("tick_state unavailable")


class _RecordFailureStore(InMemoryStore):
    def complete_tick(self, record: TickRecord, lease: TickLease) -> None:
        raise PersistenceFailure("tick_records unavailable")


class _StaleWriteStore(InMemoryStore):
    """Fails the price write for one stock, as if another writer got there first."""

    def apply_stock_price(self, update, now_utc):  # type: ignore[no-untyped-def]
        if update.instrument_id == "stock-tch":
            raise PersistenceFailure("price moved")
        super().apply_stock_price(update, now_utc)


class _FlakyPriceStore(InMemoryStore):
    """Rejects price writes for the ids in ``failing``."""

    def __init__(self) -> None:
        super().__init__()
        self.failing: set[str] = set()

    def apply_stock_price(self, update: PriceUpdate, now_utc: datetime) -> None:
        if update.instrument_id in self.failing:
            raise PersistenceFailure("write rejected")
        super().apply_stock_price(update, now_utc)


class _TakeoverStore(InMemoryStore):
    """Another process takes over the guard while this tick is pricing stocks."""

    def __init__(self) -> None:
        super().__init__()
        self.rival: TickLease | None = None

    def list_stocks(self) -> list[Stock]:
        if self.rival is None:
            self.rival = self.acquire_tick_guard(NOW + timedelta(hours=1), 600)
        return super().list_stocks()


class _RecordingNotifier:
    def __init__(self) -> None:
        self.records: list[TickRecord] = []

    def notify_tick(self, record: TickRecord) -> str | None:
        self.records.append(record)
        return None


class TickOrchestratorTests(unittest.TestCase):
    def test_tick_numbers_start_at_one_and_increase(self) -> None:
        store = _seeded()
        orchestrator = _orchestrator(store)
        numbers = [orchestrator.run_tick().tick_number for _ in range(3)]
        self.assertEqual(numbers, [1, 2, 3])
        self.assertEqual(store.get_last_tick().tick_number, 3)

    def test_tick_updates_every_instrument_and_keeps_market_cap_consistent(self) -> None:
        store = _seeded()
        before = {stock.id: stock.price for stock in store.list_stocks()}
        record = _orchestrator(store).run_tick()

        self.assertEqual(record.stock_updates, len(store.stocks))
        self.assertEqual(record.crypto_updates, len(store.cryptocurrencies))
        self.assertEqual(record.stock_failures + record.crypto_failures, 0)
        self.assertFalse(record.deadline_exceeded)
        for stock in store.list_stocks():
            self.assertGreater(stock.price, 0)
            self.assertEqual(stock.market_cap, stock.price * stock.total_shares)
            self.assertEqual(stock.previous_price, before[stock.id])
            self.assertEqual(store.companies[stock.company_id].market_cap, stock.market_cap)
        for crypto in store.list_cryptocurrencies():
            self.assertEqual(crypto.market_cap, crypto.price * crypto.circulating_supply)

    def test_history_written_once_per_successful_update(self) -> None:
        store = _seeded()
        record = _orchestrator(store).run_tick()
        self.assertEqual(record.history_entries, record.stock_updates + record.crypto_updates)
        self.assertEqual(len(store.price_history), record.history_entries)
        stock_rows = [entry for entry in store.price_history if entry.instrument_kind == STOCK]
        crypto_rows = [entry for entry in store.price_history if entry.instrument_kind == CRYPTO]
        self.assertEqual(len(stock_rows), record.stock_updates)
        self.assertEqual(len(crypto_rows), record.crypto_updates)
        for entry in stock_rows:
            self.assertEqual(entry.price, store.stocks[entry.instrument_id].price)

    def test_invalid_instrument_is_skipped_and_others_update(self) -> None:
        store = _seeded()
        broken = replace(store.stocks["stock-gfc"], total_shares=0)
        store.stocks[broken.id] = broken

        record = _orchestrator(store).run_tick()

        self.assertEqual(record.stock_failures, 1)
        self.assertEqual(record.stock_updates, len(store.stocks) - 1)
        self.assertEqual(store.stocks["stock-gfc"].price, broken.price)
        self.assertFalse(any(entry.instrument_id == "stock-gfc" for entry in store.price_history))

    def test_lost_price_write_is_contained(self) -> None:
        store = _seeded(_StaleWriteStore())
        original = store.stocks["stock-tch"].price
        record = _orchestrator(store).run_tick()
        self.assertEqual(record.stock_failures, 1)
        self.assertEqual(store.stocks["stock-tch"].price, original)
        self.assertEqual(record.history_entries, record.stock_updates + record.crypto_updates)

    def test_concurrent_tick_is_rejected(self) -> None:
        store = _seeded(_BlockingStore())
        orchestrator = _orchestrator(store)
        results: list[object] = []

        def _run() -> None:
            try:
                results.append(orchestrator.run_tick())
            except Exception as exc:  # surfaced through results
                results.append(exc)

        worker = threading.Thread(target=_run)
        worker.start()
        self.assertTrue(store.entered.wait(timeout=5))
        try:
            with self.assertRaises(TickInProgress):
                orchestrator.run_tick()
        finally:
            store.release.set()
            worker.join(timeout=10)

        self.assertEqual(len(results), 1)
        self.assertIsInstance(results[0], TickRecord)
        self.assertEqual(results[0].tick_number, 1)
        self.assertEqual(len(store.tick_records), 1)

    def test_stale_guard_is_taken_over(self) -> None:
        store = _seeded()
        store.acquire_tick_guard(NOW - timedelta(hours=1), lease_seconds=600)
        record = _orchestrator(store).run_tick()
        # the abandoned tick keeps number 1, so the takeover runs as 2
        self.assertEqual(record.tick_number, 2)
        self.assertEqual([r.tick_number for r in store.tick_records], [2])

    def test_tick_that_lost_its_guard_cannot_release_the_new_holder(self) -> None:
        store = _seeded(_TakeoverStore())
        with self.assertRaises(TickAborted):
            _orchestrator(store).run_tick()

        self.assertEqual(store.tick_records, [])
        self.assertEqual(store.rival.tick_number, 2)
        # the rival still holds the guard
        with self.assertRaises(TickInProgress):
            store.acquire_tick_guard(NOW + timedelta(hours=1, seconds=10), 600)
        store.complete_tick(
            TickRecord(store.rival.tick_number, NOW, 0, 0, 0), store.rival
        )
        self.assertEqual([r.tick_number for r in store.tick_records], [2])

    def test_history_counts_match_updates_across_ticks(self) -> None:
        store = _seeded(_FlakyPriceStore())
        current = [NOW]
        orchestrator = _orchestrator(store, clock=lambda: current[0])
        ticks = 6
        broken_on = {1, 4}

        for index in range(ticks):
            store.failing = {"stock-gfc"} if index in broken_on else set()
            orchestrator.run_tick()
            current[0] += timedelta(minutes=5)

        for instrument_id in list(store.stocks) + list(store.cryptocurrencies):
            kind = STOCK if instrument_id in store.stocks else CRYPTO
            rows = store.get_price_history(kind, instrument_id)
            expected = ticks - len(broken_on) if instrument_id == "stock-gfc" else ticks
            self.assertEqual(len(rows), expected, instrument_id)
            stamps = [row.timestamp for row in rows]
            self.assertTrue(all(a < b for a, b in zip(stamps, stamps[1:])), instrument_id)

        last = store.get_price_history(STOCK, "stock-gfc")[-1]
        self.assertEqual(last.price, store.stocks["stock-gfc"].price)

    def test_tick_running_past_its_lease_is_logged(self) -> None:
        store = _seeded()
        calls = [0]

        def clock() -> datetime:
            calls[0] += 1
            # first call starts the tick; every later call is well past the lease
            return NOW if calls[0] == 1 else NOW + timedelta(seconds=900)

        orchestrator = _orchestrator(store, clock=clock)
        with self.assertLogs("market_sim.orchestrator", level="WARNING") as logs:
            record = orchestrator.run_tick(deadline=NOW + timedelta(seconds=1200))
        self.assertTrue(any("tick_lease_overrun" in line for line in logs.output))
        self.assertEqual(store.get_last_tick(), record)

    def test_deadline_finalizes_partial_record(self) -> None:
        store = _seeded()
        prices = {stock.id: stock.price for stock in store.list_stocks()}
        orchestrator = _orchestrator(store)

        record = orchestrator.run_tick(deadline=NOW - timedelta(seconds=1))

        self.assertTrue(record.deadline_exceeded)
        self.assertEqual(record.stock_updates, 0)
        self.assertEqual(record.bot_purchases, 0)
        self.assertEqual(record.history_entries, 0)
        self.assertEqual({stock.id: stock.price for stock in store.list_stocks()}, prices)
        # guard released: the next tick runs normally
        self.assertEqual(orchestrator.run_tick().tick_number, 2)

    def test_guard_failure_aborts(self) -> None:
        store = _seeded(_GuardFailureStore())
        with self.assertRaises(TickAborted):
            _orchestrator(store).run_tick()
        self.assertEqual(store.price_history, [])

    def test_record_failure_aborts_and_releases_guard(self) -> None:
        store = _seeded(_RecordFailureStore())
        with self.assertRaises(TickAborted):
            _orchestrator(store).run_tick()
        # guard was released; the aborted tick leaves a gap in numbering
        self.assertEqual(store.acquire_tick_guard(NOW, 600).tick_number, 2)

    def test_reset_restarts_numbering(self) -> None:
        store = _seeded()
        orchestrator = _orchestrator(store)
        orchestrator.run_tick()
        orchestrator.run_tick()

        removed = store.reset_all()
        self.assertEqual(removed["tick_records"], 2)
        self.assertEqual(store.stocks, {})

        _seeded(store)
        self.assertEqual(orchestrator.run_tick().tick_number, 1)

    def test_seeded_runs_are_reproducible(self) -> None:
        first = _seeded()
        second = _seeded()
        _orchestrator(first, rng_seed=99).run_tick()
        _orchestrator(second, rng_seed=99).run_tick()
        self.assertEqual(
            {stock.id: stock.price for stock in first.list_stocks()},
            {stock.id: stock.price for stock in second.list_stocks()},
        )

    def test_bots_loans_and_aggregates_run_in_tick(self) -> None:
        store = _seeded()
        record = _orchestrator(store).run_tick()
        self.assertGreater(record.bot_purchases, 0)
        self.assertGreater(record.total_budget_spent, 0)
        self.assertLessEqual(record.total_budget_spent, 10_000_000)
        self.assertEqual(record.loan_interest_applied, 1)
        self.assertEqual(set(store.net_worths), set(store.players))
        for player in store.players.values():
            self.assertEqual(player.net_worth, store.net_worths[player.id].net_worth)

    def test_notifier_sees_completed_record(self) -> None:
        store = _seeded()
        notifier = _RecordingNotifier()
        record = _orchestrator(store, notifier=notifier).run_tick()
        self.assertEqual(notifier.records, [record])


if __name__ == "__main__":
    unittest.main()
