from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
import unittest

from market_sim.history import HistoryRecorder, downsample
from market_sim.memory_store import InMemoryStore
from market_sim.models import CRYPTO, STOCK, PriceHistoryEntry

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _settings(**overrides: object) -> SimpleNamespace:
    values: dict[str, object] = {"history_retention_days": 30, "history_prune_every_ticks": 12}
    values.update(overrides)
    return SimpleNamespace(**values)


def _entries(count: int) -> list[PriceHistoryEntry]:
    return [
        PriceHistoryEntry(STOCK, "s1", NOW + timedelta(minutes=5 * idx), 1000 + idx)
        for idx in range(count)
    ]


class _BrokenPruneStore(InMemoryStore):
    def prune_price_history(self, older_than: datetime) -> int:
        raise RuntimeError("prune failed")


class DownsampleTests(unittest.TestCase):
    def test_short_series_unchanged(self) -> None:
        entries = _entries(5)
        self.assertEqual(downsample(entries, 10), entries)
        self.assertEqual(downsample(entries, 0), entries)

    def test_downsample_caps_points_and_keeps_latest(self) -> None:
        entries = _entries(1000)
        sampled = downsample(entries, 50)
        self.assertLessEqual(len(sampled), 50)
        self.assertIs(sampled[-1], entries[-1])
        timestamps = [entry.timestamp for entry in sampled]
        self.assertEqual(timestamps, sorted(timestamps))


class HistoryRecorderTests(unittest.TestCase):
    def test_record_and_query_ascending(self) -> None:
        store = InMemoryStore()
        recorder = HistoryRecorder(_settings(), store)
        recorder.record_snapshot(STOCK, "s1", NOW + timedelta(minutes=5), 1010)
        recorder.record_snapshot(STOCK, "s1", NOW, 1000)
        recorder.record_snapshot(CRYPTO, "s1", NOW, 42)

        rows = recorder.query(STOCK, "s1")
        self.assertEqual([row.price for row in rows], [1000, 1010])
        self.assertEqual(len(recorder.query(CRYPTO, "s1")), 1)
        self.assertEqual(len(recorder.query(STOCK, "s1", since=NOW + timedelta(minutes=1))), 1)

    def test_unknown_kind_rejected(self) -> None:
        with self.assertRaises(ValueError):
            HistoryRecorder(_settings(), InMemoryStore()).record_snapshot("bond", "b1", NOW, 1)

    def test_prune_only_on_schedule(self) -> None:
        store = InMemoryStore()
        recorder = HistoryRecorder(_settings(history_prune_every_ticks=12), store)
        recorder.record_snapshot(STOCK, "s1", NOW - timedelta(days=40), 900)
        recorder.record_snapshot(STOCK, "s1", NOW, 1000)

        self.assertEqual(recorder.maybe_prune(11, NOW), 0)
        self.assertEqual(len(store.price_history), 2)
        self.assertEqual(recorder.maybe_prune(12, NOW), 1)
        self.assertEqual([entry.price for entry in store.price_history], [1000])

    def test_prune_failure_is_not_fatal(self) -> None:
        recorder = HistoryRecorder(_settings(history_prune_every_ticks=1), _BrokenPruneStore())
        with self.assertLogs("market_sim.history", level="ERROR"):
            self.assertEqual(recorder.maybe_prune(1, NOW), 0)


if __name__ == "__main__":
    unittest.main()
