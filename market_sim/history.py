from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING

from .config import Settings
from .models import INSTRUMENT_KINDS, PriceHistoryEntry

if TYPE_CHECKING:
    from .store import MarketStore

logger = logging.getLogger(__name__)


def downsample(entries: list[PriceHistoryEntry], max_points: int) -> list[PriceHistoryEntry]:
    """Thin an ascending series to at most ``max_points`` rows.

    Keeps the last entry of each bucket, so the final point is always the
    latest recorded price.
    """
    if max_points <= 0 or len(entries) <= max_points:
        return list(entries)
    bucket_size = len(entries) / max_points
    sampled: list[PriceHistoryEntry] = []
    for bucket in range(max_points):
        end = int(round((bucket + 1) * bucket_size)) - 1
        end = min(max(end, 0), len(entries) - 1)
        if sampled and sampled[-1] is entries[end]:
            continue
        sampled.append(entries[end])
    if sampled[-1] is not entries[-1]:
        sampled[-1] = entries[-1]
    return sampled


class HistoryRecorder:
    def __init__(self, settings: Settings, store: "MarketStore") -> None:
        self.settings = settings
        self.store = store

    def record_snapshot(
        self, instrument_kind: str, instrument_id: str, timestamp: datetime, price: int
    ) -> PriceHistoryEntry:
        if instrument_kind not in INSTRUMENT_KINDS:
            raise ValueError(f"unknown instrument kind {instrument_kind!r}")
        entry = PriceHistoryEntry(
            instrument_kind=instrument_kind,
            instrument_id=instrument_id,
            timestamp=timestamp,
            price=price,
        )
        self.store.insert_price_history(entry)
        return entry

    def maybe_prune(self, tick_number: int, now_utc: datetime) -> int:
        if self.settings.history_retention_days <= 0:
            return 0
        if tick_number % self.settings.history_prune_every_ticks != 0:
            return 0
        cutoff = now_utc - timedelta(days=self.settings.history_retention_days)
        try:
            removed = self.store.prune_price_history(cutoff)
        except Exception:
            logger.exception("history_prune_failed tick_number=%s cutoff=%s", tick_number, cutoff)
            return 0
        logger.info("history_pruned tick_number=%s removed=%s cutoff=%s", tick_number, removed, cutoff)
        return removed

    def query(
        self,
        instrument_kind: str,
        instrument_id: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        max_points: int | None = None,
    ) -> list[PriceHistoryEntry]:
        entries = self.store.get_price_history(
            instrument_kind, instrument_id, since=since, until=until
        )
        if max_points:
            return downsample(entries, max_points)
        return entries
