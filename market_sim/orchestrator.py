from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import random
import time
from typing import TYPE_CHECKING, Any, Callable, Sequence, TypeVar

from .aggregates import compute_aggregates
from .bots import BotRunResult, BotTradingEngine
from .config import Settings
from .errors import (
    ConfigurationError,
    InvalidComputation,
    PersistenceFailure,
    TickAborted,
    TickInProgress,
)
from .history import HistoryRecorder
from .loans import LoanInterestAccrual
from .models import (
    CRYPTO,
    STOCK,
    Company,
    Cryptocurrency,
    PriceUpdate,
    Stock,
    TickLease,
    TickRecord,
)
from .pricing.crypto import compute_crypto_price
from .pricing.noise import PriceModelParams
from .pricing.stock import compute_stock_price

if TYPE_CHECKING:
    from .notifications import TelegramNotifier
    from .store import MarketStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Sentinel returned by workers that never started because the deadline passed.
_DEADLINE_SKIP = object()


@dataclass
class StageOutcome:
    updates: list[PriceUpdate] = field(default_factory=list)
    failed: int = 0
    deadline_skipped: int = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TickOrchestrator:
    """Runs one market tick end to end.

    Stage order is fixed: bot purchases, stock prices, crypto prices, loan
    interest, aggregates, history. Work inside the two price stages fans out
    over a bounded thread pool; a failing instrument is logged and left at its
    last price. Only a failure around the tick guard aborts the tick.
    """

    def __init__(
        self,
        settings: Settings,
        store: "MarketStore",
        *,
        notifier: "TelegramNotifier | None" = None,
        rng_seed: str | int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.notifier = notifier
        self.rng_seed = rng_seed
        self._clock = clock or _utc_now
        self.bots = BotTradingEngine(settings, store)
        self.history = HistoryRecorder(settings, store)
        self.loans = LoanInterestAccrual(settings, store)
        self.stock_params = PriceModelParams.for_stocks(settings)
        self.crypto_params = PriceModelParams.for_crypto(settings)
        self.last_tick: TickRecord | None = None

    def _rng(self, tick_number: int, instrument_id: str) -> random.Random:
        if self.rng_seed is None:
            return random.Random()
        return random.Random(f"{self.rng_seed}:{tick_number}:{instrument_id}")

    def _deadline_passed(self, deadline: datetime) -> bool:
        return self._clock() >= deadline

    def get_runtime_status(self) -> dict[str, object]:
        last = self.last_tick
        return {
            "last_tick_number": last.tick_number if last else None,
            "last_tick_at": last.timestamp.isoformat() if last else None,
            "last_metrics": last.to_dict() if last else {},
            "tick_interval_minutes": self.settings.tick_interval_minutes,
            "worker_count": self.settings.worker_count,
        }

    # -- stages ---------------------------------------------------------

    def _run_parallel(
        self,
        kind: str,
        items: Sequence[T],
        item_id: Callable[[T], str],
        task: Callable[[T], PriceUpdate],
        deadline: datetime,
    ) -> StageOutcome:
        outcome = StageOutcome()
        if not items:
            return outcome

        def guarded(item: T) -> Any:
            if self._deadline_passed(deadline):
                return _DEADLINE_SKIP
            return task(item)

        max_workers = max(1, min(self.settings.worker_count, len(items)))
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"tick-{kind}") as pool:
            futures = [(item, pool.submit(guarded, item)) for item in items]
            for item, future in futures:
                instrument_id = item_id(item)
                try:
                    result = future.result()
                except (InvalidComputation, ConfigurationError) as exc:
                    outcome.failed += 1
                    logger.warning(
                        "price_update_skipped kind=%s id=%s error=%s reason=%s",
                        kind,
                        instrument_id,
                        type(exc).__name__,
                        exc,
                    )
                    continue
                except PersistenceFailure as exc:
                    outcome.failed += 1
                    logger.error(
                        "price_write_failed kind=%s id=%s reason=%s", kind, instrument_id, exc
                    )
                    continue
                except Exception:
                    outcome.failed += 1
                    logger.exception("price_update_failed kind=%s id=%s", kind, instrument_id)
                    continue
                if result is _DEADLINE_SKIP:
                    outcome.deadline_skipped += 1
                    continue
                outcome.updates.append(result)
        return outcome

    def update_stock_prices(self, tick_number: int, now_utc: datetime, deadline: datetime) -> StageOutcome:
        stocks = self.store.list_stocks()
        # Read companies after bot sales so this tick's revenue feeds this tick's anchor.
        companies: dict[str, Company] = {company.id: company for company in self.store.list_companies()}

        def task(stock: Stock) -> PriceUpdate:
            result = compute_stock_price(
                stock,
                companies.get(stock.company_id),
                params=self.stock_params,
                rng=self._rng(tick_number, stock.id),
                now=now_utc,
            )
            update = PriceUpdate(
                instrument_kind=STOCK,
                instrument_id=stock.id,
                old_price=result.old_price,
                new_price=result.new_price,
                market_cap=result.market_cap,
            )
            self.store.apply_stock_price(update, now_utc)
            return update

        return self._run_parallel(STOCK, stocks, lambda stock: stock.id, task, deadline)

    def update_crypto_prices(self, tick_number: int, now_utc: datetime, deadline: datetime) -> StageOutcome:
        cryptocurrencies = self.store.list_cryptocurrencies()

        def task(crypto: Cryptocurrency) -> PriceUpdate:
            result = compute_crypto_price(
                crypto,
                params=self.crypto_params,
                rng=self._rng(tick_number, crypto.id),
                now=now_utc,
            )
            update = PriceUpdate(
                instrument_kind=CRYPTO,
                instrument_id=crypto.id,
                old_price=result.old_price,
                new_price=result.new_price,
                market_cap=result.market_cap,
            )
            self.store.apply_crypto_price(update, now_utc)
            return update

        return self._run_parallel(CRYPTO, cryptocurrencies, lambda crypto: crypto.id, task, deadline)

    def recalculate_aggregates(self, now_utc: datetime) -> None:
        state = self.store.load_market_state()
        snapshot = compute_aggregates(state, now_utc)
        self.store.save_aggregates(snapshot)
        logger.info(
            "aggregates_saved players=%s holdings=%s companies=%s",
            len(snapshot.net_worths),
            len(snapshot.holdings),
            len(snapshot.company_market_caps),
        )

    def record_history(self, updates: list[PriceUpdate], now_utc: datetime) -> tuple[int, int]:
        recorded = 0
        failed = 0
        for update in updates:
            try:
                self.history.record_snapshot(
                    update.instrument_kind, update.instrument_id, now_utc, update.new_price
                )
            except Exception:
                failed += 1
                logger.exception(
                    "history_write_failed kind=%s id=%s", update.instrument_kind, update.instrument_id
                )
                continue
            recorded += 1
        return recorded, failed

    # -- tick -----------------------------------------------------------

    def _execute(self, tick_number: int, now_utc: datetime, deadline: datetime) -> TickRecord:
        bot_result = BotRunResult()
        stocks = StageOutcome()
        cryptos = StageOutcome()
        loans_applied = 0
        loans_failed = 0
        stage_failures: list[str] = []

        if not self._deadline_passed(deadline):
            try:
                bot_result = self.bots.run_bot_purchases(now_utc)
            except Exception:
                stage_failures.append("bots")
                logger.exception("tick_stage_failed stage=bots tick_number=%s", tick_number)

        try:
            stocks = self.update_stock_prices(tick_number, now_utc, deadline)
        except Exception:
            stage_failures.append("stocks")
            logger.exception("tick_stage_failed stage=stocks tick_number=%s", tick_number)

        try:
            cryptos = self.update_crypto_prices(tick_number, now_utc, deadline)
        except Exception:
            stage_failures.append("crypto")
            logger.exception("tick_stage_failed stage=crypto tick_number=%s", tick_number)

        if not self._deadline_passed(deadline):
            try:
                loans_applied, loans_failed = self.loans.apply(now_utc)
            except Exception:
                stage_failures.append("loans")
                logger.exception("tick_stage_failed stage=loans tick_number=%s", tick_number)

        try:
            self.recalculate_aggregates(now_utc)
        except Exception:
            stage_failures.append("aggregates")
            logger.exception("tick_stage_failed stage=aggregates tick_number=%s", tick_number)

        history_recorded, history_failed = self.record_history(
            stocks.updates + cryptos.updates, now_utc
        )
        self.history.maybe_prune(tick_number, now_utc)

        deadline_exceeded = bool(stocks.deadline_skipped or cryptos.deadline_skipped) or (
            self._deadline_passed(deadline)
        )
        return TickRecord(
            tick_number=tick_number,
            timestamp=now_utc,
            bot_purchases=bot_result.count,
            stock_updates=len(stocks.updates),
            crypto_updates=len(cryptos.updates),
            bot_failures=bot_result.failed,
            stock_failures=stocks.failed,
            crypto_failures=cryptos.failed,
            loan_interest_applied=loans_applied,
            history_entries=history_recorded,
            total_budget_spent=bot_result.total_spent,
            deadline_exceeded=deadline_exceeded,
            details={
                "bot_purchases": [asdict(purchase) for purchase in bot_result.purchases],
                "stock_price_updates": [
                    {"id": u.instrument_id, "old": u.old_price, "new": u.new_price}
                    for u in stocks.updates
                ],
                "crypto_price_updates": [
                    {"id": u.instrument_id, "old": u.old_price, "new": u.new_price}
                    for u in cryptos.updates
                ],
                "deadline_skipped": stocks.deadline_skipped + cryptos.deadline_skipped,
                "loan_interest_failures": loans_failed,
                "history_failures": history_failed,
                "stage_failures": stage_failures,
            },
        )

    def _release_guard(self, lease: TickLease) -> None:
        try:
            self.store.release_tick_guard(lease)
        except Exception:
            logger.exception("tick_guard_release_failed tick_number=%s", lease.tick_number)

    def run_tick(self, deadline: datetime | None = None) -> TickRecord:
        started = self._clock()
        if deadline is None:
            deadline = started + timedelta(seconds=self.settings.tick_deadline_seconds)
        try:
            lease = self.store.acquire_tick_guard(started, self.settings.tick_lease_seconds)
        except TickInProgress:
            logger.warning("tick_rejected reason=in_progress")
            raise
        except Exception as exc:
            logger.exception("tick_guard_acquire_failed")
            raise TickAborted("could not acquire the tick guard") from exc

        tick_number = lease.tick_number
        logger.info("tick_started tick_number=%s", tick_number)
        try:
            record = self._execute(tick_number, started, deadline)
        except Exception:
            self._release_guard(lease)
            raise

        elapsed = (self._clock() - started).total_seconds()
        if elapsed > self.settings.tick_lease_seconds:
            logger.warning(
                "tick_lease_overrun tick_number=%s elapsed_seconds=%.1f lease_seconds=%s",
                tick_number,
                elapsed,
                self.settings.tick_lease_seconds,
            )

        try:
            self.store.complete_tick(record, lease)
        except TickAborted:
            logger.error("tick_guard_lost tick_number=%s", tick_number)
            raise
        except Exception as exc:
            logger.exception("tick_record_write_failed tick_number=%s", tick_number)
            self._release_guard(lease)
            raise TickAborted(f"could not persist tick {tick_number}") from exc

        self.last_tick = record
        metrics = " ".join(f"{key}={value}" for key, value in record.to_dict().items())
        logger.info("tick_complete %s", metrics)
        self._notify(record)
        return record

    def _notify(self, record: TickRecord) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify_tick(record)
        except Exception:
            logger.exception("tick_notify_failed tick_number=%s", record.tick_number)

    def run_forever(self) -> None:
        interval_seconds = self.settings.tick_interval_minutes * 60
        while True:
            started = time.monotonic()
            try:
                self.run_tick()
            except TickInProgress:
                logger.info("tick_skipped reason=in_progress")
            except Exception:
                logger.exception("tick_failed")
            elapsed = time.monotonic() - started
            time.sleep(max(1, interval_seconds - int(elapsed)))
