from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
import logging
import threading
import uuid
from typing import Callable

from .errors import PersistenceFailure, TickAborted, TickInProgress
from .models import (
    AggregateSnapshot,
    BotPurchase,
    Company,
    CryptoHolding,
    Cryptocurrency,
    HoldingValuation,
    Loan,
    LoanInterestCharge,
    MarketState,
    Player,
    PlayerNetWorth,
    PriceHistoryEntry,
    PriceUpdate,
    Product,
    Stock,
    StockHolding,
    TickLease,
    TickRecord,
)
from .store import SeedContent

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Process-local store used in stub mode and by the test suite.

    Every method takes the store lock, so each call is atomic with respect to
    the others, mirroring one transaction per call in PostgresStore.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.companies: dict[str, Company] = {}
        self.stocks: dict[str, Stock] = {}
        self.cryptocurrencies: dict[str, Cryptocurrency] = {}
        self.products: dict[str, Product] = {}
        self.players: dict[str, Player] = {}
        self.stock_holdings: list[StockHolding] = []
        self.crypto_holdings: list[CryptoHolding] = []
        self.loans: dict[str, Loan] = {}
        self.price_history: list[PriceHistoryEntry] = []
        self.tick_records: list[TickRecord] = []
        self.bot_sales: list[tuple[datetime, BotPurchase]] = []
        self.holding_valuations: list[HoldingValuation] = []
        self.net_worths: dict[str, PlayerNetWorth] = {}
        self._tick_token: str | None = None
        self._last_tick_number = 0
        self._tick_started_at: datetime | None = None

    def close(self) -> None:
        return None

    # -- tick guard -----------------------------------------------------

    def acquire_tick_guard(self, now_utc: datetime, lease_seconds: int) -> TickLease:
        with self._lock:
            if self._tick_token is not None:
                started_at = self._tick_started_at
                if started_at is not None and now_utc - started_at < timedelta(seconds=lease_seconds):
                    raise TickInProgress()
                logger.warning(
                    "tick_guard_stale_takeover started_at=%s tick_number=%s",
                    started_at,
                    self._last_tick_number,
                )
            last = max((record.tick_number for record in self.tick_records), default=0)
            self._last_tick_number = max(last, self._last_tick_number) + 1
            self._tick_token = uuid.uuid4().hex
            self._tick_started_at = now_utc
            return TickLease(self._last_tick_number, self._tick_token, now_utc)

    def complete_tick(self, record: TickRecord, lease: TickLease) -> None:
        with self._lock:
            if self._tick_token != lease.token:
                raise TickAborted(f"tick {lease.tick_number} lost its guard to a later tick")
            if any(existing.tick_number == record.tick_number for existing in self.tick_records):
                raise PersistenceFailure(f"tick {record.tick_number} already recorded")
            self.tick_records.append(record)
            self._tick_token = None
            self._tick_started_at = None

    def release_tick_guard(self, lease: TickLease) -> None:
        with self._lock:
            if self._tick_token != lease.token:
                logger.warning("tick_guard_release_skipped tick_number=%s", lease.tick_number)
                return
            self._tick_token = None
            self._tick_started_at = None

    def get_last_tick(self) -> TickRecord | None:
        with self._lock:
            if not self.tick_records:
                return None
            return max(self.tick_records, key=lambda record: record.tick_number)

    def list_ticks(self, *, limit: int = 100) -> list[TickRecord]:
        with self._lock:
            ordered = sorted(self.tick_records, key=lambda record: record.tick_number, reverse=True)
            return ordered[:limit]

    # -- reads ----------------------------------------------------------

    def list_stocks(self) -> list[Stock]:
        with self._lock:
            return list(self.stocks.values())

    def list_cryptocurrencies(self) -> list[Cryptocurrency]:
        with self._lock:
            return list(self.cryptocurrencies.values())

    def list_companies(self) -> list[Company]:
        with self._lock:
            return list(self.companies.values())

    def list_active_products(self) -> list[Product]:
        with self._lock:
            return [product for product in self.products.values() if product.is_active]

    def list_active_loans(self) -> list[Loan]:
        with self._lock:
            return [loan for loan in self.loans.values() if loan.status == "active"]

    def load_market_state(self) -> MarketState:
        with self._lock:
            return MarketState(
                players=list(self.players.values()),
                companies=list(self.companies.values()),
                stocks=list(self.stocks.values()),
                cryptocurrencies=list(self.cryptocurrencies.values()),
                stock_holdings=list(self.stock_holdings),
                crypto_holdings=list(self.crypto_holdings),
            )

    # -- writes ---------------------------------------------------------

    def record_bot_sale(self, purchase: BotPurchase, now_utc: datetime) -> None:
        with self._lock:
            product = self.products.get(purchase.product_id)
            company = self.companies.get(purchase.company_id)
            if product is None or company is None:
                raise PersistenceFailure(
                    f"bot sale references missing product={purchase.product_id} "
                    f"company={purchase.company_id}"
                )
            if product.stock is not None and product.stock < purchase.quantity:
                raise PersistenceFailure(f"product {product.id} has insufficient stock")
            self.products[product.id] = replace(
                product,
                stock=None if product.stock is None else product.stock - purchase.quantity,
                total_sold=product.total_sold + purchase.quantity,
                total_revenue=product.total_revenue + purchase.total_price,
            )
            self.companies[company.id] = replace(
                company,
                balance=company.balance + purchase.total_price,
                revenue_annual=(company.revenue_annual or 0) + purchase.total_price,
            )
            self.bot_sales.append((now_utc, purchase))

    def apply_stock_price(self, update: PriceUpdate, now_utc: datetime) -> None:
        with self._lock:
            stock = self.stocks.get(update.instrument_id)
            if stock is None:
                raise PersistenceFailure(f"stock {update.instrument_id} not found")
            if stock.price != update.old_price:
                raise PersistenceFailure(
                    f"stock {stock.id} price moved from {update.old_price} to {stock.price}"
                )
            self.stocks[stock.id] = replace(
                stock,
                previous_price=stock.price,
                price=update.new_price,
                market_cap=update.new_price * stock.total_shares,
            )

    def apply_crypto_price(self, update: PriceUpdate, now_utc: datetime) -> None:
        with self._lock:
            crypto = self.cryptocurrencies.get(update.instrument_id)
            if crypto is None:
                raise PersistenceFailure(f"crypto {update.instrument_id} not found")
            if crypto.price != update.old_price:
                raise PersistenceFailure(
                    f"crypto {crypto.id} price moved from {update.old_price} to {crypto.price}"
                )
            self.cryptocurrencies[crypto.id] = replace(
                crypto,
                previous_price=crypto.price,
                price=update.new_price,
                market_cap=update.new_price * max(0, crypto.circulating_supply),
            )

    def apply_loan_interest(self, charge: LoanInterestCharge) -> None:
        with self._lock:
            loan = self.loans.get(charge.loan_id)
            player = self.players.get(charge.player_id)
            if loan is None or player is None:
                raise PersistenceFailure(f"loan {charge.loan_id} or its borrower is missing")
            self.loans[loan.id] = replace(
                loan,
                remaining_balance=loan.remaining_balance + charge.amount,
                accrued_interest=loan.accrued_interest + charge.amount,
                last_interest_applied=charge.applied_at,
            )
            self.players[player.id] = replace(player, cash=player.cash - charge.amount)

    def save_aggregates(self, snapshot: AggregateSnapshot) -> None:
        with self._lock:
            for company_id, market_cap in snapshot.company_market_caps.items():
                company = self.companies.get(company_id)
                if company is not None:
                    self.companies[company_id] = replace(company, market_cap=market_cap)
            for row in snapshot.net_worths:
                player = self.players.get(row.player_id)
                if player is not None:
                    self.players[row.player_id] = replace(player, net_worth=row.net_worth)
                self.net_worths[row.player_id] = row
            self.holding_valuations = list(snapshot.holdings)

    # -- history --------------------------------------------------------

    def insert_price_history(self, entry: PriceHistoryEntry) -> None:
        with self._lock:
            self.price_history.append(entry)

    def prune_price_history(self, older_than: datetime) -> int:
        with self._lock:
            kept = [entry for entry in self.price_history if entry.timestamp >= older_than]
            removed = len(self.price_history) - len(kept)
            self.price_history = kept
            return removed

    def get_price_history(
        self,
        instrument_kind: str,
        instrument_id: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[PriceHistoryEntry]:
        with self._lock:
            rows = [
                entry
                for entry in self.price_history
                if entry.instrument_kind == instrument_kind
                and entry.instrument_id == instrument_id
                and (since is None or entry.timestamp >= since)
                and (until is None or entry.timestamp <= until)
            ]
        rows.sort(key=lambda entry: entry.timestamp)
        return rows

    # -- aggregate queries ----------------------------------------------

    def get_player_net_worth(self, player_id: str) -> PlayerNetWorth | None:
        with self._lock:
            return self.net_worths.get(player_id)

    def get_holding_valuations(self, owner_id: str) -> list[HoldingValuation]:
        with self._lock:
            rows = [row for row in self.holding_valuations if row.owner_id == owner_id]
        rows.sort(key=lambda row: (row.instrument_kind, row.instrument_id))
        return rows

    def top_players(self, *, limit: int = 10) -> list[PlayerNetWorth]:
        with self._lock:
            rows = sorted(self.net_worths.values(), key=lambda row: row.net_worth, reverse=True)
            return rows[:limit]

    def top_companies(self, *, limit: int = 10) -> list[Company]:
        with self._lock:
            public = [company for company in self.companies.values() if company.is_public]
        public.sort(key=lambda company: company.market_cap, reverse=True)
        return public[:limit]

    # -- administration -------------------------------------------------

    def seed(self, content: SeedContent) -> dict[str, int]:
        with self._lock:
            for company in content.companies:
                self.companies[company.id] = company
            for stock in content.stocks:
                self.stocks[stock.id] = stock
            for crypto in content.cryptocurrencies:
                self.cryptocurrencies[crypto.id] = crypto
            for product in content.products:
                self.products[product.id] = product
            for player in content.players:
                self.players[player.id] = player
            for loan in content.loans:
                self.loans[loan.id] = loan
            self.stock_holdings.extend(content.stock_holdings)
            self.crypto_holdings.extend(content.crypto_holdings)
        return {
            "companies": len(content.companies),
            "stocks": len(content.stocks),
            "cryptocurrencies": len(content.cryptocurrencies),
            "products": len(content.products),
            "players": len(content.players),
            "stock_holdings": len(content.stock_holdings),
            "crypto_holdings": len(content.crypto_holdings),
            "loans": len(content.loans),
        }

    def _clear_price_history(self) -> int:
        removed = len(self.price_history)
        self.price_history = []
        return removed

    def _clear_tick_records(self) -> int:
        removed = len(self.tick_records)
        self.tick_records = []
        return removed

    def _clear_bot_sales(self) -> int:
        removed = len(self.bot_sales)
        self.bot_sales = []
        return removed

    def _clear_aggregates(self) -> int:
        removed = len(self.holding_valuations) + len(self.net_worths)
        self.holding_valuations = []
        self.net_worths = {}
        return removed

    def _clear_loans(self) -> int:
        removed = len(self.loans)
        self.loans = {}
        return removed

    def _clear_holdings(self) -> int:
        removed = len(self.stock_holdings) + len(self.crypto_holdings)
        self.stock_holdings = []
        self.crypto_holdings = []
        return removed

    def _clear_products(self) -> int:
        removed = len(self.products)
        self.products = {}
        return removed

    def _clear_stocks(self) -> int:
        removed = len(self.stocks)
        self.stocks = {}
        return removed

    def _clear_cryptocurrencies(self) -> int:
        removed = len(self.cryptocurrencies)
        self.cryptocurrencies = {}
        return removed

    def _clear_companies(self) -> int:
        removed = len(self.companies)
        self.companies = {}
        return removed

    def _clear_players(self) -> int:
        removed = len(self.players)
        self.players = {}
        return removed

    def _reset_registry(self) -> list[tuple[str, Callable[[], int]]]:
        # Dependents first, owners last.
        return [
            ("price_history", self._clear_price_history),
            ("tick_records", self._clear_tick_records),
            ("bot_sales", self._clear_bot_sales),
            ("aggregates", self._clear_aggregates),
            ("loans", self._clear_loans),
            ("holdings", self._clear_holdings),
            ("products", self._clear_products),
            ("stocks", self._clear_stocks),
            ("cryptocurrencies", self._clear_cryptocurrencies),
            ("companies", self._clear_companies),
            ("players", self._clear_players),
        ]

    def reset_all(self) -> dict[str, int]:
        with self._lock:
            removed = {name: clear() for name, clear in self._reset_registry()}
            self._tick_token = None
            self._last_tick_number = 0
            self._tick_started_at = None
        return removed

