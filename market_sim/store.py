from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

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


@dataclass
class SeedContent:
    companies: list[Company] = field(default_factory=list)
    stocks: list[Stock] = field(default_factory=list)
    cryptocurrencies: list[Cryptocurrency] = field(default_factory=list)
    products: list[Product] = field(default_factory=list)
    players: list[Player] = field(default_factory=list)
    stock_holdings: list[StockHolding] = field(default_factory=list)
    crypto_holdings: list[CryptoHolding] = field(default_factory=list)
    loans: list[Loan] = field(default_factory=list)


class MarketStore(Protocol):
    """Single authoritative store behind the tick engine.

    Price, previous price and market cap are written only through
    ``apply_stock_price`` / ``apply_crypto_price``; both are conditional on the
    price the caller read, so a concurrent writer turns into a
    PersistenceFailure instead of a lost update.
    """

    # tick guard; complete_tick raises TickAborted and release_tick_guard is a
    # no-op once the lease has been taken over by a later tick
    def acquire_tick_guard(self, now_utc: datetime, lease_seconds: int) -> TickLease: ...

    def complete_tick(self, record: TickRecord, lease: TickLease) -> None: ...

    def release_tick_guard(self, lease: TickLease) -> None: ...

    def get_last_tick(self) -> TickRecord | None: ...

    def list_ticks(self, *, limit: int = 100) -> list[TickRecord]: ...

    # reads
    def list_stocks(self) -> list[Stock]: ...

    def list_cryptocurrencies(self) -> list[Cryptocurrency]: ...

    def list_companies(self) -> list[Company]: ...

    def list_active_products(self) -> list[Product]: ...

    def list_active_loans(self) -> list[Loan]: ...

    def load_market_state(self) -> MarketState: ...

    # writes
    def record_bot_sale(self, purchase: BotPurchase, now_utc: datetime) -> None: ...

    def apply_stock_price(self, update: PriceUpdate, now_utc: datetime) -> None: ...

    def apply_crypto_price(self, update: PriceUpdate, now_utc: datetime) -> None: ...

    def apply_loan_interest(self, charge: LoanInterestCharge) -> None: ...

    def save_aggregates(self, snapshot: AggregateSnapshot) -> None: ...

    # history
    def insert_price_history(self, entry: PriceHistoryEntry) -> None: ...

    def prune_price_history(self, older_than: datetime) -> int: ...

    def get_price_history(
        self,
        instrument_kind: str,
        instrument_id: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[PriceHistoryEntry]: ...

    # aggregate queries
    def get_player_net_worth(self, player_id: str) -> PlayerNetWorth | None: ...

    def get_holding_valuations(self, owner_id: str) -> list[HoldingValuation]: ...

    def top_players(self, *, limit: int = 10) -> list[PlayerNetWorth]: ...

    def top_companies(self, *, limit: int = 10) -> list[Company]: ...

    # administration
    def seed(self, content: SeedContent) -> dict[str, int]: ...

    def reset_all(self) -> dict[str, int]: ...

    def close(self) -> None: ...
