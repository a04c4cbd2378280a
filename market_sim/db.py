from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta
import logging
from pathlib import Path
import threading
import uuid
from typing import Any, Iterator
from urllib.parse import urlsplit

import psycopg

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

COMPANY_COLUMNS = (
    "id, owner_id, name, balance, is_public, revenue_annual, profit_margin, "
    "fundamental_multiple, market_cap"
)
STOCK_COLUMNS = "id, company_id, ticker, price, previous_price, total_shares, market_cap, volatility"
CRYPTO_COLUMNS = (
    "id, ticker, name, price, previous_price, total_supply, circulating_supply, market_cap, volatility"
)
PRODUCT_COLUMNS = (
    "id, company_id, name, price, stock, total_sold, total_revenue, quality_rating, "
    "is_active, is_archived, max_per_order"
)
LOAN_COLUMNS = (
    "id, player_id, remaining_balance, accrued_interest, interest_rate, last_interest_applied, status"
)
TICK_COLUMNS = (
    "tick_number, ts, bot_purchases, stock_updates, crypto_updates, bot_failures, stock_failures, "
    "crypto_failures, loan_interest_applied, history_entries, total_budget_spent, "
    "deadline_exceeded, details"
)
NET_WORTH_COLUMNS = "player_id, cash, stock_value, crypto_value, company_equity, net_worth"

# Dependents first, owners last; reset_all walks this list in order.
_RESET_STATEMENTS: tuple[tuple[str, str], ...] = (
    ("price_history", "DELETE FROM price_history"),
    ("tick_records", "DELETE FROM tick_records"),
    ("bot_sales", "DELETE FROM bot_sales"),
    ("holding_valuations", "DELETE FROM holding_valuations"),
    ("player_net_worths", "DELETE FROM player_net_worths"),
    ("loans", "DELETE FROM loans"),
    ("stock_holdings", "DELETE FROM stock_holdings"),
    ("crypto_holdings", "DELETE FROM crypto_holdings"),
    ("products", "DELETE FROM products"),
    ("stocks", "DELETE FROM stocks"),
    ("cryptocurrencies", "DELETE FROM cryptocurrencies"),
    ("companies", "DELETE FROM companies"),
    ("players", "DELETE FROM players"),
)


def _company_from_row(row: tuple[Any, ...]) -> Company:
    return Company(
        id=row[0],
        owner_id=row[1],
        name=row[2],
        balance=int(row[3]),
        is_public=bool(row[4]),
        revenue_annual=int(row[5]) if row[5] is not None else None,
        profit_margin=float(row[6]) if row[6] is not None else None,
        fundamental_multiple=float(row[7]) if row[7] is not None else None,
        market_cap=int(row[8] or 0),
    )


def _stock_from_row(row: tuple[Any, ...]) -> Stock:
    return Stock(
        id=row[0],
        company_id=row[1],
        ticker=row[2],
        price=int(row[3]),
        previous_price=int(row[4]) if row[4] is not None else None,
        total_shares=int(row[5]),
        market_cap=int(row[6] or 0),
        volatility=float(row[7]) if row[7] is not None else None,
    )


def _crypto_from_row(row: tuple[Any, ...]) -> Cryptocurrency:
    return Cryptocurrency(
        id=row[0],
        ticker=row[1],
        name=row[2],
        price=int(row[3]),
        previous_price=int(row[4]) if row[4] is not None else None,
        total_supply=int(row[5]),
        circulating_supply=int(row[6]),
        market_cap=int(row[7] or 0),
        volatility=float(row[8]) if row[8] is not None else None,
    )


def _product_from_row(row: tuple[Any, ...]) -> Product:
    return Product(
        id=row[0],
        company_id=row[1],
        name=row[2],
        price=int(row[3]),
        stock=int(row[4]) if row[4] is not None else None,
        total_sold=int(row[5]),
        total_revenue=int(row[6]),
        quality_rating=float(row[7] or 0.0),
        is_active=bool(row[8]),
        is_archived=bool(row[9]),
        max_per_order=int(row[10]) if row[10] is not None else None,
    )


def _loan_from_row(row: tuple[Any, ...]) -> Loan:
    return Loan(
        id=row[0],
        player_id=row[1],
        remaining_balance=int(row[2]),
        accrued_interest=int(row[3]),
        interest_rate=float(row[4]),
        last_interest_applied=row[5],
        status=row[6],
    )


def _tick_from_row(row: tuple[Any, ...]) -> TickRecord:
    return TickRecord(
        tick_number=int(row[0]),
        timestamp=row[1],
        bot_purchases=int(row[2]),
        stock_updates=int(row[3]),
        crypto_updates=int(row[4]),
        bot_failures=int(row[5]),
        stock_failures=int(row[6]),
        crypto_failures=int(row[7]),
        loan_interest_applied=int(row[8]),
        history_entries=int(row[9]),
        total_budget_spent=int(row[10]),
        deadline_exceeded=bool(row[11]),
        details=row[12] if isinstance(row[12], dict) else {},
    )


def _net_worth_from_row(row: tuple[Any, ...]) -> PlayerNetWorth:
    return PlayerNetWorth(
        player_id=row[0],
        cash=int(row[1]),
        stock_value=int(row[2]),
        crypto_value=int(row[3]),
        company_equity=int(row[4]),
        net_worth=int(row[5]),
    )


class PostgresStore:
    """MarketStore backed by a single psycopg connection.

    Each public method runs in its own transaction under the store lock, so
    the tick worker pool and the HTTP handlers can share one instance.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self._lock = threading.Lock()
        try:
            self.conn = psycopg.connect(database_url, connect_timeout=15)
        except psycopg.OperationalError as exc:
            host = urlsplit(database_url).hostname or "unknown-host"
            raise RuntimeError(
                f"Postgres connection failed for host '{host}'. "
                "Verify DATABASE_URL or the PGHOST/PGUSER variables."
            ) from exc

    def close(self) -> None:
        self.conn.close()

    def ensure_schema(self) -> None:
        schema_sql = Path(__file__).with_name("schema.sql").read_text(encoding="utf-8")
        with self._transaction("ensure_schema") as cur:
            cur.execute(schema_sql)

    @contextmanager
    def _transaction(self, action: str) -> Iterator[psycopg.Cursor]:
        with self._lock:
            try:
                with self.conn.cursor() as cur:
                    yield cur
                self.conn.commit()
            except psycopg.Error as exc:
                self.conn.rollback()
                raise PersistenceFailure(f"{action} failed: {exc}") from exc
            except Exception:
                self.conn.rollback()
                raise

    # -- tick guard -----------------------------------------------------

    def acquire_tick_guard(self, now_utc: datetime, lease_seconds: int) -> TickLease:
        with self._transaction("acquire_tick_guard") as cur:
            cur.execute(
                """
                INSERT INTO tick_state (id, running, started_at)
                VALUES (1, FALSE, NULL)
                ON CONFLICT (id) DO NOTHING
                """
            )
            cur.execute(
                "SELECT running, started_at, last_tick_number FROM tick_state WHERE id = 1 FOR UPDATE"
            )
            running, started_at, reserved = cur.fetchone()
            if running:
                if started_at is not None and now_utc - started_at < timedelta(seconds=lease_seconds):
                    raise TickInProgress()
                logger.warning(
                    "tick_guard_stale_takeover started_at=%s tick_number=%s", started_at, reserved
                )
            cur.execute("SELECT COALESCE(MAX(tick_number), 0) FROM tick_records")
            last = int(cur.fetchone()[0])
            # A taken-over tick keeps its reserved number, so numbers never repeat.
            tick_number = max(last, int(reserved or 0)) + 1
            token = uuid.uuid4().hex
            cur.execute(
                """
                UPDATE tick_state
                SET running = TRUE, started_at = %s, token = %s, last_tick_number = %s
                WHERE id = 1
                """,
                (now_utc, token, tick_number),
            )
            return TickLease(tick_number=tick_number, token=token, started_at=now_utc)

    def complete_tick(self, record: TickRecord, lease: TickLease) -> None:
        with self._transaction("complete_tick") as cur:
            cur.execute(
                """
                UPDATE tick_state
                SET running = FALSE, started_at = NULL, token = NULL
                WHERE id = 1 AND running AND token = %s
                """,
                (lease.token,),
            )
            if cur.rowcount != 1:
                raise TickAborted(f"tick {lease.tick_number} lost its guard to a later tick")
            cur.execute(
                f"""
                INSERT INTO tick_records ({TICK_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    record.tick_number,
                    record.timestamp,
                    record.bot_purchases,
                    record.stock_updates,
                    record.crypto_updates,
                    record.bot_failures,
                    record.stock_failures,
                    record.crypto_failures,
                    record.loan_interest_applied,
                    record.history_entries,
                    record.total_budget_spent,
                    record.deadline_exceeded,
                    psycopg.types.json.Jsonb(record.details),
                ),
            )

    def release_tick_guard(self, lease: TickLease) -> None:
        with self._transaction("release_tick_guard") as cur:
            cur.execute(
                """
                UPDATE tick_state
                SET running = FALSE, started_at = NULL, token = NULL
                WHERE id = 1 AND token = %s
                """,
                (lease.token,),
            )
            if cur.rowcount != 1:
                logger.warning("tick_guard_release_skipped tick_number=%s", lease.tick_number)

    def get_last_tick(self) -> TickRecord | None:
        with self._transaction("get_last_tick") as cur:
            cur.execute(f"SELECT {TICK_COLUMNS} FROM tick_records ORDER BY tick_number DESC LIMIT 1")
            row = cur.fetchone()
        return _tick_from_row(row) if row is not None else None

    def list_ticks(self, *, limit: int = 100) -> list[TickRecord]:
        with self._transaction("list_ticks") as cur:
            cur.execute(
                f"SELECT {TICK_COLUMNS} FROM tick_records ORDER BY tick_number DESC LIMIT %s",
                (limit,),
            )
            rows = cur.fetchall()
        return [_tick_from_row(row) for row in rows]

    # -- reads ----------------------------------------------------------

    def list_stocks(self) -> list[Stock]:
        with self._transaction("list_stocks") as cur:
            cur.execute(f"SELECT {STOCK_COLUMNS} FROM stocks ORDER BY id")
            rows = cur.fetchall()
        return [_stock_from_row(row) for row in rows]

    def list_cryptocurrencies(self) -> list[Cryptocurrency]:
        with self._transaction("list_cryptocurrencies") as cur:
            cur.execute(f"SELECT {CRYPTO_COLUMNS} FROM cryptocurrencies ORDER BY id")
            rows = cur.fetchall()
        return [_crypto_from_row(row) for row in rows]

    def list_companies(self) -> list[Company]:
        with self._transaction("list_companies") as cur:
            cur.execute(f"SELECT {COMPANY_COLUMNS} FROM companies ORDER BY id")
            rows = cur.fetchall()
        return [_company_from_row(row) for row in rows]

    def list_active_products(self) -> list[Product]:
        with self._transaction("list_active_products") as cur:
            cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE is_active ORDER BY id")
            rows = cur.fetchall()
        return [_product_from_row(row) for row in rows]

    def list_active_loans(self) -> list[Loan]:
        with self._transaction("list_active_loans") as cur:
            cur.execute(f"SELECT {LOAN_COLUMNS} FROM loans WHERE status = 'active' ORDER BY id")
            rows = cur.fetchall()
        return [_loan_from_row(row) for row in rows]

    def load_market_state(self) -> MarketState:
        with self._transaction("load_market_state") as cur:
            cur.execute("SELECT id, name, cash, net_worth FROM players")
            players = [
                Player(id=row[0], name=row[1], cash=int(row[2]), net_worth=int(row[3]))
                for row in cur.fetchall()
            ]
            cur.execute(f"SELECT {COMPANY_COLUMNS} FROM companies")
            companies = [_company_from_row(row) for row in cur.fetchall()]
            cur.execute(f"SELECT {STOCK_COLUMNS} FROM stocks")
            stocks = [_stock_from_row(row) for row in cur.fetchall()]
            cur.execute(f"SELECT {CRYPTO_COLUMNS} FROM cryptocurrencies")
            cryptocurrencies = [_crypto_from_row(row) for row in cur.fetchall()]
            cur.execute("SELECT owner_id, stock_id, quantity, total_invested FROM stock_holdings")
            stock_holdings = [
                StockHolding(row[0], row[1], int(row[2]), int(row[3])) for row in cur.fetchall()
            ]
            cur.execute("SELECT owner_id, crypto_id, quantity, total_invested FROM crypto_holdings")
            crypto_holdings = [
                CryptoHolding(row[0], row[1], int(row[2]), int(row[3])) for row in cur.fetchall()
            ]
        return MarketState(
            players=players,
            companies=companies,
            stocks=stocks,
            cryptocurrencies=cryptocurrencies,
            stock_holdings=stock_holdings,
            crypto_holdings=crypto_holdings,
        )

    # -- writes ---------------------------------------------------------

    def record_bot_sale(self, purchase: BotPurchase, now_utc: datetime) -> None:
        with self._transaction("record_bot_sale") as cur:
            cur.execute(
                """
                UPDATE products
                SET stock = CASE WHEN stock IS NULL THEN NULL ELSE stock - %s END,
                    total_sold = total_sold + %s,
                    total_revenue = total_revenue + %s
                WHERE id = %s AND (stock IS NULL OR stock >= %s)
                """,
                (
                    purchase.quantity,
                    purchase.quantity,
                    purchase.total_price,
                    purchase.product_id,
                    purchase.quantity,
                ),
            )
            if cur.rowcount != 1:
                raise PersistenceFailure(
                    f"product {purchase.product_id} missing or short of stock"
                )
            cur.execute(
                """
                UPDATE companies
                SET balance = balance + %s,
                    revenue_annual = COALESCE(revenue_annual, 0) + %s,
                    updated_at = %s
                WHERE id = %s
                """,
                (purchase.total_price, purchase.total_price, now_utc, purchase.company_id),
            )
            if cur.rowcount != 1:
                raise PersistenceFailure(f"company {purchase.company_id} not found")
            cur.execute(
                """
                INSERT INTO bot_sales (product_id, company_id, quantity, total_price, created_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (
                    purchase.product_id,
                    purchase.company_id,
                    purchase.quantity,
                    purchase.total_price,
                    now_utc,
                ),
            )

    def apply_stock_price(self, update: PriceUpdate, now_utc: datetime) -> None:
        with self._transaction("apply_stock_price") as cur:
            cur.execute(
                """
                UPDATE stocks
                SET previous_price = price,
                    price = %s,
                    market_cap = %s * total_shares,
                    updated_at = %s
                WHERE id = %s AND price = %s
                """,
                (update.new_price, update.new_price, now_utc, update.instrument_id, update.old_price),
            )
            if cur.rowcount != 1:
                raise PersistenceFailure(
                    f"stock {update.instrument_id} missing or price moved from {update.old_price}"
                )

    def apply_crypto_price(self, update: PriceUpdate, now_utc: datetime) -> None:
        with self._transaction("apply_crypto_price") as cur:
            cur.execute(
                """
                UPDATE cryptocurrencies
                SET previous_price = price,
                    price = %s,
                    market_cap = %s * GREATEST(circulating_supply, 0),
                    updated_at = %s
                WHERE id = %s AND price = %s
                """,
                (update.new_price, update.new_price, now_utc, update.instrument_id, update.old_price),
            )
            if cur.rowcount != 1:
                raise PersistenceFailure(
                    f"crypto {update.instrument_id} missing or price moved from {update.old_price}"
                )

    def apply_loan_interest(self, charge: LoanInterestCharge) -> None:
        with self._transaction("apply_loan_interest") as cur:
            cur.execute(
                """
                UPDATE loans
                SET remaining_balance = remaining_balance + %s,
                    accrued_interest = accrued_interest + %s,
                    last_interest_applied = %s
                WHERE id = %s AND status = 'active'
                """,
                (charge.amount, charge.amount, charge.applied_at, charge.loan_id),
            )
            if cur.rowcount != 1:
                raise PersistenceFailure(f"loan {charge.loan_id} not found or not active")
            cur.execute(
                "UPDATE players SET cash = cash - %s, updated_at = %s WHERE id = %s",
                (charge.amount, charge.applied_at, charge.player_id),
            )
            if cur.rowcount != 1:
                raise PersistenceFailure(f"player {charge.player_id} not found")

    def save_aggregates(self, snapshot: AggregateSnapshot) -> None:
        with self._transaction("save_aggregates") as cur:
            cur.executemany(
                "UPDATE companies SET market_cap = %s, updated_at = %s WHERE id = %s",
                [
                    (market_cap, snapshot.computed_at, company_id)
                    for company_id, market_cap in snapshot.company_market_caps.items()
                ],
            )
            cur.executemany(
                "UPDATE players SET net_worth = %s, updated_at = %s WHERE id = %s",
                [(row.net_worth, snapshot.computed_at, row.player_id) for row in snapshot.net_worths],
            )
            cur.executemany(
                f"""
                INSERT INTO player_net_worths ({NET_WORTH_COLUMNS}, computed_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (player_id)
                DO UPDATE SET
                    cash = EXCLUDED.cash,
                    stock_value = EXCLUDED.stock_value,
                    crypto_value = EXCLUDED.crypto_value,
                    company_equity = EXCLUDED.company_equity,
                    net_worth = EXCLUDED.net_worth,
                    computed_at = EXCLUDED.computed_at
                """,
                [
                    (
                        row.player_id,
                        row.cash,
                        row.stock_value,
                        row.crypto_value,
                        row.company_equity,
                        row.net_worth,
                        snapshot.computed_at,
                    )
                    for row in snapshot.net_worths
                ],
            )
            cur.execute("DELETE FROM holding_valuations")
            cur.executemany(
                """
                INSERT INTO holding_valuations (
                    instrument_kind,
                    owner_id,
                    instrument_id,
                    quantity,
                    current_value,
                    total_invested,
                    profit_loss,
                    computed_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                [
                    (
                        row.instrument_kind,
                        row.owner_id,
                        row.instrument_id,
                        row.quantity,
                        row.current_value,
                        row.total_invested,
                        row.profit_loss,
                        snapshot.computed_at,
                    )
                    for row in snapshot.holdings
                ],
            )

    # -- history --------------------------------------------------------

    def insert_price_history(self, entry: PriceHistoryEntry) -> None:
        with self._transaction("insert_price_history") as cur:
            cur.execute(
                """
                INSERT INTO price_history (instrument_kind, instrument_id, ts, price)
                VALUES (%s, %s, %s, %s)
                """,
                (entry.instrument_kind, entry.instrument_id, entry.timestamp, entry.price),
            )

    def prune_price_history(self, older_than: datetime) -> int:
        with self._transaction("prune_price_history") as cur:
            cur.execute("DELETE FROM price_history WHERE ts < %s", (older_than,))
            removed = cur.rowcount or 0
        return int(removed)

    def get_price_history(
        self,
        instrument_kind: str,
        instrument_id: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[PriceHistoryEntry]:
        where_parts = ["instrument_kind = %s", "instrument_id = %s"]
        params: list[object] = [instrument_kind, instrument_id]
        if since is not None:
            where_parts.append("ts >= %s")
            params.append(since)
        if until is not None:
            where_parts.append("ts <= %s")
            params.append(until)
        where_sql = " AND ".join(where_parts)
        with self._transaction("get_price_history") as cur:
            cur.execute(
                f"""
                SELECT instrument_kind, instrument_id, ts, price
                FROM price_history
                WHERE {where_sql}
                ORDER BY ts ASC, id ASC
                """,
                tuple(params),
            )
            rows = cur.fetchall()
        return [
            PriceHistoryEntry(
                instrument_kind=row[0],
                instrument_id=row[1],
                timestamp=row[2],
                price=int(row[3]),
            )
            for row in rows
        ]

    # -- aggregate queries ----------------------------------------------

    def get_player_net_worth(self, player_id: str) -> PlayerNetWorth | None:
        with self._transaction("get_player_net_worth") as cur:
            cur.execute(
                f"SELECT {NET_WORTH_COLUMNS} FROM player_net_worths WHERE player_id = %s",
                (player_id,),
            )
            row = cur.fetchone()
        return _net_worth_from_row(row) if row is not None else None

    def get_holding_valuations(self, owner_id: str) -> list[HoldingValuation]:
        with self._transaction("get_holding_valuations") as cur:
            cur.execute(
                """
                SELECT instrument_kind, owner_id, instrument_id, quantity,
                       current_value, total_invested, profit_loss
                FROM holding_valuations
                WHERE owner_id = %s
                ORDER BY instrument_kind ASC, instrument_id ASC
                """,
                (owner_id,),
            )
            rows = cur.fetchall()
        return [
            HoldingValuation(
                instrument_kind=row[0],
                owner_id=row[1],
                instrument_id=row[2],
                quantity=int(row[3]),
                current_value=int(row[4]),
                total_invested=int(row[5]),
                profit_loss=int(row[6]),
            )
            for row in rows
        ]

    def top_players(self, *, limit: int = 10) -> list[PlayerNetWorth]:
        with self._transaction("top_players") as cur:
            cur.execute(
                f"""
                SELECT {NET_WORTH_COLUMNS}
                FROM player_net_worths
                ORDER BY net_worth DESC, player_id ASC
                LIMIT %s
                """,
                (limit,),
            )
            rows = cur.fetchall()
        return [_net_worth_from_row(row) for row in rows]

    def top_companies(self, *, limit: int = 10) -> list[Company]:
        with self._transaction("top_companies") as cur:
            cur.execute(
                f"""
                SELECT {COMPANY_COLUMNS}
                FROM companies
                WHERE is_public
                ORDER BY market_cap DESC, id ASC
                LIMIT %s
                """,
                (limit,),
            )
            rows = cur.fetchall()
        return [_company_from_row(row) for row in rows]

    # -- administration -------------------------------------------------

    def seed(self, content: SeedContent) -> dict[str, int]:
        counts: dict[str, int] = {}
        with self._transaction("seed") as cur:
            inserted = 0
            for player in content.players:
                cur.execute(
                    """
                    INSERT INTO players (id, name, cash, net_worth)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                    """,
                    (player.id, player.name, player.cash, player.net_worth),
                )
                if cur.fetchone() is not None:
                    inserted += 1
            counts["players"] = inserted

            inserted = 0
            for company in content.companies:
                cur.execute(
                    f"""
                    INSERT INTO companies ({COMPANY_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                    """,
                    (
                        company.id,
                        company.owner_id,
                        company.name,
                        company.balance,
                        company.is_public,
                        company.revenue_annual,
                        company.profit_margin,
                        company.fundamental_multiple,
                        company.market_cap,
                    ),
                )
                if cur.fetchone() is not None:
                    inserted += 1
            counts["companies"] = inserted

            inserted = 0
            for stock in content.stocks:
                cur.execute(
                    f"""
                    INSERT INTO stocks ({STOCK_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                    """,
                    (
                        stock.id,
                        stock.company_id,
                        stock.ticker,
                        stock.price,
                        stock.previous_price,
                        stock.total_shares,
                        stock.market_cap,
                        stock.volatility,
                    ),
                )
                if cur.fetchone() is not None:
                    inserted += 1
            counts["stocks"] = inserted

            inserted = 0
            for crypto in content.cryptocurrencies:
                cur.execute(
                    f"""
                    INSERT INTO cryptocurrencies ({CRYPTO_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                    """,
                    (
                        crypto.id,
                        crypto.ticker,
                        crypto.name,
                        crypto.price,
                        crypto.previous_price,
                        crypto.total_supply,
                        crypto.circulating_supply,
                        crypto.market_cap,
                        crypto.volatility,
                    ),
                )
                if cur.fetchone() is not None:
                    inserted += 1
            counts["cryptocurrencies"] = inserted

            inserted = 0
            for product in content.products:
                cur.execute(
                    f"""
                    INSERT INTO products ({PRODUCT_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                    """,
                    (
                        product.id,
                        product.company_id,
                        product.name,
                        product.price,
                        product.stock,
                        product.total_sold,
                        product.total_revenue,
                        product.quality_rating,
                        product.is_active,
                        product.is_archived,
                        product.max_per_order,
                    ),
                )
                if cur.fetchone() is not None:
                    inserted += 1
            counts["products"] = inserted

            inserted = 0
            for holding in content.stock_holdings:
                cur.execute(
                    """
                    INSERT INTO stock_holdings (owner_id, stock_id, quantity, total_invested)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (owner_id, stock_id) DO NOTHING
                    RETURNING owner_id
                    """,
                    (holding.owner_id, holding.stock_id, holding.quantity, holding.total_invested),
                )
                if cur.fetchone() is not None:
                    inserted += 1
            counts["stock_holdings"] = inserted

            inserted = 0
            for holding in content.crypto_holdings:
                cur.execute(
                    """
                    INSERT INTO crypto_holdings (owner_id, crypto_id, quantity, total_invested)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (owner_id, crypto_id) DO NOTHING
                    RETURNING owner_id
                    """,
                    (holding.owner_id, holding.crypto_id, holding.quantity, holding.total_invested),
                )
                if cur.fetchone() is not None:
                    inserted += 1
            counts["crypto_holdings"] = inserted

            inserted = 0
            for loan in content.loans:
                cur.execute(
                    f"""
                    INSERT INTO loans ({LOAN_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                    """,
                    (
                        loan.id,
                        loan.player_id,
                        loan.remaining_balance,
                        loan.accrued_interest,
                        loan.interest_rate,
                        loan.last_interest_applied,
                        loan.status,
                    ),
                )
                if cur.fetchone() is not None:
                    inserted += 1
            counts["loans"] = inserted
        return counts

    def reset_all(self) -> dict[str, int]:
        removed: dict[str, int] = {}
        with self._transaction("reset_all") as cur:
            for name, statement in _RESET_STATEMENTS:
                cur.execute(statement)
                removed[name] = int(cur.rowcount or 0)
            cur.execute(
                """
                UPDATE tick_state
                SET running = FALSE, started_at = NULL, token = NULL, last_tick_number = 0
                WHERE id = 1
                """
            )
        return removed
