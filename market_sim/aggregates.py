from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from .models import (
    CRYPTO,
    STOCK,
    AggregateSnapshot,
    HoldingValuation,
    MarketState,
    PlayerNetWorth,
)


def compute_aggregates(state: MarketState, computed_at: datetime) -> AggregateSnapshot:
    """Derive market caps, holding values and net worths from current prices.

    Pure: reads ``state`` only, so the result does not depend on the order the
    players, holdings or instruments are listed in.
    """
    stock_prices = {stock.id: stock.price for stock in state.stocks}
    crypto_prices = {crypto.id: crypto.price for crypto in state.cryptocurrencies}

    company_market_caps: dict[str, int] = {company.id: 0 for company in state.companies}
    for stock in state.stocks:
        if stock.total_shares > 0:
            company_market_caps[stock.company_id] = stock.price * stock.total_shares

    holdings: list[HoldingValuation] = []
    stock_value_by_owner: dict[str, int] = defaultdict(int)
    crypto_value_by_owner: dict[str, int] = defaultdict(int)

    for holding in state.stock_holdings:
        price = stock_prices.get(holding.stock_id)
        if price is None:
            continue
        value = holding.quantity * price
        stock_value_by_owner[holding.owner_id] += value
        holdings.append(
            HoldingValuation(
                instrument_kind=STOCK,
                owner_id=holding.owner_id,
                instrument_id=holding.stock_id,
                quantity=holding.quantity,
                current_value=value,
                total_invested=holding.total_invested,
                profit_loss=value - holding.total_invested,
            )
        )

    for holding in state.crypto_holdings:
        price = crypto_prices.get(holding.crypto_id)
        if price is None:
            continue
        value = holding.quantity * price
        crypto_value_by_owner[holding.owner_id] += value
        holdings.append(
            HoldingValuation(
                instrument_kind=CRYPTO,
                owner_id=holding.owner_id,
                instrument_id=holding.crypto_id,
                quantity=holding.quantity,
                current_value=value,
                total_invested=holding.total_invested,
                profit_loss=value - holding.total_invested,
            )
        )

    equity_by_owner: dict[str, int] = defaultdict(int)
    for company in state.companies:
        if company.owner_id is None:
            continue
        equity = company.balance
        if company.is_public:
            equity += company_market_caps.get(company.id, 0)
        equity_by_owner[company.owner_id] += equity

    net_worths: list[PlayerNetWorth] = []
    for player in state.players:
        stock_value = stock_value_by_owner.get(player.id, 0)
        crypto_value = crypto_value_by_owner.get(player.id, 0)
        company_equity = equity_by_owner.get(player.id, 0)
        net_worths.append(
            PlayerNetWorth(
                player_id=player.id,
                cash=player.cash,
                stock_value=stock_value,
                crypto_value=crypto_value,
                company_equity=company_equity,
                net_worth=player.cash + stock_value + crypto_value + company_equity,
            )
        )

    return AggregateSnapshot(
        computed_at=computed_at,
        company_market_caps=company_market_caps,
        holdings=holdings,
        net_worths=net_worths,
    )
