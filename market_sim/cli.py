from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone
import sys
from typing import TYPE_CHECKING

from .config import Settings
from .history import HistoryRecorder
from .main import build_store, configure_logging
from .models import CRYPTO, STOCK

if TYPE_CHECKING:
    from .store import MarketStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Market simulation operations CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show last tick and market snapshot")

    ticks_cmd = subparsers.add_parser("ticks", help="Show recent tick records")
    ticks_cmd.add_argument("--last", type=int, default=20)

    history_cmd = subparsers.add_parser("history", help="Show price history for one instrument")
    history_cmd.add_argument("kind", choices=[STOCK, CRYPTO])
    history_cmd.add_argument("instrument_id")
    history_cmd.add_argument("--since", type=_iso_timestamp, default=None, help="ISO-8601 lower bound")
    history_cmd.add_argument("--max-points", type=int, default=None)

    leaderboard_cmd = subparsers.add_parser("leaderboard", help="Show top players or companies")
    leaderboard_cmd.add_argument("board", choices=["players", "companies"])
    leaderboard_cmd.add_argument("--limit", type=int, default=10)

    net_worth_cmd = subparsers.add_parser("net-worth", help="Show one player's net worth breakdown")
    net_worth_cmd.add_argument("player_id")

    holdings_cmd = subparsers.add_parser("holdings", help="Show one player's holdings with profit/loss")
    holdings_cmd.add_argument("player_id")
    return parser


def _iso_timestamp(raw: str) -> datetime:
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an ISO-8601 timestamp, got {raw!r}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _run_status(store: "MarketStore") -> None:
    last = store.get_last_tick()
    stocks = store.list_stocks()
    cryptocurrencies = store.list_cryptocurrencies()
    _print_json(
        {
            "time_utc": datetime.now(timezone.utc).isoformat(),
            "last_tick": last.to_dict() if last else None,
            "stocks": len(stocks),
            "cryptocurrencies": len(cryptocurrencies),
            "total_stock_market_cap": sum(stock.market_cap for stock in stocks),
            "top_players": [row.to_dict() for row in store.top_players(limit=3)],
        }
    )


def _run_ticks(store: "MarketStore", last: int) -> None:
    _print_json([record.to_dict() for record in store.list_ticks(limit=max(1, last))])


def _run_history(
    settings: Settings,
    store: "MarketStore",
    kind: str,
    instrument_id: str,
    since: datetime | None,
    max_points: int | None,
) -> None:
    entries = HistoryRecorder(settings, store).query(
        kind, instrument_id, since=since, max_points=max_points
    )
    _print_json([{"timestamp": entry.timestamp, "price": entry.price} for entry in entries])


def _run_leaderboard(store: "MarketStore", board: str, limit: int) -> None:
    if board == "players":
        _print_json([row.to_dict() for row in store.top_players(limit=max(1, limit))])
        return
    _print_json(
        [
            {"company_id": company.id, "name": company.name, "market_cap": company.market_cap}
            for company in store.top_companies(limit=max(1, limit))
        ]
    )


def _run_net_worth(store: "MarketStore", player_id: str) -> int:
    row = store.get_player_net_worth(player_id)
    if row is None:
        _print_json({"error": "no net worth recorded", "player_id": player_id})
        return 1
    _print_json(row.to_dict())
    return 0


def _run_holdings(store: "MarketStore", player_id: str) -> int:
    rows = store.get_holding_valuations(player_id)
    if not rows and store.get_player_net_worth(player_id) is None:
        _print_json({"error": "no holdings recorded", "player_id": player_id})
        return 1
    _print_json(
        {
            "player_id": player_id,
            "holdings": [row.to_dict() for row in rows],
            "total_profit_loss": sum(row.profit_loss for row in rows),
        }
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    store = build_store(settings)
    try:
        if args.command == "status":
            _run_status(store)
            return 0
        if args.command == "ticks":
            _run_ticks(store, args.last)
            return 0
        if args.command == "history":
            _run_history(settings, store, args.kind, args.instrument_id, args.since, args.max_points)
            return 0
        if args.command == "leaderboard":
            _run_leaderboard(store, args.board, args.limit)
            return 0
        if args.command == "net-worth":
            return _run_net_worth(store, args.player_id)
        if args.command == "holdings":
            return _run_holdings(store, args.player_id)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
