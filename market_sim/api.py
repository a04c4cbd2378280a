from __future__ import annotations

from datetime import datetime, timezone
from functools import wraps
import hmac
import logging
from typing import TYPE_CHECKING, Any, Callable

from flask import Flask, jsonify, request

from .config import Settings
from .errors import MarketSimError, PersistenceFailure, TickAborted, TickInProgress
from .history import HistoryRecorder
from .models import CRYPTO, STOCK

if TYPE_CHECKING:
    from .orchestrator import TickOrchestrator
    from .store import MarketStore

logger = logging.getLogger(__name__)

HISTORY_KINDS = {"stocks": STOCK, "crypto": CRYPTO}
MAX_LIST_LIMIT = 500


class BadRequest(ValueError):
    pass


def handle_market_errors(func: Callable[..., Any]):
    """Map engine exceptions onto JSON error responses."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except BadRequest as exc:
            return jsonify({"error": "bad_request", "detail": str(exc)}), 400
        except TickInProgress as exc:
            return jsonify({"error": "tick_in_progress", "detail": str(exc)}), 409
        except TickAborted as exc:
            return jsonify({"error": "tick_aborted", "detail": str(exc)}), 500
        except PersistenceFailure as exc:
            logger.error("api_store_failed path=%s reason=%s", request.path, exc)
            return jsonify({"error": "store_unavailable"}), 503
        except MarketSimError as exc:
            return jsonify({"error": type(exc).__name__, "detail": str(exc)}), 500

    return wrapper


def _parse_timestamp(name: str) -> datetime | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise BadRequest(f"{name} must be an ISO-8601 timestamp") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _parse_int(name: str, default: int | None) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise BadRequest(f"{name} must be an integer") from exc
    if value <= 0:
        raise BadRequest(f"{name} must be positive")
    return value


def _limit(default: int = 10) -> int:
    return min(_parse_int("limit", default) or default, MAX_LIST_LIMIT)


def create_app(
    settings: Settings,
    store: "MarketStore",
    orchestrator: "TickOrchestrator | None" = None,
) -> Flask:
    app = Flask(__name__)
    history = HistoryRecorder(settings, store)

    def _authorized() -> bool:
        if not settings.tick_trigger_token:
            return True
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            return False
        return hmac.compare_digest(header[len("Bearer "):], settings.tick_trigger_token)

    @app.get("/health")
    def health():
        return jsonify({"ok": True, "store": settings.store_backend})

    @app.post("/tick")
    @handle_market_errors
    def trigger_tick():
        if orchestrator is None:
            return jsonify({"error": "tick trigger disabled"}), 404
        if not _authorized():
            return jsonify({"error": "unauthorized"}), 401
        record = orchestrator.run_tick()
        return jsonify(record.to_dict())

    @app.get("/ticks/last")
    @handle_market_errors
    def last_tick():
        record = store.get_last_tick()
        if record is None:
            return jsonify({"error": "no ticks recorded"}), 404
        return jsonify(record.to_dict())

    @app.get("/ticks")
    @handle_market_errors
    def list_ticks():
        records = store.list_ticks(limit=_limit(100))
        return jsonify([record.to_dict() for record in records])

    @app.get("/history/<kind>/<instrument_id>")
    @handle_market_errors
    def price_history(kind: str, instrument_id: str):
        instrument_kind = HISTORY_KINDS.get(kind)
        if instrument_kind is None:
            return jsonify({"error": "unknown instrument kind", "kind": kind}), 404
        entries = history.query(
            instrument_kind,
            instrument_id,
            since=_parse_timestamp("since"),
            until=_parse_timestamp("until"),
            max_points=_parse_int("max_points", None),
        )
        return jsonify(
            [{"timestamp": entry.timestamp.isoformat(), "price": entry.price} for entry in entries]
        )

    @app.get("/players/<player_id>/net-worth")
    @handle_market_errors
    def player_net_worth(player_id: str):
        row = store.get_player_net_worth(player_id)
        if row is None:
            return jsonify({"error": "player not found", "player_id": player_id}), 404
        return jsonify(row.to_dict())

    @app.get("/players/<player_id>/holdings")
    @handle_market_errors
    def player_holdings(player_id: str):
        rows = store.get_holding_valuations(player_id)
        if not rows and store.get_player_net_worth(player_id) is None:
            return jsonify({"error": "player not found", "player_id": player_id}), 404
        return jsonify([row.to_dict() for row in rows])

    @app.get("/leaderboard/players")
    @handle_market_errors
    def leaderboard_players():
        return jsonify([row.to_dict() for row in store.top_players(limit=_limit())])

    @app.get("/leaderboard/companies")
    @handle_market_errors
    def leaderboard_companies():
        return jsonify(
            [
                {
                    "companyId": company.id,
                    "name": company.name,
                    "ownerId": company.owner_id,
                    "marketCap": company.market_cap,
                    "balance": company.balance,
                }
                for company in store.top_companies(limit=_limit())
            ]
        )

    @app.get("/stocks")
    @handle_market_errors
    def list_stocks():
        return jsonify(
            [
                {
                    "id": stock.id,
                    "companyId": stock.company_id,
                    "ticker": stock.ticker,
                    "price": stock.price,
                    "previousPrice": stock.previous_price,
                    "totalShares": stock.total_shares,
                    "marketCap": stock.market_cap,
                }
                for stock in store.list_stocks()
            ]
        )

    @app.get("/crypto")
    @handle_market_errors
    def list_crypto():
        return jsonify(
            [
                {
                    "id": crypto.id,
                    "ticker": crypto.ticker,
                    "name": crypto.name,
                    "price": crypto.price,
                    "previousPrice": crypto.previous_price,
                    "circulatingSupply": crypto.circulating_supply,
                    "marketCap": crypto.market_cap,
                }
                for crypto in store.list_cryptocurrencies()
            ]
        )

    return app
