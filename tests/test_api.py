from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
import unittest

from market_sim.api import create_app
from market_sim.errors import TickInProgress
from market_sim.memory_store import InMemoryStore
from market_sim.orchestrator import TickOrchestrator
from market_sim.seed import generate_seed_content

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _settings(**overrides: object) -> SimpleNamespace:
    values: dict[str, object] = {
        "store_backend": "memory",
        "tick_interval_minutes": 5,
        "ticks_per_year": 105_120,
        "stock_default_volatility": 0.6,
        "crypto_default_volatility": 1.2,
        "mean_reversion_strength": 0.05,
        "trend_bias_weight": 0.3,
        "fundamental_price_floor_cents": 1,
        "bot_budget_cents": 1_000_000,
        "bot_max_product_price_cents": 5_000_000,
        "worker_count": 2,
        "tick_deadline_seconds": 240.0,
        "tick_lease_seconds": 600,
        "history_retention_days": 30,
        "history_prune_every_ticks": 12,
        "loan_interest_enabled": True,
        "loan_interest_interval_minutes": 20,
        "tick_trigger_token": "",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class _BusyOrchestrator:
    def run_tick(self):  # type: ignore[no-untyped-def]
        raise TickInProgress()


class ApiTests(unittest.TestCase):
    def _client(self, **overrides: object):  # type: ignore[no-untyped-def]
        settings = _settings(**overrides)
        self.store = InMemoryStore()
        self.store.seed(generate_seed_content(NOW))
        orchestrator = TickOrchestrator(settings, self.store, rng_seed="api", clock=lambda: NOW)  # type: ignore[arg-type]
        app = create_app(settings, self.store, orchestrator)  # type: ignore[arg-type]
        app.config["TESTING"] = True
        return app.test_client()

    def test_health(self) -> None:
        response = self._client().get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()["ok"])

    def test_post_tick_returns_record(self) -> None:
        client = self._client()
        response = client.post("/tick")
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["tickNumber"], 1)
        self.assertEqual(body["stockUpdates"], 6)
        self.assertIn("botPurchases", body)

        last = client.get("/ticks/last").get_json()
        self.assertEqual(last["tickNumber"], 1)

    def test_post_tick_conflict(self) -> None:
        settings = _settings()
        app = create_app(settings, InMemoryStore(), _BusyOrchestrator())  # type: ignore[arg-type]
        response = app.test_client().post("/tick")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["error"], "tick_in_progress")

    def test_tick_token_required_when_configured(self) -> None:
        client = self._client(tick_trigger_token="s3cret")
        self.assertEqual(client.post("/tick").status_code, 401)
        ok = client.post("/tick", headers={"Authorization": "Bearer s3cret"})
        self.assertEqual(ok.status_code, 200)

    def test_history_endpoint(self) -> None:
        client = self._client()
        client.post("/tick")
        client.post("/tick")
        rows = client.get("/history/stocks/stock-tch").get_json()
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[-1]["price"], self.store.stocks["stock-tch"].price)

        sampled = client.get("/history/stocks/stock-tch?max_points=1").get_json()
        self.assertEqual(len(sampled), 1)

        self.assertEqual(client.get("/history/bonds/x").status_code, 404)
        self.assertEqual(client.get("/history/crypto/crypto-btc?since=yesterday").status_code, 400)

    def test_net_worth_and_leaderboards(self) -> None:
        client = self._client()
        self.assertEqual(client.get("/players/player-ada/net-worth").status_code, 404)
        client.post("/tick")

        body = client.get("/players/player-ada/net-worth").get_json()
        self.assertEqual(body["playerId"], "player-ada")
        self.assertEqual(
            body["netWorth"],
            body["cash"] + body["stockValue"] + body["cryptoValue"] + body["companyEquity"],
        )

        players = client.get("/leaderboard/players?limit=2").get_json()
        self.assertEqual(len(players), 2)
        self.assertGreaterEqual(players[0]["netWorth"], players[1]["netWorth"])

        companies = client.get("/leaderboard/companies").get_json()
        self.assertTrue(companies)
        self.assertEqual(client.get("/leaderboard/players?limit=0").status_code, 400)

    def test_player_holdings_report_profit_loss(self) -> None:
        client = self._client()
        self.assertEqual(client.get("/players/player-grace/holdings").status_code, 404)
        client.post("/tick")

        rows = client.get("/players/player-grace/holdings").get_json()
        self.assertEqual(
            {(row["instrumentKind"], row["instrumentId"]) for row in rows},
            {("stock", "stock-gfc"), ("crypto", "crypto-eth")},
        )
        prices = {stock.id: stock.price for stock in self.store.list_stocks()}
        prices.update({crypto.id: crypto.price for crypto in self.store.list_cryptocurrencies()})
        for row in rows:
            self.assertEqual(row["currentValue"], row["quantity"] * prices[row["instrumentId"]])
            self.assertEqual(row["profitLoss"], row["currentValue"] - row["totalInvested"])

    def test_instrument_listings(self) -> None:
        client = self._client()
        stocks = client.get("/stocks").get_json()
        self.assertEqual(len(stocks), 6)
        for row in stocks:
            self.assertEqual(row["marketCap"], row["price"] * row["totalShares"])
        self.assertEqual(len(client.get("/crypto").get_json()), 3)


if __name__ == "__main__":
    unittest.main()
