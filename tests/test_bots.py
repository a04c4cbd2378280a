from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
import unittest

from market_sim.bots import BotTradingEngine, attractiveness, is_eligible, plan_quantity
from market_sim.errors import PersistenceFailure
from market_sim.memory_store import InMemoryStore
from market_sim.models import BotPurchase, Company, Product
from market_sim.store import SeedContent

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _settings(budget: int = 1_000_000) -> SimpleNamespace:
    return SimpleNamespace(bot_budget_cents=budget, bot_max_product_price_cents=5_000_000)


def _product(product_id: str = "p1", price: int = 2_000, **overrides: object) -> Product:
    values: dict[str, object] = {
        "id": product_id,
        "company_id": "c1",
        "name": f"Product {product_id}",
        "price": price,
        "stock": None,
        "total_sold": 0,
        "total_revenue": 0,
        "quality_rating": 0.8,
    }
    values.update(overrides)
    return Product(**values)  # type: ignore[arg-type]


def _company() -> Company:
    return Company(
        id="c1",
        owner_id="player-1",
        name="Seller",
        balance=0,
        is_public=False,
        revenue_annual=0,
        profit_margin=10.0,
        fundamental_multiple=None,
    )


class _FailingStore:
    def __init__(self, products: list[Product], failing_id: str) -> None:
        self.products = products
        self.failing_id = failing_id
        self.sales: list[BotPurchase] = []

    def list_active_products(self) -> list[Product]:
        return list(self.products)

    def record_bot_sale(self, purchase: BotPurchase, now_utc: datetime) -> None:
        if purchase.product_id == self.failing_id:
            raise PersistenceFailure("write failed")
        self.sales.append(purchase)


class BotHelperTests(unittest.TestCase):
    def test_eligibility(self) -> None:
        self.assertTrue(is_eligible(_product(), 5_000_000))
        self.assertFalse(is_eligible(_product(price=0), 5_000_000))
        self.assertFalse(is_eligible(_product(price=6_000_000), 5_000_000))
        self.assertFalse(is_eligible(_product(stock=0), 5_000_000))
        self.assertFalse(is_eligible(_product(is_archived=True), 5_000_000))
        self.assertFalse(is_eligible(_product(is_active=False), 5_000_000))

    def test_attractiveness_is_bounded_and_prefers_quality(self) -> None:
        good = attractiveness(_product(quality_rating=0.95))
        poor = attractiveness(_product(quality_rating=0.1))
        self.assertGreater(good, poor)
        for price in (1, 100, 100_000, 5_000_000):
            score = attractiveness(_product(price=price))
            self.assertGreaterEqual(score, 0.0)
            self.assertLessEqual(score, 1.0)

    def test_plan_quantity_constraints(self) -> None:
        self.assertEqual(plan_quantity(_product(price=3_000), 10_000, 1_000_000), 3)
        self.assertEqual(plan_quantity(_product(price=3_000, stock=2), 10_000, 1_000_000), 2)
        self.assertEqual(plan_quantity(_product(price=3_000, max_per_order=1), 10_000, 1_000_000), 1)
        self.assertEqual(plan_quantity(_product(price=3_000), 10_000, 3_500), 1)
        self.assertEqual(plan_quantity(_product(price=3_000), 2_000, 1_000_000), 0)


class BotTradingEngineTests(unittest.TestCase):
    def test_purchases_credit_company_and_respect_budget(self) -> None:
        store = InMemoryStore()
        store.seed(
            SeedContent(
                companies=[_company()],
                products=[_product("p1", 2_000), _product("p2", 15_000, stock=5)],
            )
        )
        engine = BotTradingEngine(_settings(budget=100_000), store)
        result = engine.run_bot_purchases(NOW)

        self.assertGreater(result.count, 0)
        self.assertLessEqual(result.total_spent, 100_000)
        company = store.companies["c1"]
        self.assertEqual(company.balance, result.total_spent)
        self.assertEqual(company.revenue_annual, result.total_spent)
        self.assertLessEqual(store.products["p2"].stock, 5)
        self.assertEqual(
            sum(product.total_revenue for product in store.products.values()), result.total_spent
        )

    def test_failed_sale_is_counted_and_others_proceed(self) -> None:
        store = _FailingStore([_product("p1"), _product("p2")], failing_id="p1")
        result = BotTradingEngine(_settings(), store).run_bot_purchases(NOW)
        self.assertEqual(result.failed, 1)
        self.assertEqual(result.count, 1)
        self.assertEqual(store.sales[0].product_id, "p2")

    def test_no_products_means_no_purchases(self) -> None:
        result = BotTradingEngine(_settings(), _FailingStore([], "none")).run_bot_purchases(NOW)
        self.assertEqual(result.count, 0)
        self.assertEqual(result.total_spent, 0)


if __name__ == "__main__":
    unittest.main()
