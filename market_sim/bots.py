from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
import math
from typing import TYPE_CHECKING

from .config import Settings
from .models import BotPurchase, Product

if TYPE_CHECKING:
    from .store import MarketStore

logger = logging.getLogger(__name__)

# Log-price sweet spot around $1,000.
PREFERRED_LOG_PRICE = math.log(100_000)
UNIT_PRICE_PENALTY_DOLLARS = 5000.0
DEFAULT_QUALITY = 0.5


@dataclass(frozen=True)
class ScoredProduct:
    product: Product
    score: float


@dataclass
class BotRunResult:
    purchases: list[BotPurchase] = field(default_factory=list)
    failed: int = 0
    skipped: int = 0

    @property
    def count(self) -> int:
        return len(self.purchases)

    @property
    def total_spent(self) -> int:
        return sum(purchase.total_price for purchase in self.purchases)


def is_eligible(product: Product, max_price_cents: int) -> bool:
    if not product.is_active or product.is_archived:
        return False
    if product.price <= 0 or product.price > max_price_cents:
        return False
    return product.stock is None or product.stock > 0


def attractiveness(product: Product) -> float:
    quality = product.quality_rating if product.quality_rating is not None else DEFAULT_QUALITY
    price_z = (math.log(product.price + 1) - PREFERRED_LOG_PRICE) / 2
    price_preference = math.exp(-(price_z**2) / 2)
    price_dollars = product.price / 100.0
    unit_price_penalty = 1 / (1 + math.pow(price_dollars / UNIT_PRICE_PENALTY_DOLLARS, 1.2))
    demand = min((product.total_sold or 0) / 100.0, 1.0)
    raw = (0.4 * quality + 0.3 * price_preference + 0.2 * demand + 0.1) * unit_price_penalty
    return max(0.0, min(1.0, raw))


def plan_quantity(product: Product, desired_spend: int, remaining_budget: int) -> int:
    if desired_spend < product.price:
        return 0
    quantity = desired_spend // product.price
    if product.stock is not None:
        quantity = min(quantity, product.stock)
    if product.max_per_order:
        quantity = min(quantity, product.max_per_order)
    if quantity <= 0:
        return 0
    if quantity * product.price > remaining_budget:
        quantity = remaining_budget // product.price
    return max(0, quantity)


class BotTradingEngine:
    """Synthetic shoppers that spend a fixed budget on marketplace products each tick.

    Sales credit the selling company's cash and trailing revenue, which the
    stock model reads as fundamentals later in the same tick.
    """

    def __init__(self, settings: Settings, store: "MarketStore") -> None:
        self.settings = settings
        self.store = store

    def score_products(self, products: list[Product]) -> list[ScoredProduct]:
        eligible = [
            product
            for product in products
            if is_eligible(product, self.settings.bot_max_product_price_cents)
        ]
        return [ScoredProduct(product=product, score=attractiveness(product)) for product in eligible]

    def run_bot_purchases(self, now_utc: datetime, budget: int | None = None) -> BotRunResult:
        result = BotRunResult()
        total_budget = self.settings.bot_budget_cents if budget is None else budget
        if total_budget <= 0:
            return result

        scored = self.score_products(self.store.list_active_products())
        if not scored:
            logger.info("bot_no_eligible_products")
            return result
        total_score = sum(row.score for row in scored)
        if total_score <= 0:
            logger.info("bot_total_score_zero products=%s", len(scored))
            return result

        remaining_budget = total_budget
        for row in scored:
            if remaining_budget <= 0:
                break
            product = row.product
            desired_spend = int((row.score / total_score) * total_budget)
            quantity = plan_quantity(product, desired_spend, remaining_budget)
            if quantity <= 0:
                result.skipped += 1
                continue
            purchase = BotPurchase(
                product_id=product.id,
                company_id=product.company_id,
                quantity=quantity,
                total_price=quantity * product.price,
            )
            try:
                self.store.record_bot_sale(purchase, now_utc)
            except Exception:
                result.failed += 1
                logger.exception(
                    "bot_purchase_failed product_id=%s company_id=%s quantity=%s",
                    product.id,
                    product.company_id,
                    quantity,
                )
                continue
            result.purchases.append(purchase)
            remaining_budget -= purchase.total_price

        logger.info(
            "bot_purchases_complete purchases=%s failed=%s skipped=%s spent=%s budget=%s",
            result.count,
            result.failed,
            result.skipped,
            result.total_spent,
            total_budget,
        )
        return result
