from __future__ import annotations

from datetime import datetime, timedelta
import logging
import math
from typing import TYPE_CHECKING

from .config import Settings
from .models import Loan, LoanInterestCharge

if TYPE_CHECKING:
    from .store import MarketStore

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


def interest_due(loan: Loan, now_utc: datetime, interval_minutes: int) -> LoanInterestCharge | None:
    """Interest for one accrual interval, or None when nothing is due yet.

    ``interest_rate`` is a daily percentage spread evenly over the intervals in
    a day: 5% daily on 20-minute intervals charges 5% / 72 each time.
    """
    if loan.status != "active" or loan.remaining_balance <= 0:
        return None
    if now_utc - loan.last_interest_applied < timedelta(minutes=interval_minutes):
        return None
    intervals_per_day = MINUTES_PER_DAY / interval_minutes
    rate = loan.interest_rate / 100.0 / intervals_per_day
    if not math.isfinite(rate) or rate <= 0:
        return None
    amount = int(math.floor(loan.remaining_balance * rate))
    if amount <= 0:
        return None
    return LoanInterestCharge(
        loan_id=loan.id,
        player_id=loan.player_id,
        amount=amount,
        applied_at=now_utc,
    )


class LoanInterestAccrual:
    def __init__(self, settings: Settings, store: "MarketStore") -> None:
        self.settings = settings
        self.store = store

    def apply(self, now_utc: datetime) -> tuple[int, int]:
        if not self.settings.loan_interest_enabled:
            return 0, 0
        applied = 0
        failed = 0
        for loan in self.store.list_active_loans():
            charge = interest_due(loan, now_utc, self.settings.loan_interest_interval_minutes)
            if charge is None:
                continue
            try:
                self.store.apply_loan_interest(charge)
            except Exception:
                failed += 1
                logger.exception("loan_interest_failed loan_id=%s player_id=%s", loan.id, loan.player_id)
                continue
            applied += 1
        if applied or failed:
            logger.info("loan_interest_complete applied=%s failed=%s", applied, failed)
        return applied, failed
