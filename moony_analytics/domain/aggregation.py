"""Spending aggregation engine - turns provider transactions into spending statistics"""

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from moony_analytics.domain.models import MonthlyAggregate, ProcessedTransaction, SpendingSummary, Transaction
from moony_analytics.utils.date_utils import previous_month_range, start_of_month, subtract_months

logger = logging.getLogger(__name__)

SPENDING_THRESHOLD = Decimal("0.01")
DEFAULT_LOOKBACK_MONTHS = 6

# Matched as substrings of any category entry
EXCLUDED_CATEGORIES = ("Transfer", "Deposit", "Credit Card Payment", "Payroll")

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def is_excluded_category(categories: Sequence[str]) -> bool:
    """True if any category entry contains an excluded category name"""
    return any(excluded in category for category in categories for excluded in EXCLUDED_CATEGORIES)


def _is_spending(amount: Decimal, categories: Sequence[str], threshold: Decimal) -> bool:
    if amount <= 0:
        return False
    if amount <= threshold:
        return False
    return not is_excluded_category(categories)


def filter_spending(
    transactions: Iterable[ProcessedTransaction],
    threshold: Decimal = SPENDING_THRESHOLD,
) -> List[ProcessedTransaction]:
    """Re-apply the spending filter; a no-op on output of process_transactions"""
    return [t for t in transactions if _is_spending(t.amount, t.categories, threshold)]


def process_transactions(
    transactions: Iterable[Transaction],
    threshold: Decimal = SPENDING_THRESHOLD,
) -> List[ProcessedTransaction]:
    """
    Keep spending transactions only.

    Drops:
    - Credits (amount <= 0)
    - Noise at or below the threshold
    - Transfers, deposits, credit card payments and payroll

    Items that cannot be evaluated are dropped instead of raising.
    """
    processed = []
    for txn in transactions:
        try:
            amount = Decimal(txn.amount)
            if not isinstance(txn.date, date) or not amount.is_finite():
                continue
            categories = txn.categories
            if not _is_spending(amount, categories, threshold):
                continue
        except (AttributeError, TypeError, ValueError, InvalidOperation) as e:
            logger.debug("Skipping unusable transaction", extra={"error": str(e)})
            continue

        processed.append(
            ProcessedTransaction(
                transaction_id=txn.transaction_id,
                amount=amount,
                date=txn.date,
                account_id=txn.account_id,
                merchant_name=txn.merchant_name or None,
                category=categories[0] if categories else None,
            )
        )
    return processed


def sum_transactions(transactions: Iterable[ProcessedTransaction]) -> Decimal:
    return sum((t.amount for t in transactions), ZERO)


def group_by_month(transactions: Iterable[ProcessedTransaction]) -> List[MonthlyAggregate]:
    """Monthly totals, most recent month first"""
    groups: Dict[Tuple[int, int], List[ProcessedTransaction]] = {}
    for txn in transactions:
        groups.setdefault((txn.date.year, txn.date.month), []).append(txn)

    aggregates = [
        MonthlyAggregate(
            year=year,
            month=month,
            total_spending=sum_transactions(month_txns),
            transaction_count=len(month_txns),
        )
        for (year, month), month_txns in groups.items()
    ]
    return sorted(aggregates, key=lambda m: (m.year, m.month), reverse=True)


def select_two_months_ago(months: Sequence[MonthlyAggregate]) -> Optional[Decimal]:
    """
    Positional pick over historical months sorted most recent first.

    - 0 or 1 months: None
    - 2 months: the older one
    - 3+ months: the 3rd most recent, even when calendar months are missing
    """
    if len(months) < 2:
        return None
    if len(months) == 2:
        return months[1].total_spending
    return months[2].total_spending


def median_monthly_spending(months: Sequence[MonthlyAggregate]) -> Decimal:
    """Median of monthly totals so a single spike month does not skew the typical month"""
    if not months:
        return ZERO

    totals = sorted(m.total_spending for m in months)
    if len(totals) == 1:
        return totals[0]

    mid = len(totals) // 2
    if len(totals) % 2 == 0:
        return (totals[mid - 1] + totals[mid]) / 2
    return totals[mid]


def calculate_spending_summary(
    transactions: Sequence[ProcessedTransaction],
    today: Optional[date] = None,
    lookback_months: int = DEFAULT_LOOKBACK_MONTHS,
) -> SpendingSummary:
    """
    Main entry point: compute spending statistics from filtered transactions.

    Periods:
    - Current month: first of this month through today
    - Last month: the full previous calendar month
    - History: lookback window up to, not including, the current month
    """
    today = today or date.today()
    current_month_start = start_of_month(today)
    last_month_start, last_month_end = previous_month_range(today)
    window_start = subtract_months(today, lookback_months)

    current_month = [t for t in transactions if current_month_start <= t.date <= today]
    last_month = [t for t in transactions if last_month_start <= t.date <= last_month_end]
    historical = [t for t in transactions if window_start <= t.date < current_month_start]

    months = group_by_month(historical)
    two_months_ago = select_two_months_ago(months)

    summary = SpendingSummary(
        average_monthly_spending=round_money(median_monthly_spending(months)),
        last_month_spending=round_money(sum_transactions(last_month)),
        two_months_ago_spending=round_money(two_months_ago) if two_months_ago is not None else None,
        current_month_spending=round_money(sum_transactions(current_month)),
    )

    logger.debug(
        "Spending summary calculated",
        extra={
            "transaction_count": len(transactions),
            "historical_months": len(months),
            **summary.as_dict(),
        },
    )
    return summary
