"""
Business metrics shared by every report.

All ratio and average helpers resolve a zero denominator to 0 instead of
raising, so report values never surface as NaN or Infinity.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Iterable, List, Optional

import config

CENTS = Decimal("0.01")

COMPLETED = "Completed"

IN_STOCK = "In Stock"
BUY_ITEMS = "Buy Items"
OUT_OF_STOCK = "Out of Stock"
STOCK_STATUSES = (IN_STOCK, BUY_ITEMS, OUT_OF_STOCK)

# efficiency = completion weight * completion rate + speed weight * speed score
EFFICIENCY_COMPLETION_WEIGHT = Decimal("0.7")
EFFICIENCY_SPEED_WEIGHT = Decimal("0.3")
TARGET_COMPLETION_DAYS = Decimal("3")


def D(x) -> Decimal:
    if x is None:
        return Decimal("0.00")
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def money(x) -> Decimal:
    return D(x).quantize(CENTS, rounding=ROUND_HALF_UP)


def _round2(x: Decimal) -> float:
    return float(x.quantize(CENTS, rounding=ROUND_HALF_UP))


def percentage(part, whole) -> float:
    whole = D(whole)
    if whole == 0:
        return 0.0
    return _round2(D(part) / whole * 100)


def average(total, count) -> float:
    """Mean of ``total`` over ``count`` items; 0 when there are none."""
    if not count:
        return 0.0
    return _round2(D(total) / D(count))


def completion_rate(jobs: Iterable[Any]) -> float:
    statuses = [j.status for j in jobs]
    completed = sum(1 for s in statuses if s == COMPLETED)
    return percentage(completed, len(statuses))


def revenue_growth(current, previous) -> float:
    previous = D(previous)
    if previous == 0:
        return 0.0
    return _round2((D(current) - previous) / previous * 100)


def retention_rate(total_customers: int, returning_customers: int) -> float:
    return percentage(returning_customers, total_customers)


def speed_score(avg_completion_days: Optional[float]) -> Decimal:
    if avg_completion_days is None:
        return Decimal("0")
    days = max(D(avg_completion_days), TARGET_COMPLETION_DAYS)
    return Decimal("100") * TARGET_COMPLETION_DAYS / days


def efficiency_score(completion_rate_pct, avg_completion_days: Optional[float]) -> float:
    """
    Composite per-employee score in [0, 100].

    0.7 * completion rate + 0.3 * speed score, where the speed score is 100
    for an average turnaround of up to three days and falls off as
    100 * 3 / days beyond that. Employees with no completed jobs score 0 on
    speed.
    """
    rate = min(max(D(completion_rate_pct), Decimal("0")), Decimal("100"))
    score = EFFICIENCY_COMPLETION_WEIGHT * rate + EFFICIENCY_SPEED_WEIGHT * speed_score(avg_completion_days)
    return _round2(score)


def stock_status(current_quantity: int, stock_limit: int) -> str:
    if (current_quantity or 0) <= 0:
        return OUT_OF_STOCK
    if current_quantity < (stock_limit or 0):
        return BUY_ITEMS
    return IN_STOCK


def top_n(records: Iterable[Any], key: Callable[[Any], Any], n: int) -> List[Any]:
    # sorted() stays stable with reverse=True, so ties keep input order
    if n <= 0:
        return []
    return sorted(records, key=key, reverse=True)[:n]


# ---------- Formatting ----------
def format_currency(x, currency: Optional[str] = None) -> str:
    return f"{currency or config.CURRENCY} {money(x):,.2f}"


def format_percent(x) -> str:
    return f"{money(x):.2f}%"


def parse_percent(s) -> float:
    if isinstance(s, (int, float, Decimal)):
        return float(s)
    s = (s or "").strip().rstrip("%")
    if not s:
        return 0.0
    return float(s)
