# Overview: Pure money, day-count and reference-number helpers.

"""
Money and reference utilities.

All amounts are integer cents. Conversion to euros happens only when
rendering a string for display; nothing here returns a float amount.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from .time_utils import as_utc_datetime


NOT_AVAILABLE = "N/A"
CURRENCY_SYMBOL = "€"
THOUSANDS_SEPARATOR = "."
# es-ES only groups thousands once the integer part has five or more digits
MIN_GROUPING_DIGITS = 5
NBSP = "\u00a0"

INVENTORY_REF_PREFIX = ""
INVENTORY_REF_WIDTH = 4
LOANER_REF_PREFIX = "P-"
LOANER_REF_WIDTH = 3

SECONDS_PER_DAY = 86400


def _group_thousands(digits: str) -> str:
    if len(digits) < MIN_GROUPING_DIGITS:
        return digits
    groups = []
    while digits:
        groups.append(digits[-3:])
        digits = digits[:-3]
    return THOUSANDS_SEPARATOR.join(reversed(groups))


def format_currency(cents: Optional[int]) -> str:
    """
    Render cents as whole euros in es-ES style, e.g. 1234500 -> "12.345 €".

    None -> "N/A".
    """
    if cents is None:
        return NOT_AVAILABLE

    euros = (Decimal(int(cents)) / Decimal(100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if euros < 0 else ""
    return f"{sign}{_group_thousands(str(abs(euros)))}{NBSP}{CURRENCY_SYMBOL}"


def cents_to_euro_string(cents: Optional[int]) -> str:
    """Two-decimal euro string used in CSV backups, e.g. 123456 -> "1234.56€"."""
    if cents is None:
        return ""
    value = Decimal(int(cents)) / Decimal(100)
    return f"{value:.2f}{CURRENCY_SYMBOL}"


def calculate_days_between(
    start: Union[datetime, str, None],
    end: Union[datetime, str, None],
) -> Optional[int]:
    """
    Whole days between two instants, rounded half away from zero, floored at 0.

    A bike sold on the day it entered counts as 0 days.
    """
    start_dt = as_utc_datetime(start) if start else None
    end_dt = as_utc_datetime(end) if end else None
    if start_dt is None or end_dt is None:
        return None

    days = Decimal(str((end_dt - start_dt).total_seconds())) / Decimal(SECONDS_PER_DAY)
    rounded = int(days.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, rounded)


def total_cost(purchase_price: int, additional_costs: Optional[int]) -> int:
    return purchase_price + (additional_costs or 0)


def calculate_profit_margin(
    purchase_price: int,
    additional_costs: Optional[int],
    final_sell_price: Optional[int],
) -> Optional[float]:
    """
    Profit as a percentage of the sell price (not cost-plus).

    Returns None when the sell price is missing or not positive.
    """
    if final_sell_price is None or final_sell_price <= 0:
        return None
    profit = final_sell_price - total_cost(purchase_price, additional_costs)
    return profit / final_sell_price * 100


def next_ref_number(
    existing_refs: Iterable[Optional[str]],
    prefix: str = INVENTORY_REF_PREFIX,
    width: int = INVENTORY_REF_WIDTH,
) -> str:
    """
    Next sequential reference for refs sharing `prefix`.

    Refs with a different prefix or a non-numeric suffix are ignored.
    """
    highest = 0
    for ref in existing_refs:
        if not ref or not ref.startswith(prefix):
            continue
        suffix = ref[len(prefix):]
        if not (suffix.isascii() and suffix.isdigit()):
            continue
        highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:0{width}d}"
