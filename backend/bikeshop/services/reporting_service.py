# Overview: Service-layer operations for reporting; encapsulates business logic and database work.

"""
Derived read-only views over inventory bikes.

The aggregate functions take an iterable of bikes and never touch the session,
so they can be reused over any snapshot. dashboard() is the only entry point
that reads the store (non-deleted bikes only).

"Sold" in the aggregates means status Sold with both final_sell_price and
sold_date recorded; a sold row missing either is left out of profit totals.
"""

from __future__ import annotations

from typing import Iterable

from ..models import Bike, BIKE_STATUSES, BIKE_TYPES
from ..money import calculate_days_between, calculate_profit_margin, format_currency, total_cost
from ..permissions import VIEW
from .inventory_service import get_live_bike, list_live_bikes
from .permission_service import AuthContext, authorize
from bikeshop.time_utils import utcnow


MONTH_NAMES = ["Ene", "Feb", "Mar", "Abr", "May", "Jun", "Jul", "Ago", "Sep", "Oct", "Nov", "Dic"]

STOCK_STATUSES = ("Available", "Reserved")


def is_completed_sale(bike: Bike) -> bool:
    return bike.status == "Sold" and bike.final_sell_price is not None and bike.sold_date is not None


def profit_of(bike: Bike) -> int | None:
    if bike.status != "Sold" or bike.final_sell_price is None:
        return None
    return bike.final_sell_price - total_cost(bike.purchase_price, bike.additional_costs)


def financial_breakdown(bike: Bike) -> dict:
    cost = total_cost(bike.purchase_price, bike.additional_costs)
    profit = profit_of(bike)
    margin = calculate_profit_margin(bike.purchase_price, bike.additional_costs, bike.final_sell_price)
    days = calculate_days_between(bike.entry_date, bike.sold_date) if bike.status == "Sold" else None

    return {
        "bike_id": bike.id,
        "ref_number": bike.ref_number,
        "total_cost": cost,
        "profit": profit,
        "profit_margin": round(margin, 2) if margin is not None else None,
        "days_in_stock": days,
        "formatted": {
            "purchase_price": format_currency(bike.purchase_price),
            "additional_costs": format_currency(bike.additional_costs or 0),
            "total_cost": format_currency(cost),
            "sell_price": format_currency(bike.sell_price),
            "final_sell_price": format_currency(bike.final_sell_price),
            "profit": format_currency(profit),
            "profit_margin": f"{margin:.2f}%" if margin is not None else "N/A",
        },
    }


def inventory_kpis(bikes: Iterable[Bike]) -> dict:
    bikes = list(bikes)
    stock = [b for b in bikes if b.status in STOCK_STATUSES]
    sold = [b for b in bikes if is_completed_sale(b)]

    stock_value = sum(b.sell_price for b in stock)
    stock_cost = sum(total_cost(b.purchase_price, b.additional_costs) for b in stock)
    total_profit = sum(profit_of(b) for b in sold)
    total_sales = sum(b.final_sell_price for b in sold)

    return {
        "units_in_stock": len(stock),
        "stock_value": stock_value,
        "stock_cost": stock_cost,
        "total_bikes_sold": len(sold),
        "total_profit": total_profit,
        "total_sales": total_sales,
        "formatted": {
            "stock_value": format_currency(stock_value),
            "stock_cost": format_currency(stock_cost),
            "total_profit": format_currency(total_profit),
            "total_sales": format_currency(total_sales),
        },
    }


def available_years(bikes: Iterable[Bike]) -> list[int]:
    """Years with at least one completed sale, newest first."""
    return sorted({b.sold_date.year for b in bikes if is_completed_sale(b)}, reverse=True)


def monthly_histogram(bikes: Iterable[Bike], year: int) -> list[dict]:
    buckets = [
        {"month": i, "name": MONTH_NAMES[i], "sales_count": 0, "profit": 0}
        for i in range(12)
    ]
    for b in bikes:
        if not is_completed_sale(b) or b.sold_date.year != year:
            continue
        bucket = buckets[b.sold_date.month - 1]
        bucket["sales_count"] += 1
        bucket["profit"] += profit_of(b)
    return buckets


def annual_histogram(bikes: Iterable[Bike]) -> list[dict]:
    summary: dict[int, dict] = {}
    for b in bikes:
        if not is_completed_sale(b):
            continue
        row = summary.setdefault(b.sold_date.year, {"year": b.sold_date.year, "sales_count": 0, "profit": 0})
        row["sales_count"] += 1
        row["profit"] += profit_of(b)
    return [summary[y] for y in sorted(summary)]


def performance_metrics(bikes: Iterable[Bike]) -> dict:
    sold = [b for b in bikes if is_completed_sale(b)]
    if not sold:
        return {"avg_profit_margin": None, "avg_days_in_stock": None}

    margins = [
        m for m in (
            calculate_profit_margin(b.purchase_price, b.additional_costs, b.final_sell_price)
            for b in sold
        )
        if m is not None
    ]
    days = [
        d for d in (calculate_days_between(b.entry_date, b.sold_date) for b in sold)
        if d is not None
    ]

    return {
        "avg_profit_margin": round(sum(margins) / len(margins), 2) if margins else None,
        "avg_days_in_stock": round(sum(days) / len(days)) if days else None,
    }


def _count_by(bikes: Iterable[Bike], attr: str, order: tuple) -> list[dict]:
    counts: dict[str, int] = {}
    for b in bikes:
        key = getattr(b, attr)
        counts[key] = counts.get(key, 0) + 1
    return [{"name": k, "value": counts[k]} for k in order if counts.get(k)]


def status_distribution(bikes: Iterable[Bike]) -> list[dict]:
    return _count_by(bikes, "status", BIKE_STATUSES)


def type_distribution(bikes: Iterable[Bike]) -> list[dict]:
    return _count_by(bikes, "type", BIKE_TYPES)


def available_type_distribution(bikes: Iterable[Bike]) -> list[dict]:
    return _count_by([b for b in bikes if b.status == "Available"], "type", BIKE_TYPES)


def inventory_summary(bikes: Iterable[Bike]) -> dict:
    bikes = list(bikes)
    breakdown = {t: {"total": 0, "sold": 0, "in_stock": 0} for t in BIKE_TYPES}

    for b in bikes:
        stats = breakdown.get(b.type)
        if stats is None:
            continue
        stats["total"] += 1
        if b.status == "Sold":
            stats["sold"] += 1
        elif b.status in STOCK_STATUSES:
            stats["in_stock"] += 1

    rows = [{"type": t, "stats": s} for t, s in breakdown.items() if s["total"] > 0]
    rows.sort(key=lambda r: r["stats"]["total"], reverse=True)
    return {"total_bikes": len(bikes), "type_breakdown": rows}


def dashboard(*, actor: AuthContext, year: int | None = None) -> dict:
    authorize(actor, VIEW, resource="reports/dashboard")

    bikes = list_live_bikes()
    years = available_years(bikes)
    if year is None:
        year = years[0] if years else utcnow().year

    return {
        "kpis": inventory_kpis(bikes),
        "performance": performance_metrics(bikes),
        "available_years": years,
        "year": year,
        "monthly": monthly_histogram(bikes, year),
        "annual": annual_histogram(bikes),
        "status_distribution": status_distribution(bikes),
        "type_distribution": type_distribution(bikes),
        "available_type_distribution": available_type_distribution(bikes),
        "inventory_summary": inventory_summary(bikes),
    }


def bike_financials(bike_id: int, *, actor: AuthContext) -> dict:
    authorize(actor, VIEW, resource=f"reports/bikes/{bike_id}")
    return financial_breakdown(get_live_bike(bike_id))
