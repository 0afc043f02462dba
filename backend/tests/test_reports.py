"""
Dashboard aggregates and CSV exports.

The aggregate functions are pure over a list of bikes, so most tests build
unsaved Bike objects directly.
"""

import csv
import io
from datetime import datetime

import pytest

from bikeshop.models import Bike
from bikeshop.services import export_service, inventory_service, loaner_service, reporting_service, sale_service
from bikeshop.services.permission_service import AuthContext, PermissionDeniedError

from conftest import bike_payload, loaner_payload


def make_bike(status="Available", bike_type="Mountain", purchase=40000, extra=0, sell=65000,
              final=None, entry=datetime(2025, 1, 10), sold=None) -> Bike:
    return Bike(
        ref_number="0001",
        brand="Trek",
        model="Marlin",
        type=bike_type,
        size="M",
        purchase_price=purchase,
        additional_costs=extra,
        sell_price=sell,
        final_sell_price=final,
        status=status,
        entry_date=entry,
        sold_date=sold,
        observations="",
    )


@pytest.fixture
def sample_bikes():
    return [
        make_bike(status="Available", sell=65000),
        make_bike(status="Reserved", bike_type="Road", purchase=80000, extra=5000, sell=120000),
        make_bike(status="Unavailable", bike_type="Road"),
        make_bike(status="Sold", final=60000, extra=2000, sold=datetime(2025, 3, 15)),
        make_bike(status="Sold", bike_type="Ebike", purchase=150000, final=200000,
                  entry=datetime(2025, 11, 1), sold=datetime(2026, 1, 20)),
        # sold without a recorded price: excluded from sale aggregates
        make_bike(status="Sold", final=None, sold=datetime(2025, 4, 1)),
    ]


class TestKpis:

    def test_stock_and_profit(self, sample_bikes):
        kpis = reporting_service.inventory_kpis(sample_bikes)

        assert kpis["units_in_stock"] == 2
        assert kpis["stock_value"] == 65000 + 120000
        assert kpis["stock_cost"] == 40000 + 85000
        assert kpis["total_bikes_sold"] == 2
        # (60000 - 42000) + (200000 - 150000)
        assert kpis["total_profit"] == 68000
        assert kpis["total_sales"] == 260000
        assert kpis["formatted"]["total_profit"] == "680\u00a0€"

    def test_empty_inventory(self):
        kpis = reporting_service.inventory_kpis([])
        assert kpis["units_in_stock"] == 0
        assert kpis["total_profit"] == 0

    def test_performance(self, sample_bikes):
        perf = reporting_service.performance_metrics(sample_bikes)
        # margins 30% and 25%
        assert perf["avg_profit_margin"] == pytest.approx(27.5)
        # 64 and 80 days
        assert perf["avg_days_in_stock"] == 72

    def test_performance_without_sales(self):
        assert reporting_service.performance_metrics([make_bike()]) == {
            "avg_profit_margin": None,
            "avg_days_in_stock": None,
        }


class TestHistograms:

    def test_available_years_newest_first(self, sample_bikes):
        assert reporting_service.available_years(sample_bikes) == [2026, 2025]

    def test_monthly(self, sample_bikes):
        months = reporting_service.monthly_histogram(sample_bikes, 2025)

        assert len(months) == 12
        assert months[2]["name"] == "Mar"
        assert months[2]["sales_count"] == 1
        assert months[2]["profit"] == 18000
        # April sale has no final price
        assert months[3]["sales_count"] == 0

    def test_annual(self, sample_bikes):
        assert reporting_service.annual_histogram(sample_bikes) == [
            {"year": 2025, "sales_count": 1, "profit": 18000},
            {"year": 2026, "sales_count": 1, "profit": 50000},
        ]

    def test_distributions(self, sample_bikes):
        status = {row["name"]: row["value"] for row in reporting_service.status_distribution(sample_bikes)}
        assert status == {"Available": 1, "Reserved": 1, "Sold": 3, "Unavailable": 1}

        available = reporting_service.available_type_distribution(sample_bikes)
        assert available == [{"name": "Mountain", "value": 1}]

    def test_inventory_summary(self, sample_bikes):
        summary = reporting_service.inventory_summary(sample_bikes)

        assert summary["total_bikes"] == 6
        first = summary["type_breakdown"][0]
        assert first["type"] == "Mountain"
        assert first["stats"] == {"total": 3, "sold": 2, "in_stock": 1}


class TestFinancialBreakdown:

    def test_sold_bike(self):
        bike = make_bike(status="Sold", final=60000, extra=2000,
                         entry=datetime(2025, 3, 1), sold=datetime(2025, 3, 11))
        breakdown = reporting_service.financial_breakdown(bike)

        assert breakdown["total_cost"] == 42000
        assert breakdown["profit"] == 18000
        assert breakdown["profit_margin"] == 30.0
        assert breakdown["days_in_stock"] == 10
        assert breakdown["formatted"]["profit_margin"] == "30.00%"

    def test_unsold_bike_has_no_profit(self):
        breakdown = reporting_service.financial_breakdown(make_bike())
        assert breakdown["profit"] is None
        assert breakdown["days_in_stock"] is None
        assert breakdown["formatted"]["profit"] == "N/A"


class TestDashboard:

    def test_dashboard_excludes_deleted(self, db_session, editor_actor):
        kept = inventory_service.create_bike(bike_payload(ref_number="0001"), actor=editor_actor)
        gone = inventory_service.create_bike(bike_payload(ref_number="0002"), actor=editor_actor)
        sale_service.sell_bike(kept.id, "Cash", 70000, actor=editor_actor)
        inventory_service.delete_bike(gone.id, actor=editor_actor)

        data = reporting_service.dashboard(actor=editor_actor)

        assert data["inventory_summary"]["total_bikes"] == 1
        assert data["kpis"]["total_bikes_sold"] == 1
        assert data["kpis"]["total_profit"] == 30000
        assert data["year"] == data["available_years"][0]

    def test_pending_user_cannot_view(self, db_session, pending_user):
        with pytest.raises(PermissionDeniedError):
            reporting_service.dashboard(actor=AuthContext.for_user(pending_user))


class TestExports:

    def test_bikes_csv(self, db_session, editor_actor):
        bike = inventory_service.create_bike(
            bike_payload(model='Marlin "7"', purchase_price=40050), actor=editor_actor
        )
        sale_service.sell_bike(bike.id, "Cash", 70000, actor=editor_actor)

        filename, body = export_service.export_bikes_csv(actor=editor_actor)

        assert filename.startswith("inventario_bicis_")
        assert filename.endswith(".csv")
        rows = list(csv.reader(io.StringIO(body)))
        assert rows[0] == export_service.BIKE_HEADERS
        assert rows[1][2] == 'Marlin "7"'
        assert rows[1][5] == "400.50€"
        assert rows[1][7] == "700.00€"
        assert rows[1][8] == "Sold"
        # every cell quoted
        assert body.splitlines()[0].startswith('"Ref","Marca"')

    def test_loaners_csv(self, db_session, editor_actor):
        loaner_service.create_loaner(loaner_payload(observations="Sin luces"), actor=editor_actor)

        filename, body = export_service.export_loaners_csv(actor=editor_actor)

        assert filename.startswith("bicis_prestamo_")
        rows = list(csv.reader(io.StringIO(body)))
        assert rows[0] == export_service.LOANER_HEADERS
        assert rows[1] == ["P-001", "Orbea", "Carpe 40", "L", "Available", "Sin luces"]

    def test_viewer_cannot_export(self, db_session, viewer_actor):
        with pytest.raises(PermissionDeniedError):
            export_service.export_bikes_csv(actor=viewer_actor)

    def test_date_format(self):
        assert export_service.format_date(datetime(2026, 2, 3, 15, 0)) == "03/02/2026"
        assert export_service.format_date(None) == ""
