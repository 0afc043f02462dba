# Overview: CSV backup export for bikes and loaners.

from __future__ import annotations

import csv
import io
from datetime import datetime

from ..models import Bike, LoanerBike
from ..money import cents_to_euro_string
from ..permissions import EXPORT
from .inventory_service import list_live_bikes
from .loaner_service import list_all_loaners
from .permission_service import AuthContext, authorize
from bikeshop.time_utils import utcnow


BIKE_HEADERS = [
    "Ref", "Marca", "Modelo", "Tipo", "Talla",
    "Precio Compra", "Precio Venta", "Precio Final",
    "Estado", "Fecha Entrada", "Fecha Venta",
]

LOANER_HEADERS = ["Ref", "Marca", "Modelo", "Talla", "Estado", "Observaciones"]


def format_date(dt: datetime | None) -> str:
    return dt.strftime("%d/%m/%Y") if dt else ""


def bike_row(bike: Bike) -> list[str]:
    return [
        bike.ref_number,
        bike.brand,
        bike.model,
        bike.type,
        bike.size,
        cents_to_euro_string(bike.purchase_price),
        cents_to_euro_string(bike.sell_price),
        cents_to_euro_string(bike.final_sell_price),
        bike.status,
        format_date(bike.entry_date),
        format_date(bike.sold_date),
    ]


def loaner_row(loaner: LoanerBike) -> list[str]:
    return [
        loaner.ref_number,
        loaner.brand,
        loaner.model,
        loaner.size,
        loaner.status,
        loaner.observations or "",
    ]


def render_csv(headers: list[str], rows: list[list[str]]) -> str:
    """Every cell quoted; CRLF line endings as csv.writer emits them."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL)
    writer.writerow(headers)
    writer.writerows(rows)
    return buf.getvalue()


def export_filename(name: str) -> str:
    return f"{name}_{utcnow().date().isoformat()}.csv"


def export_bikes_csv(*, actor: AuthContext) -> tuple[str, str]:
    """Returns (filename, csv_text) for all non-deleted bikes."""
    authorize(actor, EXPORT, resource="exports/bikes")
    rows = [bike_row(b) for b in list_live_bikes()]
    return export_filename("inventario_bicis"), render_csv(BIKE_HEADERS, rows)


def export_loaners_csv(*, actor: AuthContext) -> tuple[str, str]:
    authorize(actor, EXPORT, resource="exports/loaners")
    rows = [loaner_row(lb) for lb in list_all_loaners()]
    return export_filename("bicis_prestamo"), render_csv(LOANER_HEADERS, rows)
