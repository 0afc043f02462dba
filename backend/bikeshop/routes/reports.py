# Overview: Flask API routes for reports operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..services import reporting_service
from ..decorators import require_auth, require_permission, handle_domain_errors, current_actor
from ..permissions import VIEW

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/dashboard")
@require_auth
@require_permission(VIEW)
@handle_domain_errors("build dashboard")
def dashboard():
    """
    KPIs, histograms and distributions over non-deleted bikes.

    Query params:
    - year: int (optional) - year for the monthly histogram; defaults to the
      latest year with sales
    """
    year = request.args.get("year", type=int)
    return jsonify(reporting_service.dashboard(actor=current_actor(), year=year))


@reports_bp.get("/bikes/<int:bike_id>/financials")
@require_auth
@require_permission(VIEW)
@handle_domain_errors("build bike financials")
def bike_financials(bike_id: int):
    return jsonify(reporting_service.bike_financials(bike_id, actor=current_actor()))
