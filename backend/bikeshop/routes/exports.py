# Overview: Flask API routes for CSV backups; streams CSV attachments.

from flask import Blueprint, Response

from ..services import export_service
from ..decorators import require_auth, require_permission, handle_domain_errors, current_actor
from ..permissions import EXPORT

exports_bp = Blueprint("exports", __name__, url_prefix="/api/exports")


def _csv_response(filename: str, body: str) -> Response:
    return Response(
        body,
        mimetype="text/csv",
        headers={
            "Content-Type": "text/csv; charset=utf-8",
            "Content-Disposition": f'attachment; filename="{filename}"',
        },
    )


@exports_bp.get("/bikes.csv")
@require_auth
@require_permission(EXPORT)
@handle_domain_errors("export bikes")
def export_bikes():
    filename, body = export_service.export_bikes_csv(actor=current_actor())
    return _csv_response(filename, body)


@exports_bp.get("/loaners.csv")
@require_auth
@require_permission(EXPORT)
@handle_domain_errors("export loaners")
def export_loaners():
    filename, body = export_service.export_loaners_csv(actor=current_actor())
    return _csv_response(filename, body)
