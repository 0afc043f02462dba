# Overview: Flask API routes for loaner bike operations; parses input and returns JSON responses.

"""
Loaner bike routes.

GET /api/loaners is tagged with the "loaner_bikes" collection version (ETag).
"""

from flask import Blueprint, request, jsonify

from ..services import collection_service, loaner_service
from ..decorators import (
    require_auth,
    require_permission,
    handle_domain_errors,
    current_actor,
    collection_response,
)
from ..permissions import CREATE, DELETE, EDIT, VIEW

loaners_bp = Blueprint("loaners", __name__, url_prefix="/api/loaners")


@loaners_bp.get("")
@require_auth
@require_permission(VIEW)
@handle_domain_errors("list loaners")
def list_loaners():
    return collection_response(
        collection_service.LOANER_BIKES,
        lambda: loaner_service.list_loaners(
            actor=current_actor(),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        ),
    )


@loaners_bp.get("/next-ref")
@require_auth
@require_permission(VIEW)
@handle_domain_errors("allocate loaner ref")
def next_ref():
    return jsonify({"ref_number": loaner_service.get_next_loaner_ref_number(actor=current_actor())})


@loaners_bp.get("/<int:loaner_id>")
@require_auth
@require_permission(VIEW)
@handle_domain_errors("get loaner")
def get_loaner(loaner_id: int):
    return jsonify(loaner_service.get_loaner(loaner_id, actor=current_actor()).to_dict())


@loaners_bp.post("")
@require_auth
@require_permission(CREATE)
@handle_domain_errors("create loaner")
def create_loaner():
    payload = request.get_json(silent=True) or {}
    loaner = loaner_service.create_loaner(payload, actor=current_actor())
    return jsonify(loaner.to_dict()), 201


@loaners_bp.patch("/<int:loaner_id>")
@require_auth
@require_permission(EDIT)
@handle_domain_errors("update loaner")
def update_loaner(loaner_id: int):
    payload = request.get_json(silent=True) or {}
    loaner = loaner_service.update_loaner(loaner_id, payload, actor=current_actor())
    return jsonify(loaner.to_dict())


@loaners_bp.post("/<int:loaner_id>/loan")
@require_auth
@require_permission(EDIT)
@handle_domain_errors("loan bike")
def loan_loaner(loaner_id: int):
    """
    Body: loan_type ("Loan" | "Rental"), loanee_name, loanee_phone, loanee_dni,
    rental_duration (Rental only) or loan_reason (Loan only).
    """
    details = request.get_json(silent=True) or {}
    loaner = loaner_service.loan_or_rent(loaner_id, details, actor=current_actor())
    return jsonify(loaner.to_dict())


@loaners_bp.post("/<int:loaner_id>/return")
@require_auth
@require_permission(EDIT)
@handle_domain_errors("return loaner")
def return_loaner(loaner_id: int):
    loaner = loaner_service.return_loaner(loaner_id, actor=current_actor())
    return jsonify(loaner.to_dict())


@loaners_bp.delete("/<int:loaner_id>")
@require_auth
@require_permission(DELETE)
@handle_domain_errors("delete loaner")
def delete_loaner(loaner_id: int):
    loaner_service.delete_loaner(loaner_id, actor=current_actor())
    return "", 204
