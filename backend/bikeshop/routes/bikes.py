# Overview: Flask API routes for inventory bike operations; parses input and returns JSON responses.

"""
Inventory bike routes.

Reads require VIEW, creation CREATE, edits/status/sale EDIT, deletion DELETE.
The engine checks the same permissions again with the request's AuthContext.

GET /api/bikes carries an ETag derived from the "bikes" collection version;
a matching If-None-Match is answered with 304 and no body.
"""

from flask import Blueprint, request, jsonify

from ..services import collection_service, inventory_service, sale_service
from ..decorators import (
    require_auth,
    require_permission,
    handle_domain_errors,
    current_actor,
    collection_response,
)
from ..permissions import CREATE, DELETE, EDIT, VIEW

bikes_bp = Blueprint("bikes", __name__, url_prefix="/api/bikes")


@bikes_bp.get("")
@require_auth
@require_permission(VIEW)
@handle_domain_errors("list bikes")
def list_bikes():
    """
    List non-deleted bikes, newest entry first.

    Query params:
    - status, type: exact filters
    - search: substring of ref, brand, model or serial
    - page, per_page: optional pagination (per_page max 100)
    """
    return collection_response(
        collection_service.BIKES,
        lambda: inventory_service.list_bikes(
            actor=current_actor(),
            status=request.args.get("status") or None,
            bike_type=request.args.get("type") or None,
            search=request.args.get("search") or None,
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        ),
    )


@bikes_bp.get("/next-ref")
@require_auth
@require_permission(VIEW)
@handle_domain_errors("allocate bike ref")
def next_ref():
    return jsonify({"ref_number": inventory_service.get_next_ref_number(actor=current_actor())})


@bikes_bp.get("/<int:bike_id>")
@require_auth
@require_permission(VIEW)
@handle_domain_errors("get bike")
def get_bike(bike_id: int):
    return jsonify(inventory_service.get_bike(bike_id, actor=current_actor()).to_dict())


@bikes_bp.post("")
@require_auth
@require_permission(CREATE)
@handle_domain_errors("create bike")
def create_bike():
    payload = request.get_json(silent=True) or {}
    bike = inventory_service.create_bike(payload, actor=current_actor())
    return jsonify(bike.to_dict()), 201


@bikes_bp.patch("/<int:bike_id>")
@require_auth
@require_permission(EDIT)
@handle_domain_errors("update bike")
def update_bike(bike_id: int):
    payload = request.get_json(silent=True) or {}
    bike = inventory_service.update_bike(bike_id, payload, actor=current_actor())
    return jsonify(bike.to_dict())


@bikes_bp.post("/<int:bike_id>/status")
@require_auth
@require_permission(EDIT)
@handle_domain_errors("change bike status")
def change_status(bike_id: int):
    """Body: {"status": "Available" | "Reserved" | "Unavailable"}"""
    data = request.get_json(silent=True) or {}
    bike = inventory_service.change_status(bike_id, data.get("status"), actor=current_actor())
    return jsonify(bike.to_dict())


@bikes_bp.post("/<int:bike_id>/sell")
@require_auth
@require_permission(EDIT)
@handle_domain_errors("sell bike")
def sell_bike(bike_id: int):
    """
    Body:
    - sale_type: "Cash" | "TradeIn"
    - cash_portion: int cents
    - trade_in: {brand, model, type, size, purchase_price, sell_price, ...} (TradeIn)
    - idempotency_key: optional; the Idempotency-Key header is used when absent
    """
    data = request.get_json(silent=True) or {}
    key = data.get("idempotency_key") or request.headers.get("Idempotency-Key")
    result = sale_service.sell_bike(
        bike_id,
        data.get("sale_type"),
        data.get("cash_portion"),
        trade_in=data.get("trade_in"),
        idempotency_key=key,
        actor=current_actor(),
    )
    return jsonify(result.to_dict()), (200 if result.replayed else 201)


@bikes_bp.delete("/<int:bike_id>")
@require_auth
@require_permission(DELETE)
@handle_domain_errors("delete bike")
def delete_bike(bike_id: int):
    inventory_service.delete_bike(bike_id, actor=current_actor())
    return "", 204
