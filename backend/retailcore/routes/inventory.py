# Overview: Flask API routes for serialized stock and reservations.

from flask import Blueprint, jsonify, request

from ..decorators import require_actor
from ..services import inventory_service
from ..services.concurrency import commit_once
from . import int_field, json_error, missing_field

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/products")
@require_actor
def create_product_route():
    data = request.get_json() or {}
    try:
        product = inventory_service.create_product(
            sku=data["sku"],
            name=data["name"],
            landing_cost=data.get("landing_cost", 0),
            branch_cost=data.get("branch_cost", 0),
            transfer_price=data.get("transfer_price"),
            retail_price=data.get("retail_price"),
        )
        commit_once()
        return jsonify(product.to_dict()), 201
    except KeyError as e:
        return missing_field(e)
    except Exception as e:
        return json_error(e)


@inventory_bp.post("/items")
@require_actor
def receive_item_route():
    """
    Receive one serialized item into a branch.

    Request body:
    {
        "serial_no": str,
        "product_id": int,
        "branch_id": int,
        "landing_cost": "12.50" (optional, defaults to the product's),
        "branch_cost": "15.00" (optional, defaults to the product's),
        "notes": str (optional)
    }
    """
    data = request.get_json() or {}
    try:
        item = inventory_service.receive_item(
            serial_no=data["serial_no"],
            product_id=int_field(data, "product_id"),
            branch_id=int_field(data, "branch_id"),
            landing_cost=data.get("landing_cost"),
            branch_cost=data.get("branch_cost"),
            notes=data.get("notes"),
        )
        commit_once()
        return jsonify(item.to_dict()), 201
    except KeyError as e:
        return missing_field(e)
    except Exception as e:
        return json_error(e)


@inventory_bp.get("/items")
def list_items_route():
    limit = request.args.get("limit", default=200, type=int)
    limit = max(1, min(limit, 500))
    try:
        items = inventory_service.list_items(
            branch_id=request.args.get("branch_id", type=int),
            product_id=request.args.get("product_id", type=int),
            status=request.args.get("status"),
            limit=limit,
        )
    except Exception as e:
        return json_error(e)
    return jsonify({"items": [i.to_dict() for i in items], "count": len(items)}), 200


@inventory_bp.get("/items/<int:item_id>")
def get_item_route(item_id: int):
    try:
        item = inventory_service.get_item(item_id)
    except Exception as e:
        return json_error(e)
    return jsonify(item.to_dict()), 200


@inventory_bp.post("/items/<int:item_id>/transition")
@require_actor
def transition_item_route(item_id: int):
    """
    Compare-and-swap an item's status.

    Request body: {"from_status": "Available", "to_status": "Reserved"}

    Returns:
        200: Item updated
        409: Stale state, illegal transition or insufficient stock
    """
    data = request.get_json() or {}
    try:
        item = inventory_service.transition_item(item_id, data["from_status"], data["to_status"])
        commit_once()
        return jsonify(item.to_dict()), 200
    except KeyError as e:
        return missing_field(e)
    except Exception as e:
        return json_error(e)


def _quantity_request(operation):
    data = request.get_json() or {}
    try:
        level = operation(int_field(data, "product_id"), int_field(data, "branch_id"), int_field(data, "qty"))
        commit_once()
        return jsonify(level.to_dict()), 200
    except KeyError as e:
        return missing_field(e)
    except Exception as e:
        return json_error(e)


@inventory_bp.post("/reserve")
@require_actor
def reserve_route():
    """Request body: {"product_id": int, "branch_id": int, "qty": int}"""
    return _quantity_request(inventory_service.reserve)


@inventory_bp.post("/release")
@require_actor
def release_route():
    """Request body: {"product_id": int, "branch_id": int, "qty": int}"""
    return _quantity_request(inventory_service.release)


@inventory_bp.get("/available")
def available_route():
    product_id = request.args.get("product_id", type=int)
    branch_id = request.args.get("branch_id", type=int)
    if product_id is None or branch_id is None:
        return jsonify({"error": "product_id and branch_id are required", "code": "VALIDATION_ERROR"}), 400
    try:
        level = inventory_service.get_available_count(product_id, branch_id)
    except Exception as e:
        return json_error(e)
    return jsonify(level.to_dict()), 200
