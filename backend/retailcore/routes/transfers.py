# backend/retailcore/routes/transfers.py
"""
Inter-branch transfer API routes.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_actor
from ..services import transfer_service
from ..services.concurrency import commit_once
from . import int_field, json_error, missing_field

transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.route("", methods=["POST"])
@require_actor
def create_transfer():
    """
    Create a new transfer request.

    Request body:
    {
        "from_branch_id": int,
        "to_branch_id": int,
        "serials": [str, ...],
        "notes": str (optional),
        "transfer_prices": {"<serial>": "80.00"} (optional)
    }

    Returns:
        201: Transfer created
        400: Invalid request (offending serials are listed)
        404: Unknown branch
    """
    data = request.get_json() or {}

    try:
        transfer = transfer_service.create_transfer(
            from_branch_id=int_field(data, "from_branch_id"),
            to_branch_id=int_field(data, "to_branch_id"),
            serials=data["serials"],
            actor_id=g.actor_id,
            notes=data.get("notes"),
            transfer_prices=data.get("transfer_prices"),
        )

        commit_once()

        return jsonify(transfer.to_dict(include_items=True)), 201

    except KeyError as e:
        return missing_field(e)
    except Exception as e:
        return json_error(e)


@transfers_bp.route("", methods=["GET"])
def list_transfers():
    """Query params: branch_id (source or destination), status."""
    try:
        transfers = transfer_service.list_transfers(
            branch_id=request.args.get("branch_id", type=int),
            status=request.args.get("status"),
        )
    except Exception as e:
        return json_error(e)
    return jsonify({"transfers": [t.to_dict() for t in transfers], "count": len(transfers)}), 200


@transfers_bp.route("/<int:transfer_id>", methods=["GET"])
def get_transfer(transfer_id: int):
    try:
        transfer = transfer_service.get_transfer(transfer_id)
    except Exception as e:
        return json_error(e)
    return jsonify(transfer.to_dict(include_items=True)), 200


@transfers_bp.route("/<int:transfer_id>/approve", methods=["POST"])
@require_actor
def approve_transfer(transfer_id: int):
    """
    Approve a pending transfer.

    Returns:
        200: Transfer approved
        404: Transfer not found
        409: Transfer is not Pending
    """
    try:
        transfer = transfer_service.approve_transfer(transfer_id, g.actor_id)
        commit_once()
        return jsonify(transfer.to_dict()), 200
    except Exception as e:
        return json_error(e)


@transfers_bp.route("/<int:transfer_id>/reject", methods=["POST"])
@require_actor
def reject_transfer(transfer_id: int):
    """Request body: {"reason": str}"""
    data = request.get_json(silent=True) or {}
    try:
        transfer = transfer_service.reject_transfer(transfer_id, g.actor_id, data.get("reason"))
        commit_once()
        return jsonify(transfer.to_dict()), 200
    except Exception as e:
        return json_error(e)


@transfers_bp.route("/<int:transfer_id>/dispatch", methods=["POST"])
@require_actor
def dispatch_transfer(transfer_id: int):
    """
    Dispatch an approved transfer (source stock deducted).

    Returns:
        200: Transfer in transit
        409: Not Approved, or an item is no longer available
        503: Storage timeout (safe to retry after re-reading)
    """
    try:
        transfer = transfer_service.dispatch_transfer(transfer_id, g.actor_id)
        commit_once()
        return jsonify(transfer.to_dict(include_items=True)), 200
    except Exception as e:
        return json_error(e)


@transfers_bp.route("/<int:transfer_id>/complete", methods=["POST"])
@require_actor
def complete_transfer(transfer_id: int):
    """
    Receive a transfer at its destination and post the profit settlement.

    Returns:
        200: Transfer completed
        409: Already completed, or not in transit
        503: Storage timeout
    """
    try:
        transfer = transfer_service.complete_transfer(transfer_id, g.actor_id)
        commit_once()
        return jsonify(transfer.to_dict(include_items=True)), 200
    except Exception as e:
        return json_error(e)


@transfers_bp.route("/<int:transfer_id>/cancel", methods=["POST"])
@require_actor
def cancel_transfer(transfer_id: int):
    """Request body: {"reason": str (optional)}"""
    data = request.get_json(silent=True) or {}
    try:
        transfer = transfer_service.cancel_transfer(transfer_id, g.actor_id, data.get("reason"))
        commit_once()
        return jsonify(transfer.to_dict()), 200
    except Exception as e:
        return json_error(e)
