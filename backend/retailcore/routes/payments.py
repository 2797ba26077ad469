# backend/retailcore/routes/payments.py
"""
Head-office payment API routes.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_actor
from ..services import ho_payment_service
from ..services.concurrency import commit_once
from ..time_utils import parse_iso_datetime
from . import int_field, json_error, missing_field

ho_payments_bp = Blueprint("ho_payments", __name__, url_prefix="/api/ho-payments")


@ho_payments_bp.route("", methods=["POST"])
@require_actor
def create_payment():
    """
    Record a branch payment to head office (Pending until approved).

    Request body:
    {
        "branch_id": int,
        "amount": "500.00",
        "payment_method": str (optional),
        "reference": str (optional),
        "notes": str (optional),
        "payment_date": ISO-8601 (optional)
    }

    Returns:
        201: Payment request created
        400: Invalid amount or missing field
        404: Unknown branch
    """
    data = request.get_json() or {}

    try:
        payment = ho_payment_service.create_payment_request(
            int_field(data, "branch_id"),
            data["amount"],
            g.actor_id,
            payment_method=data.get("payment_method"),
            reference=data.get("reference"),
            notes=data.get("notes"),
            payment_date=parse_iso_datetime(data.get("payment_date")),
        )
        commit_once()
        return jsonify(payment.to_dict()), 201
    except KeyError as e:
        return missing_field(e)
    except Exception as e:
        return json_error(e)


@ho_payments_bp.route("", methods=["GET"])
def list_payments():
    """Query params: status (Pending, Approved, Rejected or all), branch_id."""
    try:
        payments = ho_payment_service.list_payments(
            status=request.args.get("status"),
            branch_id=request.args.get("branch_id", type=int),
        )
    except Exception as e:
        return json_error(e)
    return jsonify({"items": [p.to_dict() for p in payments], "count": len(payments)}), 200


@ho_payments_bp.route("/<int:payment_id>", methods=["GET"])
def get_payment(payment_id: int):
    try:
        payment = ho_payment_service.get_payment(payment_id)
    except Exception as e:
        return json_error(e)
    return jsonify(payment.to_dict()), 200


@ho_payments_bp.route("/<int:payment_id>/approve", methods=["POST"])
@require_actor
def approve_payment(payment_id: int):
    """
    Approve a pending payment; the branch ledger is debited.

    Returns:
        200: Payment approved
        404: Payment not found
        409: Payment is not Pending
        503: Storage timeout
    """
    try:
        payment = ho_payment_service.approve_payment(payment_id, g.actor_id)
        commit_once()
        return jsonify(payment.to_dict()), 200
    except Exception as e:
        return json_error(e)


@ho_payments_bp.route("/<int:payment_id>/reject", methods=["POST"])
@require_actor
def reject_payment(payment_id: int):
    """Request body: {"reason": str}"""
    data = request.get_json(silent=True) or {}
    try:
        payment = ho_payment_service.reject_payment(payment_id, g.actor_id, data.get("reason"))
        commit_once()
        return jsonify(payment.to_dict()), 200
    except Exception as e:
        return json_error(e)
