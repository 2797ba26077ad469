# Overview: Flask API routes for branch and supplier ledgers; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_actor
from ..errors import ValidationError
from ..services import ledger_service
from ..services.concurrency import commit_once
from ..time_utils import parse_iso_datetime
from . import json_error, missing_field

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- from/to filtering is inclusive on both ends.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledgers")


def _window_args():
    return parse_iso_datetime(request.args.get("from")), parse_iso_datetime(request.args.get("to"))


@ledger_bp.get("/<owner_kind>/<int:owner_id>/entries")
def list_entries_route(owner_kind: str, owner_id: int):
    """Query params: from, to, limit (max 1000), order ("desc" newest first, default; or "asc")."""
    limit = request.args.get("limit", default=500, type=int)
    limit = max(1, min(limit, 1000))
    order = request.args.get("order", default="desc")
    try:
        if order not in ("asc", "desc"):
            raise ValidationError(f"Unknown order: {order!r}")
        date_from, date_to = _window_args()
        entries = ledger_service.get_entries(
            owner_kind, owner_id, date_from, date_to, limit=limit, newest_first=order == "desc"
        )
    except Exception as e:
        return json_error(e)
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)}), 200


@ledger_bp.post("/<owner_kind>/<int:owner_id>/entries")
@require_actor
def post_entry_route(owner_kind: str, owner_id: int):
    """
    Append one entry.

    Request body:
    {
        "entry_type": "Sale" | "Expense" | "Payment" | "Adjustment" | "Transfer" | "Purchase",
        "amount": "125.00",
        "direction": "debit" | "credit",
        "reference_id": int (optional),
        "reference_type": str (optional),
        "description": str (optional)
    }

    Returns:
        201: Entry with its running balance
        400: Invalid amount, entry type or direction
        404: Unknown owner
    """
    data = request.get_json() or {}
    try:
        entry = ledger_service.post_entry(
            owner_kind,
            owner_id,
            data["entry_type"],
            data["amount"],
            data["direction"],
            data.get("reference_id"),
            data.get("description"),
            reference_type=data.get("reference_type"),
        )
        commit_once()
        return jsonify(entry.to_dict()), 201
    except KeyError as e:
        return missing_field(e)
    except Exception as e:
        return json_error(e)


@ledger_bp.get("/<owner_kind>/<int:owner_id>/summary")
def summary_route(owner_kind: str, owner_id: int):
    try:
        date_from, date_to = _window_args()
        summary = ledger_service.get_summary(owner_kind, owner_id, date_from, date_to)
    except Exception as e:
        return json_error(e)
    return jsonify(summary.to_dict()), 200


@ledger_bp.get("/<owner_kind>/balances")
def balances_route(owner_kind: str):
    try:
        accounts = ledger_service.list_balances(owner_kind)
    except Exception as e:
        return json_error(e)
    return jsonify({"items": [a.to_dict() for a in accounts], "count": len(accounts)}), 200


@ledger_bp.post("/entries/<int:entry_id>/reverse")
@require_actor
def reverse_entry_route(entry_id: int):
    """Request body: {"reason": str (optional)}"""
    data = request.get_json(silent=True) or {}
    try:
        reversal = ledger_service.reverse_entry(entry_id, actor_id=g.actor_id, reason=data.get("reason"))
        commit_once()
        return jsonify(reversal.to_dict()), 201
    except Exception as e:
        return json_error(e)


@ledger_bp.get("/branch-profit")
def branch_profit_route():
    """Per-branch profit over ?from&to (inclusive), most profitable first."""
    try:
        date_from, date_to = _window_args()
        summaries = ledger_service.get_branch_profit_summary(date_from, date_to)
    except Exception as e:
        return json_error(e)
    return jsonify({"items": [s.to_dict() for s in summaries], "count": len(summaries)}), 200
