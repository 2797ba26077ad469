# Overview: Flask API routes for investors and monthly profit distributions.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_actor
from ..services import distribution_service, investor_service
from ..services.concurrency import commit_once
from ..money import format_cents
from ..time_utils import parse_iso_datetime
from . import json_error, missing_field

distributions_bp = Blueprint("distributions", __name__, url_prefix="/api/distributions")
investors_bp = Blueprint("investors", __name__, url_prefix="/api/investors")


@distributions_bp.get("/preview")
def preview_route():
    """
    Query params: period=YYYY-MM

    Returns the computed split and per-investor breakdown; persists nothing.
    """
    try:
        preview = distribution_service.preview_distribution(request.args.get("period", ""))
    except Exception as e:
        return json_error(e)
    return jsonify(preview.to_dict()), 200


@distributions_bp.post("/finalize")
@require_actor
def finalize_route():
    """
    Request body: {"period": "YYYY-MM"}

    Returns:
        201: Finalized distribution with details
        400: Malformed period
        409: Period already finalized
    """
    data = request.get_json() or {}
    try:
        distribution = distribution_service.finalize_distribution(data["period"], g.actor_id)
        commit_once()
        payload = distribution.to_dict()
        payload["details"] = [d.to_dict() for d in distribution.details]
        return jsonify(payload), 201
    except KeyError as e:
        return missing_field(e)
    except Exception as e:
        return json_error(e)


@distributions_bp.get("")
def history_route():
    distributions = distribution_service.get_distribution_history()
    return jsonify({"items": [d.to_dict() for d in distributions], "count": len(distributions)}), 200


@distributions_bp.get("/<int:distribution_id>/details")
def details_route(distribution_id: int):
    try:
        distribution = distribution_service.get_distribution(distribution_id)
        details = distribution_service.get_distribution_details(distribution_id)
    except Exception as e:
        return json_error(e)
    return jsonify({
        "distribution": distribution.to_dict(),
        "details": [d.to_dict() for d in details],
    }), 200


@investors_bp.get("")
def list_investors_route():
    rows = investor_service.list_investors()
    items = []
    for investor, total_cents in rows:
        data = investor.to_dict()
        data["total_capital"] = format_cents(total_cents)
        items.append(data)
    return jsonify({"items": items, "count": len(items)}), 200


@investors_bp.post("")
@require_actor
def create_investor_route():
    """Request body: {"name": str, "contact_info": str (optional)}"""
    data = request.get_json() or {}
    try:
        investor = investor_service.create_investor(data["name"], data.get("contact_info"))
        commit_once()
        return jsonify(investor.to_dict()), 201
    except KeyError as e:
        return missing_field(e)
    except Exception as e:
        return json_error(e)


@investors_bp.post("/<int:investor_id>/capital")
@require_actor
def add_capital_route(investor_id: int):
    """
    Request body:
    {
        "amount": "100000.00",
        "contribution_date": ISO-8601 (optional, defaults to now),
        "notes": str (optional)
    }
    """
    data = request.get_json() or {}
    try:
        contribution = investor_service.add_capital(
            investor_id,
            data["amount"],
            contribution_date=parse_iso_datetime(data.get("contribution_date")),
            notes=data.get("notes"),
        )
        commit_once()
        return jsonify(contribution.to_dict()), 201
    except KeyError as e:
        return missing_field(e)
    except Exception as e:
        return json_error(e)


@investors_bp.get("/<int:investor_id>/capital")
def capital_history_route(investor_id: int):
    try:
        contributions = investor_service.get_capital_history(investor_id)
    except Exception as e:
        return json_error(e)
    return jsonify({"items": [c.to_dict() for c in contributions], "count": len(contributions)}), 200
