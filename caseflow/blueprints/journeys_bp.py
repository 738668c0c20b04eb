"""
Journey catalog blueprint — sectors, templates and template state lists.

Endpoints:
    GET/POST  /api/v1/journeys/sectors
    GET/POST  /api/v1/journeys
    GET/PUT   /api/v1/journeys/<id>
    POST      /api/v1/journeys/state-machine/preview   builder dry run
    PUT       /api/v1/journeys/<id>/states             replace (ordered labels)
    POST      /api/v1/journeys/<id>/states             append one
    DELETE    /api/v1/journeys/<id>/states/<key>       remove one
    POST      /api/v1/journeys/<id>/states/move        positional move
    PUT       /api/v1/journeys/<id>/default-state
    PUT       /api/v1/journeys/<id>/states/<key>/label
"""

from flask import Blueprint, jsonify, request

from caseflow.blueprints import json_body, register_error_handlers
from caseflow.core.exceptions import ValidationError
from caseflow.services import journey_service as svc
from caseflow.utils.errors import refusal_response

journeys_bp = Blueprint("journeys", __name__, url_prefix="/api/v1/journeys")
register_error_handlers(journeys_bp)


def _journey_response(journey, refusal, status=200):
    if refusal:
        return refusal_response(refusal)
    return jsonify(journey.to_dict()), status


def _int_arg(data, name):
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer", {name: "expected integer"})
    return value


# ═══════════════════════════════════════════════════════════════
# Sectors
# ═══════════════════════════════════════════════════════════════

@journeys_bp.route("/sectors", methods=["GET"])
def list_sectors():
    return jsonify(svc.list_sectors()), 200


@journeys_bp.route("/sectors", methods=["POST"])
def create_sector():
    sector, refusal = svc.create_sector(json_body())
    if refusal:
        return refusal_response(refusal)
    return jsonify(sector.to_dict()), 201


# ═══════════════════════════════════════════════════════════════
# Templates
# ═══════════════════════════════════════════════════════════════

@journeys_bp.route("", methods=["GET"])
def list_journeys():
    """List journey templates, optionally filtered by ``sector_id``."""
    return jsonify(svc.list_journeys(request.args.get("sector_id", type=int))), 200


@journeys_bp.route("", methods=["POST"])
def create_journey():
    """Create a template; ``states`` defaults to the standard five-state flow."""
    journey, refusal = svc.create_journey(json_body())
    return _journey_response(journey, refusal, 201)


@journeys_bp.route("/<int:journey_id>", methods=["GET"])
def get_journey(journey_id):
    return jsonify(svc.get_journey(journey_id).to_dict()), 200


@journeys_bp.route("/<int:journey_id>", methods=["PUT"])
def update_journey(journey_id):
    journey, refusal = svc.update_journey(journey_id, json_body())
    return _journey_response(journey, refusal)


# ═══════════════════════════════════════════════════════════════
# State list editing
# ═══════════════════════════════════════════════════════════════

@journeys_bp.route("/state-machine/preview", methods=["POST"])
def preview_state_machine():
    """Show what the builder makes of raw labels without saving anything."""
    data = json_body()
    sm, refusal = svc.preview_state_machine(data.get("states") or [], data.get("default"))
    return jsonify({
        "state_machine": sm.to_dict(),
        "valid": refusal is None,
        "errors": refusal.details.get("errors", []) if refusal else [],
    }), 200


@journeys_bp.route("/<int:journey_id>/states", methods=["PUT"])
def replace_states(journey_id):
    data = json_body()
    if not isinstance(data.get("states"), list):
        raise ValidationError("states must be a list", {"states": "expected list"})
    journey, refusal = svc.replace_journey_states(journey_id, data["states"], data.get("default"))
    return _journey_response(journey, refusal)


@journeys_bp.route("/<int:journey_id>/states", methods=["POST"])
def append_state(journey_id):
    data = json_body()
    journey, refusal = svc.append_journey_state(journey_id, data.get("label") or data.get("state"))
    return _journey_response(journey, refusal)


@journeys_bp.route("/<int:journey_id>/states/<state_key>", methods=["DELETE"])
def remove_state(journey_id, state_key):
    journey, refusal = svc.remove_journey_state(journey_id, state_key)
    return _journey_response(journey, refusal)


@journeys_bp.route("/<int:journey_id>/states/move", methods=["POST"])
def move_state(journey_id):
    data = json_body()
    journey, refusal = svc.move_journey_state(
        journey_id, _int_arg(data, "from_index"), _int_arg(data, "to_index"),
    )
    return _journey_response(journey, refusal)


@journeys_bp.route("/<int:journey_id>/default-state", methods=["PUT"])
def set_default_state(journey_id):
    journey, refusal = svc.set_journey_default_state(journey_id, json_body().get("state"))
    return _journey_response(journey, refusal)


@journeys_bp.route("/<int:journey_id>/states/<state_key>/label", methods=["PUT"])
def set_state_label(journey_id, state_key):
    journey, refusal = svc.set_journey_state_label(journey_id, state_key, json_body().get("label"))
    return _journey_response(journey, refusal)
