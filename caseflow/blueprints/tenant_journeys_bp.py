"""
Tenant blueprint — journey activation, configuration and vendors.

Endpoints:
    GET    /api/v1/tenants/<tid>/journeys
    PUT    /api/v1/tenants/<tid>/journeys/<jid>/enabled          {"enabled": bool}
    GET    /api/v1/tenants/<tid>/journeys/<jid>/config           effective (typed) config
    PATCH  /api/v1/tenants/<tid>/journeys/<jid>/config           partial merge
    PUT    /api/v1/tenants/<tid>/journeys/<jid>/status-configs/<state>
    PUT    /api/v1/tenants/<tid>/sectors/<sid>/enabled
    GET    /api/v1/tenants/<tid>/vendors
    POST   /api/v1/tenants/<tid>/vendors                       {"phone", "display_name"?}
"""

from flask import Blueprint, current_app, jsonify

from caseflow.blueprints import json_body, register_error_handlers
from caseflow.core.exceptions import ValidationError
from caseflow.services import journey_service as svc
from caseflow.services import vendor_service
from caseflow.services.tenant_service import get_tenant
from caseflow.utils.errors import refusal_response

tenant_journeys_bp = Blueprint("tenant_journeys", __name__, url_prefix="/api/v1/tenants/<int:tenant_id>")
register_error_handlers(tenant_journeys_bp)


@tenant_journeys_bp.url_value_preprocessor
def _check_tenant(endpoint, values):
    get_tenant(values["tenant_id"])


def _enabled_flag(data):
    if not isinstance(data.get("enabled"), bool):
        raise ValidationError("enabled is required", {"enabled": "expected boolean"})
    return data["enabled"]


def _config_response(tenant_id, journey_id, refusal=None):
    if refusal:
        return refusal_response(refusal)
    activation = svc.get_tenant_journey(tenant_id, journey_id)
    effective = svc.get_effective_config(tenant_id, journey_id)
    return jsonify({
        "tenant_id": tenant_id,
        "journey_id": journey_id,
        "enabled": bool(activation and activation.enabled),
        "stored": (activation.config or {}) if activation else {},
        "effective": effective.to_dict(),
    }), 200


@tenant_journeys_bp.route("/journeys", methods=["GET"])
def list_tenant_journeys(tenant_id):
    return jsonify(svc.list_tenant_journeys(tenant_id)), 200


@tenant_journeys_bp.route("/journeys/<int:journey_id>/enabled", methods=["PUT"])
def set_enabled(tenant_id, journey_id):
    activation = svc.set_journey_enabled(tenant_id, journey_id, _enabled_flag(json_body()))
    return jsonify(activation.to_dict()), 200


@tenant_journeys_bp.route("/journeys/<int:journey_id>/config", methods=["GET"])
def get_config(tenant_id, journey_id):
    return _config_response(tenant_id, journey_id)


@tenant_journeys_bp.route("/journeys/<int:journey_id>/config", methods=["PATCH"])
def patch_config(tenant_id, journey_id):
    """Deep-merge the body onto the stored config (lists are replaced whole)."""
    _, refusal = svc.apply_config_patch(tenant_id, journey_id, json_body())
    return _config_response(tenant_id, journey_id, refusal)


@tenant_journeys_bp.route("/journeys/<int:journey_id>/status-configs/<state_key>", methods=["PUT"])
def put_status_config(tenant_id, journey_id, state_key):
    _, refusal = svc.update_status_config(tenant_id, journey_id, state_key, json_body())
    return _config_response(tenant_id, journey_id, refusal)


@tenant_journeys_bp.route("/sectors/<int:sector_id>/enabled", methods=["PUT"])
def set_sector_enabled(tenant_id, sector_id):
    row = svc.set_sector_enabled(tenant_id, sector_id, _enabled_flag(json_body()))
    return jsonify(row.to_dict()), 200


@tenant_journeys_bp.route("/vendors", methods=["GET"])
def list_vendors(tenant_id):
    return jsonify(vendor_service.list_vendors(tenant_id)), 200


@tenant_journeys_bp.route("/vendors", methods=["POST"])
def create_vendor(tenant_id):
    """Pre-register a vendor so inbound messages resolve without auto-creation."""
    data = json_body()
    if not data.get("phone"):
        raise ValidationError("phone is required", {"phone": "required"})
    vendor, refusal = vendor_service.create_vendor(
        tenant_id,
        data["phone"],
        display_name=data.get("display_name"),
        country_code=current_app.config.get("DEFAULT_PHONE_COUNTRY_CODE", "55"),
    )
    if refusal:
        return refusal_response(refusal)
    return jsonify(vendor.to_dict()), 201
