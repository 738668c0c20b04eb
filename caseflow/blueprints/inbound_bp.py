"""
Inbound blueprint — messaging-provider webhooks.

Endpoints:
    POST /api/v1/tenants/<tid>/inbound/<journey_key>   dispatch one event
    GET  /api/v1/tenants/<tid>/inbound/decisions       decision log (newest first)

Rate limited via INBOUND_RATE_LIMIT (see middleware/rate_limiter.py).
"""

import logging

from flask import Blueprint, jsonify, request

from caseflow.blueprints import json_body, paginate_query, register_error_handlers
from caseflow.services import inbound_service as svc
from caseflow.services.tenant_service import get_tenant
from caseflow.utils.errors import refusal_response

logger = logging.getLogger(__name__)

inbound_bp = Blueprint("inbound", __name__, url_prefix="/api/v1/tenants/<int:tenant_id>/inbound")
register_error_handlers(inbound_bp)


@inbound_bp.url_value_preprocessor
def _check_tenant(endpoint, values):
    get_tenant(values["tenant_id"])


@inbound_bp.route("/decisions", methods=["GET"])
def list_decisions(tenant_id):
    query = svc.list_decision_logs(
        tenant_id,
        outcome=request.args.get("outcome"),
        sender_id=request.args.get("sender_id"),
    )
    items, total = paginate_query(query)
    return jsonify({"items": [d.to_dict() for d in items], "total": total}), 200


@inbound_bp.route("/<journey_key>", methods=["POST"])
def receive(tenant_id, journey_key):
    summary, refusal = svc.process_inbound_event(tenant_id, journey_key, json_body())
    if refusal:
        return refusal_response(refusal)
    return jsonify(summary), 200
