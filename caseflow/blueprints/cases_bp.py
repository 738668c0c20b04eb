"""
Cases blueprint — gate checks, transitions, fields and tasks.

Endpoints:
    GET   /api/v1/tenants/<tid>/cases
    POST  /api/v1/tenants/<tid>/cases
    GET   /api/v1/tenants/<tid>/cases/<id>
    GET   /api/v1/tenants/<tid>/cases/<id>/gate
    POST  /api/v1/tenants/<tid>/cases/<id>/transition         {"to_state": ...}
    PATCH /api/v1/tenants/<tid>/cases/<id>/fields             {"<key>": value, ...}
    POST  /api/v1/tenants/<tid>/cases/<id>/tasks/<task_id>/complete
"""

from flask import Blueprint, jsonify, request

from caseflow.blueprints import json_body, paginate_query, register_error_handlers
from caseflow.core.exceptions import ValidationError
from caseflow.models import db
from caseflow.services import case_service as svc
from caseflow.services import journey_service
from caseflow.services.tenant_service import get_tenant
from caseflow.utils.errors import refusal_response

cases_bp = Blueprint("cases", __name__, url_prefix="/api/v1/tenants/<int:tenant_id>/cases")
register_error_handlers(cases_bp)


@cases_bp.url_value_preprocessor
def _check_tenant(endpoint, values):
    get_tenant(values["tenant_id"])


def _case_detail(case):
    d = case.to_dict(include_children=True)
    d["timeline"] = svc.list_timeline(case)
    return d


@cases_bp.route("", methods=["GET"])
def list_cases(tenant_id):
    query = svc.list_cases(
        tenant_id,
        journey_id=request.args.get("journey_id", type=int),
        state=request.args.get("state"),
        status=request.args.get("status"),
    )
    items, total = paginate_query(query)
    return jsonify({"items": [c.to_dict() for c in items], "total": total}), 200


@cases_bp.route("", methods=["POST"])
def create_case(tenant_id):
    """Open a case manually; an empty or unknown ``state`` uses the journey default."""
    data = json_body()
    if not data.get("journey_id"):
        raise ValidationError("journey_id is required", {"journey_id": "required"})
    journey = journey_service.get_journey(data["journey_id"])
    case = svc.create_case(
        tenant_id, journey,
        state=data.get("state"),
        sender_id=data.get("sender_id"),
        channel="manual",
        title=data.get("title"),
    )
    return jsonify(_case_detail(case)), 201


@cases_bp.route("/<int:case_id>", methods=["GET"])
def get_case(tenant_id, case_id):
    return jsonify(_case_detail(svc.get_case(tenant_id, case_id))), 200


@cases_bp.route("/<int:case_id>/gate", methods=["GET"])
def check_gate(tenant_id, case_id):
    """Can the case leave its current state? Lists what is still missing."""
    case = svc.get_case(tenant_id, case_id)
    return jsonify(svc.check_gate(case).to_dict()), 200


@cases_bp.route("/<int:case_id>/transition", methods=["POST"])
def transition(tenant_id, case_id):
    data = json_body()
    if not data.get("to_state"):
        raise ValidationError("to_state is required", {"to_state": "required"})
    case = svc.get_case(tenant_id, case_id)
    moved, refusal = svc.transition_case(case, data["to_state"], actor=data.get("actor"))
    if refusal:
        return refusal_response(refusal)
    return jsonify(_case_detail(moved)), 200


@cases_bp.route("/<int:case_id>/fields", methods=["PATCH"])
def set_fields(tenant_id, case_id):
    data = json_body()
    if not data:
        raise ValidationError("At least one field is required", {"body": "empty"})
    case = svc.get_case(tenant_id, case_id)
    for key, value in data.items():
        _, refusal = svc.set_case_field(case, key, value, commit=False)
        if refusal:
            db.session.rollback()
            return refusal_response(refusal)
    db.session.commit()
    return jsonify({"fields": case.field_values()}), 200


@cases_bp.route("/<int:case_id>/tasks/<task_id>/complete", methods=["POST"])
def complete_task(tenant_id, case_id, task_id):
    data = json_body()
    case = svc.get_case(tenant_id, case_id)
    task, refusal = svc.complete_task(
        case, task_id, attachment_ref=data.get("attachment_ref"), actor=data.get("actor"),
    )
    if refusal:
        return refusal_response(refusal)
    return jsonify(task.to_dict()), 200
