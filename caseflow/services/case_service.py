"""
Case Service — case lifecycle on top of the status gate.

Owns every persisted state change of a case:
  - snapshot building for the gate (fields + task completion records)
  - gated transitions with timeline, responsible assignment, mandatory
    task instantiation and transition actions
  - field values, task completion, pendencies

Return convention mirrors the other services: ``(result, refusal)``.
"""

import logging
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from caseflow.core.exceptions import NotFoundError, Refusal
from caseflow.models import db
from caseflow.models.base import utcnow
from caseflow.models.case import (
    Case,
    CaseAttachment,
    CaseField,
    CaseTask,
    Pendency,
    TimelineEvent,
)
from caseflow.models.journey import TenantJourney
from caseflow.services.journey_config import JourneyConfig
from caseflow.services.state_keys import canonicalize, normalize_field_key
from caseflow.services.state_machine import StateMachine, resolve_state_or_default
from caseflow.services.status_gate import (
    CaseSnapshot,
    GateResult,
    TaskCompletion,
    can_leave_state,
)
from caseflow.services.transition_actions import execute_transition_actions
from caseflow.utils.errors import E

logger = logging.getLogger(__name__)

DEFAULT_PENDENCIES = (
    {
        "type": "need_location",
        "question_text": "Please share the current location of the customer visit.",
        "required": True,
        "due": timedelta(hours=4),
    },
    {
        "type": "need_more_pages",
        "question_text": "Are there more pages of this order? If so, send them now.",
        "required": False,
        "due": timedelta(minutes=10),
    },
)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_case(tenant_id, case_id):
    """Tenant-scoped lookup; cross-tenant ids look missing."""
    case = Case.query_for_tenant(tenant_id).filter_by(id=case_id).first()
    if not case:
        raise NotFoundError("Case", case_id, tenant_id)
    return case


def list_cases(tenant_id, journey_id=None, state=None, status=None):
    q = Case.query_for_tenant(tenant_id)
    if journey_id is not None:
        q = q.filter_by(journey_id=journey_id)
    if state:
        q = q.filter_by(state=canonicalize(state))
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Case.id.desc())


def find_open_case(tenant_id, journey_id, sender_id):
    """Most recent open case of ``sender_id`` in the journey, if any."""
    if not sender_id:
        return None
    return (
        Case.query_for_tenant(tenant_id)
        .filter_by(journey_id=journey_id, sender_id=sender_id, status="open")
        .order_by(Case.created_at.desc(), Case.id.desc())
        .first()
    )


def _journey_context(case):
    """``(state_machine, config)`` that governs ``case``."""
    sm = StateMachine.from_dict(case.journey.state_machine)
    activation = TenantJourney.query.filter_by(
        tenant_id=case.tenant_id, journey_id=case.journey_id,
    ).first()
    config = JourneyConfig.from_dict(activation.config if activation else {})
    return sm, config


def add_timeline_event(case, event_type, message, *, actor_type="system", actor_id=None, meta=None):
    event = TimelineEvent(
        tenant_id=case.tenant_id,
        case_id=case.id,
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        message=message,
        meta=meta or {},
    )
    db.session.add(event)
    return event


def list_timeline(case):
    return [
        e.to_dict()
        for e in TimelineEvent.query.filter_by(case_id=case.id)
        .order_by(TimelineEvent.occurred_at, TimelineEvent.id).all()
    ]


# ── Gate ─────────────────────────────────────────────────────────────────────


def build_snapshot(case) -> CaseSnapshot:
    return CaseSnapshot(
        state=case.state,
        fields=case.field_values(),
        task_completions={
            t.task_id: TaskCompletion(t.task_id, bool(t.completed), t.attachment_ref)
            for t in case.tasks
        },
    )


def check_gate(case) -> GateResult:
    """Evaluate the exit gate of the case's current state."""
    _, config = _journey_context(case)
    return can_leave_state(case.state, config.status_config_for(case.state), build_snapshot(case))


def _instantiate_tasks(case, state_key, status_config):
    if status_config is None:
        return 0
    existing = {t.task_id for t in case.tasks}
    created = 0
    for task in status_config.mandatory_tasks:
        if task.id in existing:
            continue
        row = CaseTask(
            tenant_id=case.tenant_id,
            state_key=state_key,
            task_id=task.id,
            description=task.description,
            required=task.required,
            require_attachment=task.require_attachment,
        )
        case.tasks.append(row)
        created += 1
    return created


def transition_case(case, to_state, actor=None):
    """Move ``case`` to ``to_state`` if the current state's gate allows it.

    Returns ``(case, refusal)``; ``refusal`` carries the missing fields and
    incomplete tasks when the gate blocks.
    """
    sm, config = _journey_context(case)
    target = canonicalize(to_state)
    if not target or target not in sm.states:
        return None, Refusal(
            E.UNKNOWN_STATE,
            f"State '{target or to_state}' is not part of the journey",
            {"state": target, "states": sm.states},
        )
    if target == case.state:
        return case, None

    gate = can_leave_state(case.state, config.status_config_for(case.state), build_snapshot(case))
    if not gate.allowed:
        logger.info("Transition blocked: case=%s %s -> %s (%s)", case.id, case.state, target,
                    gate.message, extra={"case_id": case.id})
        return None, Refusal(E.GATE_BLOCKED, gate.message, gate.to_dict())

    from_state = case.state
    entered = config.status_config_for(target)
    try:
        case.state = target
        add_timeline_event(
            case, "state_changed", f"{sm.label_for(from_state)} -> {sm.label_for(target)}",
            actor_type="user" if actor else "system", actor_id=actor,
            meta={"from_state": from_state, "to_state": target},
        )
        if entered is not None and entered.responsible_id:
            case.assigned_user_id = entered.responsible_id
        created = _instantiate_tasks(case, target, entered)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info("Case %s moved %s -> %s (tasks created: %d)", case.id, from_state, target, created,
                extra={"case_id": case.id})

    execute_transition_actions(case, sm.transitions, from_state, target, actor=actor)
    return case, None


# ── Fields, tasks, attachments ──────────────────────────────────────────────


def set_case_field(case, key, value, *, source="user", commit=True):
    """Upsert one case field; structured values go to ``value_json``."""
    field_key = normalize_field_key(key)
    if not field_key:
        return None, Refusal(E.VALIDATION_REQUIRED, "field key is required", {"key": key})
    row = next((f for f in case.fields if f.key == field_key), None)
    if row is None:
        row = CaseField(tenant_id=case.tenant_id, key=field_key)
        case.fields.append(row)
    if isinstance(value, (dict, list, bool, int, float)):
        row.value_json, row.value_text = value, None
    else:
        row.value_json, row.value_text = None, None if value is None else str(value)
    row.source = source
    if commit:
        db.session.commit()
    return row, None


def complete_task(case, task_id, attachment_ref=None, actor=None):
    """Mark a task complete.

    Tasks added to the current state's gate after the case entered it have
    no row yet; one is created on first completion.
    """
    task = next((t for t in case.tasks if t.task_id == task_id), None)
    if task is None:
        _, config = _journey_context(case)
        current = config.status_config_for(case.state)
        if current is not None and any(t.id == task_id for t in current.mandatory_tasks):
            _instantiate_tasks(case, case.state, current)
            task = next((t for t in case.tasks if t.task_id == task_id), None)
    if task is None:
        raise NotFoundError("CaseTask", task_id)
    task.completed = True
    if attachment_ref:
        task.attachment_ref = attachment_ref
    task.completed_by = actor
    task.completed_at = utcnow()
    add_timeline_event(case, "task_completed", task.description,
                       actor_type="user" if actor else "system", actor_id=actor,
                       meta={"task_id": task_id, "attachment_ref": task.attachment_ref})
    db.session.commit()
    return task, None


def add_attachment(case, storage_path, kind="image", content_type=None):
    row = CaseAttachment(
        tenant_id=case.tenant_id, case_id=case.id, kind=kind,
        storage_path=storage_path, content_type=content_type,
    )
    db.session.add(row)
    case.attachments.append(row)
    return row


# ── Creation & pendencies ────────────────────────────────────────────────────


def create_case(tenant_id, journey, *, state=None, sender_id=None, vendor=None,
                channel="whatsapp", title=None, meta=None, commit=True):
    """Open a case in ``state`` (journey default when empty or unknown)."""
    sm = StateMachine.from_dict(journey.state_machine)
    initial = resolve_state_or_default(sm, state)
    case = Case(
        tenant_id=tenant_id,
        journey_id=journey.id,
        state=initial,
        status="open",
        title=title,
        sender_id=sender_id,
        created_by_channel=channel,
        assigned_vendor_id=getattr(vendor, "id", None),
        meta=meta or {},
    )
    db.session.add(case)
    db.session.flush()
    add_timeline_event(case, "case_created", f"Case opened in '{sm.label_for(initial)}' via {channel}",
              meta={"state": initial, "sender_id": sender_id})

    activation = TenantJourney.query.filter_by(tenant_id=tenant_id, journey_id=journey.id).first()
    config = JourneyConfig.from_dict(activation.config if activation else {})
    entered = config.status_config_for(initial)
    if entered is not None and entered.responsible_id:
        case.assigned_user_id = entered.responsible_id
    _instantiate_tasks(case, initial, entered)

    if commit:
        db.session.commit()
    logger.info("Case %s created: journey=%s state=%s sender=%s", case.id, journey.key, initial,
                sender_id, extra={"case_id": case.id, "journey_id": journey.id})
    return case


def seed_default_pendencies(case):
    """Ask the vendor for location (required) and further pages (optional)."""
    now = utcnow()
    rows = []
    for item in DEFAULT_PENDENCIES:
        row = Pendency(
            tenant_id=case.tenant_id,
            case_id=case.id,
            type=item["type"],
            assigned_to_role="vendor",
            question_text=item["question_text"],
            required=item["required"],
            status="open",
            due_at=now + item["due"],
        )
        case.pendencies.append(row)
        rows.append(row)
    return rows


def answer_pendency(case, *, pendency_type=None, text=None, payload=None):
    """Answer the oldest open vendor pendency (of ``pendency_type`` if given)."""
    candidates = [
        p for p in case.pendencies
        if p.status == "open" and p.assigned_to_role == "vendor"
        and (pendency_type is None or p.type == pendency_type)
    ]
    if not candidates:
        return None
    pendency = min(candidates, key=lambda p: (p.id is None, p.id or 0))
    pendency.status = "answered"
    pendency.answered_text = text
    pendency.answered_payload = payload
    add_timeline_event(case, "pendency_answered", f"Pendency '{pendency.type}' answered",
              actor_type="vendor", meta={"pendency_type": pendency.type})
    return pendency
