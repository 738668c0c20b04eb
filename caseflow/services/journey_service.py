"""
Journey Service — catalog templates and tenant activations.

Operator-facing write path for:
  - sectors and journey templates (global catalog)
  - template state lists (append / remove / move / default / labels)
  - tenant activation toggles and configuration patches

Template rules enforced here (not in the builder): at least two states.
Configuration writes always go through read-merge-write on the freshly
re-read activation row; concurrent writers are last-write-wins.

Return convention: ``(obj, refusal)`` where ``refusal`` is ``None`` on
success or a ``Refusal`` describing exactly what was rejected.
"""

import copy
import logging

from sqlalchemy.exc import SQLAlchemyError

from caseflow.core.exceptions import ConflictError, NotFoundError, Refusal, ValidationError
from caseflow.models import db
from caseflow.models.case import Case, TimelineEvent
from caseflow.models.journey import Journey, Sector, TenantJourney, TenantSector
from caseflow.services import config_merge
from caseflow.services.journey_config import JourneyConfig
from caseflow.services.state_keys import canonicalize
from caseflow.services.state_machine import (
    DEFAULT_TEMPLATE_STATES,
    StateMachine,
    append_state,
    build_state_machine,
    derive_default,
    move_state,
    remove_state,
    template_errors,
)
from caseflow.utils.errors import E

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Sectors
# ═════════════════════════════════════════════════════════════════════════════


def list_sectors():
    return [s.to_dict() for s in Sector.query.order_by(Sector.name).all()]


def create_sector(data):
    """Create a catalog sector. Returns ``(sector, error)``."""
    name = (data.get("name") or "").strip()
    if not name:
        return None, Refusal(E.VALIDATION_REQUIRED, "name is required", {"name": "required"})
    if Sector.query.filter_by(name=name).first():
        raise ConflictError("Sector", "name", name)
    sector = Sector(name=name, description=(data.get("description") or "").strip() or None)
    db.session.add(sector)
    db.session.commit()
    logger.info("Sector created: id=%s name=%s", sector.id, name)
    return sector, None


def set_sector_enabled(tenant_id, sector_id, enabled):
    if not db.session.get(Sector, sector_id):
        raise NotFoundError("Sector", sector_id)
    row = TenantSector.query.filter_by(tenant_id=tenant_id, sector_id=sector_id).first()
    if row:
        row.enabled = bool(enabled)
    else:
        row = TenantSector(tenant_id=tenant_id, sector_id=sector_id, enabled=bool(enabled))
        db.session.add(row)
    db.session.commit()
    logger.info("Tenant %s sector %s -> %s", tenant_id, sector_id, enabled)
    return row


# ═════════════════════════════════════════════════════════════════════════════
# Journey templates
# ═════════════════════════════════════════════════════════════════════════════


def list_journeys(sector_id=None):
    q = Journey.query
    if sector_id is not None:
        q = q.filter_by(sector_id=sector_id)
    return [j.to_dict() for j in q.order_by(Journey.name).all()]


def get_journey(journey_id):
    journey = db.session.get(Journey, journey_id)
    if not journey:
        raise NotFoundError("Journey", journey_id)
    return journey


def get_journey_by_key(key):
    journey = Journey.query.filter_by(key=canonicalize(key)).first()
    if not journey:
        raise NotFoundError("Journey", key)
    return journey


def state_machine_of(journey) -> StateMachine:
    return StateMachine.from_dict(journey.state_machine)


def _template_refusal(sm: StateMachine):
    errors = template_errors(sm)
    if not errors:
        return None
    return Refusal(
        E.TEMPLATE_INVALID,
        "; ".join(errors),
        {"states": list(sm.states), "default": sm.default, "errors": errors},
    )


def preview_state_machine(labels, default=None):
    """Dry-run the builder; returns ``(state_machine, refusal_or_None)``."""
    sm = build_state_machine(labels, default)
    return sm, _template_refusal(sm)


def create_journey(data):
    """Create a journey template. Returns ``(journey, refusal)``."""
    raw_key = data.get("key") or ""
    key = canonicalize(raw_key)
    name = (data.get("name") or "").strip()
    missing = {}
    if not key:
        missing["key"] = "required (letters, digits, '_' or '-')"
    if not name:
        missing["name"] = "required"
    if missing:
        return None, Refusal(E.VALIDATION_REQUIRED, "key and name are required", missing)

    if Journey.query.filter_by(key=key).first():
        raise ConflictError("Journey", "key", key)

    sector_id = data.get("sector_id")
    if sector_id is not None and not db.session.get(Sector, sector_id):
        raise NotFoundError("Sector", sector_id)

    sm = build_state_machine(data.get("states") or DEFAULT_TEMPLATE_STATES, data.get("default"))
    refusal = _template_refusal(sm)
    if refusal:
        return None, refusal
    labels = data.get("labels") or {}
    sm.labels = {
        canonicalize(k): str(v) for k, v in labels.items() if canonicalize(k) in sm.states and v
    }
    if isinstance(data.get("transitions"), dict):
        sm.transitions = copy.deepcopy(data["transitions"])

    journey = Journey(
        key=key,
        name=name,
        description=(data.get("description") or "").strip() or None,
        sector_id=sector_id,
        is_crm_style=bool(data.get("is_crm_style", False)),
        state_machine=sm.to_dict(),
    )
    db.session.add(journey)
    db.session.commit()
    logger.info("Journey created: id=%s key=%s states=%s", journey.id, key, sm.states,
                extra={"journey_id": journey.id})
    return journey, None


def update_journey(journey_id, data):
    """Update descriptive template fields (never the state machine)."""
    journey = get_journey(journey_id)
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return None, Refusal(E.VALIDATION_REQUIRED, "name cannot be empty", {"name": "required"})
        journey.name = name
    if "description" in data:
        journey.description = (data.get("description") or "").strip() or None
    if "sector_id" in data:
        sector_id = data["sector_id"]
        if sector_id is not None and not db.session.get(Sector, sector_id):
            raise NotFoundError("Sector", sector_id)
        journey.sector_id = sector_id
    if "is_crm_style" in data:
        journey.is_crm_style = bool(data["is_crm_style"])
    db.session.commit()
    return journey, None


def migrate_cases_on_removed_states(journey, old_states, new_sm: StateMachine):
    """Move open cases out of states that no longer exist.

    Cases go to the first state of the updated template and get a
    ``state_migrated`` timeline event.  Tenant configs are left untouched.
    """
    removed = [s for s in old_states if s not in new_sm.states]
    if not removed or not new_sm.states:
        return 0
    target = new_sm.states[0]
    cases = Case.query.filter(
        Case.journey_id == journey.id,
        Case.status == "open",
        Case.state.in_(removed),
    ).all()
    for case in cases:
        from_state = case.state
        case.state = target
        db.session.add(TimelineEvent(
            tenant_id=case.tenant_id,
            case_id=case.id,
            event_type="state_migrated",
            actor_type="system",
            message=f"State '{from_state}' was removed from the journey; case moved to '{target}'.",
            meta={"from_state": from_state, "to_state": target, "removed_states": removed},
        ))
    if cases:
        logger.info("Migrated %d case(s) of journey %s from removed states %s to '%s'",
                    len(cases), journey.key, removed, target, extra={"journey_id": journey.id})
    return len(cases)


def _save_state_machine(journey, sm: StateMachine):
    refusal = _template_refusal(sm)
    if refusal:
        logger.info("Template edit refused for journey %s: %s", journey.key, refusal.message)
        return None, refusal
    old = state_machine_of(journey)
    sm.labels = {k: v for k, v in {**old.labels, **sm.labels}.items() if k in sm.states}
    if not sm.transitions:
        sm.transitions = old.transitions
    try:
        migrated = migrate_cases_on_removed_states(journey, old.states, sm)
        journey.state_machine = sm.to_dict()
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info("Journey %s state machine saved: states=%s default=%s migrated=%d",
                journey.key, sm.states, sm.default, migrated, extra={"journey_id": journey.id})
    return journey, None


def replace_journey_states(journey_id, labels, default=None):
    """Rebuild the state list from caller-ordered labels (through the builder)."""
    journey = get_journey(journey_id)
    return _save_state_machine(journey, build_state_machine(labels, default))


def append_journey_state(journey_id, label):
    journey = get_journey(journey_id)
    key = canonicalize(label)
    if not key:
        return None, Refusal(
            E.VALIDATION_INVALID,
            f"State label {label!r} has no usable characters",
            {"label": label},
        )
    sm = state_machine_of(journey)
    sm.states = append_state(sm.states, key)
    return _save_state_machine(journey, sm)


def remove_journey_state(journey_id, key):
    journey = get_journey(journey_id)
    sm = state_machine_of(journey)
    target = canonicalize(key)
    if target not in sm.states:
        return None, Refusal(E.UNKNOWN_STATE, f"State '{target}' is not part of the journey",
                             {"state": target, "states": sm.states})
    sm.states, sm.default = remove_state(sm.states, target, sm.default)
    return _save_state_machine(journey, sm)


def move_journey_state(journey_id, from_index, to_index):
    journey = get_journey(journey_id)
    sm = state_machine_of(journey)
    sm.states = move_state(sm.states, from_index, to_index)
    return _save_state_machine(journey, sm)


def set_journey_default_state(journey_id, key):
    journey = get_journey(journey_id)
    sm = state_machine_of(journey)
    target = canonicalize(key)
    if target not in sm.states:
        return None, Refusal(E.UNKNOWN_STATE, f"State '{target}' is not part of the journey",
                             {"state": target, "states": sm.states})
    sm.default = derive_default(sm.states, target)
    return _save_state_machine(journey, sm)


def set_journey_state_label(journey_id, key, label):
    journey = get_journey(journey_id)
    sm = state_machine_of(journey)
    target = canonicalize(key)
    if target not in sm.states:
        return None, Refusal(E.UNKNOWN_STATE, f"State '{target}' is not part of the journey",
                             {"state": target, "states": sm.states})
    labels = dict(sm.labels)
    if label:
        labels[target] = str(label).strip()
    else:
        labels.pop(target, None)
    sm.labels = labels
    journey.state_machine = sm.to_dict()
    db.session.commit()
    return journey, None


# ═════════════════════════════════════════════════════════════════════════════
# Tenant activation & configuration
# ═════════════════════════════════════════════════════════════════════════════


def get_tenant_journey(tenant_id, journey_id):
    return TenantJourney.query.filter_by(tenant_id=tenant_id, journey_id=journey_id).first()


def list_tenant_journeys(tenant_id):
    """Every catalog journey with the tenant's activation state."""
    activations = {
        tj.journey_id: tj for tj in TenantJourney.query_for_tenant(tenant_id).all()
    }
    result = []
    for journey in Journey.query.order_by(Journey.name).all():
        d = journey.to_dict()
        tj = activations.get(journey.id)
        d["enabled"] = bool(tj and tj.enabled)
        d["has_activation"] = tj is not None
        d["config"] = (tj.config or {}) if tj else {}
        result.append(d)
    return result


def _get_or_create_activation(tenant_id, journey_id, enabled=True):
    get_journey(journey_id)
    activation = get_tenant_journey(tenant_id, journey_id)
    if activation is None:
        activation = TenantJourney(
            tenant_id=tenant_id, journey_id=journey_id, enabled=enabled, config={},
        )
        db.session.add(activation)
        db.session.flush()
        logger.info("Tenant journey activation created: tenant=%s journey=%s",
                    tenant_id, journey_id, extra={"tenant_id": tenant_id, "journey_id": journey_id})
    return activation


def set_journey_enabled(tenant_id, journey_id, enabled):
    """Toggle activation; creates the row lazily with an empty config."""
    activation = _get_or_create_activation(tenant_id, journey_id, enabled=bool(enabled))
    activation.enabled = bool(enabled)
    db.session.commit()
    logger.info("Tenant %s journey %s enabled=%s", tenant_id, journey_id, enabled,
                extra={"tenant_id": tenant_id, "journey_id": journey_id})
    return activation


def get_effective_config(tenant_id, journey_id) -> JourneyConfig:
    """Typed configuration with defaults filled in (empty when never configured)."""
    get_journey(journey_id)
    activation = get_tenant_journey(tenant_id, journey_id)
    return JourneyConfig.from_dict(activation.config if activation else {})


def _read_merge_write(activation, patch, transform=None):
    def fetch():
        # Authoritative copy: re-read the row instead of trusting the session cache.
        row = db.session.execute(
            db.select(TenantJourney)
            .filter_by(id=activation.id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        return copy.deepcopy(row.config or {})

    def write(doc):
        activation.config = doc

    try:
        merged = config_merge.read_merge_write(fetch, write, patch, transform=transform)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Config write failed: tenant=%s journey=%s",
                         activation.tenant_id, activation.journey_id)
        raise
    return merged


def apply_config_patch(tenant_id, journey_id, patch):
    """Merge a partial config patch onto the tenant's stored configuration."""
    if not isinstance(patch, dict):
        raise ValidationError("Config patch must be a JSON object", {"config": "expected object"})
    journey = get_journey(journey_id)
    sm = state_machine_of(journey)
    normalized, unknown = config_merge.normalize_config_patch(patch, sm.states)
    if unknown:
        return None, Refusal(
            E.UNKNOWN_STATE,
            "Config references states that are not part of the journey: "
            + ", ".join(f"{path}={key}" for path, key in unknown.items()),
            {"unknown_states": unknown, "states": sm.states},
        )
    activation = _get_or_create_activation(tenant_id, journey_id)
    _read_merge_write(activation, normalized)
    logger.info("Config patched: tenant=%s journey=%s keys=%s", tenant_id, journey.key,
                sorted(normalized.keys()), extra={"tenant_id": tenant_id, "journey_id": journey_id})
    return activation, None


def update_status_config(tenant_id, journey_id, state_key, patch):
    """Per-state gate edit; an edit that leaves no fields and no tasks removes the gate."""
    if not isinstance(patch, dict):
        raise ValidationError("Status config must be a JSON object", {"status_config": "expected object"})
    journey = get_journey(journey_id)
    sm = state_machine_of(journey)
    key = canonicalize(state_key)
    if key not in sm.states:
        return None, Refusal(E.UNKNOWN_STATE, f"State '{key}' is not part of the journey",
                             {"state": key, "states": sm.states})
    activation = _get_or_create_activation(tenant_id, journey_id)
    _read_merge_write(
        activation, patch,
        transform=lambda current, p: config_merge.apply_status_config_edit(current, key, p),
    )
    logger.info("Status config updated: tenant=%s journey=%s state=%s", tenant_id, journey.key, key,
                extra={"tenant_id": tenant_id, "journey_id": journey_id})
    return activation, None
