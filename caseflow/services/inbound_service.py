"""
Inbound dispatch — messaging-channel events into case actions.

Pipeline per event:
    payload ─▶ normalize_payload ─▶ InboundEvent
            ─▶ automation.decide(config, state machine, open case, vendors)
            ─▶ apply decision (case / attachment / field / pendency / transition)
            ─▶ DecisionLog row (always, refusals included)

Refusals are terminal: they are logged and returned, never retried.
"""

import logging

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from caseflow.core.exceptions import Refusal, ValidationError
from caseflow.models import db
from caseflow.models.decision_log import DecisionLog
from caseflow.services import case_service, journey_service
from caseflow.services.automation import ActiveCase, EventKind, InboundEvent, Outcome, decide
from caseflow.services.journey_config import JourneyConfig
from caseflow.services.vendor_service import SqlVendorResolver
from caseflow.utils.errors import E
from caseflow.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

AUDIO_PLACEHOLDER = "(audio received - transcription pending)"


def _pick(*values):
    for value in values:
        if value is not None and value != "":
            return value
    return None


def detect_type(raw_type) -> str:
    """Collapse provider message types to text / image / audio / location."""
    value = str(raw_type or "text").lower()
    if "image" in value or "photo" in value:
        return "image"
    if "audio" in value or "ptt" in value:
        return "audio"
    if "location" in value:
        return "location"
    return "text"


def normalize_payload(payload, country_code="55"):
    """Return ``(InboundEvent, raw_type)`` from a provider webhook body.

    Audio messages are evaluated as text events.
    """
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    location_obj = payload.get("location") if isinstance(payload.get("location"), dict) else {}
    data_location = data.get("location") if isinstance(data.get("location"), dict) else {}

    raw_type = detect_type(_pick(
        payload.get("type"), payload.get("messageType"), data.get("type"), data.get("messageType"),
    ))
    sender = normalize_phone(
        _pick(payload.get("from"), data.get("from"), payload.get("phone")),
        country_code,
    )
    text = _pick(payload.get("text"), payload.get("body"), payload.get("message"),
                 data.get("text"), data.get("body"), data.get("message"))
    media_url = _pick(payload.get("mediaUrl"), payload.get("media_url"), payload.get("url"),
                      data.get("mediaUrl"), data.get("media_url"), data.get("url"))

    location = None
    if raw_type == "location":
        lat = _pick(payload.get("latitude"), data.get("latitude"),
                    location_obj.get("latitude"), location_obj.get("lat"), data_location.get("latitude"))
        lng = _pick(payload.get("longitude"), data.get("longitude"),
                    location_obj.get("longitude"), location_obj.get("lng"), data_location.get("longitude"))
        if lat is None or lng is None:
            raise ValidationError("Location event without coordinates",
                                  {"location": "latitude and longitude are required"})
        try:
            location = {"lat": float(lat), "lng": float(lng)}
        except (TypeError, ValueError):
            raise ValidationError("Location coordinates must be numeric",
                                  {"location": f"got {lat!r}, {lng!r}"}) from None

    if raw_type == "audio":
        kind, text = EventKind.TEXT, text or AUDIO_PLACEHOLDER
    else:
        kind = EventKind(raw_type)

    event = InboundEvent(
        kind=kind,
        sender_id=sender,
        text=str(text) if text is not None else None,
        media_url=media_url,
        location=location,
    )
    return event, raw_type


# ── Decision application ─────────────────────────────────────────────────────


def _record_text(case, event, raw_type):
    pendency = case_service.answer_pendency(case, text=event.text)
    case_service.add_timeline_event(
        case, "vendor_message",
        "Vendor reply received" + (" (audio)" if raw_type == "audio" else ""),
        actor_type="vendor", actor_id=event.sender_id,
        meta={"text": event.text, "answered_pendency": pendency.type if pendency else None},
    )


def _record_image(case, event):
    if event.media_url:
        case_service.add_attachment(case, event.media_url, kind="image")
    case_service.add_timeline_event(
        case, "attachment_received", "Image received",
        actor_type="vendor", actor_id=event.sender_id, meta={"media_url": event.media_url},
    )


def _record_location(case, event):
    case_service.set_case_field(case, "location", event.location, source="inbound", commit=False)
    case_service.answer_pendency(
        case, pendency_type="need_location", text="Location shared", payload=event.location,
    )
    case_service.add_timeline_event(
        case, "location_received", "Location received",
        actor_type="vendor", actor_id=event.sender_id, meta=event.location,
    )


def _record(case, event, raw_type):
    if event.kind == EventKind.TEXT:
        _record_text(case, event, raw_type)
    elif event.kind == EventKind.IMAGE:
        _record_image(case, event)
    else:
        _record_location(case, event)


def _apply(tenant_id, journey, decision, event, raw_type):
    """Carry out ``decision``; returns ``(case, transition_result)``."""
    if decision.outcome == Outcome.CREATE_CASE:
        case = case_service.create_case(
            tenant_id, journey,
            state=decision.initial_state,
            sender_id=event.sender_id,
            vendor=decision.vendor,
            commit=False,
        )
        _record(case, event, raw_type)
        if decision.seed_default_pendencies:
            case_service.seed_default_pendencies(case)
        return case, None

    if decision.outcome in (Outcome.RECORD_ON_CASE, Outcome.TRANSITION_CASE):
        case = case_service.get_case(tenant_id, decision.case_id)
        _record(case, event, raw_type)
        if decision.outcome == Outcome.RECORD_ON_CASE:
            return case, None
        db.session.flush()
        moved, refusal = case_service.transition_case(case, decision.transition_to)
        if refusal:
            logger.info("Automated transition refused for case %s: %s", case.id, refusal.message,
                        extra={"case_id": case.id})
            return case, {"to_state": decision.transition_to, "moved": False, **refusal.to_dict()}
        return case, {"to_state": moved.state, "moved": True}

    return None, None


def process_inbound_event(tenant_id, journey_key, payload):
    """Dispatch one inbound event; returns ``(summary, refusal)``."""
    if not isinstance(payload, dict):
        raise ValidationError("Inbound payload must be a JSON object", {"body": "expected object"})

    journey = journey_service.get_journey_by_key(journey_key)
    activation = journey_service.get_tenant_journey(tenant_id, journey.id)
    if activation is None or not activation.enabled:
        return None, Refusal(
            E.JOURNEY_DISABLED,
            f"Journey '{journey.key}' is not enabled for this tenant",
            {"journey_key": journey.key},
        )

    country_code = "55"
    if has_app_context():
        country_code = current_app.config.get("DEFAULT_PHONE_COUNTRY_CODE", country_code)
    event, raw_type = normalize_payload(payload, country_code)

    sm = journey_service.state_machine_of(journey)
    config = JourneyConfig.from_dict(activation.config)
    open_case = case_service.find_open_case(tenant_id, journey.id, event.sender_id)
    existing = ActiveCase(open_case.id, open_case.state) if open_case else None
    resolver = SqlVendorResolver(tenant_id, display_name=_pick(payload.get("senderName"),
                                                               payload.get("sender_name")))

    try:
        decision = decide(event, config, sm, existing, resolver)
        case, transition = (None, None) if decision.refused else _apply(
            tenant_id, journey, decision, event, raw_type,
        )
        details = decision.to_dict()
        if raw_type != event.kind.value:
            details["raw_type"] = raw_type
        if transition is not None:
            details["transition"] = transition
        log = DecisionLog(
            tenant_id=tenant_id,
            journey_id=journey.id,
            case_id=case.id if case is not None else decision.case_id,
            event_kind=event.kind.value,
            sender_id=event.sender_id,
            outcome=decision.outcome.value,
            refusal=decision.refusal,
            reason=decision.reason,
            details=details,
        )
        db.session.add(log)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Inbound dispatch failed: tenant=%s journey=%s", tenant_id, journey.key)
        raise

    summary = {
        "decision_log_id": log.id,
        "case_id": log.case_id,
        "outcome": decision.outcome.value,
        "decision": details,
    }
    if decision.refused:
        logger.warning("Automation refused: tenant=%s journey=%s sender=%s reason=%s",
                       tenant_id, journey.key, event.sender_id, decision.reason,
                       extra={"sender_id": event.sender_id, "outcome": decision.outcome.value})
        return summary, Refusal(E.AUTOMATION_REFUSED, decision.reason, summary)
    return summary, None


def list_decision_logs(tenant_id, outcome=None, sender_id=None):
    q = DecisionLog.query_for_tenant(tenant_id)
    if outcome:
        q = q.filter_by(outcome=outcome)
    if sender_id:
        q = q.filter_by(sender_id=sender_id)
    return q.order_by(DecisionLog.id.desc())
