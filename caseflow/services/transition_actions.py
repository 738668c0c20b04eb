"""
Transition actions — side effects attached to state changes.

A journey template may carry ``transitions`` in its state machine::

    {
      "transitions": {
        "in_progress->confirmed": [{"type": "webhook", "params": {"url": "https://..."}}],
        "->finalized":            [{"type": "send_whatsapp", "params": {"template": "done"}}]
      }
    }

``"<from>-><to>"`` matches one edge; ``"-><to>"`` matches any entry into
``<to>``.  Actions run after the transition is committed, so a failing
action is logged and reported, never rolled back into the transition.
"""

import logging
from datetime import datetime, timezone

import requests
from flask import current_app, has_app_context

from caseflow.models import db
from caseflow.models.case import TimelineEvent

logger = logging.getLogger(__name__)

ACTION_TYPES = ("send_whatsapp", "create_trello_card", "update_case_field", "webhook")

DEFAULT_WEBHOOK_TIMEOUT = 5.0


def resolve_transition_actions(transitions, old_state, new_state):
    """Exact-edge actions first, then the "any -> new_state" ones."""
    if not isinstance(transitions, dict) or not new_state:
        return []
    wildcard = f"->{new_state}"
    exact = f"{old_state}->{new_state}" if old_state else wildcard
    actions = list(transitions.get(exact) or [])
    if exact != wildcard:
        actions.extend(transitions.get(wildcard) or [])
    return [a for a in actions if isinstance(a, dict)]


def _timeline(case, message, action, actor=None):
    db.session.add(TimelineEvent(
        tenant_id=case.tenant_id,
        case_id=case.id,
        event_type="automation_executed",
        actor_type="system",
        actor_id=actor,
        message=message,
        meta={"action": action},
    ))


def _send_whatsapp(case, action, params, actor):
    template = params.get("template") or "default"
    _timeline(case, f"Automation executed: send WhatsApp ({template})", action, actor)


def _create_trello_card(case, action, params, actor):
    _timeline(case, "Automation executed: create Trello card", action, actor)


def _update_case_field(case, action, params, actor):
    from caseflow.services.case_service import set_case_field

    key = params.get("field") or params.get("key")
    if not key:
        raise ValueError("update_case_field requires params.field")
    set_case_field(case, key, params.get("value"), source="automation", commit=False)


def _webhook(case, action, params, actor):
    url = params.get("url")
    if not url:
        raise ValueError("webhook requires params.url")
    timeout = DEFAULT_WEBHOOK_TIMEOUT
    if has_app_context():
        timeout = current_app.config.get("TRANSITION_WEBHOOK_TIMEOUT", DEFAULT_WEBHOOK_TIMEOUT)
    resp = requests.post(
        url,
        json={
            "tenant_id": case.tenant_id,
            "case_id": case.id,
            "action": action.get("type"),
            "params": params,
            "record": case.to_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        timeout=timeout,
    )
    resp.raise_for_status()
    logger.info("Transition webhook %s -> HTTP %s", url, resp.status_code,
                extra={"case_id": case.id})


_HANDLERS = {
    "send_whatsapp": _send_whatsapp,
    "create_trello_card": _create_trello_card,
    "update_case_field": _update_case_field,
    "webhook": _webhook,
}


def execute_transition_actions(case, transitions, old_state, new_state, actor=None):
    """Run every matching action; returns ``[{"type", "status", "error"?}]``."""
    actions = resolve_transition_actions(transitions, old_state, new_state)
    if not actions:
        return []

    logger.info("Running %d transition action(s) for case %s: %s -> %s",
                len(actions), case.id, old_state, new_state, extra={"case_id": case.id})
    results = []
    for action in actions:
        action_type = action.get("type")
        handler = _HANDLERS.get(action_type)
        if handler is None:
            logger.warning("No handler for transition action type %r", action_type)
            results.append({"type": action_type, "status": "skipped"})
            continue
        try:
            handler(case, action, action.get("params") or {}, actor)
            results.append({"type": action_type, "status": "success"})
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Transition action %s failed for case %s: %s",
                           action_type, case.id, exc, extra={"case_id": case.id})
            results.append({"type": action_type, "status": "error", "error": str(exc)})
    db.session.commit()
    return results
