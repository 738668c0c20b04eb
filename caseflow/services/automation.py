"""
Automation Rule Evaluator — inbound channel event -> case decision.

Decision table (first match wins):

    event     open case?  rule
    text      yes         record on case, no state change
    text      no          on_text.create_case ? create : no action
    image     yes         record (attach) on case only
    image     no          create; optionally seed default pendencies
    location  yes         on_location.next_state ? request transition : record
    location  no          on_location.create_case ? create : no action

Every case creation first runs the vendor policy of
``automation.conversations``: resolve the sender's vendor, auto-create it when
allowed, and refuse when ``require_vendor`` is set and no vendor could be
obtained.  A sender without a usable identifier never opens a case: it
could not be matched to that case again.  Refusals are terminal outcomes,
never exceptions.

``decide`` takes its configuration as arguments and performs no storage
access of its own beyond the injected ``VendorResolver``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Protocol

from caseflow.services.journey_config import JourneyConfig
from caseflow.services.state_keys import canonicalize
from caseflow.services.state_machine import StateMachine, resolve_state_or_default

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    LOCATION = "location"


class Outcome(str, Enum):
    NO_ACTION = "no_action"
    CREATE_CASE = "create_case"
    RECORD_ON_CASE = "record_on_case"
    TRANSITION_CASE = "transition_case"
    REFUSED = "refused"


REFUSAL_VENDOR_UNRESOLVED = "vendor_unresolved"
REFUSAL_SENDER_UNIDENTIFIED = "sender_unidentified"


class VendorResolver(Protocol):
    """Capability used to look up (or create) the actor behind a sender."""

    def resolve(self, sender_id: str) -> Any | None: ...

    def create_from_sender(self, sender_id: str) -> Any | None: ...


@dataclass
class InboundEvent:
    kind: EventKind
    sender_id: str | None
    text: str | None = None
    media_url: str | None = None
    location: dict | None = None


@dataclass
class ActiveCase:
    """Minimal view of the sender's open case."""
    id: Any
    state: str


@dataclass
class AutomationDecision:
    outcome: Outcome
    event_kind: EventKind
    case_id: Any = None
    initial_state: str | None = None
    transition_to: str | None = None
    current_state: str | None = None
    seed_default_pendencies: bool = False
    vendor: Any = None
    vendor_created: bool = False
    refusal: str | None = None
    reason: str = ""
    notes: list[str] = field(default_factory=list)

    @property
    def refused(self) -> bool:
        return self.outcome == Outcome.REFUSED

    @property
    def creates_case(self) -> bool:
        return self.outcome == Outcome.CREATE_CASE

    def to_dict(self) -> dict:
        vendor_id = getattr(self.vendor, "id", self.vendor)
        return {
            "outcome": self.outcome.value,
            "event_kind": self.event_kind.value,
            "case_id": self.case_id,
            "initial_state": self.initial_state,
            "transition_to": self.transition_to,
            "current_state": self.current_state,
            "seed_default_pendencies": self.seed_default_pendencies,
            "vendor_id": vendor_id,
            "vendor_created": self.vendor_created,
            "refusal": self.refusal,
            "reason": self.reason,
            "notes": list(self.notes),
        }


# ── Vendor policy ────────────────────────────────────────────────────────────


def _resolve_vendor(event: InboundEvent, config: JourneyConfig, resolver: VendorResolver | None):
    """Return ``(vendor, created)``; ``vendor`` is ``None`` when unresolved."""
    rules = config.automation.conversations
    if not event.sender_id or resolver is None:
        return None, False
    vendor = resolver.resolve(event.sender_id)
    if vendor is not None:
        return vendor, False
    if rules.auto_create_vendor:
        vendor = resolver.create_from_sender(event.sender_id)
        return vendor, vendor is not None
    return None, False


def _create(
    event: InboundEvent,
    config: JourneyConfig,
    state_machine: StateMachine,
    resolver: VendorResolver | None,
    configured_state: str,
    reason: str,
    *,
    seed_pendencies: bool = False,
) -> AutomationDecision:
    if not event.sender_id:
        return AutomationDecision(
            outcome=Outcome.REFUSED,
            event_kind=event.kind,
            refusal=REFUSAL_SENDER_UNIDENTIFIED,
            reason="The sender could not be identified, so no case is opened for it",
        )
    vendor, created = _resolve_vendor(event, config, resolver)
    if vendor is None and config.automation.conversations.require_vendor:
        return AutomationDecision(
            outcome=Outcome.REFUSED,
            event_kind=event.kind,
            refusal=REFUSAL_VENDOR_UNRESOLVED,
            reason=(
                "A vendor is required to open a case but none could be resolved "
                f"for sender {event.sender_id or '(unknown)'}"
                + ("" if config.automation.conversations.auto_create_vendor
                   else " and vendor auto-creation is disabled")
            ),
        )
    decision = AutomationDecision(
        outcome=Outcome.CREATE_CASE,
        event_kind=event.kind,
        initial_state=resolve_state_or_default(state_machine, configured_state),
        seed_default_pendencies=seed_pendencies,
        vendor=vendor,
        vendor_created=created,
        reason=reason,
    )
    if not configured_state:
        decision.notes.append("initial state not configured; using journey default")
    if vendor is None:
        decision.notes.append("case opened without a vendor")
    return decision


# ── Decision table ───────────────────────────────────────────────────────────


def decide(
    event: InboundEvent,
    config: JourneyConfig,
    state_machine: StateMachine,
    existing_case: ActiveCase | None,
    vendor_resolver: VendorResolver | None,
) -> AutomationDecision:
    """Map an inbound event to an ``AutomationDecision``.  Total over event kinds."""
    kind = EventKind(event.kind)
    if event.kind is not kind:
        event = replace(event, kind=kind)
    automation = config.automation

    if kind == EventKind.TEXT:
        if existing_case is not None:
            decision = AutomationDecision(
                outcome=Outcome.RECORD_ON_CASE, event_kind=kind,
                case_id=existing_case.id, current_state=existing_case.state,
                reason="text recorded on the open case",
            )
        elif not automation.on_text.create_case:
            decision = AutomationDecision(
                outcome=Outcome.NO_ACTION, event_kind=kind,
                reason="on_text.create_case is disabled; message logged only",
            )
        else:
            decision = _create(
                event, config, state_machine, vendor_resolver,
                automation.on_text.initial_state, "text opened a new case",
            )

    elif kind == EventKind.IMAGE:
        if existing_case is not None:
            decision = AutomationDecision(
                outcome=Outcome.RECORD_ON_CASE, event_kind=kind,
                case_id=existing_case.id, current_state=existing_case.state,
                reason="image attached to the open case",
            )
        else:
            decision = _create(
                event, config, state_machine, vendor_resolver,
                automation.on_image.initial_state, "image opened a new case",
                seed_pendencies=automation.on_image.create_default_pendencies,
            )

    else:
        if existing_case is not None:
            current = canonicalize(existing_case.state)
            target = automation.on_location.next_state
            if target and target != current:
                decision = AutomationDecision(
                    outcome=Outcome.TRANSITION_CASE, event_kind=kind,
                    case_id=existing_case.id, current_state=current,
                    transition_to=target,
                    reason=f"location requests transition {current} -> {target}",
                )
            else:
                decision = AutomationDecision(
                    outcome=Outcome.RECORD_ON_CASE, event_kind=kind,
                    case_id=existing_case.id, current_state=current,
                    reason="location recorded on the open case",
                )
        elif not automation.on_location.create_case:
            decision = AutomationDecision(
                outcome=Outcome.NO_ACTION, event_kind=kind,
                reason="on_location.create_case is disabled; no case opened",
            )
        else:
            decision = _create(
                event, config, state_machine, vendor_resolver,
                automation.on_location.initial_state, "location opened a new case",
            )

    logger.info(
        "Automation decision: event=%s sender=%s outcome=%s",
        kind.value, event.sender_id, decision.outcome.value,
        extra={"sender_id": event.sender_id, "outcome": decision.outcome.value},
    )
    return decision
