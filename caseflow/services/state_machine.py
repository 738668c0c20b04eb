"""
State Machine Builder — journey template states.

Assembles the ordered, deduplicated state list plus default state stored
in ``Journey.state_machine``.  The builder never raises: every input is
normalized toward a valid (possibly trivial) machine and the catalog write
path decides whether the result is good enough to save.

Operator primitives:
    append_state   — add a canonical key if not already present
    remove_state   — drop a key, re-deriving the default when needed
    move_state     — positional slice-and-splice move

Usage:
    from caseflow.services.state_machine import build_state_machine

    sm = build_state_machine(["New", "In progress", "new"], default="in progress")
    # -> StateMachine(states=["new", "in_progress"], default="in_progress")
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field

from caseflow.services.state_keys import canonicalize, is_canonical

logger = logging.getLogger(__name__)

SEED_STATE_KEY = "new"
MIN_TEMPLATE_STATES = 2

DEFAULT_TEMPLATE_STATES = [
    "new",
    "in_progress",
    "ready_for_review",
    "confirmed",
    "finalized",
]


@dataclass
class StateMachine:
    """Ordered journey states plus the initial/default state."""

    states: list[str] = field(default_factory=list)
    default: str = SEED_STATE_KEY
    labels: dict[str, str] = field(default_factory=dict)
    transitions: dict[str, list] = field(default_factory=dict)

    def __contains__(self, key) -> bool:
        return key in self.states

    def label_for(self, key: str) -> str:
        return self.labels.get(key) or key

    def to_dict(self) -> dict:
        data = {"states": list(self.states), "default": self.default}
        if self.labels:
            data["labels"] = dict(self.labels)
        if self.transitions:
            data["transitions"] = copy.deepcopy(self.transitions)
        return data

    @classmethod
    def from_dict(cls, data: dict | None) -> "StateMachine":
        """Rebuild from a stored document, re-normalizing the state list."""
        data = data or {}
        # Legacy documents used "state_labels".
        raw_labels = data.get("labels") or data.get("state_labels") or {}
        sm = build_state_machine(data.get("states") or [], data.get("default"))
        sm.labels = {
            key: str(label)
            for key, label in ((canonicalize(k), v) for k, v in raw_labels.items())
            if key in sm.states and label
        }
        transitions = data.get("transitions")
        if isinstance(transitions, dict):
            sm.transitions = copy.deepcopy(transitions)
        return sm


def dedupe_states(labels) -> list[str]:
    """Canonicalize, drop empties, dedupe keeping first-seen order."""
    unique: list[str] = []
    for raw in labels or []:
        key = canonicalize(raw)
        if key and key not in unique:
            unique.append(key)
    return unique


def derive_default(states: list[str], requested=None) -> str:
    """Return ``requested`` if it is a member, else the first state, else the seed."""
    key = canonicalize(requested)
    if key and key in states:
        return key
    if states:
        return states[0]
    return SEED_STATE_KEY


def build_state_machine(labels, default=None) -> StateMachine:
    """Build ``StateMachine`` from caller-ordered raw labels and a chosen default."""
    states = dedupe_states(labels)
    return StateMachine(states=states, default=derive_default(states, default))


def append_state(states: list[str], raw_label) -> list[str]:
    """Append the canonical key for ``raw_label`` unless empty or already present."""
    current = dedupe_states(states)
    key = canonicalize(raw_label)
    if not key or key in current:
        return current
    return current + [key]


def remove_state(states: list[str], key, default=None) -> tuple[list[str], str]:
    """Remove ``key``; returns ``(states, default)`` with default re-derived."""
    target = canonicalize(key)
    remaining = [s for s in dedupe_states(states) if s != target]
    current_default = canonicalize(default)
    if current_default == target:
        current_default = ""
    return remaining, derive_default(remaining, current_default)


def move_state(states: list[str], from_index: int, to_index: int) -> list[str]:
    """Move the entry at ``from_index`` to ``to_index``.

    Out-of-range source indexes leave the list unchanged; destination indexes
    are clamped the way ``list.insert`` clamps them.
    """
    current = list(states or [])
    if not isinstance(from_index, int) or not isinstance(to_index, int):
        return current
    if from_index < 0 or from_index >= len(current):
        return current
    item = current.pop(from_index)
    current.insert(max(to_index, 0), item)
    return current


def template_errors(sm: StateMachine) -> list[str]:
    """Business rules the catalog write path enforces before saving a template."""
    errors = []
    if len(sm.states) < MIN_TEMPLATE_STATES:
        errors.append(
            f"A journey needs at least {MIN_TEMPLATE_STATES} states "
            f"(got {len(sm.states)})"
        )
    if sm.states and sm.default not in sm.states:
        errors.append(f"Default state '{sm.default}' is not one of the states")
    invalid = [s for s in sm.states if not is_canonical(s)]
    if invalid:
        errors.append("Invalid state keys: " + ", ".join(invalid))
    return errors


def resolve_state_or_default(state_machine: StateMachine, requested) -> str:
    """Single authoritative "use the journey default if empty" rule.

    An empty or unknown ``requested`` key resolves to the journey default.
    """
    key = canonicalize(requested)
    if key and key in state_machine.states:
        return key
    if key:
        logger.warning(
            "State '%s' is not part of the journey; falling back to default '%s'",
            key, state_machine.default,
        )
    return state_machine.default
