"""
Status Gate Engine — may a case leave its current state?

Pure predicate over (state key, StatusConfig, case snapshot).  Nothing here
touches the database; ``case_service.build_snapshot`` produces the snapshot
and the caller turns a refusal into a user-facing validation message.

Policy:
  * no StatusConfig for the state      -> always allowed (gates are opt-in)
  * required field satisfied           <=> snapshot holds a non-empty value
  * required task satisfied            <=> completion record marked complete
                                           (+ attachment when require_attachment)
  * tasks with required=False          -> never block

The engine is safe to call concurrently for different cases.  Serializing
attempts on the *same* case is the caller's job (check-then-act).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from caseflow.services.journey_config import StatusConfig
from caseflow.services.state_keys import canonicalize

REASON_NOT_COMPLETED = "not_completed"
REASON_MISSING_ATTACHMENT = "missing_attachment"


@dataclass
class TaskCompletion:
    """Completion record of one mandatory task on a case."""
    task_id: str
    completed: bool = False
    attachment_ref: str | None = None


@dataclass
class CaseSnapshot:
    """Read-only view of the case data the gate needs."""
    state: str
    fields: dict[str, Any] = field(default_factory=dict)
    task_completions: dict[str, TaskCompletion] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "CaseSnapshot":
        completions = {}
        for raw in data.get("tasks") or []:
            tc = TaskCompletion(
                task_id=str(raw.get("task_id") or raw.get("id")),
                completed=bool(raw.get("completed")),
                attachment_ref=raw.get("attachment_ref") or None,
            )
            completions[tc.task_id] = tc
        return cls(
            state=canonicalize(data.get("state")),
            fields=dict(data.get("fields") or {}),
            task_completions=completions,
        )


@dataclass
class IncompleteTask:
    task_id: str
    description: str
    reason: str

    def to_dict(self) -> dict:
        return {"task_id": self.task_id, "description": self.description, "reason": self.reason}


@dataclass
class GateResult:
    state: str
    allowed: bool
    missing_fields: list[str] = field(default_factory=list)
    incomplete_tasks: list[IncompleteTask] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.allowed:
            return f"Case may leave state '{self.state}'"
        parts = []
        if self.missing_fields:
            parts.append("missing fields: " + ", ".join(self.missing_fields))
        if self.incomplete_tasks:
            parts.append(
                "incomplete tasks: "
                + ", ".join(
                    f"{t.description} ({t.reason.replace('_', ' ')})"
                    for t in self.incomplete_tasks
                )
            )
        return f"Case cannot leave state '{self.state}': " + "; ".join(parts)

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "allowed": self.allowed,
            "missing_fields": list(self.missing_fields),
            "incomplete_tasks": [t.to_dict() for t in self.incomplete_tasks],
            "message": self.message,
        }


def has_value(value) -> bool:
    """Non-empty check used for required case fields.

    ``None``, blank strings and empty containers are empty; ``0`` and
    ``False`` are recorded values.
    """
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def can_leave_state(
    state_key,
    status_config: StatusConfig | dict | None,
    snapshot: CaseSnapshot,
) -> GateResult:
    """Decide whether a case in ``state_key`` may leave it."""
    state = canonicalize(state_key)
    if isinstance(status_config, dict):
        status_config = StatusConfig.from_dict(status_config)
    if status_config is None or status_config.is_empty():
        return GateResult(state=state, allowed=True)

    missing_fields = [
        key for key in status_config.required_case_fields
        if not has_value(snapshot.fields.get(key))
    ]

    incomplete: list[IncompleteTask] = []
    for task in status_config.required_tasks():
        record = snapshot.task_completions.get(task.id)
        if record is None or not record.completed:
            incomplete.append(IncompleteTask(task.id, task.description, REASON_NOT_COMPLETED))
        elif task.require_attachment and not record.attachment_ref:
            incomplete.append(IncompleteTask(task.id, task.description, REASON_MISSING_ATTACHMENT))

    return GateResult(
        state=state,
        allowed=not missing_fields and not incomplete,
        missing_fields=missing_fields,
        incomplete_tasks=incomplete,
    )
