"""
Typed view of a tenant journey configuration document.

The stored ``TenantJourney.config`` is a free-form JSON document.  The engine
reads it through the typed tree below so every branch has one definition of
its defaults:

    automation.on_text        {create_case, initial_state}
    automation.on_image       {initial_state, create_default_pendencies}
    automation.on_location    {create_case, initial_state, next_state}
    automation.conversations  {auto_create_vendor, require_vendor}
    automation.ocr            {enabled, provider}
    status_configs            {state_key: StatusConfig}

Keys outside the known branches (e.g. presence flags owned by other modules)
are carried through untouched in ``extra``.
"""

from __future__ import annotations

import copy
import secrets
from dataclasses import asdict, dataclass, field

from caseflow.services.state_keys import canonicalize, normalize_field_keys


def _bool(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _state(value) -> str:
    return canonicalize(value) if value else ""


def new_task_id() -> str:
    return "task_" + secrets.token_hex(5)


# ═════════════════════════════════════════════════════════════════════════════
# Automation branches
# ═════════════════════════════════════════════════════════════════════════════


@dataclass
class OnTextRule:
    create_case: bool = False
    initial_state: str = ""

    @classmethod
    def from_dict(cls, data: dict | None) -> "OnTextRule":
        data = data or {}
        return cls(
            create_case=_bool(data.get("create_case"), False),
            initial_state=_state(data.get("initial_state")),
        )


@dataclass
class OnImageRule:
    initial_state: str = ""
    create_default_pendencies: bool = False

    @classmethod
    def from_dict(cls, data: dict | None) -> "OnImageRule":
        data = data or {}
        return cls(
            initial_state=_state(data.get("initial_state")),
            create_default_pendencies=_bool(data.get("create_default_pendencies"), False),
        )


@dataclass
class OnLocationRule:
    create_case: bool = False
    initial_state: str = ""
    next_state: str = ""

    @classmethod
    def from_dict(cls, data: dict | None) -> "OnLocationRule":
        data = data or {}
        return cls(
            create_case=_bool(data.get("create_case"), False),
            initial_state=_state(data.get("initial_state")),
            next_state=_state(data.get("next_state")),
        )


@dataclass
class ConversationRules:
    auto_create_vendor: bool = True
    require_vendor: bool = False

    @classmethod
    def from_dict(cls, data: dict | None) -> "ConversationRules":
        data = data or {}
        return cls(
            auto_create_vendor=_bool(data.get("auto_create_vendor"), True),
            require_vendor=_bool(data.get("require_vendor"), False),
        )


@dataclass
class OcrSettings:
    enabled: bool = False
    provider: str = "google_vision"

    @classmethod
    def from_dict(cls, data: dict | None) -> "OcrSettings":
        data = data or {}
        return cls(
            enabled=_bool(data.get("enabled"), False),
            provider=str(data.get("provider") or "google_vision"),
        )


@dataclass
class AutomationConfig:
    on_text: OnTextRule = field(default_factory=OnTextRule)
    on_image: OnImageRule = field(default_factory=OnImageRule)
    on_location: OnLocationRule = field(default_factory=OnLocationRule)
    conversations: ConversationRules = field(default_factory=ConversationRules)
    ocr: OcrSettings = field(default_factory=OcrSettings)

    @classmethod
    def from_dict(cls, data: dict | None) -> "AutomationConfig":
        data = data or {}
        return cls(
            on_text=OnTextRule.from_dict(data.get("on_text")),
            on_image=OnImageRule.from_dict(data.get("on_image")),
            on_location=OnLocationRule.from_dict(data.get("on_location")),
            conversations=ConversationRules.from_dict(data.get("conversations")),
            ocr=OcrSettings.from_dict(data.get("ocr")),
        )

    def state_references(self) -> dict[str, str]:
        """Every configured state key, by its dotted config path."""
        refs = {
            "automation.on_text.initial_state": self.on_text.initial_state,
            "automation.on_image.initial_state": self.on_image.initial_state,
            "automation.on_location.initial_state": self.on_location.initial_state,
            "automation.on_location.next_state": self.on_location.next_state,
        }
        return {path: key for path, key in refs.items() if key}


# ═════════════════════════════════════════════════════════════════════════════
# Status gates
# ═════════════════════════════════════════════════════════════════════════════


@dataclass
class TaskConfig:
    """A mandatory task attached to a state's gate."""

    id: str
    description: str
    required: bool = True
    require_attachment: bool = False

    @classmethod
    def from_dict(cls, data: dict, *, stamp_id: bool = False) -> "TaskConfig":
        """Build from a stored or patched dict.

        Ids are generated only when ``stamp_id`` is set (write paths); on read
        a task without an id keeps an empty id and is dropped by its gate.
        """
        raw_id = data.get("id")
        return cls(
            id=str(raw_id) if raw_id else (new_task_id() if stamp_id else ""),
            description=str(data.get("description") or "").strip(),
            required=_bool(data.get("required"), True),
            require_attachment=_bool(data.get("require_attachment"), False),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StatusConfig:
    """Gate rules for one state of one tenant journey."""

    responsible_id: str | None = None
    required_case_fields: list[str] = field(default_factory=list)
    mandatory_tasks: list[TaskConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None, *, stamp_ids: bool = False) -> "StatusConfig":
        data = data or {}
        tasks = []
        seen_ids = set()
        for raw in data.get("mandatory_tasks") or []:
            if not isinstance(raw, dict):
                continue
            task = TaskConfig.from_dict(raw, stamp_id=stamp_ids)
            if not task.id or not task.description or task.id in seen_ids:
                continue
            seen_ids.add(task.id)
            tasks.append(task)
        return cls(
            responsible_id=(str(data["responsible_id"]) if data.get("responsible_id") else None),
            required_case_fields=normalize_field_keys(data.get("required_case_fields")),
            mandatory_tasks=tasks,
        )

    def is_empty(self) -> bool:
        return not self.required_case_fields and not self.mandatory_tasks

    def required_tasks(self) -> list[TaskConfig]:
        return [t for t in self.mandatory_tasks if t.required]

    def to_dict(self) -> dict:
        data = {
            "required_case_fields": list(self.required_case_fields),
            "mandatory_tasks": [t.to_dict() for t in self.mandatory_tasks],
        }
        if self.responsible_id:
            data["responsible_id"] = self.responsible_id
        return data


# ═════════════════════════════════════════════════════════════════════════════
# Whole document
# ═════════════════════════════════════════════════════════════════════════════


@dataclass
class JourneyConfig:
    automation: AutomationConfig = field(default_factory=AutomationConfig)
    status_configs: dict[str, StatusConfig] = field(default_factory=dict)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict | None) -> "JourneyConfig":
        data = data or {}
        status_configs = {}
        for raw_key, raw_cfg in (data.get("status_configs") or {}).items():
            key = canonicalize(raw_key)
            if not key or not isinstance(raw_cfg, dict):
                continue
            cfg = StatusConfig.from_dict(raw_cfg)
            if not cfg.is_empty():
                status_configs[key] = cfg
        extra = {
            k: copy.deepcopy(v)
            for k, v in data.items()
            if k not in ("automation", "status_configs")
        }
        return cls(
            automation=AutomationConfig.from_dict(data.get("automation")),
            status_configs=status_configs,
            extra=extra,
        )

    def status_config_for(self, state_key) -> StatusConfig | None:
        return self.status_configs.get(canonicalize(state_key))

    def state_references(self) -> dict[str, str]:
        refs = self.automation.state_references()
        for key in self.status_configs:
            refs[f"status_configs.{key}"] = key
        return refs

    def to_dict(self) -> dict:
        data = copy.deepcopy(self.extra)
        data["automation"] = asdict(self.automation)
        data["status_configs"] = {k: v.to_dict() for k, v in self.status_configs.items()}
        return data
