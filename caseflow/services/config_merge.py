"""
Config Merger — partial patches onto nested configuration documents.

Merge law:
  * both sides are dicts      -> recurse
  * anything else             -> patch value replaces base value
    (lists are never merged element-wise; a patch touching
     ``required_case_fields`` or ``mandatory_tasks`` carries the full list)

Pruning law:
  a status config whose ``required_case_fields`` and ``mandatory_tasks``
  are both empty is removed from ``status_configs`` entirely.

Read-merge-write:
  ``read_merge_write(fetch, write, patch)`` always merges onto the document
  returned by ``fetch()`` (the authoritative copy), never onto a cached one.
  Concurrent writers still race on ``write``; last write wins.
"""

from __future__ import annotations

import copy
import logging
from typing import Callable

from caseflow.services.journey_config import StatusConfig, TaskConfig
from caseflow.services.state_keys import canonicalize, normalize_field_keys

logger = logging.getLogger(__name__)

_STATE_REF_PATHS = (
    ("on_text", "initial_state"),
    ("on_image", "initial_state"),
    ("on_location", "initial_state"),
    ("on_location", "next_state"),
)


def merge_config(base: dict | None, patch: dict | None) -> dict:
    """Return a new document with ``patch`` deep-merged onto ``base``.

    Neither argument is mutated.
    """
    result = copy.deepcopy(base) if isinstance(base, dict) else {}
    for key, value in (patch or {}).items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = merge_config(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _is_empty_status_config(entry) -> bool:
    if not isinstance(entry, dict):
        return True
    return not entry.get("required_case_fields") and not entry.get("mandatory_tasks")


def prune_status_configs(doc: dict) -> dict:
    """Drop empty gates from ``doc["status_configs"]`` (in place) and return ``doc``."""
    configs = doc.get("status_configs")
    if not isinstance(configs, dict):
        return doc
    for key in [k for k, v in configs.items() if _is_empty_status_config(v)]:
        logger.debug("Pruning empty status config for state '%s'", key)
        del configs[key]
    return doc


def _normalize_status_patch(entry: dict) -> dict:
    """Normalize only the keys present in a partial status-config patch."""
    out = {}
    for key, value in entry.items():
        if key == "required_case_fields":
            out[key] = normalize_field_keys(value)
        elif key == "mandatory_tasks":
            tasks = []
            seen = set()
            for raw in value or []:
                if not isinstance(raw, dict):
                    continue
                task = TaskConfig.from_dict(raw, stamp_id=True)
                if task.description and task.id not in seen:
                    seen.add(task.id)
                    tasks.append(task.to_dict())
            out[key] = tasks
        elif key == "responsible_id":
            out[key] = str(value) if value else None
        else:
            out[key] = copy.deepcopy(value)
    return out


def normalize_config_patch(patch: dict | None, states) -> tuple[dict, dict]:
    """Canonicalize state references in ``patch`` against the journey ``states``.

    Returns ``(normalized_patch, unknown)`` where ``unknown`` maps a dotted
    config path to the offending key.  Empty references ("use the journey
    default") are always accepted.
    """
    normalized = copy.deepcopy(patch) if isinstance(patch, dict) else {}
    valid = set(states or [])
    unknown: dict[str, str] = {}

    automation = normalized.get("automation")
    if isinstance(automation, dict):
        for branch, attr in _STATE_REF_PATHS:
            section = automation.get(branch)
            if not isinstance(section, dict) or attr not in section:
                continue
            key = canonicalize(section[attr]) if section[attr] else ""
            section[attr] = key
            if key and key not in valid:
                unknown[f"automation.{branch}.{attr}"] = key

    configs = normalized.get("status_configs")
    if isinstance(configs, dict):
        rebuilt = {}
        for raw_key, entry in configs.items():
            key = canonicalize(raw_key)
            if not key:
                unknown[f"status_configs.{raw_key}"] = str(raw_key)
                continue
            if key not in valid:
                unknown[f"status_configs.{key}"] = key
            rebuilt[key] = _normalize_status_patch(entry) if isinstance(entry, dict) else entry
        normalized["status_configs"] = rebuilt

    return normalized, unknown


def apply_status_config_edit(doc: dict | None, state_key, patch: dict | None) -> dict:
    """Apply a per-state edit and prune the entry if it ends up empty."""
    key = canonicalize(state_key)
    result = copy.deepcopy(doc) if isinstance(doc, dict) else {}
    if not key:
        return result
    configs = result.setdefault("status_configs", {})
    if not isinstance(configs, dict):
        configs = result["status_configs"] = {}
    merged = merge_config(configs.get(key) or {}, _normalize_status_patch(patch or {}))
    configs[key] = StatusConfig.from_dict(merged, stamp_ids=True).to_dict()
    return prune_status_configs(result)


def read_merge_write(
    fetch: Callable[[], dict | None],
    write: Callable[[dict], None],
    patch: dict | None,
    *,
    transform: Callable[[dict, dict], dict] | None = None,
) -> dict:
    """Fetch the authoritative document, merge ``patch``, prune, write, return it.

    ``transform(current, patch)`` replaces the plain merge when given (used by
    per-state edits).  ``fetch``/``write`` failures propagate unchanged and
    nothing is kept in memory between calls.
    """
    current = fetch() or {}
    if transform is not None:
        merged = transform(current, patch or {})
    else:
        merged = merge_config(current, patch)
    merged = prune_status_configs(merged)
    write(merged)
    return merged
