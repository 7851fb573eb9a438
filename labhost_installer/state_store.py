from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions.
    return "json"


def load_state(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}

    data: Any
    if _detect_format(p) in {"yaml", "yml"}:
        import yaml

        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    else:
        data = json.loads(p.read_text(encoding="utf-8"))

    if not isinstance(data, dict):
        raise ValueError(f"State file must be an object/dict, got {type(data)}")

    return data


def save_state(path: str, state: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if _detect_format(p) in {"yaml", "yml"}:
        import yaml

        p.write_text(yaml.safe_dump(state, sort_keys=False) + "\n", encoding="utf-8")
    else:
        p.write_text(json.dumps(state, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def ensure_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    """Fill required keys (without overriding recorded values)."""

    state.setdefault("version", 1)
    state.setdefault("execution", {})

    exe = state["execution"]
    exe.setdefault("current_step", None)
    exe.setdefault("in_progress", [])
    exe.setdefault("completed_steps", [])
    exe.setdefault("abandoned_steps", [])
    exe.setdefault("errors", [])

    return state


def _add(state: Dict[str, Any], key: str, step_id: str) -> None:
    items = state.setdefault("execution", {}).setdefault(key, [])
    if step_id not in items:
        items.append(step_id)


def _discard(state: Dict[str, Any], key: str, step_id: str) -> None:
    items = state.setdefault("execution", {}).setdefault(key, [])
    if step_id in items:
        items.remove(step_id)


def mark_step_started(state: Dict[str, Any], step_id: str) -> None:
    _add(state, "in_progress", step_id)


def mark_step_completed(state: Dict[str, Any], step_id: str) -> None:
    _discard(state, "in_progress", step_id)
    _discard(state, "abandoned_steps", step_id)
    _add(state, "completed_steps", step_id)


def mark_step_abandoned(state: Dict[str, Any], step_id: str) -> None:
    _discard(state, "in_progress", step_id)
    _add(state, "abandoned_steps", step_id)


def is_step_completed(state: Dict[str, Any], step_id: str) -> bool:
    exe = state.get("execution") or {}
    return step_id in (exe.get("completed_steps") or [])


def is_step_in_progress(state: Dict[str, Any], step_id: str) -> bool:
    """True when an earlier run started the step but never finished it."""
    exe = state.get("execution") or {}
    return step_id in (exe.get("in_progress") or [])


def is_step_abandoned(state: Dict[str, Any], step_id: str) -> bool:
    exe = state.get("execution") or {}
    return step_id in (exe.get("abandoned_steps") or [])
