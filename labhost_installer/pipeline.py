from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .errors import StageAbandoned, UnknownStageError
from .state_store import (
    is_step_abandoned,
    is_step_completed,
    is_step_in_progress,
    mark_step_abandoned,
    mark_step_completed,
    mark_step_started,
)

logger = logging.getLogger(__name__)


class Step(Protocol):
    """A single idempotent stage."""

    step_id: str
    name: str
    # Absolute host paths left behind by a completed run of this stage.
    markers: Tuple[str, ...]

    def run(self, ctx: Any, state: Dict[str, Any]) -> Dict[str, Any]:
        ...


# Composite selectors. "main" is every stage.
GROUPS: Dict[str, Tuple[str, ...]] = {
    "splunk_only": ("install_splunk", "configure_splunk_inputs"),
    "velociraptor_only": ("install_velociraptor",),
}


@dataclass(frozen=True)
class PipelineResult:
    state: Dict[str, Any]
    ran_steps: List[str]
    skipped_steps: List[str]
    abandoned_steps: List[str] = field(default_factory=list)


def select_steps(
    steps: Sequence[Step],
    selector: Optional[str],
    *,
    groups: Mapping[str, Sequence[str]] = GROUPS,
) -> List[Step]:
    """Steps to run for `selector`: everything, one stage (by name or id), or a group."""

    if selector is None or selector == "main":
        return list(steps)

    for step in steps:
        if selector in (step.name, step.step_id):
            return [step]

    if selector in groups:
        wanted = set(groups[selector])
        return [s for s in steps if s.name in wanted]

    raise UnknownStageError(f"Unknown stage or group: {selector}")


def markers_present(ctx: Any, step: Step) -> bool:
    markers = tuple(getattr(step, "markers", ()) or ())
    return bool(markers) and all(ctx.path(m).exists() for m in markers)


def _already_done(ctx: Any, state: Dict[str, Any], step: Step) -> Optional[str]:
    if is_step_completed(state, step.step_id):
        return "recorded as completed"
    if is_step_in_progress(state, step.step_id) or is_step_abandoned(state, step.step_id):
        # A previous run died in or gave up on this stage; its markers prove nothing.
        return None
    if markers_present(ctx, step):
        return "completion marker present"
    return None


def run_pipeline(
    *,
    ctx: Any,
    state: Dict[str, Any],
    steps: Sequence[Step],
    force: bool = False,
    checkpoint: Optional[Callable[[Dict[str, Any]], None]] = None,
) -> PipelineResult:
    """Run steps in order with idempotency semantics.

    Any exception other than StageAbandoned stops the pipeline and propagates.
    """

    ran: List[str] = []
    skipped: List[str] = []
    abandoned: List[str] = []

    for step in steps:
        state.setdefault("execution", {})["current_step"] = step.step_id

        reason = None if force else _already_done(ctx, state, step)
        if reason is not None:
            logger.info("Skipping step %s (%s)", step.step_id, reason)
            skipped.append(step.step_id)
            continue

        logger.info("Running step %s", step.step_id)
        mark_step_started(state, step.step_id)
        if checkpoint is not None:
            checkpoint(state)

        try:
            state = step.run(ctx, state)
        except StageAbandoned as e:
            logger.warning("Step %s abandoned: %s", step.step_id, e)
            mark_step_abandoned(state, step.step_id)
            abandoned.append(step.step_id)
        else:
            mark_step_completed(state, step.step_id)
            ran.append(step.step_id)

        if checkpoint is not None:
            checkpoint(state)

    state.setdefault("execution", {})["current_step"] = None
    return PipelineResult(state=state, ran_steps=ran, skipped_steps=skipped, abandoned_steps=abandoned)
