"""
Funnel step sequencing.

Keeps a campaign funnel's steps in a dense, unique ``order`` (0..N-1).
Operations return a new Funnel; rejected operations return an unchanged
copy and log a warning. Step execution lives in the delivery layer.
"""
from typing import Any, Dict, List, Mapping, Optional, Sequence

from src.lib.logging import get_logger
from src.models.campaign_parts import Funnel, FunnelStep, new_part_id

logger = get_logger(__name__)

# Fields callers may not overwrite through update_step
_PROTECTED_FIELDS = frozenset({"id", "order", "metrics"})


def _renumber(steps: List[FunnelStep]) -> List[FunnelStep]:
    for index, step in enumerate(steps):
        step.order = index
    return steps


def ordered_steps(funnel: Funnel) -> List[FunnelStep]:
    """Steps sorted by ``order`` (copies)."""
    return sorted((s.model_copy(deep=True) for s in funnel.steps), key=lambda s: s.order)


def add_step(funnel: Funnel, step: FunnelStep) -> Funnel:
    """Append a step at the end with a fresh id."""
    result = funnel.model_copy(deep=True)
    steps = ordered_steps(result)

    new_step = step.model_copy(deep=True, update={"id": new_part_id("step")})
    steps.append(new_step)

    result.steps = _renumber(steps)
    return result


def update_step(funnel: Funnel, step_id: str, changes: Mapping[str, Any]) -> Funnel:
    """
    Apply field changes to one step.

    ``id``, ``order`` and ``metrics`` are ignored; use reorder to move steps.
    """
    result = funnel.model_copy(deep=True)
    current = result.find(step_id)
    if current is None:
        logger.warning(f"Update step ignored: unknown step '{step_id}'")
        return result

    allowed: Dict[str, Any] = {k: v for k, v in changes.items() if k not in _PROTECTED_FIELDS}
    merged = FunnelStep.model_validate({**current.model_dump(), **allowed})

    result.steps = [merged if s.id == step_id else s for s in result.steps]
    return result


def is_valid_reorder(funnel: Funnel, ordered_ids: Sequence[str]) -> bool:
    """True iff ``ordered_ids`` is a permutation of the funnel's step ids."""
    ids = [s.id for s in funnel.steps]
    return len(ordered_ids) == len(ids) and sorted(ordered_ids) == sorted(ids)


def reorder(funnel: Funnel, ordered_ids: Sequence[str]) -> Funnel:
    """
    Renumber every step to follow ``ordered_ids``.

    Partial lists, duplicates and unknown ids are rejected.
    """
    result = funnel.model_copy(deep=True)
    if not is_valid_reorder(result, ordered_ids):
        logger.warning(
            f"Reorder rejected: expected all {len(result.steps)} step ids, got {len(ordered_ids)}"
        )
        return result

    by_id = {s.id: s for s in result.steps}
    result.steps = _renumber([by_id[step_id] for step_id in ordered_ids])
    return result


def remove_step(funnel: Funnel, step_id: str) -> Funnel:
    """Delete a step and close the gap in ``order``."""
    result = funnel.model_copy(deep=True)
    if result.find(step_id) is None:
        logger.warning(f"Remove step ignored: unknown step '{step_id}'")
        return result

    remaining = [s for s in ordered_steps(result) if s.id != step_id]
    result.steps = _renumber(remaining)
    return result


def next_step(funnel: Funnel, current_step_id: Optional[str] = None) -> Optional[FunnelStep]:
    """
    Step that follows ``current_step_id`` (or the first step).

    Returns:
        Next step, or None at the end of the funnel or for an unknown id
    """
    steps = ordered_steps(funnel)
    if current_step_id is None:
        return steps[0] if steps else None

    for index, step in enumerate(steps):
        if step.id == current_step_id:
            return steps[index + 1] if index + 1 < len(steps) else None

    logger.warning(f"Next step lookup: unknown step '{current_step_id}'")
    return None
