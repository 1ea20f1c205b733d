from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Tuple

from ..errors import UnknownStepError

# Fixed step order per journey variant
STORY_STEPS: Tuple[str, ...] = ("business_focus", "metric_type", "comparison_dimension", "output_format")
SIMPLE_STEPS: Tuple[str, ...] = ("audience", "goal", "timeframe")

STEP_ORDERS: Dict[str, Tuple[str, ...]] = {
    "story": STORY_STEPS,
    "simple": SIMPLE_STEPS,
}

DEFAULT_VARIANT = "story"


def steps_for(variant: str) -> Tuple[str, ...]:
    try:
        return STEP_ORDERS[variant]
    except KeyError:
        raise ValueError(f"Unknown journey variant: {variant}") from None


def step_index(step: str, variant: str = DEFAULT_VARIANT) -> int:
    order = steps_for(variant)
    if step not in order:
        raise UnknownStepError(step)
    return order.index(step)


def first_step(variant: str = DEFAULT_VARIANT) -> str:
    return steps_for(variant)[0]


def next_step(current: str, variant: str = DEFAULT_VARIANT) -> Optional[str]:
    order = steps_for(variant)
    idx = step_index(current, variant)
    return order[idx + 1] if idx + 1 < len(order) else None


def empty_path(variant: str = DEFAULT_VARIANT) -> Dict[str, Optional[str]]:
    return {step: None for step in steps_for(variant)}


def set_choice(
    path: Mapping[str, Optional[str]],
    step: str,
    label: Optional[str],
    variant: str = DEFAULT_VARIANT,
) -> Dict[str, Optional[str]]:
    """Return a new path with ``step`` set to ``label`` and every later step nulled.

    Earlier steps are copied unchanged. Passing ``label=None`` clears the step.
    """
    order = steps_for(variant)
    idx = step_index(step, variant)
    updated: Dict[str, Optional[str]] = {}
    for pos, name in enumerate(order):
        if pos < idx:
            updated[name] = path.get(name)
        elif pos == idx:
            updated[name] = label
        else:
            updated[name] = None
    return updated


def later_steps(step: str, variant: str = DEFAULT_VARIANT) -> List[str]:
    order = steps_for(variant)
    return list(order[step_index(step, variant) + 1 :])


def prerequisites_met(path: Mapping[str, Optional[str]], step: str, variant: str = DEFAULT_VARIANT) -> bool:
    order = steps_for(variant)
    return all(path.get(name) for name in order[: step_index(step, variant)])


def is_consistent(path: Mapping[str, Optional[str]], variant: str = DEFAULT_VARIANT) -> bool:
    """True when no resolved step follows an unresolved one."""
    seen_gap = False
    for name in steps_for(variant):
        if path.get(name) is None:
            seen_gap = True
        elif seen_gap:
            return False
    return True


def first_unresolved(path: Mapping[str, Optional[str]], variant: str = DEFAULT_VARIANT) -> Optional[str]:
    for name in steps_for(variant):
        if path.get(name) is None:
            return name
    return None


def resolved_choices(path: Mapping[str, Optional[str]], variant: str = DEFAULT_VARIANT) -> List[Tuple[str, str]]:
    return [(name, path[name]) for name in steps_for(variant) if path.get(name)]  # type: ignore[misc]
