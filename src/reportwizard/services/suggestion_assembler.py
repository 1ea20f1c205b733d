from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from ..domain.models import PipelinePhase, PropertyRef, SessionState
from ..errors import InvalidTransitionError, ShapeValidationError
from .prompt_registry import StepContext
from .report_ai import ReportGateway

logger = logging.getLogger(__name__)

CONFIDENCE_BUCKETS = ("high", "medium", "low")


def build_generation_context(state: SessionState) -> StepContext:
    profile = state.business_profile
    return StepContext(
        selected_objects=list(state.selected_objects),
        selected_properties=list(state.selected_properties),
        business_profile=profile.model_dump(exclude_none=True) if profile else None,
        previous_choices=dict(state.story_path),
    )


def _guide_properties(node: Any) -> List[Any]:
    """Every ``property`` value cited anywhere inside a build guide."""
    found: List[Any] = []
    if isinstance(node, dict):
        for key, value in node.items():
            if key == "property" and value:
                found.append(value)
            else:
                found.extend(_guide_properties(value))
    elif isinstance(node, list):
        for value in node:
            found.extend(_guide_properties(value))
    return found


def _data_sources(guide: Any) -> List[Any]:
    source = guide.get("step_1_data_source") if isinstance(guide, dict) else None
    if not isinstance(source, dict):
        return []
    objects = [source.get("primary_object")]
    secondary = source.get("secondary_objects") or []
    objects.extend(secondary if isinstance(secondary, list) else [secondary])
    return [o for o in objects if o]


def _unselected_references(
    item: Dict[str, Any],
    selected: Set[Tuple[str, str]],
    selected_objects: Sequence[str],
) -> List[str]:
    used = item.get("properties_used") or []
    if not isinstance(used, list):
        raise ShapeValidationError(f"Suggestion {item.get('title')!r} has a non-array properties_used")
    guide = item.get("ikea_guide")
    sources = _data_sources(guide)
    unknown = [f"object:{o}" for o in sources if o not in selected_objects]
    # Bare names resolve against the report's own data sources, else any selected object.
    scope = [o for o in sources if o in selected_objects] or list(selected_objects)
    for ref in [*used, *_guide_properties(guide)]:
        if not isinstance(ref, str):
            unknown.append(repr(ref))
            continue
        object_type, _, name = ref.rpartition(".")
        if object_type in selected_objects:
            ok = (object_type, name) in selected
        else:
            ok = any((o, ref) in selected for o in scope)
        if not ok and ref not in unknown:
            unknown.append(ref)
    return unknown


def normalize_suggestions(
    raw: Any,
    selected_properties: Sequence[PropertyRef],
    selected_objects: Optional[Sequence[str]] = None,
) -> List[Dict[str, Any]]:
    """Validate the generation result and drop reports citing anything unselected.

    A report is dropped when ``properties_used``, any ``property`` in its build
    guide, or its data-source objects fall outside the selection. Properties
    are matched by ``(object_type, name)``.

    Raises ShapeValidationError when ``raw`` is not an array, when an entry
    lacks a title, or when no report survives.
    """
    if not isinstance(raw, list):
        raise ShapeValidationError("Expected an array of suggestions")
    selected = {p.key for p in selected_properties}
    if not selected_objects:
        selected_objects = list(dict.fromkeys(p.object_type for p in selected_properties))
    kept: List[Dict[str, Any]] = []
    for idx, item in enumerate(raw):
        if not isinstance(item, dict) or not item.get("title"):
            raise ShapeValidationError(f"Suggestion {idx} is missing a title")
        unknown = _unselected_references(item, selected, selected_objects)
        if unknown:
            logger.warning("Dropping suggestion %r: references unselected %s", item.get("title"), unknown)
            continue
        kept.append(item)
    if raw and not kept:
        raise ShapeValidationError("Every generated report referenced properties outside the selection")
    return kept


def bucket_by_confidence(suggestions: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """Group suggestions for presentation; unspecified or unknown confidence lands in ``low``."""
    buckets: Dict[str, List[Dict[str, Any]]] = {name: [] for name in CONFIDENCE_BUCKETS}
    for s in suggestions:
        level = str(s.get("confidence") or "").lower()
        buckets[level if level in ("high", "medium") else "low"].append(s)
    return buckets


class SuggestionAssembler:
    def __init__(
        self,
        gateway: ReportGateway,
        on_change: Optional[Callable[[SessionState], None]] = None,
    ) -> None:
        self._gateway = gateway
        self._on_change = on_change

    def prepare(self, state: SessionState) -> StepContext:
        if state.pipeline.phase != PipelinePhase.ALL_STEPS_RESOLVED:
            raise InvalidTransitionError("Resolve every story step before generating reports")
        return build_generation_context(state)

    def request(self, context: StepContext, variant: str) -> Any:
        return self._gateway.generate_reports(context, variant)

    def apply(self, state: SessionState, context: StepContext, raw: Any) -> Optional[List[Dict[str, Any]]]:
        """Store the normalized result, or return None if the path changed meanwhile."""
        if state.pipeline.phase != PipelinePhase.ALL_STEPS_RESOLVED or dict(state.story_path) != dict(
            context.previous_choices
        ):
            logger.info("Discarding suggestions generated for an outdated story path")
            return None
        suggestions = normalize_suggestions(raw, context.selected_properties, context.selected_objects)
        state.suggestions = suggestions
        logger.info("Generated %d suggestions for path=%s", len(suggestions), state.story_path)
        if self._on_change is not None:
            self._on_change(state)
        return suggestions

    def generate(self, state: SessionState) -> List[Dict[str, Any]]:
        context = self.prepare(state)
        raw = self.request(context, state.variant)
        suggestions = self.apply(state, context, raw)
        return suggestions or []
