from __future__ import annotations

"""Render-ready projection of pipeline state for the browser client.

Pure functions only: nothing here mutates state or talks to the network.
"""

from typing import Any, Dict, List, Optional

from ..core.state_machine import resolved_choices, steps_for
from ..domain.models import BusinessProfile, PipelinePhase, SessionState, StoryChoice
from .prompt_registry import STEP_DEFINITIONS
from .suggestion_assembler import bucket_by_confidence

STORY_LINE_DEFAULTS = {
    "business_focus": "Discovery",
    "metric_type": "Analysis",
    "comparison_dimension": "Insight",
    "output_format": "Report",
}

BUCKET_TITLES = {
    "high": ("Ready to Build", "✅"),
    "medium": ("May Need Adjustment", "⚠️"),
    "low": ("Requires Additional Properties", "📝"),
}


def _step_status(state: SessionState, step: str) -> str:
    status = state.pipeline
    if state.story_path.get(step):
        return "resolved"
    if status.step == step:
        if status.phase == PipelinePhase.AWAITING_STEP:
            return "loading"
        if status.phase == PipelinePhase.FAILED:
            return "failed"
        if status.phase == PipelinePhase.STEP_COMPLETE:
            return "open"
    return "locked"


def _profile_summary(profile: Optional[BusinessProfile]) -> Optional[Dict[str, Any]]:
    if profile is None or not profile.inferred_profile:
        return None
    inferred = profile.inferred_profile
    richness = profile.data_richness or {}
    questions = profile.business_questions_possible or []
    return {
        "industry": inferred.get("industry") or "Unknown",
        "confidence": str(inferred.get("industry_confidence") or "medium").upper(),
        "signals": list(inferred.get("industry_signals") or [])[:3],
        "salesMotion": inferred.get("sales_motion") or "Unknown",
        "dataMaturity": inferred.get("operational_maturity") or "Unknown",
        "richestData": richness.get("strongest_object") or "N/A",
        "questionCount": len(questions),
        "questions": questions[:5],
    }


def story_line(state: SessionState) -> str:
    return " → ".join(
        state.story_path.get(step) or STORY_LINE_DEFAULTS.get(step, step.replace("_", " ").title())
        for step in steps_for(state.variant)
    )


def render_choices(state: SessionState) -> List[Dict[str, str]]:
    return [
        StoryChoice(step_id=step, label=label).model_dump(by_alias=True)
        for step, label in resolved_choices(state.story_path, state.variant)
    ]


def render_steps(state: SessionState) -> List[Dict[str, Any]]:
    rendered: List[Dict[str, Any]] = []
    for idx, step in enumerate(steps_for(state.variant)):
        status = _step_status(state, step)
        if status == "locked":
            continue
        meta = STEP_DEFINITIONS[step]
        rendered.append(
            {
                "step": step,
                "number": idx + 1,
                "title": meta.title,
                "emoji": meta.emoji,
                "description": meta.description,
                "status": status,
                "chosen": state.story_path.get(step),
                "options": [o.model_dump() for o in state.step_options.get(step, [])],
            }
        )
    return rendered


def render_suggestions(suggestions: List[Dict[str, Any]]) -> Dict[str, Any]:
    buckets = bucket_by_confidence(suggestions)
    groups = []
    for name, reports in buckets.items():
        if not reports:
            continue
        title, emoji = BUCKET_TITLES[name]
        groups.append({"bucket": name, "title": title, "emoji": emoji, "reports": reports})
    return {"count": len(suggestions), "groups": groups}


def render_state(state: SessionState) -> Dict[str, Any]:
    status = state.pipeline
    return {
        "phase": status.phase.value,
        "currentStep": status.step,
        "loading": status.phase == PipelinePhase.AWAITING_STEP,
        "error": status.reason if status.phase == PipelinePhase.FAILED else None,
        "variant": state.variant,
        "selectedObjects": list(state.selected_objects),
        "selectedCount": len(state.selected_properties),
        "profile": _profile_summary(state.business_profile),
        "steps": render_steps(state),
        "choices": render_choices(state),
        "storyLine": story_line(state),
        "canGenerate": status.phase == PipelinePhase.ALL_STEPS_RESOLVED,
        "suggestions": render_suggestions(state.suggestions),
    }
