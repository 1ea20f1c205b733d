"""Prompt templates for every story step, profile inference and report generation.

Every builder is a pure function of :class:`StepContext`. Prompts only ever
mention the objects and properties present in the context, and instruct the
model to cite nothing else; the suggestion assembler enforces the same rule on
the way back.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..core.state_machine import DEFAULT_VARIANT, steps_for
from ..domain.models import PropertyRef
from ..errors import UnknownStepError

BASE_REQUIRED_FIELDS: Tuple[str, ...] = ("id", "label", "description")

NUMERIC_TYPES = ("number",)
DATE_TYPES = ("date", "datetime")
CATEGORICAL_TYPES = ("enumeration", "bool", "boolean")


@dataclass(frozen=True)
class StepContext:
    selected_objects: Sequence[str]
    selected_properties: Sequence[PropertyRef]
    business_profile: Optional[Mapping[str, Any]] = None
    previous_choices: Mapping[str, Optional[str]] = field(default_factory=dict)

    def properties_of_type(self, *types: str) -> List[PropertyRef]:
        return [p for p in self.selected_properties if (p.type or "").lower() in types]


@dataclass(frozen=True)
class StepDefinition:
    step_id: str
    title: str
    emoji: str
    description: str
    build_task: Callable[[StepContext], str]
    grounding_fields: Tuple[str, ...] = ()
    option_count: str = "3-4"

    @property
    def required_fields(self) -> Tuple[str, ...]:
        return BASE_REQUIRED_FIELDS + self.grounding_fields


# ---------------------------------------------------------------------------
# Context rendering helpers
# ---------------------------------------------------------------------------


def _property_lines(props: Sequence[PropertyRef]) -> str:
    if not props:
        return "(none)"
    return "\n".join(f"- {p.object_type}.{p.name} | {p.label} | {p.type or 'unknown'}" for p in props)


def _profile_block(profile: Optional[Mapping[str, Any]]) -> str:
    if not profile:
        return "BUSINESS PROFILE: not available. Infer only from the properties below."
    return "BUSINESS PROFILE (inferred):\n" + json.dumps(dict(profile), indent=2, sort_keys=True, default=str)


def _choices_block(choices: Mapping[str, Optional[str]]) -> str:
    resolved = [(k, v) for k, v in choices.items() if v]
    if not resolved:
        return "PREVIOUS CHOICES: none yet."
    return "PREVIOUS CHOICES:\n" + "\n".join(f"- {k}: {v}" for k, v in resolved)


def _names(props: Sequence[PropertyRef]) -> str:
    return ", ".join(p.name for p in props) if props else "none"


def _context_header(ctx: StepContext) -> str:
    return "\n".join(
        [
            f"Objects: {', '.join(ctx.selected_objects) or '(none)'}",
            "Properties (object.name | label | type):",
            _property_lines(ctx.selected_properties),
            "",
            _profile_block(ctx.business_profile),
            "",
            _choices_block(ctx.previous_choices),
        ]
    )


def _shape_block(definition: StepDefinition) -> str:
    shape: Dict[str, str] = {
        "id": "unique slug",
        "label": "short human readable title",
        "description": "one sentence on why this path matters",
    }
    extras = {
        "grounding_properties": "array of property internal names from the list above",
        "viable_because": "which selected properties make this metric computable",
        "property_used": "the single property internal name used to segment",
        "visualization_types": "array of chart types suited to this format",
    }
    for name in definition.grounding_fields:
        shape[name] = extras.get(name, "string")
    return json.dumps({"options": [shape]}, indent=2)


# ---------------------------------------------------------------------------
# Step tasks
# ---------------------------------------------------------------------------


def _business_focus_task(ctx: StepContext) -> str:
    return (
        "Suggest 3-4 distinct BUSINESS FOCUS areas that these properties can genuinely report on "
        "(e.g. Revenue Analysis, Pipeline Health, Lead Generation, Customer Retention). "
        "Only propose a focus if at least one listed property supports it, and cite those properties "
        "in grounding_properties."
    )


def _metric_type_task(ctx: StepContext) -> str:
    numeric = ctx.properties_of_type(*NUMERIC_TYPES)
    dates = ctx.properties_of_type(*DATE_TYPES)
    return (
        f"Given the business focus [{ctx.previous_choices.get('business_focus')}], suggest 3-4 METRIC TYPES. "
        "Valid categories: Count Metrics (always viable), Value Metrics (need a numeric property), "
        "Time Metrics (need a date property), Conversion Metrics (need a stage or status property). "
        f"Numeric properties available: {_names(numeric)}. Date properties available: {_names(dates)}. "
        "Do not propose a category whose required property class is missing. "
        "Explain in viable_because which properties make it computable."
    )


def _comparison_dimension_task(ctx: StepContext) -> str:
    categorical = ctx.properties_of_type(*CATEGORICAL_TYPES)
    return (
        f"Given focus [{ctx.previous_choices.get('business_focus')}] and metric type "
        f"[{ctx.previous_choices.get('metric_type')}], suggest 3-4 COMPARISON DIMENSIONS used to slice the data "
        "(e.g. By Deal Source, By Owner, Over Time). "
        f"Categorical properties available: {_names(categorical)}. "
        "Each dimension must name exactly one listed property in property_used."
    )


def _output_format_task(ctx: StepContext) -> str:
    return (
        f"Given focus [{ctx.previous_choices.get('business_focus')}], metric type "
        f"[{ctx.previous_choices.get('metric_type')}] and comparison "
        f"[{ctx.previous_choices.get('comparison_dimension')}], suggest 3-4 OUTPUT FORMATS "
        "(e.g. Executive Snapshot, Trend Dashboard, Operational Table). "
        "List suitable HubSpot chart types in visualization_types."
    )


def _audience_task(ctx: StepContext) -> str:
    return "Suggest 4 distinct target Audiences for these reports (e.g. Sales Leadership, Marketing Ops, CFO)."


def _goal_task(ctx: StepContext) -> str:
    return (
        f"Based on the audience [{ctx.previous_choices.get('audience')}], suggest 4 distinct Reporting Goals "
        "(e.g. ROI Analysis, Team Velocity, Lead Attribution)."
    )


def _timeframe_task(ctx: StepContext) -> str:
    return "Suggest 3 relevant Timeframes for this story (e.g. This Quarter vs Last, Month-over-Month, All-time Trends)."


STEP_DEFINITIONS: Dict[str, StepDefinition] = {
    "business_focus": StepDefinition(
        "business_focus",
        "Business Focus",
        "🎯",
        "What area of the business should we analyze?",
        _business_focus_task,
        grounding_fields=("grounding_properties",),
    ),
    "metric_type": StepDefinition(
        "metric_type",
        "Metric Type",
        "📊",
        "What kind of measurements make sense here?",
        _metric_type_task,
        grounding_fields=("viable_because",),
    ),
    "comparison_dimension": StepDefinition(
        "comparison_dimension",
        "Comparison Dimension",
        "🔀",
        "How should we slice and segment the data?",
        _comparison_dimension_task,
        grounding_fields=("property_used",),
    ),
    "output_format": StepDefinition(
        "output_format",
        "Output Format",
        "📋",
        "How should we present the insights?",
        _output_format_task,
        grounding_fields=("visualization_types",),
    ),
    "audience": StepDefinition("audience", "Audience", "👥", "Who will read these reports?", _audience_task),
    "goal": StepDefinition("goal", "Goal", "🏁", "What should the reports achieve?", _goal_task),
    "timeframe": StepDefinition(
        "timeframe", "Timeframe", "🗓️", "Which period should the story cover?", _timeframe_task, option_count="3"
    ),
}


def get_step(step: str, variant: str = DEFAULT_VARIANT) -> StepDefinition:
    if step not in steps_for(variant) or step not in STEP_DEFINITIONS:
        raise UnknownStepError(step)
    return STEP_DEFINITIONS[step]


def build_prompt(step: str, context: StepContext, variant: str = DEFAULT_VARIANT) -> str:
    definition = get_step(step, variant)
    return "\n".join(
        [
            "You are a HubSpot Strategy Consultant helping a user design reports.",
            _context_header(context),
            "",
            f"Current Choice Step: {definition.step_id} ({definition.title})",
            f"Task: {definition.build_task(context)}",
            "",
            "Rules:",
            "- Reference ONLY the objects and properties listed above. Never invent property names.",
            f"- Return ONLY a JSON object with an \"options\" array of {definition.option_count} items shaped like:",
            _shape_block(definition),
        ]
    )


# ---------------------------------------------------------------------------
# Profile inference and report generation
# ---------------------------------------------------------------------------

PROFILE_SYSTEM = "You are a CRM data analyst. You infer business context strictly from CRM schema metadata."

REPORTS_SYSTEM = "You are a HubSpot API expert."


def build_profile_prompt(context: StepContext) -> str:
    shape = {
        "inferred_profile": {
            "industry": "string",
            "industry_confidence": "high | medium | low",
            "industry_signals": ["property names that hint at the industry"],
            "sales_motion": "e.g. transactional, consultative, product-led",
            "operational_maturity": "basic | developing | advanced",
        },
        "data_richness": {"strongest_object": "object id", "notes": "string"},
        "reportable_dimensions": ["property names usable for grouping"],
        "business_questions_possible": ["questions these properties can answer"],
    }
    return "\n".join(
        [
            "Analyze the following CRM schema selection and infer the business behind it.",
            f"Objects: {', '.join(context.selected_objects) or '(none)'}",
            "Properties (object.name | label | type):",
            _property_lines(context.selected_properties),
            "",
            "Only cite properties from the list above.",
            "Return ONLY a JSON object with this structure:",
            json.dumps(shape, indent=2),
        ]
    )


def build_report_prompt(context: StepContext, variant: str = DEFAULT_VARIANT) -> str:
    story_lines = [
        f"{name.replace('_', ' ').title()}: {context.previous_choices.get(name) or 'unspecified'}"
        for name in steps_for(variant)
    ]
    properties_json = json.dumps(
        [p.model_dump(by_alias=True) for p in context.selected_properties],
        indent=2,
    )
    guide = {
        "title": "A professional name for the report",
        "description": "The exact business question this report answers",
        "confidence": "high | medium | low",
        "confidence_note": "what is missing when confidence is not high",
        "why_this_matters": "one sentence of business value",
        "breeze_prompt": "a natural-language prompt that recreates this report in HubSpot's AI assistant",
        "ikea_guide": {
            "step_1_data_source": {"instruction": "string", "primary_object": "object id", "secondary_objects": []},
            "step_2_filters": {
                "instruction": "string",
                "filters": [{"property": "name", "property_label": "label", "operator": "string", "value": "string"}],
            },
            "step_3_configure": {
                "instruction": "string",
                "x_axis_or_rows": {"property": "name", "property_label": "label"},
                "y_axis_or_values": {"property": "name", "aggregation": "Count | Sum | Average"},
                "break_down_by": {"property": "name", "property_label": "label"},
            },
            "step_4_visualize": {"instruction": "string", "chart_type": "string"},
        },
        "quick_variations": ["short variations of this report"],
        "properties_used": ["internal property names"],
    }
    return "\n".join(
        [
            "You are a HubSpot Reporting Expert specializing in the Custom Report Builder.",
            "",
            "STORY CONTEXT:",
            *story_lines,
            "",
            _profile_block(context.business_profile),
            "",
            f"User has selected: {', '.join(context.selected_objects)}.",
            "Properties:",
            properties_json,
            "",
            "Task:",
            "Suggest up to 20 high-value CUSTOM REPORTS that align with the STORY CONTEXT above.",
            "Every property you mention, including in properties_used, MUST come from the Properties list.",
            "Rate confidence high only when every needed property is present.",
            "",
            "For each report, return a JSON object with this EXACT structure:",
            json.dumps(guide, indent=2),
            "",
            "Return ONLY a JSON object with a \"reports\" key holding the array.",
        ]
    )


def step_meta(variant: str = DEFAULT_VARIANT) -> List[Dict[str, str]]:
    return [
        {
            "step": d.step_id,
            "title": d.title,
            "emoji": d.emoji,
            "description": d.description,
        }
        for d in (STEP_DEFINITIONS[s] for s in steps_for(variant))
    ]
