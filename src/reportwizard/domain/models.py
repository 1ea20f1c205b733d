from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ..core.state_machine import DEFAULT_VARIANT, empty_path, first_unresolved, is_consistent, steps_for


class CamelModel(BaseModel):
    """Wire models use the camelCase keys the browser client sends."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


Variant = Literal["story", "simple"]


class CRMObject(BaseModel):
    id: str
    label: str


class PropertyMeta(CamelModel):
    name: str
    label: str
    group_name: Optional[str] = None
    type: Optional[str] = None
    field_type: Optional[str] = None


class PropertyGroup(BaseModel):
    name: str
    label: str


class ObjectProperties(BaseModel):
    properties: List[PropertyMeta] = Field(default_factory=list)
    groups: List[PropertyGroup] = Field(default_factory=list)


class PropertyRef(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    object_type: str
    name: str
    label: str
    type: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        return (self.object_type, self.name)


class StoryChoice(CamelModel):
    step_id: str
    label: str


class StoryOption(BaseModel):
    """One option offered for a story step. Step-specific grounding keys are kept as extras."""

    model_config = ConfigDict(extra="allow")

    id: str
    label: str
    description: str


class BusinessProfile(BaseModel):
    model_config = ConfigDict(extra="allow")

    inferred_profile: Optional[Dict[str, Any]] = None
    data_richness: Optional[Dict[str, Any]] = None
    reportable_dimensions: Optional[List[Any]] = None
    business_questions_possible: Optional[List[str]] = None


class PipelinePhase(str, Enum):
    NOT_STARTED = "not_started"
    AWAITING_STEP = "awaiting_step"
    STEP_COMPLETE = "step_complete"
    ALL_STEPS_RESOLVED = "all_steps_resolved"
    FAILED = "failed"


class StepRequest(CamelModel):
    """Ticket for one in-flight step request, tagged with the path it was issued for."""

    request_id: str
    seq: int
    step: str
    story_path: Dict[str, Optional[str]]


class PipelineStatus(CamelModel):
    phase: PipelinePhase = PipelinePhase.NOT_STARTED
    step: Optional[str] = None
    reason: Optional[str] = None
    pending: Optional[StepRequest] = None
    seq: int = 0


class SessionState(CamelModel):
    hs_token: str = ""
    selected_objects: List[str] = Field(default_factory=list)
    selected_properties: List[PropertyRef] = Field(default_factory=list)
    business_profile: Optional[BusinessProfile] = None
    story_path: Dict[str, Optional[str]] = Field(default_factory=dict)
    suggestions: List[Dict[str, Any]] = Field(default_factory=list)

    variant: Variant = DEFAULT_VARIANT
    available_properties: Dict[str, List[PropertyRef]] = Field(default_factory=dict)
    step_options: Dict[str, List[StoryOption]] = Field(default_factory=dict)
    pipeline: PipelineStatus = Field(default_factory=PipelineStatus)

    @model_validator(mode="after")
    def _check_journey(self) -> "SessionState":
        order = steps_for(self.variant)
        if list(self.story_path.keys()) != list(order):
            path = empty_path(self.variant)
            for step in order:
                path[step] = self.story_path.get(step)
            self.story_path = path
        if not is_consistent(self.story_path, self.variant):
            raise ValueError("storyPath chooses a step before every earlier step is chosen")

        status = self.pipeline
        open_step = first_unresolved(self.story_path, self.variant)
        if status.phase == PipelinePhase.ALL_STEPS_RESOLVED and open_step is not None:
            raise ValueError(f"pipeline is resolved but '{open_step}' has no choice")
        if status.phase in (PipelinePhase.AWAITING_STEP, PipelinePhase.STEP_COMPLETE, PipelinePhase.FAILED):
            if status.step != open_step:
                raise ValueError(f"pipeline step {status.step!r} is not the next open step {open_step!r}")
        if (status.pending is not None) != (status.phase == PipelinePhase.AWAITING_STEP):
            raise ValueError("only an awaiting pipeline carries a pending request")
        if status.pending is not None and status.pending.step != status.step:
            raise ValueError("pending request does not match the pipeline step")
        return self

    def reset_journey(self) -> None:
        self.story_path = empty_path(self.variant)
        self.step_options = {}
        self.suggestions = []
        self.business_profile = None
        self.pipeline = PipelineStatus(seq=self.pipeline.seq)

    def drop_unavailable_selection(self) -> bool:
        """Keep only selected properties offered by the last metadata fetch.

        Hidden or never-fetched properties are removed and the journey built on
        them is reset. Returns True when the selection changed.
        """
        known = {
            p.key: p
            for object_type, refs in self.available_properties.items()
            if object_type in self.selected_objects
            for p in refs
        }
        kept = [known[p.key] for p in self.selected_properties if p.key in known]
        if kept == self.selected_properties:
            return False
        self.selected_properties = kept
        self.reset_journey()
        return True

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class TokenRequest(CamelModel):
    token: Optional[str] = None


class PropertiesRequest(CamelModel):
    token: Optional[str] = None
    object_types: List[str] = Field(default_factory=list)


class ProfileInferenceRequest(CamelModel):
    openai_key: Optional[str] = None
    properties: List[PropertyRef] = Field(default_factory=list)
    selected_objects: List[str] = Field(default_factory=list)


class StoryOptionsRequest(CamelModel):
    openai_key: Optional[str] = None
    properties: List[PropertyRef] = Field(default_factory=list)
    selected_objects: List[str] = Field(default_factory=list)
    current_step: str
    previous_choices: Dict[str, Optional[str]] = Field(default_factory=dict)
    business_profile: Optional[BusinessProfile] = None
    variant: Variant = DEFAULT_VARIANT


class SuggestRequest(CamelModel):
    openai_key: Optional[str] = None
    properties: List[PropertyRef] = Field(default_factory=list)
    selected_objects: List[str] = Field(default_factory=list)
    story_context: Dict[str, Optional[str]] = Field(default_factory=dict)
    business_profile: Optional[BusinessProfile] = None


class SelectObjectsRequest(CamelModel):
    object_types: List[str]


class SelectPropertiesRequest(CamelModel):
    properties: List[PropertyRef]


class StartJourneyRequest(CamelModel):
    variant: Optional[Variant] = None
    infer_profile: bool = True
    openai_key: Optional[str] = None


class ChooseOptionRequest(CamelModel):
    step: str
    label: str
    openai_key: Optional[str] = None


class OpenAIKeyRequest(CamelModel):
    openai_key: Optional[str] = None


class StateEnvelope(BaseModel):
    state: Optional[Dict[str, Any]] = None
