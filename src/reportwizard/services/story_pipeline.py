from __future__ import annotations

"""Story pipeline controller.

Owns a :class:`SessionState` and moves it through the guided-choice journey:

    not_started -> awaiting_step(s) -> step_complete(s) -> ... -> all_steps_resolved
                          \\-> failed(s) -- retry() --> awaiting_step(s)

An awaiting step whose answer never came back (worker crash, unexpected error)
can be retried the same way.

Every outbound step request is represented by a :class:`StepRequest` ticket.
Only the most recently issued ticket is accepted back; responses for older
tickets are discarded. The controller performs no I/O itself except through
the gateway in :meth:`start` (profile inference) and :meth:`execute`.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from ..core.state_machine import (
    first_step,
    later_steps,
    next_step,
    prerequisites_met,
    set_choice,
    step_index,
)
from ..domain.models import (
    BusinessProfile,
    ObjectProperties,
    PipelinePhase,
    PipelineStatus,
    PropertyRef,
    SessionState,
    StepRequest,
    StoryOption,
)
from ..errors import InputError, InvalidTransitionError, ReportWizardError, ShapeValidationError
from .prompt_registry import StepContext, get_step
from .report_ai import ReportGateway
from .response_decode import decode_options

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# User intents
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SelectObjects:
    object_types: Sequence[str]


@dataclass(frozen=True)
class SelectProperties:
    properties: Sequence[PropertyRef]


@dataclass(frozen=True)
class ClearProperties:
    pass


@dataclass(frozen=True)
class ChooseStepOption:
    step: str
    label: str


@dataclass(frozen=True)
class RestartJourney:
    variant: Optional[str] = None
    infer_profile: bool = True


Intent = Union[SelectObjects, SelectProperties, ClearProperties, ChooseStepOption, RestartJourney]


class StoryPipelineController:
    def __init__(
        self,
        state: SessionState,
        gateway: Optional[ReportGateway] = None,
        on_change: Optional[Callable[[SessionState], None]] = None,
    ) -> None:
        self.state = state
        self._gateway = gateway
        self._on_change = on_change

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------
    @property
    def phase(self) -> PipelinePhase:
        return self.state.pipeline.phase

    @property
    def pending(self) -> Optional[StepRequest]:
        return self.state.pipeline.pending

    @property
    def variant(self) -> str:
        return self.state.variant

    def context(self, previous_choices: Optional[Dict[str, Optional[str]]] = None) -> StepContext:
        profile = self.state.business_profile
        return StepContext(
            selected_objects=list(self.state.selected_objects),
            selected_properties=list(self.state.selected_properties),
            business_profile=profile.model_dump(exclude_none=True) if profile else None,
            previous_choices=dict(previous_choices if previous_choices is not None else self.state.story_path),
        )

    def context_for(self, ticket: StepRequest) -> StepContext:
        return self.context(ticket.story_path)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    def select_objects(self, object_types: Iterable[str]) -> None:
        chosen: List[str] = []
        for obj in object_types:
            obj = (obj or "").strip()
            if obj and obj not in chosen:
                chosen.append(obj)
        self.state.selected_objects = chosen
        self.state.selected_properties = [p for p in self.state.selected_properties if p.object_type in chosen]
        self.state.available_properties = {
            k: v for k, v in self.state.available_properties.items() if k in chosen
        }
        self._reset_journey()
        self._emit()

    def load_metadata(self, metadata: Dict[str, ObjectProperties]) -> None:
        """Record the (already hidden-filtered) property metadata of the last fetch."""
        available: Dict[str, List[PropertyRef]] = {}
        for object_type, data in metadata.items():
            available[object_type] = [
                PropertyRef(object_type=object_type, name=p.name, label=p.label, type=p.type or "")
                for p in data.properties
            ]
        self.state.available_properties.update(available)
        if self.state.drop_unavailable_selection():
            logger.info("Selection pruned to properties present in the latest metadata")
        self._emit()

    def select_properties(self, properties: Iterable[PropertyRef]) -> None:
        lookup = {p.key: p for refs in self.state.available_properties.values() for p in refs}
        chosen: Dict[tuple, PropertyRef] = {}
        for prop in properties:
            if prop.object_type not in self.state.selected_objects:
                raise InputError(f"Object '{prop.object_type}' is not selected")
            known = lookup.get(prop.key)
            if known is None:
                raise InputError(f"Unknown property '{prop.object_type}.{prop.name}'")
            chosen.setdefault(prop.key, known)
        self.state.selected_properties = list(chosen.values())
        self._reset_journey()
        self._emit()

    def clear_properties(self) -> None:
        self.state.selected_properties = []
        self._reset_journey()
        self._emit()

    # ------------------------------------------------------------------
    # Journey transitions
    # ------------------------------------------------------------------
    def start(self, infer_profile: bool = True, variant: Optional[str] = None) -> StepRequest:
        """Reset the path, run best-effort profile inference and issue the first step."""
        if not self.state.selected_objects or not self.state.selected_properties:
            raise InputError("Select at least one object and one property before starting the journey")
        if variant:
            self.state.variant = variant  # type: ignore[assignment]
        self._reset_journey()
        if infer_profile:
            self._infer_profile()
        ticket = self._issue(first_step(self.variant))
        self._emit()
        return ticket

    def receive_options(self, ticket: StepRequest, raw: Any) -> bool:
        """Apply a step response. Returns False if the ticket is stale."""
        if not self._is_current(ticket):
            logger.info("Discarding stale response for step=%s request=%s", ticket.step, ticket.request_id)
            return False
        definition = get_step(ticket.step, self.variant)
        try:
            options = decode_options(raw, definition.required_fields)
        except ShapeValidationError as exc:
            self.fail(ticket, str(exc))
            raise
        self.state.step_options[ticket.step] = [StoryOption.model_validate(o) for o in options]
        self.state.pipeline = PipelineStatus(
            phase=PipelinePhase.STEP_COMPLETE,
            step=ticket.step,
            seq=self.state.pipeline.seq,
        )
        self._emit()
        return True

    def fail(self, ticket: StepRequest, reason: str) -> bool:
        if not self._is_current(ticket):
            logger.info("Ignoring failure of stale request step=%s: %s", ticket.step, reason)
            return False
        logger.warning("Step %s failed: %s", ticket.step, reason)
        self.state.pipeline = PipelineStatus(
            phase=PipelinePhase.FAILED,
            step=ticket.step,
            reason=reason,
            seq=self.state.pipeline.seq,
        )
        self._emit()
        return True

    def choose(self, step: str, label: str) -> Optional[StepRequest]:
        """Record a choice, invalidate later steps and issue the next request if any."""
        step_index(step, self.variant)
        if self.phase == PipelinePhase.NOT_STARTED:
            raise InvalidTransitionError("The journey has not been started")
        if not prerequisites_met(self.state.story_path, step, self.variant):
            raise InvalidTransitionError(f"Earlier steps must be chosen before '{step}'")
        offered = self.state.step_options.get(step) or []
        if not offered:
            raise InvalidTransitionError(f"No options have been offered for '{step}'")
        if label not in [o.label for o in offered]:
            raise InputError(f"'{label}' is not an offered option for '{step}'")

        self.state.story_path = set_choice(self.state.story_path, step, label, self.variant)
        for later in later_steps(step, self.variant):
            self.state.step_options.pop(later, None)
        self.state.suggestions = []

        nxt = next_step(step, self.variant)
        if nxt is None:
            self.state.pipeline = PipelineStatus(
                phase=PipelinePhase.ALL_STEPS_RESOLVED,
                step=step,
                seq=self.state.pipeline.seq,
            )
            self._emit()
            return None
        ticket = self._issue(nxt)
        self._emit()
        return ticket

    def restart(self, step: str, label: str) -> Optional[StepRequest]:
        """Re-select an earlier step; later steps are retracted exactly as in :meth:`choose`."""
        return self.choose(step, label)

    def retry(self) -> StepRequest:
        """Re-issue the failed or interrupted step under a fresh ticket.

        An awaiting step whose response never arrived can be retried too; the
        superseded ticket is then discarded like any other stale response.
        """
        status = self.state.pipeline
        if status.phase not in (PipelinePhase.FAILED, PipelinePhase.AWAITING_STEP) or not status.step:
            raise InvalidTransitionError("There is no failed or interrupted step to retry")
        ticket = self._issue(status.step)
        self._emit()
        return ticket

    def execute(self, ticket: StepRequest) -> bool:
        """Run ``ticket`` through the gateway synchronously and apply the result."""
        if self._gateway is None:
            raise RuntimeError("No gateway configured")
        try:
            raw = self._gateway.step_options(ticket.step, self.context_for(ticket), self.variant)
        except ReportWizardError as exc:
            self.fail(ticket, str(exc))
            raise
        return self.receive_options(ticket, raw)

    def dispatch(self, intent: Intent) -> Optional[StepRequest]:
        if isinstance(intent, SelectObjects):
            self.select_objects(intent.object_types)
            return None
        if isinstance(intent, SelectProperties):
            self.select_properties(intent.properties)
            return None
        if isinstance(intent, ClearProperties):
            self.clear_properties()
            return None
        if isinstance(intent, ChooseStepOption):
            return self.choose(intent.step, intent.label)
        if isinstance(intent, RestartJourney):
            return self.start(infer_profile=intent.infer_profile, variant=intent.variant)
        raise TypeError(f"Unsupported intent: {intent!r}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _issue(self, step: str) -> StepRequest:
        seq = self.state.pipeline.seq + 1
        ticket = StepRequest(
            request_id=uuid.uuid4().hex,
            seq=seq,
            step=step,
            story_path=dict(self.state.story_path),
        )
        self.state.pipeline = PipelineStatus(
            phase=PipelinePhase.AWAITING_STEP,
            step=step,
            pending=ticket,
            seq=seq,
        )
        return ticket

    def _is_current(self, ticket: StepRequest) -> bool:
        pending = self.state.pipeline.pending
        return pending is not None and pending.request_id == ticket.request_id

    def _reset_journey(self) -> None:
        self.state.reset_journey()

    def _infer_profile(self) -> None:
        if self._gateway is None:
            return
        try:
            data = self._gateway.infer_profile(self.context())
            self.state.business_profile = BusinessProfile.model_validate(data)
        except Exception as exc:
            logger.warning("Profile inference failed, continuing without: %s", exc)
            self.state.business_profile = None

    def persist(self) -> None:
        """Push the current state to the change listener."""
        self._emit()

    def _emit(self) -> None:
        if self._on_change is not None:
            self._on_change(self.state)
