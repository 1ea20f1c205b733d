from __future__ import annotations

"""The three LLM calls the wizard makes, behind one gateway object.

The controller and assembler depend only on the method signatures here, so
tests substitute any object with the same three methods.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

from ..core.state_machine import DEFAULT_VARIANT
from ..errors import ShapeValidationError
from .llm_client import invoke_json
from .prompt_registry import (
    PROFILE_SYSTEM,
    REPORTS_SYSTEM,
    StepContext,
    build_profile_prompt,
    build_prompt,
    build_report_prompt,
    get_step,
)
from .response_decode import decode_options

logger = logging.getLogger(__name__)


class ReportGateway(Protocol):
    def infer_profile(self, context: StepContext) -> Dict[str, Any]: ...

    def step_options(self, step: str, context: StepContext, variant: str = DEFAULT_VARIANT) -> Any: ...

    def generate_reports(self, context: StepContext, variant: str = DEFAULT_VARIANT) -> Any: ...


class LLMReportGateway:
    """Gateway backed by the configured chat-completion provider."""

    def __init__(self, api_key: Optional[str] = None) -> None:
        self._api_key = api_key

    def infer_profile(self, context: StepContext) -> Dict[str, Any]:
        data = invoke_json(
            build_profile_prompt(context),
            purpose="profile_inference",
            system=PROFILE_SYSTEM,
            api_key=self._api_key,
        )
        if not isinstance(data, dict):
            raise ShapeValidationError("Expected a profile object")
        return data

    def step_options(self, step: str, context: StepContext, variant: str = DEFAULT_VARIANT) -> Any:
        prompt = build_prompt(step, context, variant)
        logger.info("Requesting options for step=%s objects=%s", step, ",".join(context.selected_objects))
        return invoke_json(prompt, purpose="story_step", api_key=self._api_key)

    def generate_reports(self, context: StepContext, variant: str = DEFAULT_VARIANT) -> Any:
        data = invoke_json(
            build_report_prompt(context, variant),
            purpose="report_generation",
            system=REPORTS_SYSTEM,
            api_key=self._api_key,
        )
        # JSON mode wraps the array; unwrap it but leave any other shape for the caller to reject.
        if isinstance(data, dict) and "reports" in data:
            return data["reports"]
        return data


def fetch_step_options(
    gateway: ReportGateway,
    step: str,
    context: StepContext,
    variant: str = DEFAULT_VARIANT,
) -> List[Dict[str, Any]]:
    """Request and decode options for one step (stateless path)."""
    definition = get_step(step, variant)
    raw = gateway.step_options(step, context, variant)
    return decode_options(raw, definition.required_fields)
