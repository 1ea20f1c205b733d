from __future__ import annotations

"""Stateless LLM endpoints; the caller supplies the whole context in the body."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from ...domain.models import ProfileInferenceRequest, StoryOptionsRequest, SuggestRequest
from ...security.auth import User, get_current_user
from ...services.prompt_registry import StepContext
from ...services.report_ai import fetch_step_options
from ...services.suggestion_assembler import normalize_suggestions
from ..deps import GatewayFactory, get_gateway_factory, http_errors

router = APIRouter(prefix="/ai", tags=["ai"])


@router.post("/profile-inference")
def profile_inference(
    req: ProfileInferenceRequest,
    user: User = Depends(get_current_user),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> Dict[str, Any]:
    context = StepContext(selected_objects=req.selected_objects, selected_properties=req.properties)
    with http_errors():
        return gateway_factory(req.openai_key).infer_profile(context)


@router.post("/story-options")
def story_options(
    req: StoryOptionsRequest,
    user: User = Depends(get_current_user),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> List[Dict[str, Any]]:
    context = StepContext(
        selected_objects=req.selected_objects,
        selected_properties=req.properties,
        business_profile=req.business_profile.model_dump(exclude_none=True) if req.business_profile else None,
        previous_choices=req.previous_choices,
    )
    with http_errors():
        return fetch_step_options(gateway_factory(req.openai_key), req.current_step, context, req.variant)


@router.post("/suggest")
def suggest(
    req: SuggestRequest,
    user: User = Depends(get_current_user),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> List[Dict[str, Any]]:
    context = StepContext(
        selected_objects=req.selected_objects,
        selected_properties=req.properties,
        business_profile=req.business_profile.model_dump(exclude_none=True) if req.business_profile else None,
        previous_choices=req.story_context,
    )
    with http_errors():
        raw = gateway_factory(req.openai_key).generate_reports(context)
        return normalize_suggestions(raw, context.selected_properties, context.selected_objects)
