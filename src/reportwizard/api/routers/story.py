from __future__ import annotations

"""Stateful story journey for the signed-in user.

Handlers mutate the stored session under the user's lock, release it while the
model is thinking, and re-acquire it to apply the answer. A response whose
ticket was superseded in the meantime is dropped and reported as ``stale``.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends

from ...core.state_machine import DEFAULT_VARIANT
from ...domain.models import (
    ChooseOptionRequest,
    OpenAIKeyRequest,
    SelectObjectsRequest,
    SelectPropertiesRequest,
    StartJourneyRequest,
    StepRequest,
    Variant,
)
from ...errors import ReportWizardError
from ...security.auth import User, get_current_user
from ...services.prompt_registry import step_meta
from ...services.report_ai import ReportGateway
from ...services.story_pipeline import (
    ChooseStepOption,
    ClearProperties,
    RestartJourney,
    SelectObjects,
    SelectProperties,
    StoryPipelineController,
)
from ...services.story_view import render_state
from ...services.suggestion_assembler import SuggestionAssembler
from ..deps import GatewayFactory, get_gateway_factory, http_errors, load_state, pipeline_session, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/story", tags=["story"])


def _view(ctl: StoryPipelineController, stale: bool = False) -> Dict[str, Any]:
    return {**render_state(ctl.state), "stale": stale}


def _advance(
    email: str,
    gateway: ReportGateway,
    transition: Callable[[StoryPipelineController], Optional[StepRequest]],
) -> Dict[str, Any]:
    """Apply ``transition`` and, if it issued a ticket, fetch that step's options."""
    with http_errors(), pipeline_session(email, gateway) as ctl:
        ticket = transition(ctl)
        if ticket is None:
            return _view(ctl)
        context = ctl.context_for(ticket)
        variant = ctl.variant

    try:
        raw = gateway.step_options(ticket.step, context, variant)
    except ReportWizardError as exc:
        with pipeline_session(email) as ctl:
            ctl.fail(ticket, str(exc))
        raise to_http_exception(exc) from exc
    except Exception:
        logger.exception("Step %s request crashed for %s", ticket.step, email)
        with pipeline_session(email) as ctl:
            ctl.fail(ticket, "The step request failed unexpectedly")
        raise

    with http_errors(), pipeline_session(email) as ctl:
        accepted = ctl.receive_options(ticket, raw)
        return _view(ctl, stale=not accepted)


@router.get("")
def get_story(user: User = Depends(get_current_user)) -> Dict[str, Any]:
    return {**render_state(load_state(user.email)), "stale": False}


@router.get("/steps")
def get_steps(variant: Variant = DEFAULT_VARIANT, user: User = Depends(get_current_user)) -> List[Dict[str, str]]:
    with http_errors():
        return step_meta(variant)


@router.post("/objects")
def select_objects(req: SelectObjectsRequest, user: User = Depends(get_current_user)) -> Dict[str, Any]:
    with http_errors(), pipeline_session(user.email) as ctl:
        ctl.dispatch(SelectObjects(req.object_types))
        return _view(ctl)


@router.post("/properties")
def select_properties(req: SelectPropertiesRequest, user: User = Depends(get_current_user)) -> Dict[str, Any]:
    with http_errors(), pipeline_session(user.email) as ctl:
        ctl.dispatch(SelectProperties(req.properties))
        return _view(ctl)


@router.post("/properties/clear")
def clear_properties(user: User = Depends(get_current_user)) -> Dict[str, Any]:
    with pipeline_session(user.email) as ctl:
        ctl.dispatch(ClearProperties())
        return _view(ctl)


@router.post("/start")
def start_journey(
    req: StartJourneyRequest,
    user: User = Depends(get_current_user),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> Dict[str, Any]:
    with http_errors():
        gateway = gateway_factory(req.openai_key)
    intent = RestartJourney(variant=req.variant, infer_profile=req.infer_profile)
    return _advance(user.email, gateway, lambda ctl: ctl.dispatch(intent))


@router.post("/choose")
def choose_option(
    req: ChooseOptionRequest,
    user: User = Depends(get_current_user),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> Dict[str, Any]:
    with http_errors():
        gateway = gateway_factory(req.openai_key)
    intent = ChooseStepOption(step=req.step, label=req.label)
    return _advance(user.email, gateway, lambda ctl: ctl.dispatch(intent))


@router.post("/retry")
def retry_step(
    req: OpenAIKeyRequest,
    user: User = Depends(get_current_user),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> Dict[str, Any]:
    with http_errors():
        gateway = gateway_factory(req.openai_key)
    return _advance(user.email, gateway, lambda ctl: ctl.retry())


@router.post("/suggestions")
def generate_suggestions(
    req: OpenAIKeyRequest,
    user: User = Depends(get_current_user),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> Dict[str, Any]:
    with http_errors():
        assembler = SuggestionAssembler(gateway_factory(req.openai_key))
    with http_errors(), pipeline_session(user.email) as ctl:
        context = assembler.prepare(ctl.state)
        variant = ctl.variant

    with http_errors():
        raw = assembler.request(context, variant)

    with http_errors(), pipeline_session(user.email) as ctl:
        applied = assembler.apply(ctl.state, context, raw)
        if applied is None:
            logger.info("Suggestions for %s were superseded by a newer story path", user.email)
        else:
            ctl.persist()
        return _view(ctl, stale=applied is None)
