from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from fastapi import HTTPException, status
from pydantic import ValidationError

from ..domain.models import SessionState
from ..errors import ReportWizardError
from ..infrastructure.user_store import get_user_store
from ..security.auth import User
from ..services.crm_client import HubSpotClient
from ..services.report_ai import LLMReportGateway, ReportGateway
from ..services.story_pipeline import StoryPipelineController

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[Optional[str]], ReportGateway]
CRMClientFactory = Callable[[Optional[str]], HubSpotClient]


def get_gateway_factory() -> GatewayFactory:
    """FastAPI dependency; tests override it with a fake gateway."""
    return LLMReportGateway


def get_crm_client_factory() -> CRMClientFactory:
    return HubSpotClient


def to_http_exception(exc: ReportWizardError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))


def resolve_hubspot_token(explicit: Optional[str], user: User) -> str:
    token = (explicit or "").strip()
    if not token:
        rec = get_user_store().get(user.email)
        token = rec.hubspot_token if rec else ""
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token is required")
    return token


def load_state(email: str) -> SessionState:
    store = get_user_store()
    raw = store.get_state(email)
    if raw:
        try:
            state = SessionState.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable session state for %s: %s", email, exc)
        else:
            if state.drop_unavailable_selection():
                logger.warning("Dropped unavailable selected properties from %s's session", email)
            return state
    rec = store.get(email)
    return SessionState(hs_token=rec.hubspot_token if rec else "")


@contextmanager
def pipeline_session(email: str, gateway: Optional[ReportGateway] = None) -> Iterator[StoryPipelineController]:
    """Hold the user's lock and yield a controller that persists every mutation."""
    store = get_user_store()
    with store.lock(email):
        state = load_state(email)
        yield StoryPipelineController(
            state,
            gateway,
            on_change=lambda s: store.save_state(email, s.to_wire()),
        )


@contextmanager
def http_errors() -> Iterator[None]:
    """Translate domain errors raised inside the block into HTTP errors."""
    try:
        yield
    except ReportWizardError as exc:
        raise to_http_exception(exc) from exc
