from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from ...domain.models import SessionState, StateEnvelope, TokenRequest
from ...infrastructure.user_store import get_user_store
from ...security.auth import User, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user", tags=["user"])


@router.post("/profile")
def save_profile(req: TokenRequest, user: User = Depends(get_current_user)) -> dict:
    """Remember the user's CRM access token."""
    token = (req.token or "").strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token is required")
    store = get_user_store()
    with store.lock(user.email):
        store.set_hubspot_token(user.email, token)
        raw = store.get_state(user.email)
        if raw is not None:
            raw["hsToken"] = token
            store.save_state(user.email, raw)
    return {"status": "ok"}


@router.get("/state")
def get_state(user: User = Depends(get_current_user)) -> Dict[str, Optional[Dict[str, Any]]]:
    return {"state": get_user_store().get_state(user.email)}


@router.post("/state")
def save_state(req: StateEnvelope, user: User = Depends(get_current_user)) -> dict:
    store = get_user_store()
    wire: Optional[Dict[str, Any]] = None
    if req.state is not None:
        try:
            state = SessionState.model_validate(req.state)
        except ValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=exc.errors(include_url=False, include_context=False),
            ) from exc
        if state.drop_unavailable_selection():
            logger.info("Dropped selected properties that were never offered to %s", user.email)
        wire = state.to_wire()
    with store.lock(user.email):
        store.save_state(user.email, wire)
    return {"status": "ok"}


@router.post("/reset")
def reset_state(user: User = Depends(get_current_user)) -> dict:
    store = get_user_store()
    with store.lock(user.email):
        store.save_state(user.email, None)
    logger.info("Cleared session state for %s", user.email)
    return {"status": "ok"}
