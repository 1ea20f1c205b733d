from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel

from ...infrastructure.user_store import get_user_store
from ...security.auth import (
    SESSION_COOKIE,
    JwtConfig,
    LoginRequest,
    SignupRequest,
    TokenResponse,
    User,
    authenticate,
    cookie_secure,
    create_access_token,
    get_current_user,
    register_user,
    validate_new_password,
)
from ...security.captcha import CAPTCHA_COOKIE, CAPTCHA_EXP_MINUTES, issue_captcha, verify_captcha
from ...security.rate_limit import LOGIN_RULE, SIGNUP_RULE, AttemptRule, RateLimitExceeded, record_attempt

router = APIRouter(prefix="/auth", tags=["auth"])


class MeResponse(BaseModel):
    email: str
    hubspot_token: str = ""
    current_state: Optional[Dict[str, Any]] = None


@router.get("/captcha")
def captcha() -> Response:
    captcha_id, svg = issue_captcha()
    response = Response(content=svg, media_type="image/svg+xml", headers={"Cache-Control": "no-store"})
    response.set_cookie(
        CAPTCHA_COOKIE,
        captcha_id,
        max_age=CAPTCHA_EXP_MINUTES * 60,
        httponly=True,
        samesite="lax",
        secure=cookie_secure(),
    )
    return response


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def signup(req: SignupRequest, request: Request, response: Response) -> TokenResponse:
    _limit(SIGNUP_RULE, _client_host(request))
    if not verify_captcha(request.cookies.get(CAPTCHA_COOKIE), req.captcha):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid captcha")
    response.delete_cookie(CAPTCHA_COOKIE)
    try:
        validate_new_password(req.password, req.confirm_password)
        user = register_user(req.email, req.password)
    except ValueError as exc:
        code = status.HTTP_409_CONFLICT if "exists" in str(exc) else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=str(exc))
    return _issue_session(user, response)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, request: Request, response: Response) -> TokenResponse:
    _limit(LOGIN_RULE, f"{_client_host(request)}:{req.email.lower()}")
    user = authenticate(req.email, req.password)
    return _issue_session(user, response)


@router.post("/logout")
def logout(response: Response) -> dict:
    response.delete_cookie(SESSION_COOKIE)
    return {"status": "logged_out"}


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)) -> MeResponse:
    store = get_user_store()
    rec = store.get(user.email)
    return MeResponse(
        email=user.email,
        hubspot_token=rec.hubspot_token if rec else "",
        current_state=store.get_state(user.email),
    )


def _issue_session(user: User, response: Response) -> TokenResponse:
    cfg = JwtConfig.from_env()
    token = create_access_token(user, cfg)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=cfg.expires_min * 60,
        httponly=True,
        samesite="lax",
        secure=cookie_secure(),
    )
    return TokenResponse(access_token=token, expires_in=cfg.expires_min * 60, user=user)


def _limit(rule: AttemptRule, identifier: str) -> None:
    try:
        record_attempt(rule, identifier)
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(exc.retry_after_seconds)},
        ) from exc


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"
