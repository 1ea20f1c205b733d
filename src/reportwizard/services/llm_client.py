from __future__ import annotations

import json
import logging
import os
import re
import time
from typing import Any, Dict, List, Optional

from langchain_openai import ChatOpenAI

from ..errors import InputError, ShapeValidationError, UpstreamError
from ..observability.metrics import LLM_CALLS
from .model_router import ModelRouter

logger = logging.getLogger(__name__)
LOG = logging.getLogger("reportwizard.llm")

DEFAULT_TEMPERATURE = float(os.getenv("RW_LLM_TEMPERATURE", "0.2"))
_REQUEST_TIMEOUT = float(os.getenv("RW_LLM_TIMEOUT", "60"))

_BREAKER_STATE = {"fails": 0, "opened_at": 0.0}
_BREAKER_THRESHOLD = int(os.getenv("RW_LLM_BREAKER_THRESHOLD", "3"))
_BREAKER_COOLDOWN = float(os.getenv("RW_LLM_BREAKER_COOLDOWN", "60.0"))


def _breaker_open() -> bool:
    opened = _BREAKER_STATE["opened_at"]
    if opened == 0.0:
        return False
    if time.time() - opened < _BREAKER_COOLDOWN:
        return True
    _BREAKER_STATE["fails"] = 0
    _BREAKER_STATE["opened_at"] = 0.0
    return False


def _record_fail() -> None:
    _BREAKER_STATE["fails"] += 1
    if _BREAKER_STATE["fails"] >= _BREAKER_THRESHOLD and _BREAKER_STATE["opened_at"] == 0.0:
        _BREAKER_STATE["opened_at"] = time.time()
        LOG.warning("llm_breaker_opened", extra={"fails": _BREAKER_STATE["fails"], "cooldown_s": _BREAKER_COOLDOWN})


def _record_success() -> None:
    if _BREAKER_STATE["fails"] or _BREAKER_STATE["opened_at"]:
        LOG.info("llm_breaker_closed")
    _BREAKER_STATE["fails"] = 0
    _BREAKER_STATE["opened_at"] = 0.0


def _is_placeholder_key(k: Optional[str]) -> bool:
    if not k:
        return True
    val = k.strip()
    return not val or val in {"changeme", "your_api_key_here", "placeholder", "sk-..."}


def get_chat_model(purpose: str, api_key: Optional[str] = None, router: Optional[ModelRouter] = None) -> Any:
    """Return a JSON-mode chat model for ``purpose``.

    ``api_key`` is a caller-supplied OpenAI key that overrides server config.
    """
    override = None if _is_placeholder_key(api_key) else api_key
    router = router or ModelRouter()
    try:
        selection = router.select_provider(purpose, api_key_override=override)
    except RuntimeError as exc:
        raise InputError("OpenAI API Key is required") from exc

    key = override if (override and selection.name == "openai") else None
    if key is None and selection.api_key_env:
        key = os.getenv(selection.api_key_env)
    if selection.requires_api_key and _is_placeholder_key(key):
        raise InputError("OpenAI API Key is required")

    logger.info("Using LLM provider name=%s model=%s base_url=%s", selection.name, selection.model, selection.base_url)
    llm = ChatOpenAI(
        api_key=key or "not-needed",
        base_url=selection.base_url,
        model=selection.model,
        temperature=DEFAULT_TEMPERATURE,
        timeout=_REQUEST_TIMEOUT,
    )
    return llm.bind(response_format={"type": "json_object"})


def extract_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        m = re.search(r"[\[{][\s\S]*[\]}]", text or "")
        if not m:
            raise ShapeValidationError("LLM response was not valid JSON")
        try:
            return json.loads(m.group(0))
        except json.JSONDecodeError as exc:
            raise ShapeValidationError("LLM response was not valid JSON") from exc


def invoke_json(
    prompt: str,
    *,
    purpose: str,
    system: Optional[str] = None,
    api_key: Optional[str] = None,
    llm: Any = None,
) -> Any:
    """Send one chat request and return the parsed JSON body.

    Raises UpstreamError for transport failures and ShapeValidationError for
    unparseable content. Nothing is retried here.
    """
    if _breaker_open():
        LLM_CALLS.labels(purpose=purpose, outcome="breaker_open").inc()
        raise UpstreamError("LLM temporarily unavailable; please retry shortly")

    model = llm if llm is not None else get_chat_model(purpose, api_key=api_key)
    msgs: List[Dict[str, str]] = []
    if system:
        msgs.append({"role": "system", "content": system})
    msgs.append({"role": "user", "content": prompt})

    started = time.perf_counter()
    try:
        res = model.invoke(msgs)
    except Exception as exc:
        _record_fail()
        LLM_CALLS.labels(purpose=purpose, outcome="error").inc()
        LOG.warning("llm_invoke_failed purpose=%s err=%s", purpose, exc)
        raise UpstreamError(str(exc)) from exc
    _record_success()

    text = res.content if hasattr(res, "content") else str(res)
    LOG.debug("llm_invoke_ok purpose=%s elapsed=%.2fs chars=%d", purpose, time.perf_counter() - started, len(text or ""))
    try:
        data = extract_json(text)
    except ShapeValidationError:
        LLM_CALLS.labels(purpose=purpose, outcome="malformed").inc()
        raise
    LLM_CALLS.labels(purpose=purpose, outcome="ok").inc()
    return data
