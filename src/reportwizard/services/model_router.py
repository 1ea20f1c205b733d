"""Routing helpers for selecting the LLM provider behind each wizard call.

The router does not touch SDK clients; it returns a provider configuration
that :mod:`llm_client` turns into a chat model. All supported providers speak
the OpenAI chat-completions dialect, so only the key, base URL and model vary.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Set


@dataclass(frozen=True)
class ProviderSelection:
    """Returned details about the provider that should handle a call."""

    name: str
    model: str
    api_key_env: Optional[str]
    base_url: str
    requires_api_key: bool = True


class ModelRouter:
    """Policy-based provider router."""

    PROVIDER_CONFIG: Dict[str, Dict[str, Optional[str] | bool]] = {
        "openai": {
            "api_key_env": "OPENAI_API_KEY",
            "base_url_env": "OPENAI_BASE_URL",
            "model_env": "OPENAI_MODEL",
            "default_model": "gpt-4.1-mini-2025-04-14",
            "default_base_url": "https://api.openai.com/v1",
        },
        "xai": {
            "api_key_env": "XAI_API_KEY",
            "base_url_env": "XAI_BASE_URL",
            "model_env": "XAI_MODEL",
            "default_model": "grok-2-latest",
            "default_base_url": "https://api.x.ai/v1",
        },
        "local": {
            "api_key_env": "LOCAL_API_KEY",
            "base_url_env": "LOCAL_BASE_URL",
            "model_env": "LOCAL_MODEL",
            "default_model": "llama3.1:8b",
            "default_base_url": "http://127.0.0.1:11434/v1",
            "requires_api_key": False,
        },
    }

    ROUTING_POLICY: Dict[str, tuple[str, ...]] = {
        # Story steps are short and frequent.
        "story_step": ("openai", "xai", "local"),
        "profile_inference": ("openai", "xai", "local"),
        # Report generation is the long, structured call.
        "report_generation": ("openai", "xai", "local"),
    }

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        allowed_providers: Optional[Iterable[str]] = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        self._allowed: Optional[Set[str]] = set(allowed_providers) if allowed_providers else None
        preferred = (self._env.get("RW_MODEL_PROVIDER") or "").strip().lower()
        self._preferred_provider = preferred if preferred in self.PROVIDER_CONFIG else None

    def provider_available(self, provider: str, api_key_override: Optional[str] = None) -> bool:
        cfg = self.PROVIDER_CONFIG.get(provider)
        if not cfg:
            return False
        if self._allowed is not None and provider not in self._allowed:
            return False
        if provider == "local":
            enabled = (self._env.get("RW_ENABLE_LOCAL_PROVIDER") or "").strip() == "1"
            return enabled or self._preferred_provider == "local"
        if api_key_override and provider == "openai":
            return True
        api_key_env = cfg.get("api_key_env")
        return bool(api_key_env and self._env.get(str(api_key_env)))

    def resolve(self, provider: str) -> ProviderSelection:
        cfg = self.PROVIDER_CONFIG[provider]
        model_env = str(cfg.get("model_env") or "")
        base_url_env = str(cfg.get("base_url_env") or "")
        model = self._env.get("RW_LLM_MODEL") or self._env.get(model_env) or str(cfg.get("default_model") or "")
        base_url = self._env.get(base_url_env) or str(cfg.get("default_base_url") or "")
        return ProviderSelection(
            name=provider,
            model=model,
            api_key_env=cfg.get("api_key_env"),  # type: ignore[arg-type]
            base_url=base_url,
            requires_api_key=bool(cfg.get("requires_api_key", True)),
        )

    def select_provider(self, purpose: str, api_key_override: Optional[str] = None) -> ProviderSelection:
        """Return the provider selected for ``purpose``.

        A caller-supplied OpenAI key makes the openai provider available even
        when the server has no key configured.

        Raises
        ------
        RuntimeError
            If no provider configured for the purpose is available.
        """

        priority = list(self.ROUTING_POLICY.get(purpose, self.ROUTING_POLICY["story_step"]))
        if self._preferred_provider:
            priority = [self._preferred_provider] + [p for p in priority if p != self._preferred_provider]
        for provider in priority:
            if self.provider_available(provider, api_key_override):
                return self.resolve(provider)
        raise RuntimeError("No active model provider available for this task.")

    def maybe_select_provider(self, purpose: str) -> Optional[ProviderSelection]:
        try:
            return self.select_provider(purpose)
        except RuntimeError:
            return None
