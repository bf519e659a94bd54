"""LLM client shared with skills through the context's `ai` slot."""

import asyncio
import os
from typing import Any, Dict, List, Optional

from litellm import (
    APIConnectionError,
    InternalServerError,
    RateLimitError,
    ServiceUnavailableError,
    acompletion,
)
from loguru import logger

QWEN_COMPAT_BASE_URL = "https://dashscope-intl.aliyuncs.com/compatible-mode/v1"

KEY_ENV_BY_PREFIX = {
    "gemini/": "GEMINI_API_KEY",
    "google/": "GEMINI_API_KEY",
    "openai/": "OPENAI_API_KEY",
    "anthropic/": "ANTHROPIC_API_KEY",
    "xai/": "XAI_API_KEY",
    "deepseek/": "DEEPSEEK_API_KEY",
    "qwen/": "DASHSCOPE_API_KEY",
    "nvidia/": "NVIDIA_API_KEY",
}


def get_api_key_for_model(model: str) -> Optional[str]:
    """
    Resolve the correct API key from environment variables based on the model name.
    """
    if not model:
        return None

    for prefix, env_name in KEY_ENV_BY_PREFIX.items():
        if model.startswith(prefix):
            return os.getenv(env_name)

    # Fallback to any available key in a specific order
    for env_name in dict.fromkeys(KEY_ENV_BY_PREFIX.values()):
        value = os.getenv(env_name)
        if value:
            return value
    return None


def resolve_provider_config(
    model: str, base_url: Optional[str] = None, api_key: Optional[str] = None
) -> dict:
    """
    Resolve model, base_url, api_key, and custom_llm_provider for LiteLLM.
    """
    normalized = (model or "").strip()
    if normalized and "/" not in normalized and normalized.startswith("qwen-"):
        normalized = f"qwen/{normalized}"

    target_model = normalized
    custom_llm_provider = None

    if normalized.startswith("nvidia/"):
        base_url = base_url or "https://integrate.api.nvidia.com/v1"
        target_model = normalized.removeprefix("nvidia/")
        custom_llm_provider = "openai"
    elif normalized.startswith("xai/"):
        base_url = base_url or "https://api.x.ai/v1"
        target_model = normalized.removeprefix("xai/")
        custom_llm_provider = "openai"
    elif normalized.startswith("qwen/"):
        base_url = base_url or os.getenv("DASHSCOPE_BASE_URL") or QWEN_COMPAT_BASE_URL
        target_model = normalized.removeprefix("qwen/")
        custom_llm_provider = "openai"
    elif normalized.startswith("gemini/"):
        target_model = normalized.removeprefix("gemini/")
        custom_llm_provider = "gemini"

    return {
        "model": target_model,
        "base_url": base_url,
        "api_key": api_key or get_api_key_for_model(normalized),
        "custom_llm_provider": custom_llm_provider,
    }


class AIClient:
    """Thin async wrapper over litellm.acompletion with retry on transient errors."""

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_retries: int = 3,
    ):
        self.model = model
        self.max_retries = max_retries
        self._provider = resolve_provider_config(model, base_url=base_url, api_key=api_key)

    @property
    def configured(self) -> bool:
        return bool(self._provider["api_key"])

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send a chat completion and return the reply text."""
        kwargs: Dict[str, Any] = dict(messages=messages, stream=False, **self._provider)
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        for attempt in range(self.max_retries):
            try:
                response = await acompletion(**kwargs)
                return (response.choices[0].message.content or "").strip()
            except (
                RateLimitError,
                InternalServerError,
                APIConnectionError,
                ServiceUnavailableError,
            ) as e:
                if attempt == self.max_retries - 1:
                    raise
                wait_time = 2**attempt
                logger.warning(
                    f"[LLM] {type(e).__name__} attempt {attempt + 1}/{self.max_retries}. "
                    f"Waiting {wait_time}s..."
                )
                await asyncio.sleep(wait_time)
        return ""

    async def ask(self, question: str, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": question})
        return await self.complete(messages)
