"""
Model-aware chat-completion client for OpenRouter-compatible endpoints.
=======================================================================

Decompilation prompts are plain text in, C source out, so the only
provider differences that matter here are:

- **Reasoning** models (DeepSeek R1, OpenAI o-series) wrap their chain of
  thought in ``<think>`` blocks that must be stripped before the code is
  extracted.
- Some providers honour a ``system`` message, others do better with a
  single user turn carrying the instructions.
- Anthropic models on OpenRouter accept an extra beta header.

Usage::

    from decomp_pipeline.llm.model_router import call_llm

    reply = await call_llm(
        client, api_key, "openai/gpt-4o-mini",
        prompt_text="...", system_text="You are a decompiler.",
    )
    reply.text  # stripped completion
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

log = logging.getLogger(__name__)

OPENROUTER_BASE = "https://openrouter.ai/api/v1"


# ─── Provider detection ──────────────────────────────────────────────────────

class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    DEEPSEEK = "deepseek"
    GOOGLE = "google"
    META = "meta-llama"
    QWEN = "qwen"
    MISTRAL = "mistralai"
    OTHER = "other"


def detect_provider(model: str) -> Provider:
    """Provider prefix of a slug like ``'openai/gpt-4o-mini'``."""
    prefix = model.split("/")[0].lower() if "/" in model else ""
    for p in Provider:
        if p.value == prefix:
            return p
    return Provider.OTHER


# ─── Capability profiles ─────────────────────────────────────────────────────

@dataclass
class ProviderProfile:
    is_reasoning_model: bool = False
    use_system_message: bool = True
    notes: str = ""


# First match wins.
_MODEL_PROFILES: List[tuple[str, ProviderProfile]] = [
    (r"openai/o[134]", ProviderProfile(
        is_reasoning_model=True,
        use_system_message=False,
        notes="OpenAI reasoning model (o-series)",
    )),
    (r"openai/", ProviderProfile(notes="OpenAI chat model")),
    (r"anthropic/", ProviderProfile(notes="Anthropic model")),
    (r"deepseek/deepseek-r1", ProviderProfile(
        is_reasoning_model=True,
        use_system_message=False,
        notes="DeepSeek R1 — emits <think> blocks",
    )),
    (r"deepseek/", ProviderProfile(notes="DeepSeek chat/coder model")),
    (r"google/gemini", ProviderProfile(notes="Gemini")),
    (r"meta-llama/|qwen/|mistralai/", ProviderProfile(
        use_system_message=False,
        notes="Open-weight model — instructions folded into the user turn",
    )),
]


def get_profile(model: str) -> ProviderProfile:
    for pattern, profile in _MODEL_PROFILES:
        if re.search(pattern, model, re.IGNORECASE):
            return profile
    return ProviderProfile(
        use_system_message=False,
        notes="Unknown model — conservative fallback",
    )


_THINK_PATTERN = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)


def strip_thinking_tags(text: str) -> str:
    return _THINK_PATTERN.sub("", text).strip()


# ─── Core caller ─────────────────────────────────────────────────────────────

@dataclass
class LLMReply:
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: int = 0
    provider: str = Provider.OTHER.value


def build_messages(
    prompt_text: str,
    system_text: Optional[str],
    profile: ProviderProfile,
) -> List[Dict[str, str]]:
    """Chat messages for *profile*: separate system turn or folded in."""
    if not system_text:
        return [{"role": "user", "content": prompt_text}]
    if profile.use_system_message:
        return [
            {"role": "system", "content": system_text},
            {"role": "user", "content": prompt_text},
        ]
    return [{"role": "user", "content": f"{system_text}\n\n{prompt_text}"}]


async def call_llm(
    client: httpx.AsyncClient,
    api_key: str,
    model: str,
    prompt_text: str,
    *,
    system_text: Optional[str] = None,
    temperature: float = 0.0,
    max_tokens: Optional[int] = None,
    base_url: str = OPENROUTER_BASE,
    timeout: float = 120.0,
) -> LLMReply:
    """Send one chat completion and return the cleaned reply.

    Raises
    ------
    httpx.HTTPError
        Transport failures and non-2xx responses.
    ValueError
        The 2xx body is not a chat completion object.
    """
    profile = get_profile(model)
    provider = detect_provider(model)
    log.debug("Model %s → provider=%s (%s)", model, provider.value, profile.notes)

    headers: Dict[str, str] = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    body: Dict[str, Any] = {
        "model": model,
        "messages": build_messages(prompt_text, system_text, profile),
        "temperature": temperature,
    }
    if max_tokens is not None:
        body["max_tokens"] = max_tokens

    t0 = time.perf_counter()
    resp = await client.post(
        f"{base_url}/chat/completions",
        headers=headers,
        json=body,
        timeout=timeout,
    )
    latency_ms = int((time.perf_counter() - t0) * 1000)

    if resp.status_code >= 400:
        log.error("%d from %s for model=%s: %s",
                  resp.status_code, base_url, model, resp.text[:500])
    resp.raise_for_status()

    data = resp.json()
    if not isinstance(data, dict):
        raise ValueError(f"unexpected completion body from {base_url}: {type(data).__name__}")
    choice = (data.get("choices") or [{}])[0] or {}
    usage = data.get("usage") or {}
    text = ((choice.get("message") or {}).get("content") or "").strip()

    if profile.is_reasoning_model:
        text = strip_thinking_tags(text)

    return LLMReply(
        text=text,
        prompt_tokens=usage.get("prompt_tokens", 0),
        completion_tokens=usage.get("completion_tokens", 0),
        latency_ms=latency_ms,
        provider=provider.value,
    )
