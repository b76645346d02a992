"""
Code generation backends: fragment → candidate C.

TemplateCodeGenerator
    Offline stand-in.  Emits a compilable C skeleton named after the
    fragment identifier.  Useful for wiring tests and for running the
    pipeline without model access.

LLMCodeGenerator
    OpenRouter-compatible chat completion.  Renders a prompt template,
    calls the model, extracts the fenced C block and the self-reported
    confidence.

Both refuse blank fragments and never return empty source.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

import httpx

from decomp_pipeline.core.fragment import is_blank
from decomp_pipeline.core.structure import is_balanced
from decomp_pipeline.errors import GenerationError
from decomp_pipeline.io.schema import Fragment, GeneratedSource
from decomp_pipeline.llm.model_router import OPENROUTER_BASE, call_llm
from decomp_pipeline.llm.prompt import (
    DECOMPILE_TEMPLATE,
    REFINE_TEMPLATE,
    load_template,
    render_prompt,
)
from decomp_pipeline.llm.response_parser import parse_code_response

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You translate assembly functions into equivalent, compilable C. "
    "Answer with code only, plus the requested confidence line."
)


def _require_text(fragment: Fragment) -> None:
    if is_blank(fragment.text):
        raise GenerationError("fragment is empty")


# =============================================================================
# Offline template backend
# =============================================================================

class TemplateCodeGenerator:
    """Deterministic skeleton generator."""

    def __init__(self, confidence: float = 0.8, delay: float = 0.0):
        self.confidence = confidence
        self.delay = delay

    async def generate(self, fragment: Fragment) -> GeneratedSource:
        _require_text(fragment)
        if self.delay:
            await asyncio.sleep(self.delay)

        source = render_skeleton(fragment.identifier)
        logger.info("Generated %d chars of C for %s (template)",
                    len(source), fragment.identifier)
        return GeneratedSource(source=source, confidence=self.confidence)

    async def refine(
        self,
        fragment: Fragment,
        source: str,
        discrepancies: Sequence[str],
    ) -> GeneratedSource:
        """Annotate the candidate with the discrepancies it must address."""
        _require_text(fragment)
        if is_blank(source):
            raise GenerationError("nothing to refine: candidate source is empty")

        notes = []
        if any("stack" in d.lower() for d in discrepancies):
            notes.append("    /* revisit stack frame layout */")
        if any("register" in d.lower() for d in discrepancies):
            notes.append("    /* revisit register usage */")
        refined = source
        if notes and "return 0;" in source:
            refined = source.replace("    return 0;", "\n".join(notes) + "\n    return 0;", 1)
        return GeneratedSource(source=refined, confidence=self.confidence)


def render_skeleton(function_name: str) -> str:
    return (
        f"/* {function_name}: generated from assembly */\n"
        "#include <stdio.h>\n"
        "#include <stdlib.h>\n"
        "\n"
        f"int {function_name}(void) {{\n"
        "    return 0;\n"
        "}\n"
    )


# =============================================================================
# OpenRouter backend
# =============================================================================

class LLMCodeGenerator:
    """
    Decompile through an OpenRouter-compatible chat completion endpoint.

    Parameters
    ----------
    api_key : str
        Bearer token for the endpoint.
    model : str
        Model slug, e.g. ``"openai/gpt-4o-mini"``.
    base_url : str
        Endpoint root; defaults to OpenRouter.
    timeout : float
        Per-request timeout in seconds.
    client : httpx.AsyncClient, optional
        Shared client.  When omitted a client is opened per call.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str = OPENROUTER_BASE,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
        template_id: str = DECOMPILE_TEMPLATE,
        refine_template_id: str = REFINE_TEMPLATE,
    ):
        if not api_key:
            raise ValueError("LLMCodeGenerator requires an API key")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = client
        self._template = load_template(template_id)
        self._refine_template = load_template(refine_template_id)

    async def generate(self, fragment: Fragment) -> GeneratedSource:
        _require_text(fragment)
        prompt = render_prompt(self._template, fragment.text, fragment.identifier)
        return await self._complete(fragment, prompt)

    async def refine(
        self,
        fragment: Fragment,
        source: str,
        discrepancies: Sequence[str],
    ) -> GeneratedSource:
        _require_text(fragment)
        prompt = render_prompt(
            self._refine_template,
            fragment.text,
            fragment.identifier,
            candidate=source,
            discrepancies=discrepancies,
        )
        return await self._complete(fragment, prompt)

    async def _complete(self, fragment: Fragment, prompt: str) -> GeneratedSource:
        try:
            if self._client is not None:
                reply = await self._call(self._client, prompt)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    reply = await self._call(client, prompt)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Model call failed for %s: %s", fragment.identifier, exc)
            raise GenerationError(f"model backend unavailable: {exc}") from exc

        parsed = parse_code_response(reply.text)
        if not parsed.code:
            raise GenerationError(
                f"model {self.model} returned no C code for {fragment.identifier}"
            )
        if not is_balanced(parsed.code):
            raise GenerationError(
                f"model {self.model} returned malformed C for {fragment.identifier}"
            )

        logger.info("Generated %d chars of C for %s (model=%s, %d ms, conf=%.2f)",
                    len(parsed.code), fragment.identifier, self.model,
                    reply.latency_ms, parsed.confidence)
        return GeneratedSource(source=parsed.code, confidence=parsed.confidence)

    async def _call(self, client: httpx.AsyncClient, prompt: str):
        return await call_llm(
            client,
            self.api_key,
            self.model,
            prompt,
            system_text=SYSTEM_PROMPT,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            base_url=self.base_url,
            timeout=self.timeout,
        )
