"""Tests for code generation backends."""
import asyncio
import json

import httpx
import pytest

from decomp_pipeline.core.structure import is_balanced
from decomp_pipeline.errors import GenerationError
from decomp_pipeline.io.schema import Fragment
from decomp_pipeline.stages.base import CodeGenerator
from decomp_pipeline.stages.generator import (
    SYSTEM_PROMPT,
    LLMCodeGenerator,
    TemplateCodeGenerator,
)

from .conftest import MEMCPY_ASM

GOOD_REPLY = (
    "Here is the function:\n"
    "```c\n"
    "#include <stddef.h>\n"
    "void *memcpy(void *dst, const void *src, size_t n) {\n"
    "    char *d = dst;\n"
    "    const char *s = src;\n"
    "    while (n--) *d++ = *s++;\n"
    "    return dst;\n"
    "}\n"
    "```\n"
    "confidence: 0.9\n"
)


def _completion(content: str) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 120, "completion_tokens": 60},
    }


def _run_llm(handler, method: str = "generate", *args, model: str = "openai/gpt-4o-mini"):
    """Drive LLMCodeGenerator against a mock transport."""
    async def scenario():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            gen = LLMCodeGenerator(api_key="sk-test", model=model, client=client)
            return await getattr(gen, method)(*args)

    return asyncio.run(scenario())


class TestTemplateGenerator:

    def test_satisfies_protocol(self):
        assert isinstance(TemplateCodeGenerator(), CodeGenerator)

    def test_named_skeleton(self, memcpy_fragment):
        out = asyncio.run(TemplateCodeGenerator().generate(memcpy_fragment))
        assert "int memcpy(void) {" in out.source
        assert "#include <stdio.h>" in out.source
        assert out.confidence == 0.8

    @pytest.mark.parametrize("name", ["memcpy", "_start", "fn_0040"])
    def test_skeleton_passes_structural_gate(self, name):
        fragment = Fragment.from_text(MEMCPY_ASM, name)
        out = asyncio.run(TemplateCodeGenerator().generate(fragment))
        assert is_balanced(out.source)
        assert f"int {name}(void) {{" in out.source

    @pytest.mark.parametrize("text", ["", "   ", "\n\t\n"])
    def test_blank_fragment_rejected(self, text):
        fragment = Fragment(text=text, identifier="x")
        with pytest.raises(GenerationError):
            asyncio.run(TemplateCodeGenerator().generate(fragment))

    def test_refine_annotates(self, memcpy_fragment):
        gen = TemplateCodeGenerator()
        first = asyncio.run(gen.generate(memcpy_fragment))
        refined = asyncio.run(gen.refine(
            memcpy_fragment, first.source, ["stack frame", "register allocation"],
        ))
        assert "revisit stack frame layout" in refined.source
        assert "revisit register usage" in refined.source

    def test_refine_requires_candidate(self, memcpy_fragment):
        with pytest.raises(GenerationError):
            asyncio.run(TemplateCodeGenerator().refine(memcpy_fragment, "  ", []))


class TestLLMGenerator:

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            LLMCodeGenerator(api_key="", model="openai/gpt-4o-mini")

    def test_extracts_code_and_confidence(self, memcpy_fragment):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=_completion(GOOD_REPLY))

        out = _run_llm(handler, "generate", memcpy_fragment)
        assert out.source.startswith("#include <stddef.h>")
        assert "```" not in out.source
        assert out.confidence == 0.9

        sent = json.loads(requests[0].content)
        assert requests[0].url.path.endswith("/chat/completions")
        assert requests[0].headers["authorization"] == "Bearer sk-test"
        assert sent["model"] == "openai/gpt-4o-mini"
        assert sent["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert MEMCPY_ASM.strip() in sent["messages"][1]["content"]
        assert "memcpy" in sent["messages"][1]["content"]

    def test_reasoning_model_think_stripped(self, memcpy_fragment):
        def handler(request):
            return httpx.Response(200, json=_completion(
                "<think>```c\nint wrong(void) { return 1; }\n```</think>\n" + GOOD_REPLY
            ))

        out = _run_llm(handler, "generate", memcpy_fragment, model="deepseek/deepseek-r1")
        assert "wrong" not in out.source
        assert "memcpy" in out.source

    def test_http_error_is_generation_error(self, memcpy_fragment):
        def handler(request):
            return httpx.Response(503, json={"error": "overloaded"})

        with pytest.raises(GenerationError):
            _run_llm(handler, "generate", memcpy_fragment)

    def test_transport_error_is_generation_error(self, memcpy_fragment):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GenerationError):
            _run_llm(handler, "generate", memcpy_fragment)

    def test_anthropic_model_sends_plain_headers(self, memcpy_fragment):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=_completion(GOOD_REPLY))

        _run_llm(handler, "generate", memcpy_fragment, model="anthropic/claude-3.5-sonnet")
        assert "x-anthropic-beta" not in requests[0].headers

    def test_non_json_reply_is_generation_error(self, memcpy_fragment):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(GenerationError):
            _run_llm(handler, "generate", memcpy_fragment)

    def test_null_message_is_generation_error(self, memcpy_fragment):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": None}]})

        with pytest.raises(GenerationError):
            _run_llm(handler, "generate", memcpy_fragment)

    def test_non_object_body_is_generation_error(self, memcpy_fragment):
        def handler(request):
            return httpx.Response(200, json=["not", "a", "completion"])

        with pytest.raises(GenerationError):
            _run_llm(handler, "generate", memcpy_fragment)

    def test_reply_without_code(self, memcpy_fragment):
        def handler(request):
            return httpx.Response(200, json=_completion("I cannot help with that."))

        with pytest.raises(GenerationError):
            _run_llm(handler, "generate", memcpy_fragment)

    def test_unbalanced_code_rejected(self, memcpy_fragment):
        def handler(request):
            return httpx.Response(200, json=_completion("```c\nint f(void) {\n```"))

        with pytest.raises(GenerationError):
            _run_llm(handler, "generate", memcpy_fragment)

    def test_blank_fragment_never_calls_model(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=_completion(GOOD_REPLY))

        with pytest.raises(GenerationError):
            _run_llm(handler, "generate", Fragment(text=" ", identifier="x"))
        assert calls == []

    def test_refine_sends_discrepancies(self, memcpy_fragment):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_completion(GOOD_REPLY))

        _run_llm(handler, "refine", memcpy_fragment, "int memcpy(void) { return 0; }",
                 ["stack frame"])
        prompt = bodies[0]["messages"][-1]["content"]
        assert "- stack frame" in prompt
        assert "int memcpy(void) { return 0; }" in prompt
