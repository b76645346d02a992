"""
Stage backends.

  generator — TemplateCodeGenerator (offline), LLMCodeGenerator (OpenRouter)
  compiler  — StructuralCompiler (offline), GccCompiler (subprocess)
  verifier  — HeuristicVerifier (offline), ElfTextVerifier (pyelftools),
              ObjdiffVerifier (subprocess)
"""
from decomp_pipeline.stages.base import BinaryVerifier, CodeGenerator, Compiler
from decomp_pipeline.stages.compiler import GccCompiler, StructuralCompiler
from decomp_pipeline.stages.generator import LLMCodeGenerator, TemplateCodeGenerator
from decomp_pipeline.stages.verifier import (
    ElfTextVerifier,
    HeuristicVerifier,
    ObjdiffVerifier,
)

__all__ = [
    "BinaryVerifier",
    "CodeGenerator",
    "Compiler",
    "ElfTextVerifier",
    "GccCompiler",
    "HeuristicVerifier",
    "LLMCodeGenerator",
    "ObjdiffVerifier",
    "StructuralCompiler",
    "TemplateCodeGenerator",
]
