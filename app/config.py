"""
Application configuration
"""
from typing import List

from pydantic_settings import BaseSettings

from decomp_pipeline.policy.profile import PipelineProfile

GENERATOR_BACKENDS = ("local", "openrouter")
COMPILER_BACKENDS = ("structural", "gcc")
VERIFIER_BACKENDS = ("heuristic", "elf", "objdiff")


class Settings(BaseSettings):
    """Application settings"""

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    API_TITLE: str = "Decomp Pipeline API"
    API_VERSION: str = "0.1.0"

    # Code generation
    GENERATOR_BACKEND: str = "local"
    OPENROUTER_API_KEY: str | None = None
    LLM_MODEL: str = "openai/gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.0

    # Compilation
    COMPILER_BACKEND: str = "structural"
    COMPILER_PATH: str = "gcc"
    COMPILER_FLAGS: str = "-std=c11 -O2 -fno-asynchronous-unwind-tables"
    BUILD_WORKSPACE: str | None = None

    # Verification
    VERIFIER_BACKEND: str = "heuristic"
    OBJDIFF_PATH: str = "objdiff"

    # Pipeline
    STAGE_TIMEOUT: int = 30  # seconds
    MATCH_THRESHOLD: int = 90
    HISTORY_LIMIT: int = 100

    DEBUG: bool = False

    @property
    def compiler_flags(self) -> List[str]:
        return self.COMPILER_FLAGS.split()

    @property
    def profile(self) -> PipelineProfile:
        return PipelineProfile(
            profile_id="asm-to-c-v0",
            match_threshold=self.MATCH_THRESHOLD,
            history_limit=self.HISTORY_LIMIT,
        )

    class Config:
        env_file = ".env"
        case_sensitive = True


def validate_settings(settings: Settings) -> List[str]:
    """Human-readable configuration problems; empty when usable."""
    problems: List[str] = []

    if settings.GENERATOR_BACKEND not in GENERATOR_BACKENDS:
        problems.append(
            f"GENERATOR_BACKEND must be one of {', '.join(GENERATOR_BACKENDS)}"
        )
    elif settings.GENERATOR_BACKEND == "openrouter" and not settings.OPENROUTER_API_KEY:
        problems.append("OPENROUTER_API_KEY is not set")

    if settings.COMPILER_BACKEND not in COMPILER_BACKENDS:
        problems.append(
            f"COMPILER_BACKEND must be one of {', '.join(COMPILER_BACKENDS)}"
        )
    if settings.VERIFIER_BACKEND not in VERIFIER_BACKENDS:
        problems.append(
            f"VERIFIER_BACKEND must be one of {', '.join(VERIFIER_BACKENDS)}"
        )
    if settings.VERIFIER_BACKEND in ("elf", "objdiff") and settings.COMPILER_BACKEND != "gcc":
        problems.append(
            f"VERIFIER_BACKEND={settings.VERIFIER_BACKEND} needs COMPILER_BACKEND=gcc"
        )

    if not 1 <= settings.STAGE_TIMEOUT <= 300:
        problems.append("STAGE_TIMEOUT must be between 1 and 300 seconds")
    if not 0 <= settings.MATCH_THRESHOLD < 100:
        problems.append("MATCH_THRESHOLD must be between 0 and 99")
    if settings.HISTORY_LIMIT < 1:
        problems.append("HISTORY_LIMIT must be at least 1")

    return problems


settings = Settings()
