"""
Profile descriptor for the decompilation pipeline.

Frozen dataclass with the scoring threshold and history bound.
Use ``PipelineProfile.v0()`` unless a deployment overrides them.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PipelineProfile:
    """Pipeline v0 profile."""

    profile_id: str
    match_threshold: int = 90          # exclusive: score must exceed it
    history_limit: int = 100

    @classmethod
    def v0(cls) -> PipelineProfile:
        return cls(profile_id="asm-to-c-v0")
