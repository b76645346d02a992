"""
decomp_pipeline — generate → compile → verify decompilation pipeline.

Turns assembly fragments into candidate C, compiles the candidate, checks
it against the original fragment and keeps a bounded history of runs.
Stage backends (model, compiler, comparison tool) are pluggable.
"""

__version__ = "0.1.0"
PIPELINE_VERSION = "v0"
PACKAGE_NAME = "decomp_pipeline"
SCHEMA_VERSION = "0.1"
