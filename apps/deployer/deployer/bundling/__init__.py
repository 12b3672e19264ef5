"""Bundling module for TypeScript Lambda sources.

Public API:
    bundle(working_directory, settings=None) -> Path
    EsbuildBundler(...).build(source_dir) -> Path
"""

from deployer.bundling.esbuild import Bundler, EsbuildBundler, bundle
from deployer.bundling.types import BuildArtifact, BuildError, BuildRequest, StepResult

__all__ = [
    "bundle",
    "Bundler",
    "EsbuildBundler",
    "BuildArtifact",
    "BuildError",
    "BuildRequest",
    "StepResult",
]
