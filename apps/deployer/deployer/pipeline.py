"""Deployment pipeline.

    source dir -> dist/ -> <hash>.zip -> s3://bucket/<hash>.zip/<version>
               -> Lambda function -> public Function URL

Strictly sequential: the archive is only built once the bundler has
returned, and provisioning only starts once the archive exists. Every
collaborator can be injected, which is how the tests run the pipeline
without esbuild or AWS.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from deployer.bundling.esbuild import Bundler, EsbuildBundler
from deployer.core.config import DeploymentConfig, Settings, get_settings
from deployer.packaging.archive import DirectoryPackager, Packager
from deployer.packaging.types import ArchiveDescriptor
from deployer.probe import ProbeResult, probe_function_url
from deployer.provisioning.clients import create_clients
from deployer.provisioning.stack import LambdaStack
from deployer.provisioning.types import StackOutputs

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FunctionAsset:
    """A bundled, packaged function ready for upload.

    handler is the "<module>.<export>" string the Lambda runtime invokes,
    e.g. "index.handler" for `export const handler` in the bundled index.js.
    """

    handler: str
    archive: ArchiveDescriptor

    def object_key(self, version: str) -> str:
        return self.archive.object_key(version)


@dataclass
class DeployResult:
    asset: FunctionAsset
    outputs: StackOutputs
    probe: Optional[ProbeResult] = None

    def to_dict(self) -> dict:
        return {
            "handler": self.asset.handler,
            "archive": self.asset.archive.to_dict(),
            "outputs": self.outputs.to_dict(),
            "probe": self.probe.to_dict() if self.probe else None,
        }


def build_function_asset(
    source_dir: Path,
    handler: str,
    bundler: Bundler,
    packager: Packager,
) -> FunctionAsset:
    """Bundle `source_dir` and package the output into an archive."""
    if "." not in handler:
        raise ValueError(f"handler must look like '<module>.<export>' (got {handler!r})")

    artifact_dir = bundler.build(source_dir)
    archive = packager.package_directory(artifact_dir)
    logger.info(
        "function asset ready",
        source_dir=str(source_dir),
        archive=archive.file_name,
        handler=handler,
    )
    return FunctionAsset(handler=handler, archive=archive)


def build(
    config: DeploymentConfig,
    settings: Optional[Settings] = None,
    bundler: Optional[Bundler] = None,
    packager: Optional[Packager] = None,
) -> FunctionAsset:
    """Run only the bundle and package steps."""
    settings = settings or get_settings()
    bundler = bundler or EsbuildBundler.from_settings(settings)
    packager = packager or DirectoryPackager(settings.out_dir)
    return build_function_asset(config.source_path, settings.lambda_handler, bundler, packager)


def make_stack(settings: Settings) -> LambdaStack:
    return LambdaStack(settings, create_clients(settings))


def synth(
    config: DeploymentConfig,
    settings: Optional[Settings] = None,
    bundler: Optional[Bundler] = None,
    packager: Optional[Packager] = None,
    stack: Optional[LambdaStack] = None,
) -> dict:
    """Build the asset and render the stack document without touching AWS."""
    settings = settings or get_settings()
    asset = build(config, settings, bundler, packager)
    stack = stack or LambdaStack(settings, clients=None)
    return stack.synth(asset.archive, config)


def deploy(
    config: DeploymentConfig,
    settings: Optional[Settings] = None,
    bundler: Optional[Bundler] = None,
    packager: Optional[Packager] = None,
    stack: Optional[LambdaStack] = None,
    probe: bool = False,
) -> DeployResult:
    """Build, upload and provision; optionally probe the resulting URL."""
    settings = settings or get_settings()
    asset = build(config, settings, bundler, packager)

    stack = stack or make_stack(settings)
    outputs = stack.apply(asset.archive, config)
    logger.info(
        "deployed",
        function=outputs.function_name,
        object_key=outputs.object_key,
        url=outputs.function_url,
    )

    probe_result = None
    if probe:
        probe_result = probe_function_url(outputs.function_url, timeout=settings.probe_timeout_seconds)

    return DeployResult(asset=asset, outputs=outputs, probe=probe_result)


def destroy(settings: Optional[Settings] = None, stack: Optional[LambdaStack] = None) -> None:
    settings = settings or get_settings()
    stack = stack or make_stack(settings)
    stack.destroy()
