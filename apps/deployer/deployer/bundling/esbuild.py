"""esbuild invocation: turns a TypeScript entry point into a Lambda bundle.

The bundler is an external collaborator: this module only validates the
input, clears the output directory, runs esbuild synchronously, and
converts any failure into a BuildError. There is no caching between runs;
every build starts from an empty output directory.

Equivalent esbuild API call:

    buildSync({
        entryPoints: ["src/index.ts"], platform: "node", target: "es2018",
        bundle: true, format: "cjs", sourcemap: "linked", outdir: "dist",
        absWorkingDir: <working directory>,
    })
"""

import logging
import shlex
import shutil
from pathlib import Path
from typing import Optional, Protocol

from deployer.bundling.executor import DEFAULT_TIMEOUT, run_step
from deployer.bundling.types import BuildArtifact, BuildError, BuildRequest
from deployer.core.config import Settings

logger = logging.getLogger(__name__)


class Bundler(Protocol):
    """Anything that can turn a source directory into an artifact directory."""

    def build(self, source_dir: Path) -> Path: ...


class EsbuildBundler:
    """Bundler backed by the esbuild CLI."""

    def __init__(
        self,
        command: str = "esbuild",
        entry_point: str = "src/index.ts",
        output_dir: str = "dist",
        platform: str = "node",
        target: str = "es2018",
        output_format: str = "cjs",
        sourcemap: str = "linked",
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.command = command
        self.entry_point = entry_point
        self.output_dir = output_dir
        self.platform = platform
        self.target = target
        self.output_format = output_format
        self.sourcemap = sourcemap
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "EsbuildBundler":
        return cls(
            command=settings.esbuild_command,
            entry_point=settings.entry_point,
            output_dir=settings.output_dir,
            platform=settings.build_platform,
            target=settings.build_target,
            output_format=settings.build_format,
            sourcemap=settings.build_sourcemap,
            timeout=settings.build_timeout_seconds,
        )

    def build_args(self) -> list[str]:
        """Return the full esbuild argv, executable first."""
        return [
            *shlex.split(self.command),
            self.entry_point,
            "--bundle",
            f"--platform={self.platform}",
            f"--target={self.target}",
            f"--format={self.output_format}",
            f"--sourcemap={self.sourcemap}",
            f"--outdir={self.output_dir}",
            "--log-level=warning",
        ]

    def build(self, source_dir: Path) -> Path:
        """Bundle `<source_dir>/<entry_point>` into `<source_dir>/<output_dir>`.

        Returns the absolute output directory path.

        Raises:
            BuildError: entry point missing, esbuild failed or timed out,
                        or esbuild reported success without writing files.
        """
        request = BuildRequest(
            working_directory=Path(source_dir).resolve(),
            entry_point=self.entry_point,
        )
        return self.run(request).output_directory

    def run(self, request: BuildRequest) -> BuildArtifact:
        working_dir = request.working_directory
        entry = request.entry_path

        # Checked before touching the filesystem so a bad request never
        # leaves a half-written output directory behind.
        if not entry.is_file():
            raise BuildError(f"Entry point not found: {entry}")

        out_dir = working_dir / self.output_dir
        _clear_directory(out_dir)

        result = run_step("bundle", self.build_args(), cwd=working_dir, timeout=self.timeout)
        if not result.is_success:
            _clear_directory(out_dir)
            raise BuildError(
                f"esbuild failed for {entry} (exit {result.exit_code})",
                step_result=result,
            )

        artifact = BuildArtifact(output_directory=out_dir)
        if not out_dir.is_dir() or not artifact.files():
            raise BuildError(
                f"esbuild exited cleanly but wrote nothing to {out_dir}",
                step_result=result,
            )

        logger.info("Bundled %s -> %s (%d files)", entry, out_dir, len(artifact.files()))
        return artifact


def bundle(working_directory: Path, settings: Optional[Settings] = None) -> Path:
    """Bundle a function directory with the configured esbuild options."""
    bundler = EsbuildBundler.from_settings(settings) if settings else EsbuildBundler()
    return bundler.build(working_directory)


def _clear_directory(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()
