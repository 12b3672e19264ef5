"""Types for the bundling module.

StepResult captures one subprocess run. BuildRequest and BuildArtifact
describe a single build's input and output.
"""

from dataclasses import dataclass
from pathlib import Path


@dataclass
class StepResult:
    """Result of a single external tool invocation.

    Captures exit code, timing, and output for diagnostics.
    A step is successful if exit_code == 0.
    """

    name: str
    command: str
    exit_code: int
    duration_seconds: float
    stdout: str = ""
    stderr: str = ""

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class BuildRequest:
    """Inputs for one bundler run.

    entry_point is relative to working_directory, e.g. "src/index.ts".
    """

    working_directory: Path
    entry_point: str = "src/index.ts"

    @property
    def entry_path(self) -> Path:
        return self.working_directory / self.entry_point


@dataclass(frozen=True)
class BuildArtifact:
    """Directory written by the bundler. Contents are opaque downstream."""

    output_directory: Path

    def files(self) -> list[Path]:
        return sorted(p for p in self.output_directory.rglob("*") if p.is_file())


class BuildError(Exception):
    """Raised when the bundler cannot produce an artifact.

    Carries the step result (when the tool actually ran) so the operator
    sees the bundler's own diagnostic text.
    """

    def __init__(self, message: str, step_result: StepResult | None = None):
        self.step_result = step_result
        super().__init__(message)

    @property
    def diagnostics(self) -> str:
        if self.step_result is None:
            return ""
        return (self.step_result.stderr or self.step_result.stdout).strip()
