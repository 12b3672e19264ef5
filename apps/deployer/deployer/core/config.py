from dataclasses import dataclass
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Deployer settings loaded from environment variables.

    Everything here is ambient: it describes the target account and the
    toolchain. The per-invocation inputs (source path and version label)
    travel separately in DeploymentConfig so they are always passed
    explicitly.

    Paths in ``out_dir`` and ``state_dir`` are resolved against the current
    working directory of the process, the same way ``cdktf.out`` or
    ``.terraform`` behave.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # AWS
    aws_region: str = "ap-south-1"

    # Stack naming
    stack_name: str = "ts-lambda"
    bucket_prefix: str = "slack-search-lambda"
    function_name: str = "slack-search-lambda"
    # Defaults to "<stack_name>-lambda-exec" when left blank.
    role_name: str = ""

    # Lambda function definition
    lambda_runtime: str = "nodejs20.x"
    lambda_handler: str = "index.handler"
    lambda_memory_mb: int = 128
    lambda_timeout_seconds: int = 3

    # Bundling: esbuild is invoked as an external executable.
    # Use "npx --yes esbuild" when esbuild is only a project devDependency.
    entry_point: str = "src/index.ts"
    output_dir: str = "dist"
    esbuild_command: str = "esbuild"
    build_platform: str = "node"
    build_target: str = "es2018"
    build_format: str = "cjs"
    build_sourcemap: str = "linked"
    build_timeout_seconds: int = 300

    # Local directories for archives and provisioning state
    out_dir: Path = Path("deploy.out")
    state_dir: Path = Path(".deployer")

    # Version label used when the CLI is not given one
    default_version: str = "0.0.5"

    # Freshly created IAM roles take a few seconds before Lambda accepts them.
    role_propagation_attempts: int = 10
    role_propagation_delay_seconds: float = 3.0

    probe_timeout_seconds: float = 10.0

    # App
    debug: bool = True

    @field_validator("build_format")
    @classmethod
    def validate_build_format(cls, v: str) -> str:
        if v not in ("cjs", "esm", "iife"):
            raise ValueError(f"build_format must be cjs, esm or iife (got {v!r})")
        return v

    @property
    def resolved_role_name(self) -> str:
        return self.role_name or f"{self.stack_name}-lambda-exec"


def get_settings() -> Settings:
    return Settings()


@dataclass(frozen=True)
class DeploymentConfig:
    """Per-invocation deployment inputs.

    source_path: absolute path to the directory holding src/index.ts.
    version: label appended to the archive file name to form the S3 key.
             Keep it stable for idempotent redeploys.
    """

    source_path: Path
    version: str

    def __post_init__(self) -> None:
        path = Path(self.source_path)
        if not path.is_absolute():
            raise ValueError(f"source_path must be absolute (got {str(path)!r})")
        if not self.version or not self.version.strip():
            raise ValueError("version label must not be empty")
        if "/" in self.version:
            raise ValueError(f"version label must not contain '/' (got {self.version!r})")
        object.__setattr__(self, "source_path", path)
