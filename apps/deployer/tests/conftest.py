"""Shared fixtures for the deployer test suite.

AWS clients are MagicMocks and esbuild is replaced by a fake bundler that
writes files into dist/, so the suite runs without credentials or Node.
"""

from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from deployer.core.config import DeploymentConfig, Settings
from deployer.packaging.archive import DirectoryPackager


def client_error(code: str, message: str = "", operation: str = "Operation") -> ClientError:
    """Build a botocore ClientError with the given AWS error code."""
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class FakeBundler:
    """Writes a fixed bundle into <source_dir>/dist, like esbuild would."""

    def __init__(self, source: str = "exports.handler = async () => ({ statusCode: 200 });\n"):
        self.source = source
        self.calls: list[Path] = []

    def build(self, source_dir: Path) -> Path:
        self.calls.append(Path(source_dir))
        out_dir = Path(source_dir) / "dist"
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / "index.js").write_text(self.source)
        (out_dir / "index.js.map").write_text('{"version":3,"sources":["../src/index.ts"]}')
        return out_dir


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        aws_region="ap-south-1",
        stack_name="test-stack",
        bucket_prefix="test-bucket-",
        function_name="test-fn",
        out_dir=tmp_path / "deploy.out",
        state_dir=tmp_path / ".deployer",
        role_propagation_attempts=3,
        role_propagation_delay_seconds=0.0,
        debug=True,
    )


@pytest.fixture
def function_dir(tmp_path: Path) -> Path:
    """A function source directory with src/index.ts."""
    root = tmp_path / "ts-lambda"
    (root / "src").mkdir(parents=True)
    (root / "src" / "index.ts").write_text(
        "export const handler = async () => ({ statusCode: 200, body: 'ok' });\n"
    )
    return root


@pytest.fixture
def deployment_config(function_dir: Path) -> DeploymentConfig:
    return DeploymentConfig(source_path=function_dir, version="0.0.5")


@pytest.fixture
def fake_bundler() -> FakeBundler:
    return FakeBundler()


@pytest.fixture
def packager(settings: Settings) -> DirectoryPackager:
    return DirectoryPackager(settings.out_dir)
