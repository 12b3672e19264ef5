"""Command-line entry point.

    ts-lambda-deploy build   --path ./ts-lambda
    ts-lambda-deploy synth   --path ./ts-lambda --version 0.0.5
    ts-lambda-deploy deploy  --path ./ts-lambda --version 0.0.5 [--probe] [--json]
    ts-lambda-deploy output
    ts-lambda-deploy destroy

Command results (JSON documents, the Function URL) go to stdout; logs
go to stderr. Any build, packaging or provisioning failure prints its
diagnostic and exits with status 1.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

import structlog

from deployer import pipeline
from deployer.bundling.types import BuildError
from deployer.core.config import DeploymentConfig, Settings, get_settings
from deployer.core.logging import bind_stack_name, configure_structlog
from deployer.packaging.types import MissingArtifactError
from deployer.provisioning.stack import LambdaStack
from deployer.provisioning.state import StateError
from deployer.provisioning.types import ProvisioningError

logger = structlog.get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ts-lambda-deploy",
        description="Bundle a TypeScript Lambda and deploy it behind a public Function URL",
    )
    subparsers = parser.add_subparsers(dest="command")

    def add_source_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--path",
            default=".",
            help="Directory containing src/index.ts (default: current directory)",
        )
        sub.add_argument(
            "--version",
            default=None,
            help="Version label appended to the S3 object key",
        )

    build_parser = subparsers.add_parser("build", help="Bundle and package only")
    add_source_args(build_parser)

    synth_parser = subparsers.add_parser("synth", help="Print the stack document without deploying")
    add_source_args(synth_parser)

    deploy_parser = subparsers.add_parser("deploy", help="Bundle, upload and provision")
    add_source_args(deploy_parser)
    deploy_parser.add_argument(
        "--probe",
        action="store_true",
        help="GET the Function URL once after deploying",
    )
    deploy_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full deploy result as JSON instead of just the URL",
    )

    subparsers.add_parser("output", help="Print the Function URL from the last deploy")
    subparsers.add_parser("destroy", help="Delete every resource of the stack")

    return parser


def _deployment_config(args: argparse.Namespace, settings: Settings) -> DeploymentConfig:
    return DeploymentConfig(
        source_path=Path(args.path).expanduser().resolve(),
        version=args.version or settings.default_version,
    )


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2))


def run(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "build":
        config = _deployment_config(args, settings)
        asset = pipeline.build(config, settings)
        _print_json({
            "handler": asset.handler,
            "archive": asset.archive.to_dict(),
            "object_key": asset.object_key(config.version),
        })
    elif args.command == "synth":
        config = _deployment_config(args, settings)
        _print_json(pipeline.synth(config, settings))
    elif args.command == "deploy":
        config = _deployment_config(args, settings)
        result = pipeline.deploy(config, settings, probe=args.probe)
        if args.json:
            _print_json(result.to_dict())
        else:
            print(result.outputs.function_url)
        if result.probe is not None and not result.probe.ok:
            print(f"Probe failed: {result.probe.error or result.probe.status_code}", file=sys.stderr)
            return 2
    elif args.command == "output":
        outputs = LambdaStack(settings, clients=None).outputs()
        if outputs is None:
            print(f"No deployment recorded for stack {settings.stack_name}", file=sys.stderr)
            return 1
        print(outputs.function_url)
    elif args.command == "destroy":
        pipeline.destroy(settings)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    configure_structlog(debug=settings.debug)
    bind_stack_name(settings.stack_name)

    try:
        return run(args, settings)
    except BuildError as exc:
        print(f"Build failed: {exc}", file=sys.stderr)
        if exc.diagnostics:
            print(exc.diagnostics, file=sys.stderr)
        return 1
    except (MissingArtifactError, ProvisioningError, StateError, ValueError) as exc:
        logger.error("command failed", command=args.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
