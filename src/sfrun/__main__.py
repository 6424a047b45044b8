"""CLI entrypoint: sfrun <exe file> [--sfendpoint URL] [--port N] [--app NAME]."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional, Sequence

import structlog
from pydantic import ValidationError

from sfrun import __version__
from sfrun.cluster.rest import RestClusterGateway
from sfrun.core.config import Settings
from sfrun.core.exceptions import SfrunError
from sfrun.core.models import DeploymentOutcome
from sfrun.deploy.orchestrator import DeploymentOrchestrator
from sfrun.utils.logging import setup_logging

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sfrun", description="Deploy an executable to Service Fabric")
    parser.add_argument("exe_file", help="exe file")
    parser.add_argument("--sfendpoint", help="Service Fabric Endpoint")
    parser.add_argument("--port", type=int, help="Port should open to public")
    parser.add_argument("--app", help="App name on SF")
    parser.add_argument("--log-level", help="Log level (default: INFO)")
    parser.add_argument("--log-format", choices=["json", "console"], help="Log output format")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.sfendpoint:
        overrides["endpoint"] = args.sfendpoint
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_format:
        overrides["log_format"] = args.log_format
    return Settings(**overrides)


async def deploy(settings: Settings, exe_file: str, app_name: Optional[str], port: Optional[int]) -> DeploymentOutcome:
    async with RestClusterGateway(settings) as gateway:
        orchestrator = DeploymentOrchestrator(gateway, image_store_default=settings.image_store_default)
        return await orchestrator.run(exe_file, app_name=app_name, port=port)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args)
    except ValidationError as e:
        print(f"ERROR: invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level, settings.log_format)

    try:
        outcome = asyncio.run(deploy(settings, args.exe_file, args.app, args.port))
    except SfrunError as e:
        logger.error("Deployment failed", error=str(e), code=e.code)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        logger.error("Deployment failed", error=str(e))
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(outcome.message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
