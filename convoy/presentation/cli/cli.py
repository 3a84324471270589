"""
CLI Module

Architectural Intent:
- Command-line interface for Convoy
- Thin layer: parses flags, builds a request, delegates to the use case
  wired by the composition root, and renders the report
- Supports --verbose/--debug flags for log level control

Exit Codes:
- 0 AllSucceeded (or a dry run)
- 1 PartialFailure or Aborted
- 2 RolledBack
- 3 planning, validation or resolution error, including bad command-line
  usage
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
import traceback
from typing import Optional, Sequence

from convoy.application.dtos.deployment_dtos import ENVIRONMENTS, DeployServiceRequest
from convoy.application.execution.cancellation import CancellationToken
from convoy.domain.entities.deployment_report import DeploymentReport, OverallStatus
from convoy.domain.errors import InvalidDescriptor, ResolutionError
from convoy.infrastructure.config import ConvoyConfig, load_config
from convoy.infrastructure.logging import configure_logging

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ROLLED_BACK = 2
EXIT_PLANNING_ERROR = 3

EXIT_CODES = {
    OverallStatus.ALL_SUCCEEDED: EXIT_OK,
    OverallStatus.PARTIAL_FAILURE: EXIT_FAILED,
    OverallStatus.ABORTED: EXIT_FAILED,
    OverallStatus.ROLLED_BACK: EXIT_ROLLED_BACK,
}

SUMMARY_HEADERS = ("HOST", "STATE", "ATTEMPTS", "DURATION", "LAST ERROR")


class ConvoyArgumentParser(argparse.ArgumentParser):
    """Usage errors exit with the planning error code; 2 means RolledBack."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_PLANNING_ERROR, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = ConvoyArgumentParser(
        prog="convoy",
        description="Convoy: batched, canary-aware service rollouts over SSH",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug output with tracebacks"
    )
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit logs as JSON lines on stderr"
    )
    parser.add_argument(
        "--config", help="Path to convoy.json (default: ./convoy.json)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    deploy_parser = subparsers.add_parser(
        "deploy", help="Roll a service version out to an environment"
    )
    deploy_parser.add_argument(
        "--env", "-e", required=True, choices=ENVIRONMENTS, help="Target environment"
    )
    deploy_parser.add_argument(
        "--service", "-s", required=True, help="Service name in the catalog"
    )
    deploy_parser.add_argument(
        "--catalog", help="Path to the service catalog (overrides config)"
    )
    deploy_parser.add_argument("--registry", help="Override the image registry")
    deploy_parser.add_argument(
        "--max-parallel", type=int, help="Maximum hosts per batch"
    )
    deploy_parser.add_argument(
        "--canary-fraction",
        type=float,
        help="Fraction of hosts in the first batch (0 disables the canary)",
    )
    deploy_parser.add_argument(
        "--failure-threshold",
        type=float,
        help="Abort when a batch's failed fraction exceeds this",
    )
    deploy_parser.add_argument(
        "--rollback-on-abort",
        action="store_true",
        default=None,
        help="Roll back succeeded hosts when the rollout aborts",
    )
    deploy_parser.add_argument(
        "--dry-run", action="store_true", help="Plan and validate only"
    )
    deploy_parser.add_argument(
        "--json", action="store_true", help="Print the report as JSON"
    )
    return parser


def format_summary(report: DeploymentReport) -> str:
    rows = [SUMMARY_HEADERS, *report.summary_rows()]
    widths = [max(len(row[i]) for row in rows) for i in range(len(SUMMARY_HEADERS))]
    lines = [
        "  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip()
        for row in rows
    ]
    lines.insert(1, "  ".join("-" * w for w in widths))
    return "\n".join(lines)


def _install_sigint(token: CancellationToken) -> bool:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted (SIGINT)")
    except (NotImplementedError, RuntimeError):
        # Not available on every platform / outside the main thread
        return False
    return True


def _remove_sigint() -> None:
    asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)


async def _deploy(args, config: ConvoyConfig, verbose: bool) -> None:
    from convoy.composition_root import create_container

    try:
        container = create_container(config, catalog_path=args.catalog)
        request = DeployServiceRequest(
            service_name=args.service,
            environment=args.env,
            registry=args.registry,
            max_parallel=args.max_parallel,
            canary_fraction=args.canary_fraction,
            failure_threshold=args.failure_threshold,
            rollback_on_abort=args.rollback_on_abort,
            dry_run=args.dry_run,
        )
    except ValueError as e:
        print(f"[-] Invalid arguments: {e}")
        sys.exit(EXIT_PLANNING_ERROR)

    token = CancellationToken()
    handler_installed = _install_sigint(token)
    try:
        if not args.json:
            mode = "Planning" if args.dry_run else "Deploying"
            print(f"[*] {mode} {args.service} to {args.env}...")
        response = await container.deploy_service.execute(request, token)
    except InvalidDescriptor as e:
        print(f"[-] Invalid service descriptor for {args.service}:")
        for problem in e.problems:
            print(f"    - {problem}")
        sys.exit(EXIT_PLANNING_ERROR)
    except ResolutionError as e:
        print(f"[-] Could not resolve {args.service}/{args.env}: {e}")
        sys.exit(EXIT_PLANNING_ERROR)
    except ValueError as e:
        print(f"[-] Invalid deployment settings: {e}")
        sys.exit(EXIT_PLANNING_ERROR)
    except Exception as e:
        print(f"[-] Deployment Failed: {e}")
        if verbose:
            traceback.print_exc()
        sys.exit(EXIT_FAILED)
    finally:
        if handler_installed:
            _remove_sigint()

    if response.report is None:
        if args.json:
            print(json.dumps({"dry_run": True, "plan": response.plan.describe()}, indent=2))
        else:
            print(response.plan.describe())
            print(f"[+] {response.message}")
        return

    report = response.report
    if args.json:
        data = report.to_dict()
        data["events"] = [e.to_dict() for e in container.event_bus.history]
        print(json.dumps(data, indent=2))
    else:
        print(format_summary(report))
        marker = "[+]" if response.success else "[-]"
        print(f"{marker} {report.descriptor.service_name} {report.descriptor.version}: "
              f"{response.message}")

    code = EXIT_CODES[report.overall_status]
    if code != EXIT_OK:
        sys.exit(code)


async def async_main(argv: Optional[Sequence[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"[-] Invalid configuration: {e}")
        sys.exit(EXIT_PLANNING_ERROR)

    # Flags win over the configured level
    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    else:
        level = config.log_level
    configure_logging(level=level, json_format=args.json_logs)

    verbose = args.verbose or args.debug

    if args.command == "deploy":
        await _deploy(args, config, verbose)
        return

    parser.print_help()


def main():
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
