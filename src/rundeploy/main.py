import argparse
import os
import signal
import sys
import threading
from importlib.metadata import version
from typing import Any

from rich.console import Console

from .clients import set_user_agent
from .core import POLL_INTERVAL_SECONDS, POLL_TIMEOUT_SECONDS, PROJECT_ENV_VAR, REGION_ENV_VAR
from .logger import level_for_verbosity, logger
from .ops.build import build_from_source
from .ops.service import create_or_update_service, wait_for_service_ready
from .schemas.deploy import DeployOptions, VpcEgress

ENV_FLAGS = ("set_env_vars", "update_env_vars", "remove_env_vars", "clear_env_vars")
SECRET_FLAGS = ("set_secrets", "update_secrets", "remove_secrets", "clear_secrets")


def parse_key_values(raw: str) -> dict[str, str]:
    """Parses `KEY=VALUE,KEY2=VALUE2` into an ordered dict."""
    pairs: dict[str, str] = {}
    for item in raw.split(","):
        if not item.strip():
            continue
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {item!r}")
        pairs[key.strip()] = value.strip()
    return pairs


def parse_keys(raw: str) -> list[str]:
    return [k.strip() for k in raw.split(",") if k.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rundeploy",
        description="rundeploy: create or update Cloud Run services from CI pipelines",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Deploy an image, creating the service if needed
  rundeploy --project-id my-project --region us-central1 deploy \\
      --service api --image us-docker.pkg.dev/my-project/app/api:1.2.3

  # Change one variable and rotate a mounted secret on an existing service
  rundeploy --project-id my-project --region us-central1 deploy \\
      --service api --image IMAGE --update-env-vars LOG_LEVEL=debug \\
      --update-secrets /etc/creds/key.json=api-key:5

  # Build from the current commit with Cloud Build, then deploy
  rundeploy --project-id my-project --region us-central1 deploy \\
      --service api --source .
""",
    )
    try:
        ver = version("rundeploy")
    except Exception:
        ver = "unknown"
    parser.add_argument("--version", action="version", version=f"rundeploy v{ver}")

    parser.add_argument(
        "--project-id",
        default=os.getenv(PROJECT_ENV_VAR),
        help=f"Google Cloud project ID (default: ${PROJECT_ENV_VAR})",
    )
    parser.add_argument(
        "--region",
        default=os.getenv(REGION_ENV_VAR),
        help=f"Cloud Run region, e.g. us-central1 (default: ${REGION_ENV_VAR})",
    )
    parser.add_argument(
        "--google-apis-user-agent",
        help="Custom user agent string for Google API calls",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase log verbosity"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    deploy = subparsers.add_parser("deploy", help="Create or update a Cloud Run service")

    deploy.add_argument("--service", required=True, help="The service name to deploy")
    target = deploy.add_mutually_exclusive_group(required=True)
    target.add_argument("--image", help="The container image to deploy")
    target.add_argument("--source", help="Source directory to build with Cloud Build")

    env = deploy.add_argument_group("environment variables")
    env.add_argument("--set-env-vars", type=parse_key_values, metavar="KEY=VALUE,...",
                     help="Replace all environment variables")
    env.add_argument("--update-env-vars", type=parse_key_values, metavar="KEY=VALUE,...",
                     help="Add or update environment variables")
    env.add_argument("--remove-env-vars", type=parse_keys, metavar="KEY,...",
                     help="Remove environment variables")
    env.add_argument("--clear-env-vars", action="store_true",
                     help="Remove all environment variables")

    secrets = deploy.add_argument_group("secrets")
    secrets.add_argument("--set-secrets", type=parse_key_values,
                         metavar="KEY=SECRET[:VERSION],...",
                         help="Replace all secrets; keys starting with / are mount paths")
    secrets.add_argument("--update-secrets", type=parse_key_values,
                         metavar="KEY=SECRET[:VERSION],...",
                         help="Add or update secrets")
    secrets.add_argument("--remove-secrets", type=parse_keys, metavar="KEY,...",
                         help="Remove secrets by key or secret name")
    secrets.add_argument("--clear-secrets", action="store_true",
                         help="Remove all secret environment variables and volumes")

    policy = deploy.add_argument_group("traffic and access")
    policy.add_argument(
        "--ingress",
        default="all",
        help="all, internal or internal-and-cloud-load-balancing (default: all)",
    )
    policy.add_argument(
        "--allow-unauthenticated",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Allow unauthenticated invocations",
    )
    policy.add_argument(
        "--default-url",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Serve the default run.app URL",
    )

    vpc = deploy.add_argument_group("networking")
    vpc.add_argument("--vpc-connector", help="Serverless VPC Access connector")
    vpc.add_argument("--network", help="VPC network for Direct VPC egress")
    vpc.add_argument("--subnet", help="VPC subnetwork for Direct VPC egress")
    vpc.add_argument(
        "--vpc-egress",
        choices=[e.value for e in VpcEgress],
        help="Which outbound traffic is routed through the VPC",
    )

    deploy.add_argument("--no-wait", action="store_true",
                        help="Return once the deploy request is accepted")
    deploy.add_argument("--timeout", type=float, default=POLL_TIMEOUT_SECONDS,
                        help=f"Seconds to wait for readiness (default: {POLL_TIMEOUT_SECONDS:g})")

    return parser


def validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Enforces the flag combinations argparse groups cannot express."""
    if not args.project_id:
        parser.error(f"--project-id is required (or set ${PROJECT_ENV_VAR})")
    if not args.region:
        parser.error(f"--region is required (or set ${REGION_ENV_VAR})")

    for flags in (ENV_FLAGS, SECRET_FLAGS):
        _check_exclusive(parser, args, *flags)


def _check_exclusive(
    parser: argparse.ArgumentParser, args: argparse.Namespace, set_: str, update: str, remove: str, clear: str
) -> None:
    # update and remove may be combined, everything else is exclusive
    active = [f for f in (set_, clear) if getattr(args, f)]
    if getattr(args, update) or getattr(args, remove):
        active.append(update if getattr(args, update) else remove)
    if len(active) > 1:
        names = ", ".join("--" + f.replace("_", "-") for f in active)
        parser.error(f"arguments are mutually exclusive: {names}")


def options_from_args(args: argparse.Namespace, image: str) -> DeployOptions:
    kwargs: dict[str, Any] = {
        "service": args.service,
        "image": image,
        "env_vars": args.set_env_vars or {},
        "update_env_vars": args.update_env_vars or {},
        "remove_env_vars": args.remove_env_vars or [],
        "clear_env_vars": args.clear_env_vars,
        "secrets": args.set_secrets or {},
        "update_secrets": args.update_secrets or {},
        "remove_secrets": args.remove_secrets or [],
        "clear_secrets": args.clear_secrets,
        "ingress": args.ingress,
        "allow_unauthenticated": args.allow_unauthenticated,
        "default_url": args.default_url,
        "vpc_connector": args.vpc_connector,
        "network": args.network,
        "subnet": args.subnet,
        "vpc_egress": args.vpc_egress,
    }
    return DeployOptions(**kwargs)


def run_deploy(args: argparse.Namespace, console: Console, cancel: threading.Event) -> None:
    image = args.image
    if not image:
        image = build_from_source(args.project_id, args.region, args.service, args.source)

    options = options_from_args(args, image)
    create_or_update_service(args.project_id, args.region, options)

    if args.no_wait:
        console.print(f"Deployment of service [bold]{args.service}[/bold] requested.")
        return

    summary = wait_for_service_ready(
        args.project_id,
        args.region,
        args.service,
        timeout=args.timeout,
        interval=POLL_INTERVAL_SECONDS,
        cancel=cancel,
    )
    console.print(
        f"Service [bold]{summary.service}[/bold] with revision "
        f"[bold]{summary.revision}[/bold] is ready, serving "
        f"{summary.traffic_percent} percent of traffic."
    )
    if summary.url:
        console.print(f"Service URL: [bold cyan]{summary.url}[/bold cyan]")
    else:
        console.print("Service has no URL (the default URL is disabled).")


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    validate_args(parser, args)

    logger.setLevel(level_for_verbosity(args.verbose))
    set_user_agent(args.google_apis_user_agent)

    console = Console()

    # CI runners stop jobs with SIGTERM; stop polling instead of dying mid-line
    cancel = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: cancel.set())

    try:
        run_deploy(args, console, cancel)
    except Exception as e:
        # Credential and transport errors raised outside the API wrappers too
        logger.error(f"Deploy Failed: {e}")
        sys.exit(1)


def cli() -> None:
    try:
        main()
    except KeyboardInterrupt:
        console = Console(stderr=True)
        console.print("\n[bold red]Operation cancelled by user.[/bold red]")
        sys.exit(130)


if __name__ == "__main__":
    cli()
