"""Command-line interface for cloudwire."""

import argparse
import sys
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from . import __version__
from .exceptions import HttpError
from .http.payload import FormPayload
from .http.protocols import HttpRequest
from .http.retry import backoff_delay_ms
from .logging_config import setup_logging
from .models.config import (
    AzureConfig,
    CloudwireConfig,
    CredentialsConfig,
    RetryConfig,
)
from .signing.aws import AWSServiceAndRegion, FormSignerV4
from .signing.azure import HeaderSigning, QueryStringSigning, SharedKeyLiteAuthentication, SigningMode
from .signing.timestamps import fixed, iso8601_basic, rfc1123


def _key_value(text: str) -> tuple[str, str]:
    name, sep, value = text.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {text!r}")
    return name, value


def _header(text: str) -> tuple[str, str]:
    name, sep, value = text.partition(":")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected 'Name: value', got {text!r}")
    return name.strip(), value.strip()


def _add_credentials_group(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("credentials (override --config)")
    group.add_argument("--identity", help="Access key id or storage account name")
    group.add_argument("--credential", help="Secret key or base64 shared key ($VAR expanded)")
    group.add_argument("--session-token", help="Session token for temporary credentials")


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="cloudwire",
        description="Sign cloud provider API requests and inspect retry behaviour",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sign an IAM Query API request
  cloudwire sign-aws https://iam.amazonaws.com/ --action ListUsers \\
      --api-version 2010-05-08 --identity AKID --credential '$AWS_SECRET_ACCESS_KEY'

  # Sign an Azure blob request with a shared key
  cloudwire sign-azure https://myaccount.blob.core.windows.net/container/blob.txt \\
      --identity myaccount --credential '$AZURE_STORAGE_KEY'

  # Rewrite a request for Shared Access Signature access
  cloudwire sign-azure https://myaccount.blob.core.windows.net/container --sas 'sv=2019-12-12&sig=...'

  # Show the backoff schedule for a retry config
  cloudwire backoff --delay-start 500ms --max-retries 5

  # Check the installation
  cloudwire --doctor
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--doctor",
        action="store_true",
        help="Run diagnostic checks",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="YAML configuration file",
    )

    output_group = parser.add_argument_group("output options")
    output_group.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Verbose output",
    )
    output_group.add_argument(
        "--trace-signatures",
        action="store_true",
        help="Log requests and strings to sign seen by the signers",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    aws = subparsers.add_parser("sign-aws", help="Sign an AWS Query API form request (SigV4)")
    aws.add_argument("endpoint", help="Request URL, e.g. https://sts.us-west-2.amazonaws.com/")
    aws.add_argument("--action", help="Value of the Action form parameter")
    aws.add_argument(
        "--param",
        type=_key_value,
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Additional form parameter (repeatable)",
    )
    aws.add_argument("--api-version", help="Value of the Version form parameter")
    aws.add_argument("--timestamp", help="Fixed X-Amz-Date (YYYYMMDDTHHMMSSZ) instead of now")
    _add_credentials_group(aws)

    azure = subparsers.add_parser("sign-azure", help="Sign an Azure Storage request (SharedKeyLite or SAS)")
    azure.add_argument("endpoint", help="Request URL, e.g. https://myaccount.blob.core.windows.net/container")
    azure.add_argument("--method", "-X", default="GET", help="HTTP method (default: GET)")
    azure.add_argument(
        "--header",
        "-H",
        type=_header,
        action="append",
        default=[],
        metavar="'NAME: VALUE'",
        help="Request header (repeatable)",
    )
    azure.add_argument("--sas", metavar="TOKEN", help="Use Shared Access Signature mode with this token")
    azure.add_argument("--timestamp", help="Fixed Date header instead of now")
    _add_credentials_group(azure)

    backoff = subparsers.add_parser("backoff", help="Print the backoff delay schedule")
    backoff.add_argument("--max-retries", type=int, default=None, help="Retries to show")
    backoff.add_argument("--delay-start", default=None, help="Base period, e.g. 50ms, 1s")
    backoff.add_argument("--backoff-pow", type=int, default=None, help="Exponent applied to the failure count")
    backoff.add_argument("--max-period", default=None, help="Ceiling for one delay, e.g. 10s")
    backoff.add_argument("--no-jitter", action="store_true", help="Show delays without random jitter")

    return parser


def _load_config(args: argparse.Namespace) -> CloudwireConfig:
    config = CloudwireConfig.from_yaml_file(args.config) if args.config else CloudwireConfig()
    updates: dict = {}

    identity = getattr(args, "identity", None)
    credential = getattr(args, "credential", None)
    if identity or credential:
        base = config.credentials
        updates["credentials"] = CredentialsConfig(
            identity=identity or (base.identity if base else ""),
            credential=credential or (base.credential if base else ""),
            session_token=getattr(args, "session_token", None) or (base.session_token if base else None),
        )

    if updates:
        config = config.model_copy(update=updates)
    return config


def _print_request(console: Console, request: HttpRequest) -> None:
    console.print(f"[bold]{request.method}[/bold] {request.endpoint}")
    table = Table(show_header=True, box=None)
    table.add_column("Header", style="cyan")
    table.add_column("Value")
    for name, value in request.headers.items():
        table.add_row(name, value)
    console.print(table)
    if isinstance(request.payload, FormPayload):
        console.print()
        console.print(request.payload.raw_content)


def _require_credentials(config: CloudwireConfig) -> CredentialsConfig:
    if config.credentials is None:
        raise ValueError("no credentials configured; pass --identity/--credential or --config")
    return config.credentials


def run_sign_aws(args: argparse.Namespace, config: CloudwireConfig, console: Console) -> int:
    params = list(args.param)
    if args.action:
        params.insert(0, ("Action", args.action))

    api_version = args.api_version or (config.aws.api_version if config.aws else None)
    if not api_version:
        raise ValueError("no API version; pass --api-version or set aws.api_version")
    service_endpoint = config.aws.endpoint if config.aws else args.endpoint

    signer = FormSignerV4(
        api_version,
        _require_credentials(config).supplier(),
        AWSServiceAndRegion(service_endpoint),
        timestamp_supplier=fixed(args.timestamp) if args.timestamp else iso8601_basic,
    )

    host = urlsplit(args.endpoint).netloc
    request = HttpRequest.create("POST", args.endpoint, {"Host": host}, FormPayload(params))
    _print_request(console, signer.filter(request))
    return 0


def run_sign_azure(args: argparse.Namespace, config: CloudwireConfig, console: Console) -> int:
    mode: SigningMode
    if args.sas is not None:
        mode = QueryStringSigning(args.sas)
        # SAS mode needs only the account name
        account = (urlsplit(args.endpoint).hostname or "").split(".", 1)[0]
        credentials = config.credentials or CredentialsConfig(identity=account, credential="")
    else:
        azure = config.azure or AzureConfig()
        mode = QueryStringSigning(azure.sas_token) if azure.mode == "sas" else HeaderSigning()
        credentials = _require_credentials(config)

    auth = SharedKeyLiteAuthentication(
        credentials.supplier(),
        mode=mode,
        timestamp_supplier=fixed(args.timestamp) if args.timestamp else rfc1123,
    )

    request = HttpRequest.create(args.method, args.endpoint, args.header)
    _print_request(console, auth.filter(request))
    return 0


def run_backoff(args: argparse.Namespace, config: CloudwireConfig, console: Console) -> int:
    overrides: dict = {}
    if args.max_retries is not None:
        overrides["max_retries"] = args.max_retries
    if args.delay_start is not None:
        overrides["delay_start"] = args.delay_start
    if args.backoff_pow is not None:
        overrides["backoff_pow"] = args.backoff_pow
    if args.max_period is not None:
        overrides["max_backoff_period"] = args.max_period
    retry = RetryConfig.model_validate({**config.retry.model_dump(), **overrides})

    table = Table(title="Backoff schedule")
    table.add_column("Failure", justify="right")
    table.add_column("Delay", justify="right")
    for failure in range(1, retry.max_retries + 1):
        delay = backoff_delay_ms(
            retry.delay_start,
            retry.backoff_pow,
            failure,
            retry.max_backoff_period,
            jitter=not args.no_jitter,
        )
        table.add_row(str(failure), f"{delay} ms")
    console.print(table)
    console.print(f"Command fails after {retry.max_retries} retries; 429 waits up to {retry.max_rate_limit_wait} ms")
    return 0


COMMANDS = {
    "sign-aws": run_sign_aws,
    "sign-azure": run_sign_azure,
    "backoff": run_backoff,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    console = Console()

    if args.doctor:
        from .doctor import run_doctor

        return run_doctor()

    if args.command is None:
        parser.print_help()
        return 1

    try:
        config = _load_config(args)
    except (OSError, ValidationError, ValueError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return 1

    level = "DEBUG" if args.verbose else config.logging.level
    setup_logging(
        level=level,
        log_file=str(config.logging.log_file) if config.logging.log_file else None,
        trace_signatures=args.trace_signatures or config.logging.trace_signatures,
    )

    try:
        return COMMANDS[args.command](args, config, console)
    except (ValueError, HttpError) as e:
        console.print(f"[red]Error:[/red] {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
