"""
Command-line interface for the trust engine.

Usage:
    vc-trust verify credential.json
    vc-trust verify https://example.com/credentials/123
    cat credential.json | vc-trust verify - --did-document issuer-did.json
    vc-trust health
"""

from __future__ import annotations

import dataclasses
import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vc_trust import __version__
from vc_trust.config import TrustEngineConfig, configure_logging
from vc_trust.did_resolver import StaticDIDResolver
from vc_trust.engine import TrustEngine, build_engine
from vc_trust.errors import TrustEngineError
from vc_trust.verifier import VerificationResult


console = Console()

EXIT_VALID = 0
EXIT_INVALID = 1
EXIT_ERROR = 2


def format_result(result: VerificationResult) -> None:
    """Format and print verification result."""
    if result.valid:
        status_icon = "[bold green]VALID[/]"
        panel_style = "green"
    else:
        status_icon = "[bold red]INVALID[/]"
        panel_style = "red"

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Status", status_icon)
    table.add_row("Last Step", result.step.value)

    if result.credential_id:
        table.add_row("Credential ID", result.credential_id)
    if result.issuer:
        table.add_row("Issuer", result.issuer)
    if result.verification_method:
        table.add_row("Verification Method", result.verification_method)
    if result.reason:
        style = "yellow" if result.valid else "red"
        table.add_row("Reason", f"[{style}]{result.reason}[/]")

    console.print(Panel(table, title="Verification Result", border_style=panel_style))


def result_to_dict(result: VerificationResult) -> dict[str, Any]:
    data = dataclasses.asdict(result)
    data["step"] = result.step.value
    data["status"] = result.status.value
    return data


def load_json_file(path: str) -> Any:
    with Path(path).open(encoding="utf-8") as f:
        return json.load(f)


def load_credential(source: str, engine: TrustEngine) -> Any:
    """Load credential from file, URL, or stdin.

    Args:
        source: File path, URL, or "-" for stdin.
        engine: Engine whose resource client fetches URLs.

    Returns:
        Parsed credential JSON.
    """
    if source == "-":
        return json.loads(sys.stdin.read())

    if source.startswith("http://") or source.startswith("https://"):
        return engine.resource_client.get_json(
            source,
            headers={"Accept": "application/vc+ld+json, application/json"},
        )

    return load_json_file(source)


def report_error(message: str, json_output: bool) -> NoReturn:
    if json_output:
        console.print_json(data={"error": message})
    else:
        console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_ERROR)


@click.group()
@click.version_option(__version__)
@click.pass_context
def main(ctx: click.Context) -> None:
    """Verify and inspect W3C Verifiable Credentials.

    Configuration is read from VC_* environment variables.
    """
    try:
        config = TrustEngineConfig.from_env()
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    configure_logging(config.debug)
    ctx.obj = config


@main.command()
@click.argument("source", required=True)
@click.option(
    "--did-document",
    "did_documents",
    multiple=True,
    type=click.Path(dir_okay=False),
    help="Resolve DIDs from this DID Document file instead of did:web (repeatable)",
)
@click.option(
    "--no-status",
    is_flag=True,
    help="Skip credential status (revocation) check",
)
@click.option(
    "--json-output",
    is_flag=True,
    help="Output result as JSON",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="HTTP request timeout in seconds",
)
@click.pass_obj
def verify(
    config: TrustEngineConfig,
    source: str,
    did_documents: tuple[str, ...],
    no_status: bool,
    json_output: bool,
    timeout: float | None,
) -> None:
    """Verify a credential.

    SOURCE can be:
    - A file path (e.g., credential.json)
    - A URL (e.g., https://example.com/credentials/123)
    - "-" to read from stdin

    Exit status is 0 for a valid credential, 1 for an invalid one and 2
    when the credential could not be loaded.
    """
    if timeout is not None:
        try:
            config = dataclasses.replace(config, timeout=timeout)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--timeout") from e

    resolver = None
    if did_documents:
        try:
            resolver = StaticDIDResolver()
            for path in did_documents:
                resolver.add_document(load_json_file(path))
        except OSError as e:
            report_error(f"Cannot read DID Document: {e}", json_output)
        except (ValueError, KeyError, TypeError) as e:
            report_error(f"Invalid DID Document: {e}", json_output)

    with build_engine(config, did_resolver=resolver, verify_status=not no_status) as engine:
        try:
            credential = load_credential(source, engine)
        except OSError as e:
            report_error(f"Cannot read credential: {e}", json_output)
        except json.JSONDecodeError as e:
            report_error(f"Invalid JSON: {e}", json_output)
        except TrustEngineError as e:
            report_error(f"Could not fetch credential: {e}", json_output)

        result = engine.verifier.verify(credential)

    if json_output:
        console.print_json(data=result_to_dict(result))
    else:
        format_result(result)

    sys.exit(EXIT_VALID if result.valid else EXIT_INVALID)


@main.command()
@click.pass_obj
def health(config: TrustEngineConfig) -> None:
    """Check that the issuance API (VC_API_URL) is healthy."""
    if not config.api_url:
        console.print("[red]Error:[/] VC_API_URL is not set")
        sys.exit(EXIT_ERROR)

    with build_engine(config) as engine:
        healthy = engine.issuer.check_health()

    if healthy:
        console.print(f"[green]Issuance API at {config.api_url} is healthy[/]")
        sys.exit(EXIT_VALID)
    console.print(f"[red]Issuance API at {config.api_url} is unavailable[/]")
    sys.exit(EXIT_INVALID)


if __name__ == "__main__":
    main()
