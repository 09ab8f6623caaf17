"""Command-line interface for reconciling Cloud Foundry spaces."""

import asyncio
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from .change import EntityKind
from .cloud_controller import CloudControllerClient
from .config import (
    DEFAULT_TIMEOUT,
    ENV_API,
    ENV_ORG,
    ENV_SKIP_SSL_VALIDATION,
    ENV_SPACE,
    ENV_TOKEN,
    PlatformTarget,
)
from .exceptions import ConfigurationError, ManifestError, PlatformError
from .manifest import ConfigDocument, TargetDecl, dump_config
from .reconciler import Reconciler
from .work import ApplyReport

_KINDS = {
    "applications": EntityKind.APPLICATIONS,
    "services": EntityKind.SERVICES,
    "space-developers": EntityKind.SPACE_DEVELOPERS,
}


def _target_options(f: Callable[..., Any]) -> Callable[..., Any]:
    """Options selecting the Cloud Controller, org and space, plus log level."""
    options = [
        click.option("--api", envvar=ENV_API, help="Cloud Controller URL"),
        click.option("--org", envvar=ENV_ORG, help="Organization name"),
        click.option("--space", envvar=ENV_SPACE, help="Space name"),
        click.option("--token", envvar=ENV_TOKEN, help="OAuth bearer token"),
        click.option(
            "--skip-ssl-validation",
            is_flag=True,
            envvar=ENV_SKIP_SSL_VALIDATION,
            help="Do not verify TLS certificates",
        ),
        click.option(
            "--timeout",
            type=float,
            default=DEFAULT_TIMEOUT,
            show_default=True,
            help="Request timeout in seconds",
        ),
        click.option("-v", "--verbose", is_flag=True, help="Log progress"),
        click.option("--debug", is_flag=True, help="Log every request"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _configure_logging(verbose: bool, debug: bool) -> None:
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")


def _build_target(
    api: str | None,
    org: str | None,
    space: str | None,
    token: str | None,
    skip_ssl_validation: bool,
    timeout: float,
    declared: TargetDecl | None = None,
) -> PlatformTarget:
    target = PlatformTarget(
        api_url=api,
        organization=org,
        space=space,
        token=token,
        verify_ssl=not skip_ssl_validation,
        timeout=timeout,
    )
    if declared is not None:
        target = target.with_defaults(declared.endpoint, declared.org, declared.space)
    return target.validate()


def _echo_report(report: ApplyReport, dry_run: bool) -> None:
    for failure in report.planning_failures:
        click.echo(f"✗ {failure.error}", err=True)

    if dry_run:
        for unit in report.planned:
            click.echo(str(unit))
    else:
        for result in report.results:
            if result.ok:
                click.echo(str(result.unit))
            else:
                click.echo(f"✗ {result.error}", err=True)

    click.echo()
    if not report.planned:
        click.echo("No changes. The space matches the configuration.")
    elif dry_run:
        click.echo(f"Plan: {len(report.planned)} change(s)")
    elif report.failed:
        click.echo(
            f"Applied {len(report.succeeded)} change(s), {len(report.failed)} failed", err=True
        )
    else:
        click.echo(f"✓ Applied {len(report.succeeded)} change(s)")


@click.group()
@click.version_option(package_name="cf-apply")
def cli() -> None:
    """Reconcile a Cloud Foundry space with a declared configuration."""
    pass


def _reconcile_command(
    file: str,
    only: tuple[str, ...],
    dry_run: bool,
    api: str | None,
    org: str | None,
    space: str | None,
    token: str | None,
    skip_ssl_validation: bool,
    timeout: float,
) -> None:
    kinds = [_KINDS[k] for k in only] or None

    async def _reconcile() -> ApplyReport:
        document = ConfigDocument.from_file(file)
        target = _build_target(
            api, org, space, token, skip_ssl_validation, timeout, declared=document.target
        )
        async with CloudControllerClient(target) as client:
            return await Reconciler(client).apply_all(document.config, kinds, dry_run=dry_run)

    try:
        report = asyncio.run(_reconcile())
    except (ConfigurationError, ManifestError, PlatformError) as e:
        click.echo(f"✗ {'Plan' if dry_run else 'Apply'} failed: {e}", err=True)
        sys.exit(1)

    _echo_report(report, dry_run)


@cli.command()
@click.option(
    "-f",
    "--file",
    "file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration document (YAML)",
)
@click.option(
    "--only",
    multiple=True,
    type=click.Choice(list(_KINDS)),
    help="Restrict to one entity kind (repeatable)",
)
@_target_options
def apply(
    file: str,
    only: tuple[str, ...],
    api: str | None,
    org: str | None,
    space: str | None,
    token: str | None,
    skip_ssl_validation: bool,
    timeout: float,
    verbose: bool,
    debug: bool,
) -> None:
    """Apply a configuration document to the target space.

    Space developers are converged first, then services, then applications.
    A failing change is reported without stopping the others.
    """
    _configure_logging(verbose, debug)
    _reconcile_command(file, only, False, api, org, space, token, skip_ssl_validation, timeout)


@cli.command()
@click.option(
    "-f",
    "--file",
    "file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration document (YAML)",
)
@click.option(
    "--only",
    multiple=True,
    type=click.Choice(list(_KINDS)),
    help="Restrict to one entity kind (repeatable)",
)
@_target_options
def plan(
    file: str,
    only: tuple[str, ...],
    api: str | None,
    org: str | None,
    space: str | None,
    token: str | None,
    skip_ssl_validation: bool,
    timeout: float,
    verbose: bool,
    debug: bool,
) -> None:
    """Show the changes apply would make, without making them."""
    _configure_logging(verbose, debug)
    _reconcile_command(file, only, True, api, org, space, token, skip_ssl_validation, timeout)


@cli.command()
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False),
    help="Write to file instead of stdout",
)
@_target_options
def get(
    output: str | None,
    api: str | None,
    org: str | None,
    space: str | None,
    token: str | None,
    skip_ssl_validation: bool,
    timeout: float,
    verbose: bool,
    debug: bool,
) -> None:
    """Export the live configuration of the target space as YAML."""
    _configure_logging(verbose, debug)

    async def _get() -> str:
        target = _build_target(api, org, space, token, skip_ssl_validation, timeout)
        async with CloudControllerClient(target) as client:
            tree = await Reconciler(client).get_live_config()
        return dump_config(tree)

    try:
        content = asyncio.run(_get())
    except (ConfigurationError, PlatformError) as e:
        click.echo(f"✗ Failed to fetch configuration: {e}", err=True)
        sys.exit(1)

    if output:
        Path(output).write_text(content, encoding="utf-8")
        click.echo(f"✓ Configuration exported to: {output}")
    else:
        click.echo(content, nl=False)


if __name__ == "__main__":
    cli()
