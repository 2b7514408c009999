"""CLI commands for deploying stacks.

Implements the 'shipyard deploy' command group: render manifests offline,
reconcile a namespace, inspect stored state and tear a deployment down.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import click
import yaml

from shipyard.config.defaults import DEFAULT_DEPLOYMENT_FILE
from shipyard.lib.errors import (
    ClusterSDKNotInstalledError,
    ConfigError,
    FileNotFoundError,
    ShipyardError,
    TemplateError,
)
from shipyard.lib.logging_config import get_logger, setup_logging
from shipyard.models.deployment_state import RunStatus

if TYPE_CHECKING:
    from shipyard.models.deployment import DeploymentSpec

logger = get_logger(__name__)

EXIT_CONFIG = 2
EXIT_DEPLOY = 3
EXIT_RUN_FAILED = 4


@contextmanager
def handle_deployment_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in deployment commands.

    Exit codes:
        2: Configuration or template error
        3: Deployment or cluster error
    """
    try:
        yield
    except (ConfigError, FileNotFoundError, TemplateError) as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e}", err=True)
        sys.exit(EXIT_CONFIG)
    except ClusterSDKNotInstalledError as e:
        logger.error(f"Cluster client missing: {e}")
        click.secho("Error: Kubernetes client not available", fg="red", err=True)
        click.echo(f"  {e}", err=True)
        sys.exit(EXIT_DEPLOY)
    except ShipyardError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {type(e).__name__}", fg="red", err=True)
        click.echo(f"  {e}", err=True)
        sys.exit(EXIT_DEPLOY)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(EXIT_DEPLOY)


def load_deployment(deployment_file: str, env_file: str | None) -> DeploymentSpec:
    """Load and validate a deployment description."""
    from shipyard.config.loader import ConfigLoader

    return ConfigLoader(env_file=env_file).load_deployment_yaml(deployment_file)


def deployment_file_argument(func: Any) -> Any:
    """Optional DEPLOYMENT_FILE argument shared by every subcommand."""
    return click.argument(
        "deployment_file",
        type=click.Path(dir_okay=False),
        default=DEFAULT_DEPLOYMENT_FILE,
        required=False,
    )(func)


def verbosity_options(func: Any) -> Any:
    """--verbose and --quiet options shared by every subcommand."""
    func = click.option(
        "--quiet",
        "-q",
        is_flag=True,
        help="Only log errors",
    )(func)
    return click.option(
        "--verbose",
        "-v",
        is_flag=True,
        help="Enable verbose debug logging",
    )(func)


def cluster_options(func: Any) -> Any:
    """Options selecting the cluster and target namespace."""
    for decorator in reversed(
        [
            click.option(
                "--namespace", "-n", default=None, help="Target namespace"
            ),
            click.option(
                "--kubeconfig",
                type=click.Path(dir_okay=False),
                default=None,
                help="Kubeconfig file (default: $KUBECONFIG or ~/.kube/config)",
            ),
            click.option(
                "--context", "kube_context", default=None, help="Kubeconfig context"
            ),
            click.option(
                "--env-file",
                type=click.Path(exists=True, dir_okay=False),
                default=None,
                help="Environment file (default: .env next to the deployment)",
            ),
        ]
    ):
        func = decorator(func)
    return func


@click.group(name="deploy", invoke_without_command=True)
@click.pass_context
def deploy(ctx: click.Context) -> None:
    """Deploy stacks to an OpenShift namespace.

    Subcommands:

        render   Print the manifests a deployment would apply
        run      Reconcile the namespace with the deployment
        status   Compare stored state with the deployment
        destroy  Delete every resource of the deployment

    Example:

        shipyard deploy run --hostname cloud.apps.example.com

        shipyard deploy status deployment.yaml -n nextcloud
    """
    ctx.ensure_object(dict)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@deploy.command()
@deployment_file_argument
@click.option("--namespace", "-n", default=None, help="Target namespace")
@click.option("--hostname", default=None, help="Public hostname of routes")
@click.option(
    "--set",
    "set_values",
    multiple=True,
    metavar="KEY=VALUE",
    help="Override a deployment parameter (repeatable)",
)
@click.option(
    "--env-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Environment file (default: .env next to the deployment)",
)
@verbosity_options
def render(
    deployment_file: str,
    namespace: str | None,
    hostname: str | None,
    set_values: tuple[str, ...],
    env_file: str | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Print the manifests of a deployment without touching a cluster.

    Secrets are not rendered; their values only exist in the cluster.

    Example:

        shipyard deploy render -n nextcloud --hostname cloud.example.com
    """
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        from shipyard.deploy.context import parse_set_values, resolve_parameters
        from shipyard.deploy.renderer import ManifestRenderer

        spec = load_deployment(deployment_file, env_file)
        params = resolve_parameters(
            spec,
            cluster=None,
            namespace=namespace,
            hostname=hostname,
            overrides=parse_set_values(set_values),
        )
        documents = [
            document
            for rendered in ManifestRenderer().render(spec, params)
            for document in rendered.documents
        ]
        click.echo(yaml.safe_dump_all(documents, sort_keys=False), nl=False)


@deploy.command()
@deployment_file_argument
@cluster_options
@click.option("--hostname", default=None, help="Public hostname of routes")
@click.option(
    "--set",
    "set_values",
    multiple=True,
    metavar="KEY=VALUE",
    help="Override a deployment parameter (repeatable)",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=1),
    default=None,
    help="Overall deadline of the run in seconds",
)
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@verbosity_options
def run(
    deployment_file: str,
    namespace: str | None,
    kubeconfig: str | None,
    kube_context: str | None,
    env_file: str | None,
    hostname: str | None,
    set_values: tuple[str, ...],
    timeout: float | None,
    as_json: bool,
    verbose: bool,
    quiet: bool,
) -> None:
    """Reconcile the namespace with the deployment.

    Running it again with an unchanged deployment changes nothing. Exits
    with status 4 when any component failed; the report is printed first.

    Example:

        shipyard deploy run --hostname cloud.apps.example.com

        shipyard deploy run --set office_enabled=true --json
    """
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        from shipyard.config.loader import load_run_settings
        from shipyard.deploy.clusters import create_cluster
        from shipyard.deploy.context import parse_set_values, resolve_parameters
        from shipyard.deploy.reconciler import Reconciler
        from shipyard.deploy.reporter import Reporter

        spec = load_deployment(deployment_file, env_file)
        overrides = parse_set_values(set_values)
        settings = load_run_settings(
            {"timeout": timeout, "kubeconfig": kubeconfig, "context": kube_context}
        )
        cluster = create_cluster(settings)
        params = resolve_parameters(
            spec,
            cluster=cluster,
            namespace=namespace,
            hostname=hostname,
            overrides=overrides,
        )

        if not quiet and not as_json:
            click.echo()
            click.secho("Deploy Configuration:", bold=True)
            click.echo(f"  Deployment: {spec.name}")
            click.echo(f"  Namespace:  {params.namespace}")
            if params.hostname:
                click.echo(f"  Hostname:   {params.hostname}")
            click.echo(f"  Components: {len(spec.components)}")
            click.echo(f"  Timeout:    {settings.timeout:g}s")
            click.echo()

        reporter = Reporter()
        reconciler = Reconciler(cluster, settings, reporter=reporter)
        report = asyncio.run(reconciler.reconcile(spec, params))

        if as_json:
            click.echo(reporter.render_json(report))
        else:
            click.echo(reporter.render_text(report))

        if report.status == RunStatus.FAILED:
            sys.exit(EXIT_RUN_FAILED)


@deploy.command()
@deployment_file_argument
@cluster_options
@click.option("--hostname", default=None, help="Public hostname of routes")
@click.option(
    "--set",
    "set_values",
    multiple=True,
    metavar="KEY=VALUE",
    help="Override a deployment parameter (repeatable)",
)
@click.option("--json", "as_json", is_flag=True, help="Print status as JSON")
@verbosity_options
def status(
    deployment_file: str,
    namespace: str | None,
    kubeconfig: str | None,
    kube_context: str | None,
    env_file: str | None,
    hostname: str | None,
    set_values: tuple[str, ...],
    as_json: bool,
    verbose: bool,
    quiet: bool,
) -> None:
    """Compare the state stored in the cluster with the deployment."""
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        from shipyard.config.loader import load_run_settings
        from shipyard.deploy.clusters import create_cluster
        from shipyard.deploy.context import parse_set_values, resolve_parameters
        from shipyard.deploy.reconciler import Reconciler
        from shipyard.deploy.reporter import Reporter

        spec = load_deployment(deployment_file, env_file)
        settings = load_run_settings(
            {"kubeconfig": kubeconfig, "context": kube_context}
        )
        cluster = create_cluster(settings)
        params = resolve_parameters(
            spec,
            cluster=cluster,
            namespace=namespace,
            hostname=hostname,
            overrides=parse_set_values(set_values),
        )
        rows = Reconciler(cluster, settings).status(spec, params)

        if as_json:
            payload = [
                {
                    "component": name,
                    "sync": sync,
                    "state": state.model_dump(mode="json") if state else None,
                }
                for name, sync, state in rows
            ]
            click.echo(json.dumps(payload, indent=2))
            return

        click.echo(Reporter().render_status(spec.name, rows))


@deploy.command()
@deployment_file_argument
@cluster_options
@click.option(
    "--keep-data",
    is_flag=True,
    help="Keep volume claims and secrets",
)
@click.option(
    "--force",
    is_flag=True,
    help="Skip confirmation prompt",
)
@verbosity_options
def destroy(
    deployment_file: str,
    namespace: str | None,
    kubeconfig: str | None,
    kube_context: str | None,
    env_file: str | None,
    keep_data: bool,
    force: bool,
    verbose: bool,
    quiet: bool,
) -> None:
    """Delete every resource the deployment owns."""
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        from shipyard.config.loader import load_run_settings
        from shipyard.deploy.clusters import create_cluster
        from shipyard.deploy.context import resolve_namespace
        from shipyard.deploy.reconciler import Reconciler

        spec = load_deployment(deployment_file, env_file)
        settings = load_run_settings(
            {"kubeconfig": kubeconfig, "context": kube_context}
        )
        cluster = create_cluster(settings)
        ns = resolve_namespace(spec, cluster, namespace)

        if not force:
            what = "" if keep_data else " including volumes and secrets"
            confirm = click.confirm(
                f"Destroy deployment '{spec.name}' in {ns}{what}?", default=False
            )
            if not confirm:
                click.secho("Destroy aborted.", fg="yellow")
                sys.exit(0)

        deleted = asyncio.run(
            Reconciler(cluster, settings).cleanup(spec.name, ns, keep_data=keep_data)
        )

        if quiet:
            click.echo(str(len(deleted)))
            sys.exit(0)

        click.echo()
        click.secho("Deployment Destroyed", fg="green", bold=True)
        click.echo(f"  Deployment: {spec.name}")
        click.echo(f"  Namespace:  {ns}")
        click.echo(f"  Deleted:    {len(deleted)} resources")
        for ref in deleted:
            click.echo(f"    {ref}")
        click.echo()
