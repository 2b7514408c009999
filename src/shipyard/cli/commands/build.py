"""Click command building component images.

Implements 'shipyard build': every component with a ``build`` section is
built with Docker, tagged and pushed to the registry of its image reference.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import click

from shipyard.cli.commands.deploy import (
    deployment_file_argument,
    handle_deployment_errors,
    load_deployment,
    verbosity_options,
)
from shipyard.lib.logging_config import setup_logging


@click.command(name="build")
@deployment_file_argument
@click.option(
    "--env-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Environment file (default: .env next to the deployment)",
)
@click.option(
    "--component",
    "components",
    multiple=True,
    help="Only build these components (repeatable)",
)
@click.option(
    "--no-cache",
    is_flag=True,
    help="Build without using cache",
)
@click.option(
    "--no-push",
    is_flag=True,
    help="Build locally without pushing",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without executing",
)
@verbosity_options
def build(
    deployment_file: str,
    env_file: str | None,
    components: tuple[str, ...],
    no_cache: bool,
    no_push: bool,
    dry_run: bool,
    verbose: bool,
    quiet: bool,
) -> None:
    """Build and push the images of components that declare a build.

    Build contexts are relative to the directory of DEPLOYMENT_FILE.

    Example:

        shipyard build

        shipyard build --component nextcloud --no-push
    """
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        from shipyard.deploy.builder import plan_builds

        spec = load_deployment(deployment_file, env_file)
        base_dir = Path(deployment_file).resolve().parent
        plans = plan_builds(spec, base_dir)
        if components:
            plans = [plan for plan in plans if plan.component in components]

        if not plans:
            click.secho("No components to build.", fg="yellow")
            sys.exit(0)

        if not quiet:
            click.echo()
            click.secho("Build Configuration:", bold=True)
            for plan in plans:
                click.echo(f"  {plan.component}:")
                click.echo(f"    Image:    {plan.full_name}")
                click.echo(f"    Context:  {plan.context}")
                click.echo(f"    Platform: {plan.platform}")
            click.echo()

        if dry_run:
            click.secho("[DRY RUN] No image was built", fg="yellow")
            sys.exit(0)

        from shipyard.deploy.builder import ContainerBuilder, get_oci_labels

        if not quiet:
            click.echo("Connecting to Docker...")
        builder = ContainerBuilder()

        build_kwargs: dict[str, Any] = {}
        if no_cache:
            build_kwargs["nocache"] = True

        for plan in plans:
            if not quiet:
                click.echo(f"Building image {plan.full_name}...")
            result = builder.build(
                plan,
                labels=get_oci_labels(spec.name, plan.component, plan.tag),
                **build_kwargs,
            )

            if verbose and result.log_lines:
                click.secho("Build Output:", bold=True)
                for line in result.log_lines:
                    if line.strip():
                        click.echo(f"  {line}")
                click.echo()

            if not no_push:
                if not quiet:
                    click.echo(f"Pushing image {result.full_name}...")
                builder.push(result)

            if quiet:
                click.echo(result.full_name)
                continue

            short_id = result.image_id.split(":")[-1][:12]
            click.secho(f"Built {result.full_name}", fg="green", bold=True)
            click.echo(f"  Image ID: {short_id}")
            click.echo(f"  Pushed:   {'yes' if result.pushed else 'no'}")
            click.echo()
