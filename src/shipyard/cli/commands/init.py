"""Click command for initializing new Shipyard projects.

This module implements the 'shipyard init' command which writes a built-in
stack as an editable deployment.yaml.
"""

from pathlib import Path

import click
import yaml

from shipyard.cli.commands.deploy import handle_deployment_errors
from shipyard.config.defaults import DEFAULT_DEPLOYMENT_FILE
from shipyard.lib.errors import ConfigError
from shipyard.stacks import STACKS

HEADER = """\
# Shipyard deployment: {stack} stack.
#
# Deploy with:
#   shipyard deploy run --namespace <namespace> --hostname <public hostname>
#
# Parameters can be overridden per run with --set key=value.
"""


@click.command(name="init")
@click.argument(
    "directory",
    type=click.Path(file_okay=False),
    default=".",
    required=False,
)
@click.option(
    "--stack",
    default="nextcloud",
    type=click.Choice(sorted(STACKS)),
    help="Built-in stack to start from",
)
@click.option(
    "--name",
    default=None,
    help="Deployment name (default: the stack name)",
)
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing deployment.yaml",
)
def init(directory: str, stack: str, name: str | None, force: bool) -> None:
    """Write a deployment.yaml for a built-in stack into DIRECTORY.

    Example:

        shipyard init

        shipyard init my-cloud --name cloud
    """
    with handle_deployment_errors():
        target = Path(directory) / DEFAULT_DEPLOYMENT_FILE
        if target.exists() and not force:
            raise ConfigError(
                "deployment",
                f"{target} already exists. Use --force to overwrite it.",
            )

        from shipyard.config.loader import ConfigLoader

        document = STACKS[stack](name or stack)
        ConfigLoader().validate_deployment(document, source=f"stack '{stack}'")

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            HEADER.format(stack=stack)
            + "\n"
            + yaml.safe_dump(document, sort_keys=False, default_flow_style=False)
        )

        click.secho(f"Created {target}", fg="green")
        click.echo(f"  Stack:      {stack}")
        click.echo(f"  Deployment: {document['name']}")
        click.echo(f"  Components: {len(document['components'])}")
