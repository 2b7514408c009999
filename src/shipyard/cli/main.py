"""Command-line entry point for Shipyard."""

import click

from shipyard import __version__
from shipyard.cli.commands.build import build
from shipyard.cli.commands.deploy import deploy
from shipyard.cli.commands.init import init


@click.group()
@click.version_option(version=__version__, prog_name="shipyard")
def cli() -> None:
    """Shipyard: declarative stack deployments for OpenShift.

    Describe a stack once in deployment.yaml, then converge a namespace to
    it as often as you like.
    """


cli.add_command(init)
cli.add_command(build)
cli.add_command(deploy)


def main() -> None:
    """Run the CLI."""
    cli()


if __name__ == "__main__":
    main()
