#!/usr/bin/env python3

import click

from branchsource.commands.scan import scan_handler
from branchsource.commands.probe import probe_handler
from branchsource.commands.token import token_handler, orgs_handler


@click.group()
@click.version_option(package_name='branchsource')
def cli():
    """branchsource - Discover buildable heads of GitHub repositories.

    Scans branches, tags and pull requests through the GitHub API, applies
    the configured discovery policy and reports what would be built.
    """
    pass


cli.add_command(scan_handler, name='scan')
cli.add_command(probe_handler, name='probe')
cli.add_command(token_handler, name='token')
cli.add_command(orgs_handler, name='orgs')


def main():
    cli()

if __name__ == "__main__":
    main()
