"""
Scan command for branchsource.

Discovers the branches, tags and pull requests of a repository and prints
one record per accepted head.
"""

import logging
from typing import List, Optional

import click

from ..cli_utils import standard_command, add_common_options
from ..domain import BranchHead, CheckoutStrategy, Head, HeadOrigin, PullRequestHead, TagHead
from ..exit_codes import NotFoundError, NothingDiscoveredError, USAGE_ERROR, CommandError
from ..render import render_heads_table
from ..services import RepositorySource, SourceScanner

logger = logging.getLogger(__name__)


def parse_source(repository: str) -> RepositorySource:
    try:
        return RepositorySource.parse(repository)
    except ValueError as e:
        raise CommandError(str(e), USAGE_ERROR) from e


def pull_request_includes(scanner: SourceScanner, source: RepositorySource, number: int) -> List[Head]:
    """Heads of pull request ``number`` for every checkout strategy."""
    client = scanner.client_for(source.owner)
    pull = client.get_pull_request(source.owner, source.repository, number)
    if pull is None:
        raise NotFoundError(f"Pull request {number} of {source} not found")
    fork = (pull.head_repository or '').lower() != source.full_name.lower()
    return [
        PullRequestHead(
            number=number,
            source_branch=pull.head_ref,
            strategy=strategy,
            origin=HeadOrigin.FORK if fork else HeadOrigin.ORIGIN,
        )
        for strategy in CheckoutStrategy
    ]


def build_includes(
    scanner: SourceScanner,
    source: RepositorySource,
    branches,
    tags,
    pull_requests
) -> Optional[List[Head]]:
    if not (branches or tags or pull_requests):
        return None
    includes: List[Head] = [BranchHead(name) for name in branches]
    includes.extend(TagHead(name) for name in tags)
    for number in pull_requests:
        includes.extend(pull_request_includes(scanner, source, number))
    return includes


@click.command(name='scan')
@click.argument('repository')
@click.option('--branch', 'branches', multiple=True, help='Only look for this branch (repeatable)')
@click.option('--tag', 'tags', multiple=True, help='Only look for this tag (repeatable)')
@click.option('--pr', 'pull_requests', multiple=True, type=int, help='Only look for this pull request (repeatable)')
@click.option('--notifications', is_flag=True, help='Include the commit statuses each head would report')
@add_common_options('verbose', 'quiet', 'format', 'table')
@standard_command()
def scan_handler(repository, branches, tags, pull_requests, notifications, table, **kwargs):
    """Discover the heads of a GitHub repository.

    REPOSITORY: OWNER/REPO

    \b
    Discovery follows the 'discovery' section of the configuration.
    Narrowing to a single branch, tag or pull request fetches only that one.

    \b
    Examples:
        branchsource scan acme/widgets
        branchsource scan acme/widgets --branch main
        branchsource scan acme/widgets --pr 42 --notifications
    """
    source = parse_source(repository)
    scanner = SourceScanner()
    includes = build_includes(scanner, source, branches, tags, pull_requests)

    records = []
    for observation in scanner.scan(source, includes):
        record = {'repository': source.full_name}
        record.update(observation.to_dict())
        if notifications:
            record['notifications'] = [p.to_dict() for p in scanner.notifications(observation)]
        records.append(record)

    logger.info(f"Discovered {len(records)} heads in {source}")
    if includes is not None and not records:
        raise NothingDiscoveredError(f"None of the requested heads were found in {source}")
    if table:
        render_heads_table(records, title=source.full_name)
        return None
    return records
