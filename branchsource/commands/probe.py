"""
Probe command for branchsource.

Reports whether paths exist at a branch, tag or pull request of a
repository, optionally with their content.
"""

import click

from ..cli_utils import standard_command, add_common_options
from ..domain import BranchHead, CheckoutStrategy, PullRequestHead, TagHead
from ..exit_codes import USAGE_ERROR, CommandError
from ..render import render_probe_table
from ..services import FileType, SourceScanner
from .scan import parse_source


def build_head(ref: str, tag: bool, pr: bool, strategy: str):
    if tag and pr:
        raise CommandError("--tag and --pr are mutually exclusive", USAGE_ERROR)
    if tag:
        return TagHead(ref)
    if pr:
        try:
            number = int(ref)
        except ValueError as e:
            raise CommandError(f"Pull request number expected, got {ref!r}", USAGE_ERROR) from e
        return PullRequestHead(number, '', CheckoutStrategy(strategy))
    return BranchHead(ref)


@click.command(name='probe')
@click.argument('repository')
@click.argument('ref')
@click.argument('paths', nargs=-1, required=True)
@click.option('--tag', is_flag=True, help='REF names a tag')
@click.option('--pr', is_flag=True, help='REF is a pull request number')
@click.option('--strategy', type=click.Choice(['merge', 'head']), default='merge',
              help='Pull request checkout to probe (default: merge)')
@click.option('--read', 'read_content', is_flag=True, help='Include the content of regular files')
@add_common_options('verbose', 'quiet', 'format', 'table')
@standard_command()
def probe_handler(repository, ref, paths, tag, pr, strategy, read_content, table, **kwargs):
    """Check paths at a branch, tag or pull request.

    \b
    REPOSITORY: OWNER/REPO
    REF: branch name, tag name (--tag) or pull request number (--pr)
    PATHS: paths to check, relative to the repository root

    \b
    Examples:
        branchsource probe acme/widgets main Jenkinsfile
        branchsource probe acme/widgets 42 --pr --read Jenkinsfile
    """
    source = parse_source(repository)
    head = build_head(ref, tag, pr, strategy)
    scanner = SourceScanner()

    records = []
    with scanner.probe(source, head) as probe:
        for path in paths:
            stat = probe.stat(path)
            record = {'repository': source.full_name, 'ref': probe.ref}
            record.update(stat.to_dict())
            if read_content and stat.type is FileType.REGULAR_FILE:
                record['content'] = probe.read(path).decode('utf-8', errors='replace')
            records.append(record)

    if table:
        render_probe_table(records, ref=records[0]['ref'] if records else ref)
        return None
    return records
