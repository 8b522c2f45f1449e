"""
Token commands for branchsource.

Health checks for the GitHub App installation token cache.
"""

from datetime import datetime, timezone

import click

from ..cli_utils import standard_command, add_common_options
from ..config import load_config
from ..exit_codes import ConfigError
from ..infra import InstallationToken, MultiOrgTokenCache
from ..render import render_table, render_token_table
from ..services import build_token_cache


def _iso(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


def token_record(app_id: str, org, token: InstallationToken, show_secret: bool = False) -> dict:
    record = {
        'app_id': app_id,
        'organization': org,
        'issued_at': _iso(token.issued_at),
        'stale_at': _iso(token.stale_at),
        'expires_at': _iso(token.expires_at),
        'stale': token.is_stale(),
    }
    if show_secret:
        record['token'] = token.secret
    return record


def _require_app(config):
    cache = build_token_cache(config)
    if cache is None:
        raise ConfigError("No GitHub App configured; set github.app_id and github.private_key_file")
    return cache


@click.command(name='token')
@click.option('--org', default=None, help='Organization to issue the token for')
@click.option('--refresh', is_flag=True, help='Force a new token even if the current one is fresh')
@click.option('--show-secret', is_flag=True, help='Include the token itself in the output')
@add_common_options('verbose', 'quiet', 'format', 'table')
@standard_command()
def token_handler(org, refresh, show_secret, table, **kwargs):
    """Issue an installation token and show its lifetime.

    \b
    Examples:
        branchsource token
        branchsource token --org acme --refresh
    """
    config = load_config()
    cache = _require_app(config)

    if isinstance(cache, MultiOrgTokenCache):
        org = cache.resolve_org(org)
        if refresh:
            token = cache.force_refresh(org)
        else:
            cache.get_token(org)
            token = cache.token_for(org)
    else:
        org = cache.credentials.owner
        if refresh:
            token = cache.force_refresh()
        else:
            cache.get_token()
            token = cache.token

    record = token_record(cache.credentials.app_id, org, token, show_secret)
    if table:
        render_token_table(record)
        return None
    return record


@click.command(name='orgs')
@click.option('--refresh', is_flag=True, help='Ignore the cached organization list')
@add_common_options('verbose', 'quiet', 'format', 'table')
@standard_command()
def orgs_handler(refresh, table, **kwargs):
    """List the organizations the GitHub App is installed on."""
    config = load_config()
    cache = _require_app(config)
    if isinstance(cache, MultiOrgTokenCache):
        organizations = cache.force_refresh_organizations() if refresh else cache.available_organizations()
    else:
        organizations = cache.issuer.available_organizations()

    records = [{'organization': name} for name in organizations]
    if table:
        render_table(['Organization'], [[name] for name in organizations], title="Installations")
        return None
    return records
