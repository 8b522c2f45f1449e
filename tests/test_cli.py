"""
Tests for the branchsource command line interface.
"""

import json
import time
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from branchsource.cli import cli
from branchsource.commands.probe import build_head
from branchsource.domain import (
    BranchHead,
    BranchRevision,
    CheckoutStrategy,
    PullRequestHead,
    TagHead,
)
from branchsource.exit_codes import (
    CONFIG_ERROR,
    NOTHING_DISCOVERED,
    USAGE_ERROR,
    CommandError,
    TransportError,
)
from branchsource.infra import InstallationToken, InstallationTokenCache
from branchsource.infra.github_client import GitHubPullRequest
from branchsource.services import (
    FileType,
    Observation,
    ProbeStat,
    StatusPayload,
    CommitState,
)


def observation(name="main", sha="abc"):
    head = BranchHead(name)
    return Observation(head, BranchRevision(head, sha), True)


def lines(output):
    return [json.loads(line) for line in output.splitlines() if line.strip()]


class TestScanCommand:
    """Tests for `branchsource scan`."""

    @patch('branchsource.commands.scan.SourceScanner')
    def test_scan_outputs_jsonl(self, mock_scanner_cls):
        scanner = mock_scanner_cls.return_value
        scanner.scan.return_value = [observation("main"), observation("dev", "def")]

        result = CliRunner().invoke(cli, ['scan', 'acme/widgets'])

        assert result.exit_code == 0
        records = lines(result.output)
        assert [r['name'] for r in records] == ['main', 'dev']
        assert records[0]['repository'] == 'acme/widgets'
        assert records[0]['revision'] == {'sha': 'abc'}
        assert records[0]['trusted'] is True
        source, includes = scanner.scan.call_args[0]
        assert source.full_name == 'acme/widgets'
        assert includes is None

    @patch('branchsource.commands.scan.SourceScanner')
    def test_scan_narrowed(self, mock_scanner_cls):
        scanner = mock_scanner_cls.return_value
        scanner.scan.return_value = [observation("main")]

        result = CliRunner().invoke(cli, ['scan', 'acme/widgets', '--branch', 'main', '--tag', 'v1'])

        assert result.exit_code == 0
        includes = scanner.scan.call_args[0][1]
        assert includes == [BranchHead('main'), TagHead('v1')]

    @patch('branchsource.commands.scan.SourceScanner')
    def test_scan_pull_request_includes_both_strategies(self, mock_scanner_cls):
        scanner = mock_scanner_cls.return_value
        client = scanner.client_for.return_value
        client.get_pull_request.return_value = MagicMock(
            spec=GitHubPullRequest, head_ref='feature', head_repository='acme/widgets'
        )
        scanner.scan.return_value = [observation()]

        result = CliRunner().invoke(cli, ['scan', 'acme/widgets', '--pr', '4'])

        assert result.exit_code == 0
        includes = scanner.scan.call_args[0][1]
        assert includes == [
            PullRequestHead(4, 'feature', CheckoutStrategy.MERGE),
            PullRequestHead(4, 'feature', CheckoutStrategy.HEAD),
        ]

    @patch('branchsource.commands.scan.SourceScanner')
    def test_scan_nothing_found_when_narrowed(self, mock_scanner_cls):
        mock_scanner_cls.return_value.scan.return_value = []

        result = CliRunner().invoke(cli, ['scan', 'acme/widgets', '--branch', 'gone'])

        assert result.exit_code == NOTHING_DISCOVERED
        assert lines(result.output)[0]['type'] == 'NothingDiscoveredError'

    @patch('branchsource.commands.scan.SourceScanner')
    def test_scan_with_notifications(self, mock_scanner_cls):
        scanner = mock_scanner_cls.return_value
        scanner.scan.return_value = [observation()]
        scanner.notifications.return_value = [
            StatusPayload(CommitState.PENDING, "This commit is scheduled to be built", None,
                          "continuous-integration/jenkins/branch")
        ]

        result = CliRunner().invoke(cli, ['scan', 'acme/widgets', '--notifications'])

        assert result.exit_code == 0
        record = lines(result.output)[0]
        assert record['notifications'][0]['context'] == "continuous-integration/jenkins/branch"

    def test_scan_invalid_repository(self):
        result = CliRunner().invoke(cli, ['scan', 'widgets'])
        assert result.exit_code == USAGE_ERROR
        assert 'OWNER/REPOSITORY' in lines(result.output)[0]['error']

    @patch('branchsource.commands.scan.SourceScanner')
    def test_scan_transport_error(self, mock_scanner_cls):
        mock_scanner_cls.return_value.scan.side_effect = TransportError("boom", status_code=500)

        result = CliRunner().invoke(cli, ['scan', 'acme/widgets'])

        assert result.exit_code == TransportError("x", 500).exit_code
        assert lines(result.output)[0]['type'] == 'TransportError'

    @patch('branchsource.commands.scan.SourceScanner')
    def test_scan_yaml(self, mock_scanner_cls):
        mock_scanner_cls.return_value.scan.return_value = [observation()]
        result = CliRunner().invoke(cli, ['scan', 'acme/widgets', '--format', 'yaml'])
        assert result.exit_code == 0
        assert "name: main" in result.output


class TestProbeCommand:
    """Tests for `branchsource probe`."""

    def test_build_head(self):
        assert build_head('main', False, False, 'merge') == BranchHead('main')
        assert build_head('v1', True, False, 'merge') == TagHead('v1')
        head = build_head('12', False, True, 'head')
        assert head.number == 12
        assert head.strategy is CheckoutStrategy.HEAD

    @pytest.mark.parametrize("ref, tag, pr", [('main', True, True), ('abc', False, True)])
    def test_build_head_invalid(self, ref, tag, pr):
        with pytest.raises(CommandError) as excinfo:
            build_head(ref, tag, pr, 'merge')
        assert excinfo.value.exit_code == USAGE_ERROR

    @patch('branchsource.commands.probe.SourceScanner')
    def test_probe_paths(self, mock_scanner_cls):
        probe = mock_scanner_cls.return_value.probe.return_value.__enter__.return_value
        probe.ref = 'refs/heads/main'
        probe.stat.side_effect = [
            ProbeStat('Jenkinsfile', FileType.REGULAR_FILE),
            ProbeStat('missing', FileType.NONEXISTENT),
        ]
        probe.read.return_value = b"pipeline {}"

        result = CliRunner().invoke(
            cli, ['probe', 'acme/widgets', 'main', 'Jenkinsfile', 'missing', '--read']
        )

        assert result.exit_code == 0
        records = lines(result.output)
        assert records[0] == {
            'repository': 'acme/widgets',
            'ref': 'refs/heads/main',
            'path': 'Jenkinsfile',
            'type': 'file',
            'content': 'pipeline {}',
        }
        assert records[1]['type'] == 'nonexistent'
        assert 'content' not in records[1]
        probe.read.assert_called_once_with('Jenkinsfile')

    def test_probe_requires_paths(self):
        result = CliRunner().invoke(cli, ['probe', 'acme/widgets', 'main'])
        assert result.exit_code != 0


class TestTokenCommands:
    """Tests for `branchsource token` and `branchsource orgs`."""

    @patch('branchsource.commands.token.load_config')
    def test_token_without_app(self, mock_load_config):
        mock_load_config.return_value = {'github': {}}
        result = CliRunner().invoke(cli, ['token'])
        assert result.exit_code == CONFIG_ERROR

    @patch('branchsource.commands.token.build_token_cache')
    @patch('branchsource.commands.token.load_config')
    def test_token_single_owner(self, mock_load_config, mock_build):
        now = int(time.time())
        token = InstallationToken("ghs_secret", expires_at=now + 3600, issued_at=now)
        cache = MagicMock(spec=InstallationTokenCache)
        cache.credentials = MagicMock(app_id="123", owner="acme")
        cache.token = token
        mock_build.return_value = cache

        result = CliRunner().invoke(cli, ['token'])

        assert result.exit_code == 0
        record = lines(result.output)[0]
        assert record['app_id'] == "123"
        assert record['organization'] == "acme"
        assert record['stale'] is False
        assert 'token' not in record
        cache.get_token.assert_called_once()

    @patch('branchsource.commands.token.build_token_cache')
    @patch('branchsource.commands.token.load_config')
    def test_token_refresh_show_secret(self, mock_load_config, mock_build):
        now = int(time.time())
        cache = MagicMock(spec=InstallationTokenCache)
        cache.credentials = MagicMock(app_id="123", owner="acme")
        cache.force_refresh.return_value = InstallationToken("ghs_new", expires_at=now + 3600, issued_at=now)
        mock_build.return_value = cache

        result = CliRunner().invoke(cli, ['token', '--refresh', '--show-secret'])

        assert result.exit_code == 0
        assert lines(result.output)[0]['token'] == "ghs_new"

    @patch('branchsource.commands.token.build_token_cache')
    @patch('branchsource.commands.token.load_config')
    def test_orgs_single_owner(self, mock_load_config, mock_build):
        cache = MagicMock(spec=InstallationTokenCache)
        cache.issuer = MagicMock()
        cache.issuer.available_organizations.return_value = ['acme', 'globex']
        mock_build.return_value = cache

        result = CliRunner().invoke(cli, ['orgs'])

        assert result.exit_code == 0
        assert lines(result.output) == [{'organization': 'acme'}, {'organization': 'globex'}]
