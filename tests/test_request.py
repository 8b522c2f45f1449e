"""Tests for DiscoveryRequest and the discovery pipeline against a mocked client."""

import threading
from unittest.mock import MagicMock

import pytest

from branchsource.domain import (
    BranchHead,
    CheckoutStrategy,
    NOT_MERGEABLE_HASH,
    PullRequestHead,
    TagHead,
)
from branchsource.exit_codes import NotFoundError, ScanInterrupted, TransportError
from branchsource.infra.github_client import (
    GitHubBranch,
    GitHubClient,
    GitHubPullRequest,
    GitHubRepositoryInfo,
    GitHubTag,
)
from branchsource.services import (
    BranchDiscoveryStrategy,
    BranchDiscoveryTrait,
    DiscoveryContext,
    ForkPullRequestDiscoveryTrait,
    ForkTrust,
    HeadObserver,
    IgnoreDraftPullRequestFilterTrait,
    LazyCollection,
    OriginPullRequestDiscoveryTrait,
    RepositorySource,
    TagDiscoveryTrait,
    WildcardBranchFilterTrait,
    WildcardPullRequestLabelFilterTrait,
)

SOURCE = RepositorySource("acme", "widgets")
MERGE = CheckoutStrategy.MERGE
HEAD = CheckoutStrategy.HEAD


def make_pull(number, head_ref="feature", head_repository="acme/widgets", head_owner="acme",
              labels=None, draft=False, mergeable=True, merge_commit_sha="m0", base_ref="master",
              state="open"):
    return GitHubPullRequest(
        number=number,
        state=state,
        title=f"PR {number}",
        user_login=head_owner,
        head_ref=head_ref,
        head_sha=f"h{number}",
        head_owner=head_owner,
        head_repository=head_repository,
        base_ref=base_ref,
        base_sha="oldbase",
        draft=draft,
        labels=list(labels or []),
        mergeable=mergeable,
        merge_commit_sha=merge_commit_sha,
    )


@pytest.fixture
def client():
    client = MagicMock(spec=GitHubClient)
    client.get_repository.return_value = GitHubRepositoryInfo(
        owner="acme", name="widgets", full_name="acme/widgets", default_branch="master"
    )
    client.list_branches.return_value = [
        GitHubBranch("dev", "d1"),
        GitHubBranch("master", "b1"),
        GitHubBranch("feature", "f1"),
    ]
    client.get_branch.return_value = GitHubBranch("master", "b1")
    client.list_pull_requests.return_value = []
    client.list_tags.return_value = []
    client.get_commit_date.return_value = 1_700_000_000_000
    return client


def scan(client, traits, includes=None, **kwargs):
    observer = HeadObserver(includes)
    context = DiscoveryContext().with_traits(traits)
    with context.new_request(SOURCE, observer, client, merge_retry_delay=0, **kwargs) as request:
        request.process()
    return observer


class TestBranches:
    """Tests for branch discovery."""

    def test_default_branch_first(self, client):
        observer = scan(client, [BranchDiscoveryTrait(BranchDiscoveryStrategy.ALL)])
        assert [h.name for h in observer.heads] == ["master", "dev", "feature"]
        assert all(o.trusted for o in observer.observations)

    def test_single_requested_branch(self, client):
        client.get_branch.return_value = GitHubBranch("dev", "d1")
        observer = scan(client, [BranchDiscoveryTrait()], includes=[BranchHead("dev")])
        assert observer.heads == [BranchHead("dev")]
        assert observer.observations[0].revision.sha == "d1"
        client.list_branches.assert_not_called()
        client.get_branch.assert_called_once_with("acme", "widgets", "dev")

    def test_single_requested_branch_absent(self, client):
        client.get_branch.return_value = None
        observer = scan(client, [BranchDiscoveryTrait()], includes=[BranchHead("gone")])
        assert observer.heads == []
        client.list_branches.assert_not_called()

    def test_wildcard_filter(self, client):
        observer = scan(client, [
            BranchDiscoveryTrait(BranchDiscoveryStrategy.ALL),
            WildcardBranchFilterTrait("*", "feat*"),
        ])
        assert [h.name for h in observer.heads] == ["master", "dev"]

    def test_exclude_pr_branches(self, client):
        client.list_pull_requests.return_value = [make_pull(1, head_ref="feature")]
        observer = scan(client, [BranchDiscoveryTrait(), OriginPullRequestDiscoveryTrait()])
        assert [h.name for h in observer.heads] == ["master", "dev", "PR-1"]

    def test_fork_branch_with_same_name_is_not_excluded(self, client):
        client.list_pull_requests.return_value = [
            make_pull(1, head_ref="feature", head_repository="eve/widgets", head_owner="eve")
        ]
        observer = scan(client, [BranchDiscoveryTrait()])
        assert "feature" in [h.name for h in observer.heads]

    def test_only_pr_branches(self, client):
        client.list_pull_requests.return_value = [make_pull(1, head_ref="feature")]
        observer = scan(client, [BranchDiscoveryTrait(BranchDiscoveryStrategy.ONLY_PR_BRANCHES)])
        assert [h.name for h in observer.heads] == ["feature"]

    @pytest.mark.parametrize("strategy, accepted", [
        (BranchDiscoveryStrategy.EXCLUDE_PR_BRANCHES, False),
        (BranchDiscoveryStrategy.ONLY_PR_BRANCHES, True),
    ])
    def test_narrowed_scan_agrees_with_full_scan(self, client, strategy, accepted):
        client.list_pull_requests.return_value = [make_pull(1, head_ref="feature")]
        client.get_branch.return_value = GitHubBranch("feature", "f1")
        traits = [BranchDiscoveryTrait(strategy)]

        full = scan(client, traits)
        narrowed = scan(client, traits, includes=[BranchHead("feature")])

        assert (BranchHead("feature") in full.heads) is accepted
        assert (BranchHead("feature") in narrowed.heads) is accepted
        client.list_pull_requests.assert_called_with("acme", "widgets", "open", head="acme:feature")

    def test_narrowed_to_several_branches_lists_all_pull_requests(self, client):
        client.list_pull_requests.return_value = [make_pull(1, head_ref="feature")]
        observer = scan(client, [BranchDiscoveryTrait()], includes=[BranchHead("feature"), BranchHead("dev")])
        assert observer.heads == [BranchHead("dev")]
        client.list_pull_requests.assert_called_once_with("acme", "widgets", "open", head=None)

    def test_narrowed_scan_skips_kinds_not_requested(self, client):
        observer = scan(client, [BranchDiscoveryTrait(BranchDiscoveryStrategy.ALL), TagDiscoveryTrait()],
                        includes=[BranchHead("dev"), BranchHead("gone")])
        assert observer.heads == [BranchHead("dev")]
        client.list_tags.assert_not_called()
        client.get_tag.assert_not_called()

    def test_listing_failure_observes_nothing(self, client):
        client.list_branches.side_effect = TransportError("boom", status_code=500)
        observer = HeadObserver()
        request = DiscoveryContext().with_traits([BranchDiscoveryTrait()]).new_request(SOURCE, observer, client)
        with pytest.raises(TransportError):
            request.process()
        assert observer.heads == []

    def test_missing_repository(self, client):
        client.list_branches.side_effect = NotFoundError("nope")
        with pytest.raises(TransportError) as excinfo:
            scan(client, [BranchDiscoveryTrait()])
        assert excinfo.value.status_code == 404

    def test_observer_done_stops_scan(self, client):
        client.list_pull_requests.return_value = [make_pull(1)]
        observer = scan(
            client,
            [BranchDiscoveryTrait(BranchDiscoveryStrategy.ALL), OriginPullRequestDiscoveryTrait()],
            includes=[BranchHead("master"), BranchHead("dev")],
        )
        assert set(observer.heads) == {BranchHead("master"), BranchHead("dev")}
        client.list_pull_requests.assert_not_called()


class TestTags:
    def test_tags_after_branches(self, client):
        client.list_tags.return_value = [GitHubTag("v1.0", "t1")]
        observer = scan(client, [BranchDiscoveryTrait(BranchDiscoveryStrategy.ALL), TagDiscoveryTrait()])
        assert observer.heads[-1] == TagHead("v1.0")
        assert observer.heads[-1].timestamp == 1_700_000_000_000
        assert observer.observations[-1].trusted

    def test_single_requested_tag(self, client):
        client.get_tag.return_value = GitHubTag("v2.0", "t2")
        observer = scan(client, [TagDiscoveryTrait()], includes=[TagHead("v2.0")])
        assert observer.heads == [TagHead("v2.0")]
        client.list_tags.assert_not_called()


class TestPullRequests:
    """Tests for pull request heads, revisions and trust."""

    def test_both_strategies_named_with_suffix(self, client):
        client.list_pull_requests.return_value = [make_pull(4)]
        observer = scan(client, [OriginPullRequestDiscoveryTrait(frozenset({MERGE, HEAD}))])
        assert [h.name for h in observer.heads] == ["PR-4-merge", "PR-4-head"]

    def test_merge_revision_uses_current_target(self, client):
        client.list_pull_requests.return_value = [make_pull(4, merge_commit_sha="m4")]
        observer = scan(client, [OriginPullRequestDiscoveryTrait()])
        revision = observer.observations[0].revision
        assert revision.base_sha == "b1"
        assert revision.head_sha == "h4"
        assert revision.merge_sha == "m4"

    def test_head_revision(self, client):
        client.list_pull_requests.return_value = [make_pull(4, mergeable=None)]
        observer = scan(client, [OriginPullRequestDiscoveryTrait(frozenset({HEAD}))])
        revision = observer.observations[0].revision
        assert revision.merge_sha is None
        client.get_pull_request.assert_not_called()

    def test_not_mergeable(self, client):
        client.list_pull_requests.return_value = [make_pull(4, mergeable=False)]
        observer = scan(client, [OriginPullRequestDiscoveryTrait()])
        assert observer.observations[0].revision.merge_sha == NOT_MERGEABLE_HASH

    def test_merge_state_retried_once(self, client):
        client.list_pull_requests.return_value = [make_pull(4, mergeable=None, merge_commit_sha=None)]
        client.get_pull_request.side_effect = [
            make_pull(4, mergeable=None, merge_commit_sha=None),
            make_pull(4, mergeable=True, merge_commit_sha="late"),
        ]
        observer = scan(client, [OriginPullRequestDiscoveryTrait()])
        assert observer.observations[0].revision.merge_sha == "late"
        assert client.get_pull_request.call_count == 2

    def test_merge_state_never_computed(self, client):
        client.list_pull_requests.return_value = [make_pull(4, mergeable=None, merge_commit_sha=None)]
        client.get_pull_request.return_value = make_pull(4, mergeable=None, merge_commit_sha=None)
        with pytest.raises(TransportError):
            scan(client, [OriginPullRequestDiscoveryTrait()])

    def test_closed_single_pull_request(self, client):
        client.get_pull_request.return_value = make_pull(9, state="closed")
        includes = [PullRequestHead(9, "feature", MERGE)]
        observer = scan(client, [OriginPullRequestDiscoveryTrait()], includes=includes)
        assert observer.heads == []
        client.list_pull_requests.assert_not_called()

    @pytest.mark.parametrize("labels, excluded", [
        (["pull-request", "nobuild"], True),
        (["my-pull-x"], False),
        (["other"], True),
        ([], True),
    ])
    def test_label_prefilter(self, client, labels, excluded):
        client.list_pull_requests.return_value = [make_pull(1, labels=labels)]
        observer = scan(client, [
            OriginPullRequestDiscoveryTrait(),
            WildcardPullRequestLabelFilterTrait("pull-*", "nobuild"),
        ])
        assert (observer.heads == []) is excluded

    def test_unlabelled_pass_with_star(self, client):
        client.list_pull_requests.return_value = [make_pull(1)]
        observer = scan(client, [
            OriginPullRequestDiscoveryTrait(),
            WildcardPullRequestLabelFilterTrait("*", "nobuild"),
        ])
        assert len(observer.heads) == 1

    def test_ignore_drafts(self, client):
        client.list_pull_requests.return_value = [make_pull(1, draft=True), make_pull(2, head_ref="other")]
        observer = scan(client, [OriginPullRequestDiscoveryTrait(), IgnoreDraftPullRequestFilterTrait()])
        assert [h.name for h in observer.heads] == ["PR-2"]

    def test_pull_request_filtered_by_target(self, client):
        client.list_pull_requests.return_value = [
            make_pull(1, base_ref="master"),
            make_pull(2, head_ref="x", base_ref="dev"),
        ]
        observer = scan(client, [OriginPullRequestDiscoveryTrait(), WildcardBranchFilterTrait("master")])
        assert [h.number for h in observer.heads] == [1]

    def test_fork_trusted_by_permission_once(self, client):
        client.list_pull_requests.return_value = [
            make_pull(7, head_repository="eve/widgets", head_owner="eve"),
        ]
        client.get_collaborator_permission.return_value = "write"
        observer = scan(client, [
            ForkPullRequestDiscoveryTrait(frozenset({MERGE, HEAD}), ForkTrust.PERMISSION),
        ])
        assert [h.name for h in observer.heads] == ["PR-7-merge", "PR-7-head"]
        assert all(h.is_fork for h in observer.heads)
        assert all(o.trusted for o in observer.observations)
        client.get_collaborator_permission.assert_called_once_with("acme", "widgets", "eve")

    def test_fork_read_permission_untrusted(self, client):
        client.list_pull_requests.return_value = [
            make_pull(7, head_repository="eve/widgets", head_owner="eve"),
        ]
        client.get_collaborator_permission.return_value = "read"
        observer = scan(client, [ForkPullRequestDiscoveryTrait(trust=ForkTrust.PERMISSION)])
        assert not observer.observations[0].trusted

    def test_fork_contributor(self, client):
        client.list_pull_requests.return_value = [
            make_pull(7, head_repository="eve/widgets", head_owner="Eve"),
        ]
        client.get_collaborator_names.return_value = {"eve", "acme-bot"}
        observer = scan(client, [ForkPullRequestDiscoveryTrait(trust=ForkTrust.CONTRIBUTORS)])
        assert observer.observations[0].trusted

    def test_collaborators_not_permitted(self, client):
        client.list_pull_requests.return_value = [
            make_pull(7, head_repository="eve/widgets", head_owner="eve"),
        ]
        client.get_collaborator_names.side_effect = TransportError("forbidden", status_code=403)
        observer = scan(client, [ForkPullRequestDiscoveryTrait(trust=ForkTrust.CONTRIBUTORS)])
        assert not observer.observations[0].trusted

    def test_fork_not_discovered_without_fork_trait(self, client):
        client.list_pull_requests.return_value = [
            make_pull(7, head_repository="eve/widgets", head_owner="eve"),
            make_pull(8, head_ref="mine"),
        ]
        observer = scan(client, [OriginPullRequestDiscoveryTrait()])
        assert [h.number for h in observer.heads] == [8]


class TestRequestLifecycle:
    """Tests for closing and cancelling a request."""

    def test_closed_request_refuses_use(self, client):
        request = DiscoveryContext().with_traits([BranchDiscoveryTrait()]).new_request(
            SOURCE, HeadObserver(), client
        )
        request.close()
        assert request.closed
        with pytest.raises(RuntimeError):
            list(request.branches)
        with pytest.raises(RuntimeError):
            request.process()

    def test_cancelled_scan(self, client):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ScanInterrupted):
            scan(client, [BranchDiscoveryTrait()], cancel=cancel)

    def test_request_snapshot_is_independent_of_context(self, client):
        context = DiscoveryContext().with_traits([BranchDiscoveryTrait()])
        request = context.new_request(SOURCE, HeadObserver(), client)
        context.want_tags(True)
        assert not request.fetch_tags

    def test_observer_first_observation_wins(self):
        from branchsource.domain import BranchRevision
        observer = HeadObserver()
        head = BranchHead("main")
        observer.observe(head, BranchRevision(head, "one"), True)
        observer.observe(head, BranchRevision(head, "two"), False)
        assert observer.observations[0].revision.sha == "one"


class TestLazyCollection:
    def test_loads_once(self):
        loader = MagicMock(return_value=[1, 2, 3])
        items = LazyCollection(loader)
        assert not items.is_loaded
        assert list(items) == [1, 2, 3]
        assert len(items) == 3
        loader.assert_called_once()

    def test_failed_load_retried(self):
        loader = MagicMock(side_effect=[TransportError("boom"), [1]])
        items = LazyCollection(loader)
        with pytest.raises(TransportError):
            list(items)
        assert list(items) == [1]


class TestRepositorySource:
    def test_parse(self):
        assert RepositorySource.parse("acme/widgets") == SOURCE
        assert str(SOURCE) == "acme/widgets"

    @pytest.mark.parametrize("value", ["acme", "acme/", "/widgets", "a/b/c"])
    def test_parse_invalid(self, value):
        with pytest.raises(ValueError):
            RepositorySource.parse(value)
