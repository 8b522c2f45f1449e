"""Tests for the domain layer."""

import pytest

from branchsource.domain import (
    BranchHead,
    BranchRevision,
    CheckoutStrategy,
    HeadOrigin,
    MergeState,
    MergeStatus,
    NOT_MERGEABLE_HASH,
    PullRequestHead,
    PullRequestRevision,
    TagHead,
    pull_request_head_name,
)


class TestHeads:
    """Tests for head identity."""

    def test_branch_equality_by_name(self):
        assert BranchHead("main") == BranchHead("main")
        assert BranchHead("main") != BranchHead("dev")

    def test_tag_timestamp_not_compared(self):
        assert TagHead("v1.0", 1000) == TagHead("v1.0", 2000)
        assert hash(TagHead("v1.0", 1000)) == hash(TagHead("v1.0"))

    def test_pull_request_identity(self):
        a = PullRequestHead(1, "feature", CheckoutStrategy.MERGE, target="main", source_owner="alice")
        b = PullRequestHead(1, "feature", CheckoutStrategy.MERGE, target="dev", source_owner="bob")
        c = PullRequestHead(1, "feature", CheckoutStrategy.HEAD)
        assert a == b
        assert a != c
        assert len({a, b, c}) == 2

    def test_pull_request_default_name(self):
        head = PullRequestHead(42, "feature", CheckoutStrategy.HEAD)
        assert head.name == "PR-42"
        assert not head.is_merge
        assert not head.is_fork

    def test_pull_request_target_head(self):
        head = PullRequestHead(3, "f", CheckoutStrategy.MERGE, origin=HeadOrigin.FORK, target="main")
        assert head.target_head == BranchHead("main")
        assert head.is_fork

    def test_head_name_suffix_only_with_both_strategies(self):
        both = {CheckoutStrategy.MERGE, CheckoutStrategy.HEAD}
        assert pull_request_head_name(7, CheckoutStrategy.MERGE, {CheckoutStrategy.MERGE}) == "PR-7"
        assert pull_request_head_name(7, CheckoutStrategy.MERGE, both) == "PR-7-merge"
        assert pull_request_head_name(7, CheckoutStrategy.HEAD, both) == "PR-7-head"

    def test_to_dict(self):
        d = PullRequestHead(5, "fix", CheckoutStrategy.MERGE, target="main").to_dict()
        assert d['kind'] == 'pull_request'
        assert d['name'] == 'PR-5'
        assert d['strategy'] == 'merge'
        assert d['origin'] == 'origin'


class TestMergeState:
    """Tests for the tri-state mergeability."""

    def test_null_is_not_computed(self):
        state = MergeState.from_api(None, None)
        assert state.status is MergeStatus.NOT_COMPUTED
        assert not state.is_resolved
        assert state.as_hash() is None

    def test_false_is_not_mergeable(self):
        state = MergeState.from_api(False, "abc")
        assert state.status is MergeStatus.NOT_MERGEABLE
        assert state.as_hash() == NOT_MERGEABLE_HASH

    def test_mergeable(self):
        state = MergeState.from_api(True, "abc")
        assert state.is_resolved
        assert state.as_hash() == "abc"


class TestRevisions:
    """Tests for revisions."""

    def test_branch_revision(self):
        rev = BranchRevision(BranchHead("main"), "abc123")
        assert str(rev) == "abc123"
        assert rev.to_dict() == {'sha': 'abc123'}

    def test_merge_revision_str(self):
        head = PullRequestHead(1, "f", CheckoutStrategy.MERGE)
        rev = PullRequestRevision(head, "base", "tip", "merged")
        assert str(rev) == "tip+base (merged)"
        assert rev.is_mergeable

    def test_head_revision_str(self):
        head = PullRequestHead(1, "f", CheckoutStrategy.HEAD)
        assert str(PullRequestRevision(head, "base", "tip")) == "tip"

    def test_validate_not_mergeable(self):
        head = PullRequestHead(1, "f", CheckoutStrategy.MERGE)
        rev = PullRequestRevision(head, "base", "tip", NOT_MERGEABLE_HASH)
        assert not rev.is_mergeable
        with pytest.raises(ValueError, match="Not mergeable"):
            rev.validate_merge_sha()

    def test_validate_not_computed_is_fine(self):
        head = PullRequestHead(1, "f", CheckoutStrategy.MERGE)
        PullRequestRevision(head, "base", "tip", None).validate_merge_sha()
