"""
Domain layer for branchsource.

Contains pure domain objects with no I/O or side effects:
- Heads: branch, tag and pull request identities
- Revisions: the commits behind a head at scan time

These objects are immutable and provide serialization methods for
JSONL output.
"""

from .head import (
    BranchHead,
    TagHead,
    PullRequestHead,
    CheckoutStrategy,
    HeadOrigin,
    Head,
    pull_request_head_name,
)
from .revision import (
    BranchRevision,
    TagRevision,
    PullRequestRevision,
    MergeState,
    MergeStatus,
    Revision,
    NOT_MERGEABLE_HASH,
)

__all__ = [
    'BranchHead',
    'TagHead',
    'PullRequestHead',
    'CheckoutStrategy',
    'HeadOrigin',
    'Head',
    'pull_request_head_name',
    'BranchRevision',
    'TagRevision',
    'PullRequestRevision',
    'MergeState',
    'MergeStatus',
    'Revision',
    'NOT_MERGEABLE_HASH',
]
