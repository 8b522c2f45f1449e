"""
Revision domain objects for branchsource.

A revision is the concrete commit (or commits) behind a head at scan time.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from .head import BranchHead, TagHead, PullRequestHead

# Merge hash recorded for a pull request GitHub reported as not mergeable.
# Distinct from None, which means the merge commit was never computed.
NOT_MERGEABLE_HASH = "NOT_MERGEABLE"


class MergeStatus(Enum):
    MERGEABLE = "mergeable"
    NOT_COMPUTED = "not_computed"
    NOT_MERGEABLE = "not_mergeable"


@dataclass(frozen=True)
class MergeState:
    """Tri-state mergeability of a pull request."""
    status: MergeStatus
    sha: Optional[str] = None

    @classmethod
    def mergeable(cls, sha: str) -> 'MergeState':
        return cls(MergeStatus.MERGEABLE, sha)

    @classmethod
    def not_computed(cls) -> 'MergeState':
        return cls(MergeStatus.NOT_COMPUTED)

    @classmethod
    def not_mergeable(cls) -> 'MergeState':
        return cls(MergeStatus.NOT_MERGEABLE)

    @classmethod
    def from_api(cls, mergeable: Optional[bool], merge_commit_sha: Optional[str]) -> 'MergeState':
        """
        Build from the ``mergeable`` / ``merge_commit_sha`` pair GitHub returns.

        GitHub computes mergeability in the background; ``null`` means the
        computation has not finished yet.
        """
        if mergeable is None:
            return cls.not_computed()
        if not mergeable or not merge_commit_sha:
            return cls.not_mergeable()
        return cls.mergeable(merge_commit_sha)

    @property
    def is_resolved(self) -> bool:
        return self.status is not MergeStatus.NOT_COMPUTED

    def as_hash(self) -> Optional[str]:
        if self.status is MergeStatus.MERGEABLE:
            return self.sha
        if self.status is MergeStatus.NOT_MERGEABLE:
            return NOT_MERGEABLE_HASH
        return None


@dataclass(frozen=True)
class BranchRevision:
    head: BranchHead
    sha: str

    def to_dict(self) -> Dict[str, Any]:
        return {'sha': self.sha}

    def __str__(self) -> str:
        return self.sha


@dataclass(frozen=True)
class TagRevision:
    head: TagHead
    sha: str

    def to_dict(self) -> Dict[str, Any]:
        return {'sha': self.sha}

    def __str__(self) -> str:
        return self.sha


@dataclass(frozen=True)
class PullRequestRevision:
    """
    Revision of a pull request head.

    ``merge_sha`` is only meaningful for MERGE strategy heads: a commit SHA,
    NOT_MERGEABLE_HASH, or None when it was not computed.
    """
    head: PullRequestHead
    base_sha: str
    head_sha: str
    merge_sha: Optional[str] = None

    @property
    def is_merge(self) -> bool:
        return self.head.is_merge

    @property
    def is_mergeable(self) -> bool:
        return self.merge_sha is not None and self.merge_sha != NOT_MERGEABLE_HASH

    def validate_merge_sha(self) -> None:
        """Raise if a merge checkout was requested for a PR that cannot merge."""
        if self.is_merge and self.merge_sha == NOT_MERGEABLE_HASH:
            raise ValueError(
                f"Pull request {self.head.number} : Not mergeable at {self}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'base_sha': self.base_sha,
            'head_sha': self.head_sha,
            'merge_sha': self.merge_sha,
        }

    def __str__(self) -> str:
        if self.is_merge:
            result = f"{self.head_sha}+{self.base_sha}"
            if self.merge_sha is not None:
                result += f" ({self.merge_sha})"
            return result
        return self.head_sha


Revision = Union[BranchRevision, TagRevision, PullRequestRevision]
