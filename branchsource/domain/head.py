"""
Head domain objects for branchsource.

A head is the identity of a discoverable source line (branch, tag or pull
request), independent of the commit it currently points at. Heads compare
by their natural key only, so the same head observed at two different
commits is still the same head.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Union


class CheckoutStrategy(Enum):
    """How a pull request is checked out."""
    MERGE = "merge"   # PR head merged into the current target branch
    HEAD = "head"     # PR head as submitted


class HeadOrigin(Enum):
    """Where a pull request was submitted from."""
    ORIGIN = "origin"
    FORK = "fork"


@dataclass(frozen=True)
class BranchHead:
    """A branch of the repository."""
    name: str

    kind = 'branch'

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'name': self.name}

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class TagHead:
    """A tag of the repository. The timestamp is informational only."""
    name: str
    timestamp: Optional[int] = field(default=None, compare=False)  # epoch millis

    kind = 'tag'

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'name': self.name, 'timestamp': self.timestamp}

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class PullRequestHead:
    """
    A pull request checked out with one strategy.

    Identity is (number, source_branch, strategy). The remaining fields
    describe the pull request and do not take part in equality.
    """
    number: int
    source_branch: str
    strategy: CheckoutStrategy
    name: str = field(default='', compare=False)
    origin: HeadOrigin = field(default=HeadOrigin.ORIGIN, compare=False)
    source_owner: str = field(default='', compare=False)
    source_repository: Optional[str] = field(default=None, compare=False)
    target: str = field(default='', compare=False)

    kind = 'pull_request'

    def __post_init__(self):
        if not self.name:
            object.__setattr__(self, 'name', f"PR-{self.number}")

    @property
    def is_merge(self) -> bool:
        return self.strategy is CheckoutStrategy.MERGE

    @property
    def is_fork(self) -> bool:
        return self.origin is HeadOrigin.FORK

    @property
    def target_head(self) -> BranchHead:
        """The branch this pull request targets."""
        return BranchHead(self.target)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'name': self.name,
            'number': self.number,
            'source_branch': self.source_branch,
            'strategy': self.strategy.value,
            'origin': self.origin.value,
            'source_owner': self.source_owner,
            'source_repository': self.source_repository,
            'target': self.target,
        }

    def __str__(self) -> str:
        return self.name


Head = Union[BranchHead, TagHead, PullRequestHead]


def pull_request_head_name(
    number: int,
    strategy: CheckoutStrategy,
    strategies: Iterable[CheckoutStrategy]
) -> str:
    """
    Name a pull request head.

    A single enabled strategy keeps the plain ``PR-<n>`` name; when both
    are enabled the names are made distinct with a strategy suffix.
    """
    name = f"PR-{number}"
    if len(set(strategies)) > 1:
        name += f"-{strategy.value}"
    return name
