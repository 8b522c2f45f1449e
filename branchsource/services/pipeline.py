"""
Discovery pipeline stages for branchsource.

Every candidate passes through the stages in a fixed order:

1. Prefilters see the raw listing record (GitHubBranch, GitHubTag or
   GitHubPullRequest) and can skip it before any further API call.
2. Filters see the built head; a head is accepted iff no filter excludes it.
3. Authorities classify accepted heads as trusted or untrusted.

Each stage is a small frozen dataclass conforming to one protocol.
"""

import fnmatch
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Pattern, Protocol, Tuple

from ..domain import BranchHead, Head, PullRequestHead, TagHead
from ..infra.github_client import GitHubPullRequest

if TYPE_CHECKING:
    from .request import DiscoveryRequest

logger = logging.getLogger(__name__)

# Permission levels that count as "may push"
TRUSTED_PERMISSIONS = frozenset({'admin', 'maintain', 'write'})


class Prefilter(Protocol):
    def is_excluded(self, request: 'DiscoveryRequest', item: Any) -> bool: ...


class HeadFilter(Protocol):
    def is_excluded(self, request: 'DiscoveryRequest', head: Head) -> bool: ...


class Authority(Protocol):
    def applies_to(self, head: Head) -> bool: ...

    def is_trusted(self, request: 'DiscoveryRequest', head: Head) -> bool: ...


def compile_wildcards(patterns: str) -> Tuple[Pattern, ...]:
    """Compile space separated ``*`` wildcards into anchored regexes."""
    return tuple(re.compile(fnmatch.translate(p)) for p in patterns.split() if p)


def matches_any(value: str, patterns: Tuple[Pattern, ...]) -> bool:
    return any(p.match(value) for p in patterns)


def label_pattern(patterns: str) -> Optional[Pattern]:
    """
    One unanchored regex for space separated ``*`` wildcards.

    Labels are matched by search, so ``pull-*`` also finds ``my-pull-x``.
    """
    alternatives = [
        '.*'.join(re.escape(part) for part in wildcard.split('*'))
        for wildcard in patterns.split() if wildcard
    ]
    if not alternatives:
        return None
    return re.compile('|'.join(alternatives))


# Prefilters

@dataclass(frozen=True)
class WildcardLabelPrefilter:
    """
    Filter pull requests by label.

    Unlabelled pull requests pass only when ``includes`` is ``*``. Otherwise
    a pull request is excluded when any label matches ``excludes``, or when
    no label matches ``includes``; exclusion wins when a label matches both.
    """
    includes: str = "*"
    excludes: str = ""

    def is_excluded(self, request: 'DiscoveryRequest', item: Any) -> bool:
        if not isinstance(item, GitHubPullRequest):
            return False
        includes = self.includes.strip() or "*"
        if not item.labels:
            return includes != "*"
        exclude = label_pattern(self.excludes)
        if exclude is not None and any(exclude.search(label) for label in item.labels):
            return True
        include = label_pattern(includes)
        return not any(include.search(label) for label in item.labels)


# Filters

@dataclass(frozen=True)
class WildcardNameFilter:
    """
    Filter heads by name.

    Branches and tags are matched by name, pull requests by the name of
    the branch they target.
    """
    includes: str = "*"
    excludes: str = ""

    def is_excluded(self, request: 'DiscoveryRequest', head: Head) -> bool:
        name = head.target if isinstance(head, PullRequestHead) else head.name
        if matches_any(name, compile_wildcards(self.excludes)):
            return True
        return not matches_any(name, compile_wildcards(self.includes))


@dataclass(frozen=True)
class IgnoreDraftPullRequestFilter:
    """Exclude pull requests that are still drafts."""

    def is_excluded(self, request: 'DiscoveryRequest', head: Head) -> bool:
        if not isinstance(head, PullRequestHead):
            return False
        pull = request.pull_request(head.number)
        return pull is not None and pull.draft


def _filed_as_origin_pull_request(request: 'DiscoveryRequest', branch: str) -> bool:
    full_name = request.source.full_name.lower()
    return any(
        pull.head_ref == branch and (pull.head_repository or '').lower() == full_name
        for pull in request.pull_requests
    )


@dataclass(frozen=True)
class ExcludeOriginPullRequestBranchesFilter:
    """Exclude branches that are also filed as pull requests from this repository."""

    def is_excluded(self, request: 'DiscoveryRequest', head: Head) -> bool:
        return isinstance(head, BranchHead) and _filed_as_origin_pull_request(request, head.name)


@dataclass(frozen=True)
class OnlyOriginPullRequestBranchesFilter:
    """Keep only branches that are also filed as pull requests from this repository."""

    def is_excluded(self, request: 'DiscoveryRequest', head: Head) -> bool:
        return isinstance(head, BranchHead) and not _filed_as_origin_pull_request(request, head.name)


# Authorities

@dataclass(frozen=True)
class BranchAuthority:
    """Branches of the repository itself are trusted."""

    def applies_to(self, head: Head) -> bool:
        return isinstance(head, BranchHead)

    def is_trusted(self, request: 'DiscoveryRequest', head: Head) -> bool:
        return True


@dataclass(frozen=True)
class TagAuthority:
    def applies_to(self, head: Head) -> bool:
        return isinstance(head, TagHead)

    def is_trusted(self, request: 'DiscoveryRequest', head: Head) -> bool:
        return True


@dataclass(frozen=True)
class OriginPullRequestAuthority:
    """Pull requests filed from branches of the repository itself are trusted."""

    def applies_to(self, head: Head) -> bool:
        return isinstance(head, PullRequestHead) and not head.is_fork

    def is_trusted(self, request: 'DiscoveryRequest', head: Head) -> bool:
        return True


@dataclass(frozen=True)
class TrustNobody:
    def applies_to(self, head: Head) -> bool:
        return isinstance(head, PullRequestHead) and head.is_fork

    def is_trusted(self, request: 'DiscoveryRequest', head: Head) -> bool:
        return False


@dataclass(frozen=True)
class TrustEveryone:
    def applies_to(self, head: Head) -> bool:
        return isinstance(head, PullRequestHead) and head.is_fork

    def is_trusted(self, request: 'DiscoveryRequest', head: Head) -> bool:
        return True


@dataclass(frozen=True)
class TrustContributors:
    """Trust forks owned by a collaborator of the repository."""

    def applies_to(self, head: Head) -> bool:
        return isinstance(head, PullRequestHead) and head.is_fork

    def is_trusted(self, request: 'DiscoveryRequest', head: Head) -> bool:
        return head.source_owner.lower() in {n.lower() for n in request.collaborator_names}


@dataclass(frozen=True)
class TrustPermission:
    """Trust forks owned by a user with write access or better."""

    def applies_to(self, head: Head) -> bool:
        return isinstance(head, PullRequestHead) and head.is_fork

    def is_trusted(self, request: 'DiscoveryRequest', head: Head) -> bool:
        permission = request.get_permission(head.source_owner)
        logger.debug(f"{head.source_owner} has {permission} permission on {request.source.full_name}")
        return permission in TRUSTED_PERMISSIONS
