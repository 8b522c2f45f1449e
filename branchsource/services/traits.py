"""
Discovery traits for branchsource.

Traits are the closed set of configuration options a scan understands.
Each is an immutable value whose ``decorate`` contributes to a
DiscoveryContext; they are applied in order through apply_traits.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List

from ..domain import CheckoutStrategy
from ..exit_codes import ConfigError
from .context import DiscoveryContext
from .notifications import ContextLabelNotificationStrategy
from .pipeline import (
    BranchAuthority,
    ExcludeOriginPullRequestBranchesFilter,
    IgnoreDraftPullRequestFilter,
    OnlyOriginPullRequestBranchesFilter,
    OriginPullRequestAuthority,
    TagAuthority,
    TrustContributors,
    TrustEveryone,
    TrustNobody,
    TrustPermission,
    WildcardLabelPrefilter,
    WildcardNameFilter,
)


class BranchDiscoveryStrategy(Enum):
    EXCLUDE_PR_BRANCHES = "exclude-pr-branches"
    ONLY_PR_BRANCHES = "only-pr-branches"
    ALL = "all"


class ForkTrust(Enum):
    NOBODY = "nobody"
    CONTRIBUTORS = "contributors"
    PERMISSION = "permission"
    EVERYONE = "everyone"


_FORK_AUTHORITIES = {
    ForkTrust.NOBODY: TrustNobody,
    ForkTrust.CONTRIBUTORS: TrustContributors,
    ForkTrust.PERMISSION: TrustPermission,
    ForkTrust.EVERYONE: TrustEveryone,
}

_MERGE_ONLY = frozenset({CheckoutStrategy.MERGE})


@dataclass(frozen=True)
class BranchDiscoveryTrait:
    strategy: BranchDiscoveryStrategy = BranchDiscoveryStrategy.EXCLUDE_PR_BRANCHES

    def decorate(self, context: DiscoveryContext) -> DiscoveryContext:
        context.want_branches(True)
        context.with_authority(BranchAuthority())
        if self.strategy is BranchDiscoveryStrategy.EXCLUDE_PR_BRANCHES:
            context.with_filter(ExcludeOriginPullRequestBranchesFilter())
        elif self.strategy is BranchDiscoveryStrategy.ONLY_PR_BRANCHES:
            context.with_filter(OnlyOriginPullRequestBranchesFilter())
        return context


@dataclass(frozen=True)
class TagDiscoveryTrait:
    def decorate(self, context: DiscoveryContext) -> DiscoveryContext:
        return context.want_tags(True).with_authority(TagAuthority())


@dataclass(frozen=True)
class OriginPullRequestDiscoveryTrait:
    strategies: FrozenSet[CheckoutStrategy] = _MERGE_ONLY

    def decorate(self, context: DiscoveryContext) -> DiscoveryContext:
        context.want_origin_prs(True)
        context.with_origin_pr_strategies(self.strategies)
        return context.with_authority(OriginPullRequestAuthority())


@dataclass(frozen=True)
class ForkPullRequestDiscoveryTrait:
    strategies: FrozenSet[CheckoutStrategy] = _MERGE_ONLY
    trust: ForkTrust = ForkTrust.CONTRIBUTORS

    def decorate(self, context: DiscoveryContext) -> DiscoveryContext:
        context.want_fork_prs(True)
        context.with_fork_pr_strategies(self.strategies)
        return context.with_authority(_FORK_AUTHORITIES[self.trust]())


@dataclass(frozen=True)
class WildcardBranchFilterTrait:
    """Filter heads by name with space separated ``*`` wildcards."""
    includes: str = "*"
    excludes: str = ""

    def decorate(self, context: DiscoveryContext) -> DiscoveryContext:
        return context.with_filter(WildcardNameFilter(self.includes, self.excludes))


@dataclass(frozen=True)
class WildcardPullRequestLabelFilterTrait:
    includes: str = "*"
    excludes: str = ""

    def decorate(self, context: DiscoveryContext) -> DiscoveryContext:
        return context.with_prefilter(WildcardLabelPrefilter(self.includes, self.excludes))


@dataclass(frozen=True)
class IgnoreDraftPullRequestFilterTrait:
    def decorate(self, context: DiscoveryContext) -> DiscoveryContext:
        return context.with_filter(IgnoreDraftPullRequestFilter())


@dataclass(frozen=True)
class NotificationContextTrait:
    label: str
    type_suffix: bool = True

    def decorate(self, context: DiscoveryContext) -> DiscoveryContext:
        return context.with_notification_strategy(
            ContextLabelNotificationStrategy(self.label, self.type_suffix)
        )


@dataclass(frozen=True)
class DisableNotificationsTrait:
    def decorate(self, context: DiscoveryContext) -> DiscoveryContext:
        return context.with_notification_strategies([])


def apply_traits(context: DiscoveryContext, traits: Iterable[Any]) -> DiscoveryContext:
    """Apply traits to a context, in order."""
    for trait in traits:
        context = trait.decorate(context)
    return context


def _strategies(values: Iterable[str], key: str) -> FrozenSet[CheckoutStrategy]:
    try:
        return frozenset(CheckoutStrategy(v) for v in values)
    except ValueError as e:
        raise ConfigError(f"Invalid checkout strategy in discovery.{key}: {e}") from e


def traits_from_config(config: Dict[str, Any]) -> List[Any]:
    """
    Build the trait list from the ``discovery`` config section.

    Example section (YAML):
        discovery:
          branches: exclude-pr-branches
          tags: true
          origin_pull_requests: [merge]
          fork_pull_requests: {strategies: [merge], trust: contributors}
          branch_includes: "main release-*"
          label_excludes: "wip"
          ignore_drafts: true
    """
    discovery = config.get('discovery', {})
    traits: List[Any] = []

    try:
        branches = discovery.get('branches', BranchDiscoveryStrategy.EXCLUDE_PR_BRANCHES.value)
        if branches:
            traits.append(BranchDiscoveryTrait(BranchDiscoveryStrategy(branches)))
        if discovery.get('tags', False):
            traits.append(TagDiscoveryTrait())

        origin = discovery.get('origin_pull_requests', [CheckoutStrategy.MERGE.value])
        if origin:
            traits.append(OriginPullRequestDiscoveryTrait(_strategies(origin, 'origin_pull_requests')))

        fork = discovery.get('fork_pull_requests', {})
        if fork:
            traits.append(ForkPullRequestDiscoveryTrait(
                strategies=_strategies(fork.get('strategies', [CheckoutStrategy.MERGE.value]),
                                       'fork_pull_requests.strategies'),
                trust=ForkTrust(fork.get('trust', ForkTrust.CONTRIBUTORS.value)),
            ))
    except ValueError as e:
        raise ConfigError(f"Invalid discovery configuration: {e}") from e

    includes = discovery.get('branch_includes', '*')
    excludes = discovery.get('branch_excludes', '')
    if includes != '*' or excludes:
        traits.append(WildcardBranchFilterTrait(includes, excludes))

    label_includes = discovery.get('label_includes', '*')
    label_excludes = discovery.get('label_excludes', '')
    if label_includes != '*' or label_excludes:
        traits.append(WildcardPullRequestLabelFilterTrait(label_includes, label_excludes))

    if discovery.get('ignore_drafts', False):
        traits.append(IgnoreDraftPullRequestFilterTrait())

    notifications = discovery.get('notifications', {})
    if notifications.get('disabled', False):
        traits.append(DisableNotificationsTrait())
    elif notifications.get('context_label'):
        traits.append(NotificationContextTrait(
            notifications['context_label'], notifications.get('type_suffix', True)
        ))

    return traits
