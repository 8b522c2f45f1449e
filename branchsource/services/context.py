"""
Discovery context for branchsource.

A DiscoveryContext accumulates what traits contribute: which kinds of
heads to discover, how pull requests are checked out, and the ordered
prefilters, filters, authorities and notification strategies. Once built,
it is turned into a DiscoveryRequest for one scan.
"""

import threading
from typing import TYPE_CHECKING, Any, FrozenSet, Iterable, List, Optional, Set

from ..domain import CheckoutStrategy
from .notifications import DefaultNotificationStrategy

if TYPE_CHECKING:
    from ..infra.github_client import GitHubClient
    from .request import DiscoveryRequest, HeadObserver, RepositorySource


class DiscoveryContext:
    """
    Mutable accumulator of trait contributions.

    The ``want_*`` setters only ever turn a flag on, so the result of
    applying traits does not depend on their order. List setters append.

    Example:
        context = DiscoveryContext().with_traits([
            BranchDiscoveryTrait(),
            OriginPullRequestDiscoveryTrait(),
        ])
        with context.new_request(source, HeadObserver(), client) as request:
            request.process()
    """

    def __init__(self):
        self._wants_branches = False
        self._wants_tags = False
        self._wants_origin_prs = False
        self._wants_fork_prs = False
        self._origin_pr_strategies: Set[CheckoutStrategy] = set()
        self._fork_pr_strategies: Set[CheckoutStrategy] = set()
        self._prefilters: List[Any] = []
        self._filters: List[Any] = []
        self._authorities: List[Any] = []
        self._notification_strategies: List[Any] = [DefaultNotificationStrategy()]

    @property
    def wants_branches(self) -> bool:
        return self._wants_branches

    @property
    def wants_tags(self) -> bool:
        return self._wants_tags

    @property
    def wants_origin_prs(self) -> bool:
        return self._wants_origin_prs

    @property
    def wants_fork_prs(self) -> bool:
        return self._wants_fork_prs

    @property
    def wants_prs(self) -> bool:
        return self._wants_origin_prs or self._wants_fork_prs

    @property
    def origin_pr_strategies(self) -> FrozenSet[CheckoutStrategy]:
        return frozenset(self._origin_pr_strategies)

    @property
    def fork_pr_strategies(self) -> FrozenSet[CheckoutStrategy]:
        return frozenset(self._fork_pr_strategies)

    @property
    def prefilters(self) -> List[Any]:
        return list(self._prefilters)

    @property
    def filters(self) -> List[Any]:
        return list(self._filters)

    @property
    def authorities(self) -> List[Any]:
        return list(self._authorities)

    @property
    def notification_strategies(self) -> List[Any]:
        return list(self._notification_strategies)

    @property
    def notifications_disabled(self) -> bool:
        return not self._notification_strategies

    def want_branches(self, include: bool = True) -> 'DiscoveryContext':
        self._wants_branches = self._wants_branches or include
        return self

    def want_tags(self, include: bool = True) -> 'DiscoveryContext':
        self._wants_tags = self._wants_tags or include
        return self

    def want_origin_prs(self, include: bool = True) -> 'DiscoveryContext':
        self._wants_origin_prs = self._wants_origin_prs or include
        return self

    def want_fork_prs(self, include: bool = True) -> 'DiscoveryContext':
        self._wants_fork_prs = self._wants_fork_prs or include
        return self

    def with_origin_pr_strategies(self, strategies: Iterable[CheckoutStrategy]) -> 'DiscoveryContext':
        self._origin_pr_strategies.update(strategies)
        return self

    def with_fork_pr_strategies(self, strategies: Iterable[CheckoutStrategy]) -> 'DiscoveryContext':
        self._fork_pr_strategies.update(strategies)
        return self

    def with_prefilter(self, prefilter: Any) -> 'DiscoveryContext':
        self._prefilters.append(prefilter)
        return self

    def with_prefilters(self, prefilters: Iterable[Any]) -> 'DiscoveryContext':
        self._prefilters.extend(prefilters)
        return self

    def with_filter(self, head_filter: Any) -> 'DiscoveryContext':
        self._filters.append(head_filter)
        return self

    def with_filters(self, filters: Iterable[Any]) -> 'DiscoveryContext':
        self._filters.extend(filters)
        return self

    def with_authority(self, authority: Any) -> 'DiscoveryContext':
        self._authorities.append(authority)
        return self

    def with_authorities(self, authorities: Iterable[Any]) -> 'DiscoveryContext':
        self._authorities.extend(authorities)
        return self

    def with_notification_strategy(self, strategy: Any) -> 'DiscoveryContext':
        """Add a strategy unless an equal one is already registered."""
        if strategy not in self._notification_strategies:
            self._notification_strategies.append(strategy)
        return self

    def with_notification_strategies(self, strategies: Iterable[Any]) -> 'DiscoveryContext':
        """
        Replace the notification strategies.

        Duplicates are dropped, first occurrence wins. An empty list
        disables notifications.
        """
        replacement: List[Any] = []
        for strategy in strategies:
            if strategy not in replacement:
                replacement.append(strategy)
        self._notification_strategies = replacement
        return self

    def with_traits(self, traits: Iterable[Any]) -> 'DiscoveryContext':
        for trait in traits:
            trait.decorate(self)
        return self

    def new_request(
        self,
        source: Optional['RepositorySource'],
        observer: 'HeadObserver',
        client: Optional['GitHubClient'] = None,
        merge_retry_delay: float = 5.0,
        cancel: Optional[threading.Event] = None
    ) -> 'DiscoveryRequest':
        from .request import DiscoveryRequest
        return DiscoveryRequest(
            source, self, observer, client,
            merge_retry_delay=merge_retry_delay, cancel=cancel
        )
