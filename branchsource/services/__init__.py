"""
Service layer for branchsource.

Contains the discovery core that orchestrates domain objects and infrastructure:
- DiscoveryContext / DiscoveryRequest: trait accumulation and the lazy scan pipeline
- CachingContentProbe: path queries at a revision
- SourceScanner: wiring of config, tokens, client and traits

Services are the primary API for commands to use.
"""

from .context import DiscoveryContext
from .request import DiscoveryRequest, HeadObserver, LazyCollection, Observation, RepositorySource
from .content_probe import CachingContentProbe, ContentFile, FileType, ProbeStat, ResponseHistory
from .notifications import (
    BuildResult,
    BuildRun,
    CommitState,
    ContextLabelNotificationStrategy,
    DefaultNotificationStrategy,
    NotificationContext,
    StatusPayload,
    collect_notifications,
)
from .traits import (
    BranchDiscoveryStrategy,
    BranchDiscoveryTrait,
    DisableNotificationsTrait,
    ForkPullRequestDiscoveryTrait,
    ForkTrust,
    IgnoreDraftPullRequestFilterTrait,
    NotificationContextTrait,
    OriginPullRequestDiscoveryTrait,
    TagDiscoveryTrait,
    WildcardBranchFilterTrait,
    WildcardPullRequestLabelFilterTrait,
    apply_traits,
    traits_from_config,
)
from .scanner import SourceScanner, build_token_cache

__all__ = [
    'DiscoveryContext',
    'DiscoveryRequest',
    'HeadObserver',
    'LazyCollection',
    'Observation',
    'RepositorySource',
    'CachingContentProbe',
    'ContentFile',
    'FileType',
    'ProbeStat',
    'ResponseHistory',
    'BuildResult',
    'BuildRun',
    'CommitState',
    'ContextLabelNotificationStrategy',
    'DefaultNotificationStrategy',
    'NotificationContext',
    'StatusPayload',
    'collect_notifications',
    'BranchDiscoveryStrategy',
    'BranchDiscoveryTrait',
    'DisableNotificationsTrait',
    'ForkPullRequestDiscoveryTrait',
    'ForkTrust',
    'IgnoreDraftPullRequestFilterTrait',
    'NotificationContextTrait',
    'OriginPullRequestDiscoveryTrait',
    'TagDiscoveryTrait',
    'WildcardBranchFilterTrait',
    'WildcardPullRequestLabelFilterTrait',
    'apply_traits',
    'traits_from_config',
    'SourceScanner',
    'build_token_cache',
]
