"""
branchsource - Discover buildable heads of GitHub repositories.

branchsource lists the branches, tags and pull requests of a GitHub
repository, filters them through an ordered set of discovery traits,
classifies their trust and reads file content at any of their revisions,
keeping a GitHub App installation token fresh along the way.

Quick Start:
    from branchsource import (
        SourceScanner, RepositorySource, BranchHead, BranchDiscoveryTrait,
        OriginPullRequestDiscoveryTrait,
    )

    scanner = SourceScanner()
    source = RepositorySource("acme", "widgets")

    # Scan with the configured traits
    for observation in scanner.scan(source):
        print(observation.head, observation.revision, observation.trusted)

    # Or with explicit traits
    scanner.scan(source, traits=[BranchDiscoveryTrait(), OriginPullRequestDiscoveryTrait()])

    # Probe content at a head
    with scanner.probe(source, BranchHead("main")) as probe:
        print(probe.stat("Jenkinsfile").type)

Domain Objects:
    BranchHead, TagHead, PullRequestHead - what can be built
    BranchRevision, TagRevision, PullRequestRevision - the commits behind them

Services:
    DiscoveryContext / DiscoveryRequest - trait accumulation and the scan pipeline
    CachingContentProbe - path queries at a revision
    SourceScanner - configuration driven entry point
"""

__version__ = "0.1.0"

# Domain objects
from .domain import (
    BranchHead,
    TagHead,
    PullRequestHead,
    CheckoutStrategy,
    HeadOrigin,
    BranchRevision,
    TagRevision,
    PullRequestRevision,
    MergeState,
    NOT_MERGEABLE_HASH,
)

# Services
from .services import (
    DiscoveryContext,
    DiscoveryRequest,
    HeadObserver,
    RepositorySource,
    CachingContentProbe,
    SourceScanner,
    BranchDiscoveryTrait,
    TagDiscoveryTrait,
    OriginPullRequestDiscoveryTrait,
    ForkPullRequestDiscoveryTrait,
    WildcardBranchFilterTrait,
    WildcardPullRequestLabelFilterTrait,
    IgnoreDraftPullRequestFilterTrait,
    NotificationContextTrait,
    DisableNotificationsTrait,
)

# Tokens
from .infra import (
    AppCredentials,
    InstallationToken,
    InstallationTokenCache,
    MultiOrgTokenCache,
    TokenPolicy,
)

# Configuration
from .config import load_config

__all__ = [
    # Version
    "__version__",
    # Domain objects
    "BranchHead",
    "TagHead",
    "PullRequestHead",
    "CheckoutStrategy",
    "HeadOrigin",
    "BranchRevision",
    "TagRevision",
    "PullRequestRevision",
    "MergeState",
    "NOT_MERGEABLE_HASH",
    # Services
    "DiscoveryContext",
    "DiscoveryRequest",
    "HeadObserver",
    "RepositorySource",
    "CachingContentProbe",
    "SourceScanner",
    "BranchDiscoveryTrait",
    "TagDiscoveryTrait",
    "OriginPullRequestDiscoveryTrait",
    "ForkPullRequestDiscoveryTrait",
    "WildcardBranchFilterTrait",
    "WildcardPullRequestLabelFilterTrait",
    "IgnoreDraftPullRequestFilterTrait",
    "NotificationContextTrait",
    "DisableNotificationsTrait",
    # Tokens
    "AppCredentials",
    "InstallationToken",
    "InstallationTokenCache",
    "MultiOrgTokenCache",
    "TokenPolicy",
    # Configuration
    "load_config",
]
