"""
Infrastructure layer for branchsource.

Contains abstractions for external systems:
- GitHubClient: GitHub REST API access
- AppInstallationIssuer: GitHub App installation token issuance
- InstallationTokenCache / MultiOrgTokenCache: token lifecycle

These provide clean interfaces that can be mocked for testing.
"""

from .github_client import (
    ApiResponse,
    GitHubBranch,
    GitHubClient,
    GitHubPullRequest,
    GitHubRepositoryInfo,
    GitHubTag,
    RateLimitStatus,
)
from .app_credentials import (
    AppCredentials,
    AppInstallationIssuer,
    InstallationToken,
    InstallationTokenCache,
    MultiOrgTokenCache,
    OrganizationTokens,
    TokenPolicy,
    create_jwt,
)

__all__ = [
    'ApiResponse',
    'GitHubBranch',
    'GitHubClient',
    'GitHubPullRequest',
    'GitHubRepositoryInfo',
    'GitHubTag',
    'RateLimitStatus',
    'AppCredentials',
    'AppInstallationIssuer',
    'InstallationToken',
    'InstallationTokenCache',
    'MultiOrgTokenCache',
    'OrganizationTokens',
    'TokenPolicy',
    'create_jwt',
]
