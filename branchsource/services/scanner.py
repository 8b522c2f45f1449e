"""
Source scanner for branchsource.

Wires configuration, installation tokens, the GitHub client, traits and
the discovery request together. This is the primary API for the CLI.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, Iterable, List, Optional, Union

from ..config import load_config
from ..domain import Head, Revision
from ..exit_codes import CommandError
from ..infra.app_credentials import (
    AppCredentials,
    InstallationTokenCache,
    MultiOrgTokenCache,
    TokenPolicy,
)
from ..infra.github_client import GitHubClient
from .content_probe import CachingContentProbe, ResponseHistory
from .context import DiscoveryContext
from .notifications import BuildRun, NotificationContext, StatusPayload, collect_notifications
from .request import HeadObserver, Observation, RepositorySource
from .traits import traits_from_config

logger = logging.getLogger(__name__)

TokenCache = Union[InstallationTokenCache, MultiOrgTokenCache]


def build_token_cache(config: Dict[str, Any]) -> Optional[TokenCache]:
    """
    Token cache for the configured GitHub App, or None without one.

    With ``github.owner`` set the app is used for that account only;
    otherwise one token is kept per organization.
    """
    if not config.get('github', {}).get('app_id'):
        return None
    credentials = AppCredentials.from_config(config)
    tokens = config.get('tokens', {})
    policy = TokenPolicy.from_config(config)
    use_stale = bool(tokens.get('use_stale_on_failure', True))
    if credentials.owner:
        return InstallationTokenCache(credentials, policy=policy, use_stale_on_failure=use_stale)
    return MultiOrgTokenCache(
        credentials,
        policy=policy,
        use_stale_on_failure=use_stale,
        organizations_ttl=tokens.get('organizations_ttl_seconds', 3600),
        max_cached_tokens=tokens.get('max_cached_tokens', 100),
    )


class SourceScanner:
    """
    Scans GitHub repositories for buildable heads.

    Example:
        scanner = SourceScanner()
        for observation in scanner.scan(RepositorySource("acme", "widgets")):
            print(observation.head, observation.revision)
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        client: Optional[GitHubClient] = None,
        tokens: Optional[TokenCache] = None,
        history: Optional[ResponseHistory] = None
    ):
        """
        Initialize SourceScanner.

        Args:
            config: Configuration dict (loads from file if None)
            client: GitHub client used for every repository (built per owner if None)
            tokens: Installation token cache (built from config if None)
            history: Contents response history shared by probes
        """
        self.config = config if config is not None else load_config()
        self.tokens = tokens if tokens is not None or client is not None else build_token_cache(self.config)
        self._client = client
        self._clients: Dict[str, GitHubClient] = {}
        self._clients_lock = threading.Lock()
        probe = self.config.get('probe', {})
        self.history = history if history is not None else ResponseHistory(probe.get('history_size', 10000))

    def client_for(self, owner: str) -> GitHubClient:
        """The client authenticated for repositories of ``owner``."""
        if self._client is not None:
            return self._client
        with self._clients_lock:
            if owner not in self._clients:
                self._clients[owner] = self._build_client(owner)
            return self._clients[owner]

    def _build_client(self, owner: str) -> GitHubClient:
        github = self.config.get('github', {})
        rate_limit = github.get('rate_limit', {})
        supplier = None
        if isinstance(self.tokens, MultiOrgTokenCache):
            supplier = self.tokens.for_organization(owner).get_token
        elif self.tokens is not None:
            supplier = self.tokens.get_token
        return GitHubClient(
            token=github.get('token') or None,
            token_supplier=supplier,
            api_uri=github.get('api_uri'),
            timeout=github.get('timeout_seconds', 30),
            max_retries=rate_limit.get('max_retries', 3),
            max_delay=rate_limit.get('max_delay_seconds', 60),
        )

    def context(self, traits: Optional[Iterable[Any]] = None) -> DiscoveryContext:
        """A discovery context with ``traits`` (configured traits if None)."""
        if traits is None:
            traits = traits_from_config(self.config)
        return DiscoveryContext().with_traits(traits)

    def scan(
        self,
        source: RepositorySource,
        includes: Optional[Iterable[Head]] = None,
        traits: Optional[Iterable[Any]] = None,
        cancel: Optional[threading.Event] = None
    ) -> List[Observation]:
        """
        Discover the heads of one repository.

        Args:
            source: Repository to scan
            includes: Narrow the scan to these heads
            traits: Traits to apply (configured traits if None)
            cancel: Event that interrupts the scan between steps

        Returns:
            Observations in discovery order
        """
        discovery = self.config.get('discovery', {})
        observer = HeadObserver(includes)
        request = self.context(traits).new_request(
            source,
            observer,
            self.client_for(source.owner),
            merge_retry_delay=discovery.get('merge_retry_delay_seconds', 5),
            cancel=cancel,
        )
        with request:
            request.process()
        return observer.observations

    def scan_all(
        self,
        sources: Iterable[RepositorySource],
        traits: Optional[Iterable[Any]] = None,
        cancel: Optional[threading.Event] = None,
        max_workers: Optional[int] = None
    ) -> Dict[RepositorySource, Union[List[Observation], CommandError]]:
        """
        Scan several repositories in parallel.

        A failing scan is reported as its error and does not affect the
        others.
        """
        sources = list(sources)
        traits = list(traits) if traits is not None else traits_from_config(self.config)
        workers = max_workers or self.config.get('discovery', {}).get('max_parallel_scans', 4)
        results: Dict[RepositorySource, Union[List[Observation], CommandError]] = {}

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self.scan, source, None, traits, cancel): source
                for source in sources
            }
            for future in as_completed(futures):
                source = futures[future]
                try:
                    results[source] = future.result()
                except CommandError as e:
                    logger.error(f"Scan of {source} failed: {e}")
                    results[source] = e
        return results

    def probe(
        self,
        source: RepositorySource,
        head: Head,
        revision: Optional[Revision] = None
    ) -> CachingContentProbe:
        """A content probe for ``head``, sharing this scanner's response history."""
        return CachingContentProbe(self.client_for(source.owner), source, head, revision, self.history)

    def notifications(
        self,
        observation: Observation,
        run: Optional[BuildRun] = None,
        job_url: Optional[str] = None,
        traits: Optional[Iterable[Any]] = None
    ) -> List[StatusPayload]:
        """Status payloads the configured strategies produce for a head."""
        context = self.context(traits)
        if context.notifications_disabled:
            return []
        return collect_notifications(
            context.notification_strategies,
            NotificationContext(observation.head, observation.revision, run, job_url),
        )
