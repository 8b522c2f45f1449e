"""
GitHub API client infrastructure for branchsource.

Provides a clean abstraction over GitHub REST API access:
- Authenticates with a static token or a token supplier (installation tokens)
- Distinguishes "not found" from every other failure
- Follows Link-header pagination so listings are complete
- Handles rate limiting with exponential backoff
"""

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set
from urllib.parse import quote

import requests

from ..exit_codes import NotFoundError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_API_URI = "https://api.github.com"

DEFAULT_PAGE_SIZE = 100


@dataclass
class RateLimitStatus:
    """GitHub API rate limit status."""
    remaining: int
    limit: int
    reset_time: int  # Unix timestamp
    used: int

    @property
    def reset_datetime(self) -> datetime:
        """Get reset time as datetime."""
        return datetime.fromtimestamp(self.reset_time)

    @property
    def minutes_until_reset(self) -> int:
        """Minutes until rate limit resets."""
        now = int(time.time())
        return max(0, (self.reset_time - now) // 60)

    @property
    def is_low(self) -> bool:
        """Check if rate limit is getting low (< 100 remaining)."""
        return self.remaining < 100


@dataclass
class GitHubRepositoryInfo:
    """The repository fields discovery needs."""
    owner: str
    name: str
    full_name: str
    default_branch: Optional[str]
    html_url: str = ''
    is_private: bool = False

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> 'GitHubRepositoryInfo':
        owner = data.get('owner') or {}
        return cls(
            owner=owner.get('login', '') if isinstance(owner, dict) else str(owner),
            name=data.get('name', ''),
            full_name=data.get('full_name', ''),
            default_branch=data.get('default_branch'),
            html_url=data.get('html_url', ''),
            is_private=data.get('private', False),
        )


@dataclass
class GitHubBranch:
    """A branch as listed by GitHub."""
    name: str
    sha: str

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> 'GitHubBranch':
        commit = data.get('commit') or {}
        return cls(name=data.get('name', ''), sha=commit.get('sha', ''))


@dataclass
class GitHubTag:
    """A tag as listed by GitHub, already peeled to its commit."""
    name: str
    sha: str

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> 'GitHubTag':
        commit = data.get('commit') or {}
        return cls(name=data.get('name', ''), sha=commit.get('sha', ''))


@dataclass
class GitHubPullRequest:
    """A pull request as returned by the pulls endpoints."""
    number: int
    state: str
    title: str
    user_login: str
    head_ref: str
    head_sha: str
    head_owner: str
    head_repository: Optional[str]
    base_ref: str
    base_sha: str
    draft: bool = False
    labels: List[str] = field(default_factory=list)
    mergeable: Optional[bool] = None
    merge_commit_sha: Optional[str] = None
    html_url: str = ''

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> 'GitHubPullRequest':
        """Create from GitHub API response."""
        head = data.get('head') or {}
        base = data.get('base') or {}
        head_repo = head.get('repo') or {}
        head_user = head.get('user') or {}
        user = data.get('user') or {}

        return cls(
            number=data.get('number', 0),
            state=data.get('state', 'open'),
            title=data.get('title', ''),
            user_login=user.get('login', ''),
            head_ref=head.get('ref', ''),
            head_sha=head.get('sha', ''),
            head_owner=(head_repo.get('owner') or {}).get('login') or head_user.get('login', ''),
            head_repository=head_repo.get('full_name'),  # None when the fork was deleted
            base_ref=base.get('ref', ''),
            base_sha=base.get('sha', ''),
            draft=data.get('draft', False),
            labels=[label.get('name', '') for label in data.get('labels') or []],
            mergeable=data.get('mergeable'),
            merge_commit_sha=data.get('merge_commit_sha'),
            html_url=data.get('html_url', ''),
        )

    @property
    def is_closed(self) -> bool:
        return self.state == 'closed'


@dataclass
class ApiResponse:
    """A raw response, for callers that manage their own caching headers."""
    url: str
    status_code: int
    headers: Dict[str, str]
    body: Any = None

    @property
    def etag(self) -> Optional[str]:
        return self.headers.get('etag')

    @property
    def last_modified(self) -> Optional[str]:
        return self.headers.get('last-modified')


class GitHubClient:
    """
    GitHub REST API client with rate limiting.

    Authenticates either with a static token or with a token supplier that
    is consulted on every request, so installation tokens refreshed by an
    InstallationTokenCache are picked up without rebuilding the client.

    Example:
        client = GitHubClient(token_supplier=cache.get_token)
        for branch in client.list_branches("owner", "repo"):
            print(branch.name, branch.sha)
    """

    def __init__(
        self,
        token: Optional[str] = None,
        token_supplier: Optional[Callable[[], str]] = None,
        api_uri: str = DEFAULT_API_URI,
        timeout: float = 30,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize GitHubClient.

        Args:
            token: GitHub token (defaults to BRANCHSOURCE_GITHUB_TOKEN or GITHUB_TOKEN env var)
            token_supplier: Callable returning a fresh token; wins over ``token``
            api_uri: API endpoint, e.g. https://github.example.com/api/v3
            timeout: Transport timeout in seconds for every request
            max_retries: Maximum retry attempts for rate-limited requests
            base_delay: Base delay for exponential backoff
            max_delay: Maximum delay between retries
            session: requests session to use (tests inject a mock)
        """
        self.token = token or os.environ.get('BRANCHSOURCE_GITHUB_TOKEN') or os.environ.get('GITHUB_TOKEN')
        self.token_supplier = token_supplier
        self.api_uri = (api_uri or DEFAULT_API_URI).rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.session = session or requests.Session()
        self._rate_limit_status: Optional[RateLimitStatus] = None

    def _update_rate_limit_from_headers(self, headers) -> None:
        """Update rate limit status from response headers."""
        try:
            remaining = int(headers.get('X-RateLimit-Remaining', -1))
            limit = int(headers.get('X-RateLimit-Limit', -1))
            reset_time = int(headers.get('X-RateLimit-Reset', 0))
            used = int(headers.get('X-RateLimit-Used', 0))

            if remaining >= 0 and limit >= 0:
                self._rate_limit_status = RateLimitStatus(
                    remaining=remaining,
                    limit=limit,
                    reset_time=reset_time,
                    used=used
                )

                if self._rate_limit_status.is_low:
                    logger.warning(
                        f"GitHub API rate limit low: {remaining}/{limit} remaining, "
                        f"resets in {self._rate_limit_status.minutes_until_reset} minutes"
                    )
        except (ValueError, TypeError):
            pass  # Ignore parsing errors

    def get_rate_limit_status(self) -> Optional[RateLimitStatus]:
        """Rate limit status from the last API call, if any."""
        return self._rate_limit_status

    def url(self, endpoint: str) -> str:
        """Absolute URL for an API endpoint."""
        if endpoint.startswith('http://') or endpoint.startswith('https://'):
            return endpoint
        return f"{self.api_uri}/{endpoint.lstrip('/')}"

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            'Accept': 'application/vnd.github.v3+json',
            'User-Agent': 'branchsource'
        }
        token = self.token_supplier() if self.token_supplier else self.token
        if token:
            headers['Authorization'] = f'token {token}'
        if extra:
            headers.update(extra)
        return headers

    def request(
        self,
        method: str,
        endpoint: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs
    ) -> requests.Response:
        """
        Issue one API request, retrying only when rate limited.

        Raises:
            TransportError: on connection failures and timeouts
        """
        url = self.url(endpoint)

        for attempt in range(self.max_retries):
            try:
                response = self.session.request(
                    method, url, headers=self._headers(headers), timeout=self.timeout, **kwargs
                )
            except requests.RequestException as e:
                raise TransportError(f"GitHub API request failed for {url}: {e}") from e

            # Track rate limit from headers
            self._update_rate_limit_from_headers(response.headers)

            if response.status_code in (403, 429) and response.headers.get('X-RateLimit-Remaining') == '0':
                if attempt == self.max_retries - 1:
                    break
                reset_time = response.headers.get('X-RateLimit-Reset')
                if reset_time:
                    wait_time = int(reset_time) - int(time.time())
                    if 0 < wait_time < self.max_delay:
                        logger.info(f"Rate limited, waiting {wait_time}s")
                        time.sleep(wait_time)
                        continue

                # Exponential backoff
                delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                logger.info(f"Rate limited, waiting {delay}s (attempt {attempt + 1})")
                time.sleep(delay)
                continue

            return response

        raise TransportError(f"GitHub API rate limit exceeded for {url}", status_code=403)

    def _check(self, response: requests.Response, url: str) -> requests.Response:
        if response.status_code == 404:
            raise NotFoundError(f"Not found: {url}", url=url)
        if response.status_code >= 400:
            raise TransportError(
                f"GitHub API error {response.status_code} for {url}",
                status_code=response.status_code
            )
        return response

    def get_json(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET an endpoint and decode its JSON body.

        Raises:
            NotFoundError: on 404
            TransportError: on any other failure
        """
        url = self.url(endpoint)
        response = self._check(self.request('GET', url, params=params), url)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"GitHub API returned invalid JSON for {url}: {e}") from e

    def paginate(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        """
        Collect every page of a list endpoint.

        The whole collection is fetched before returning, so a failure on a
        later page raises instead of silently truncating the result.
        """
        params = dict(params or {})
        params.setdefault('per_page', DEFAULT_PAGE_SIZE)
        url: Optional[str] = self.url(endpoint)
        items: List[Any] = []

        while url:
            response = self._check(self.request('GET', url, params=params), url)
            try:
                page = response.json()
            except ValueError as e:
                raise TransportError(f"GitHub API returned invalid JSON for {url}: {e}") from e
            if not isinstance(page, list):
                raise TransportError(f"Expected a list from {url}")
            items.extend(page)
            url = response.links.get('next', {}).get('url')
            params = None  # the next link already carries the query

        return items

    def _optional(self, endpoint: str) -> Optional[Any]:
        try:
            return self.get_json(endpoint)
        except NotFoundError:
            return None

    def get_repository(self, owner: str, name: str) -> Optional[GitHubRepositoryInfo]:
        """
        Get repository metadata.

        Returns:
            GitHubRepositoryInfo or None if not found
        """
        data = self._optional(f"repos/{owner}/{name}")
        if data:
            return GitHubRepositoryInfo.from_api_response(data)
        return None

    def get_branch(self, owner: str, name: str, branch: str) -> Optional[GitHubBranch]:
        """Get a single branch, or None if it does not exist."""
        data = self._optional(f"repos/{owner}/{name}/branches/{quote(branch, safe='')}")
        if data:
            return GitHubBranch.from_api_response(data)
        return None

    def list_branches(self, owner: str, name: str) -> List[GitHubBranch]:
        """List every branch, in the order GitHub returns them."""
        return [
            GitHubBranch.from_api_response(item)
            for item in self.paginate(f"repos/{owner}/{name}/branches")
        ]

    def get_tag(self, owner: str, name: str, tag: str) -> Optional[GitHubTag]:
        """
        Get a single tag peeled to its commit, or None if it does not exist.

        Annotated tags point at a tag object, which is dereferenced.
        """
        data = self._optional(f"repos/{owner}/{name}/git/ref/tags/{quote(tag, safe='')}")
        if not data:
            return None
        target = data.get('object') or {}
        sha = target.get('sha', '')
        if target.get('type') == 'tag':
            tag_object = self.get_json(f"repos/{owner}/{name}/git/tags/{sha}")
            sha = (tag_object.get('object') or {}).get('sha', sha)
        return GitHubTag(name=tag, sha=sha)

    def list_tags(self, owner: str, name: str) -> List[GitHubTag]:
        """List every tag with the commit it points at."""
        return [
            GitHubTag.from_api_response(item)
            for item in self.paginate(f"repos/{owner}/{name}/tags")
        ]

    def get_commit_date(self, owner: str, name: str, sha: str) -> Optional[int]:
        """Committer date of a commit in epoch milliseconds."""
        data = self._optional(f"repos/{owner}/{name}/commits/{sha}")
        if not data:
            return None
        date = ((data.get('commit') or {}).get('committer') or {}).get('date')
        if not date:
            return None
        return int(datetime.fromisoformat(date.replace('Z', '+00:00')).timestamp() * 1000)

    def get_pull_request(self, owner: str, name: str, number: int) -> Optional[GitHubPullRequest]:
        """Get a single pull request, or None if it does not exist."""
        data = self._optional(f"repos/{owner}/{name}/pulls/{number}")
        if data:
            return GitHubPullRequest.from_api_response(data)
        return None

    def list_pull_requests(
        self, owner: str, name: str, state: str = 'open', head: Optional[str] = None
    ) -> List[GitHubPullRequest]:
        """List pull requests in the given state, optionally only those from ``head`` (``user:branch``)."""
        params = {'state': state}
        if head:
            params['head'] = head
        return [
            GitHubPullRequest.from_api_response(item)
            for item in self.paginate(f"repos/{owner}/{name}/pulls", params=params)
        ]

    def get_collaborator_names(self, owner: str, name: str) -> Set[str]:
        """
        Logins of the repository collaborators.

        Raises:
            NotFoundError: when the token may not list collaborators
            TransportError: on any other failure
        """
        return {
            item.get('login', '')
            for item in self.paginate(f"repos/{owner}/{name}/collaborators")
        }

    def get_collaborator_permission(self, owner: str, name: str, username: str) -> str:
        """Permission level of a user: admin, maintain, write, triage, read or none."""
        data = self._optional(
            f"repos/{owner}/{name}/collaborators/{quote(username, safe='')}/permission"
        )
        if not data:
            return 'none'
        return data.get('permission', 'none')

    def contents_url(self, owner: str, name: str, path: str, ref: str) -> str:
        """Canonical URL of a contents request, used as the response cache key."""
        path = quote(path.strip('/'), safe='/')
        return self.url(f"repos/{owner}/{name}/contents/{path}?ref={quote(ref, safe='')}")

    def get_contents(
        self,
        owner: str,
        name: str,
        path: str,
        ref: str,
        headers: Optional[Dict[str, str]] = None
    ) -> ApiResponse:
        """
        Fetch the contents endpoint for a path at a ref.

        Returns the raw response so callers can manage validators: 200, 304
        and 404 come back as ApiResponse.

        Raises:
            TransportError: on any other status or transport failure
        """
        url = self.contents_url(owner, name, path, ref)
        response = self.request('GET', url, headers=headers)
        if response.status_code not in (200, 304, 404):
            raise TransportError(
                f"GitHub API error {response.status_code} for {url}",
                status_code=response.status_code
            )

        body = None
        if response.status_code == 200:
            try:
                body = response.json()
            except ValueError as e:
                raise TransportError(f"GitHub API returned invalid JSON for {url}: {e}") from e

        return ApiResponse(
            url=url,
            status_code=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            body=body,
        )
