"""
Discovery request for branchsource.

A DiscoveryRequest is the snapshot of a DiscoveryContext for one scan of
one repository. It owns lazy, memoized listings of branches, tags and pull
requests and runs every candidate through the pipeline:

    prefilter -> fetch -> filter -> authority -> observer

Listings are fetched on first use and completed before the first element
is handed out, so a failure on a later page never truncates a scan.
"""

import logging
import threading
from dataclasses import dataclass
from typing import (
    Any, Callable, Dict, FrozenSet, Generic, Iterable, Iterator, List, Optional,
    Set, Tuple, TypeVar
)

from ..domain import (
    BranchHead,
    BranchRevision,
    CheckoutStrategy,
    Head,
    HeadOrigin,
    MergeState,
    PullRequestHead,
    PullRequestRevision,
    Revision,
    TagHead,
    TagRevision,
    pull_request_head_name,
)
from ..exit_codes import NotFoundError, ScanInterrupted, TransportError
from ..infra.github_client import GitHubBranch, GitHubClient, GitHubPullRequest, GitHubTag

logger = logging.getLogger(__name__)

T = TypeVar('T')

# HEAD strategy heads follow MERGE ones when both are enabled
STRATEGY_ORDER = (CheckoutStrategy.MERGE, CheckoutStrategy.HEAD)

# Statuses meaning "this token may not list collaborators"
NOT_PERMITTED_STATUSES = frozenset({401, 403, 404})


@dataclass(frozen=True)
class RepositorySource:
    """The repository a scan runs against."""
    owner: str
    repository: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repository}"

    @classmethod
    def parse(cls, value: str) -> 'RepositorySource':
        """Parse ``owner/repository``."""
        owner, sep, repository = value.strip().strip('/').partition('/')
        if not sep or not owner or not repository or '/' in repository:
            raise ValueError(f"Expected OWNER/REPOSITORY, got {value!r}")
        return cls(owner, repository)

    def __str__(self) -> str:
        return self.full_name


class LazyCollection(Generic[T]):
    """
    A sequence loaded in full on first iteration, then replayed from memory.

    The loader runs once; if it raises, nothing is yielded and the next
    iteration tries again.
    """

    def __init__(self, loader: Callable[[], Iterable[T]]):
        self._loader = loader
        self._items: Optional[Tuple[T, ...]] = None
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._items is not None

    def _materialize(self) -> Tuple[T, ...]:
        with self._lock:
            if self._items is None:
                self._items = tuple(self._loader())
            return self._items

    def release(self) -> None:
        with self._lock:
            self._items = None

    def __iter__(self) -> Iterator[T]:
        return iter(self._materialize())

    def __len__(self) -> int:
        return len(self._materialize())


@dataclass(frozen=True)
class Observation:
    """One accepted head."""
    head: Head
    revision: Revision
    trusted: bool

    def to_dict(self) -> Dict[str, Any]:
        data = self.head.to_dict()
        data['revision'] = self.revision.to_dict()
        data['trusted'] = self.trusted
        return data


class HeadObserver:
    """
    Collects accepted heads, first observation of a head wins.

    With ``includes`` the scan is narrowed to those heads and the observer
    stops observing once all of them were seen.
    """

    def __init__(self, includes: Optional[Iterable[Head]] = None):
        self.includes: Optional[FrozenSet[Head]] = frozenset(includes) if includes is not None else None
        self._observed: Dict[Head, Observation] = {}

    def observe(self, head: Head, revision: Revision, trusted: bool) -> None:
        if head in self._observed:
            return
        self._observed[head] = Observation(head, revision, trusted)

    def is_observing(self) -> bool:
        if self.includes is None:
            return True
        return not self.includes.issubset(self._observed)

    @property
    def observations(self) -> List[Observation]:
        return list(self._observed.values())

    @property
    def heads(self) -> List[Head]:
        return list(self._observed)


class DiscoveryRequest:
    """
    One scan of one repository.

    Use as a context manager; closing releases every memoized listing and
    lookup, after which the request refuses further use.
    """

    def __init__(
        self,
        source: Optional[RepositorySource],
        context: Any,
        observer: HeadObserver,
        client: Optional[GitHubClient] = None,
        merge_retry_delay: float = 5.0,
        cancel: Optional[threading.Event] = None
    ):
        self.source = source
        self.observer = observer
        self.client = client
        self.merge_retry_delay = merge_retry_delay
        self.cancel = cancel or threading.Event()

        self.fetch_branches: bool = context.wants_branches
        self.fetch_tags: bool = context.wants_tags
        self.fetch_origin_prs: bool = context.wants_origin_prs
        self.fetch_fork_prs: bool = context.wants_fork_prs
        self.origin_pr_strategies = context.origin_pr_strategies if self.fetch_origin_prs else frozenset()
        self.fork_pr_strategies = context.fork_pr_strategies if self.fetch_fork_prs else frozenset()
        self.prefilters = tuple(context.prefilters)
        self.filters = tuple(context.filters)
        self.authorities = tuple(context.authorities)
        self.notification_strategies = tuple(context.notification_strategies)
        self.notifications_disabled: bool = context.notifications_disabled

        self.requested_branch_names: Optional[FrozenSet[str]] = None
        self.requested_tag_names: Optional[FrozenSet[str]] = None
        self.requested_pull_request_numbers: Optional[FrozenSet[int]] = None
        if observer.includes is not None:
            branches: Set[str] = set()
            tags: Set[str] = set()
            numbers: Set[int] = set()
            for head in observer.includes:
                if isinstance(head, BranchHead):
                    branches.add(head.name)
                elif isinstance(head, TagHead):
                    tags.add(head.name)
                elif isinstance(head, PullRequestHead):
                    numbers.add(head.number)
                    if not head.is_fork:
                        branches.add(head.source_branch)
            self.requested_branch_names = frozenset(branches)
            self.requested_tag_names = frozenset(tags)
            self.requested_pull_request_numbers = frozenset(numbers)

        self._closed = False
        self._lock = threading.Lock()
        self._permission_lock = threading.Lock()
        self._branches: LazyCollection[GitHubBranch] = LazyCollection(self._load_branches)
        self._tags: LazyCollection[GitHubTag] = LazyCollection(self._load_tags)
        self._pull_requests: LazyCollection[GitHubPullRequest] = LazyCollection(self._load_pull_requests)
        self._collaborator_names: Optional[FrozenSet[str]] = None
        self._permissions: Dict[str, str] = {}
        self._trust: Dict[Head, bool] = {}
        self._merge_states: Dict[int, MergeState] = {}
        self._branch_shas: Dict[str, Optional[str]] = {}
        self._default_branch: Optional[str] = None

    def __enter__(self) -> 'DiscoveryRequest':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Release scan-scoped caches."""
        with self._lock:
            self._closed = True
            self._branches.release()
            self._tags.release()
            self._pull_requests.release()
            self._collaborator_names = None
            self._permissions.clear()
            self._trust.clear()
            self._merge_states.clear()
            self._branch_shas.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("DiscoveryRequest is closed")

    def _require_remote(self) -> Tuple[GitHubClient, RepositorySource]:
        self._check_open()
        if self.client is None or self.source is None:
            raise RuntimeError("DiscoveryRequest has no client or source to fetch from")
        return self.client, self.source

    def check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise ScanInterrupted(f"Scan of {self.source} interrupted")

    @property
    def fetch_prs(self) -> bool:
        return self.fetch_origin_prs or self.fetch_fork_prs

    # Listings

    def _listing(self, what: str, load: Callable[[], List[T]]) -> List[T]:
        try:
            return load()
        except NotFoundError as e:
            raise TransportError(
                f"Cannot list {what} of {self.source}: repository not found or not accessible",
                status_code=404
            ) from e

    @property
    def default_branch(self) -> Optional[str]:
        if self._default_branch is None:
            client, source = self._require_remote()
            info = client.get_repository(source.owner, source.repository)
            if info is None:
                raise TransportError(
                    f"Repository {source} not found or not accessible", status_code=404
                )
            self._default_branch = info.default_branch or ''
        return self._default_branch or None

    def _load_branches(self) -> List[GitHubBranch]:
        client, source = self._require_remote()
        names = self.requested_branch_names
        if names is not None and len(names) == 1:
            (name,) = names
            logger.debug(f"Fetching branch {name} of {source}")
            branch = client.get_branch(source.owner, source.repository, name)
            return [branch] if branch is not None else []

        branches = self._listing('branches', lambda: client.list_branches(source.owner, source.repository))
        default = self.default_branch
        first = [b for b in branches if b.name == default]
        rest = [b for b in branches if b.name != default]
        logger.debug(f"Listed {len(branches)} branches of {source}")
        return first + rest

    def _load_tags(self) -> List[GitHubTag]:
        client, source = self._require_remote()
        names = self.requested_tag_names
        if names is not None and len(names) == 1:
            (name,) = names
            logger.debug(f"Fetching tag {name} of {source}")
            tag = client.get_tag(source.owner, source.repository, name)
            return [tag] if tag is not None else []
        return self._listing('tags', lambda: client.list_tags(source.owner, source.repository))

    def _load_pull_requests(self) -> List[GitHubPullRequest]:
        client, source = self._require_remote()
        numbers = self.requested_pull_request_numbers
        if numbers is not None and len(numbers) == 1:
            (number,) = numbers
            logger.debug(f"Fetching pull request {number} of {source}")
            pull = client.get_pull_request(source.owner, source.repository, number)
            if pull is None or pull.is_closed:
                return []
            return [pull]

        head = None
        branches = self.requested_branch_names
        if numbers is not None and not numbers and branches is not None and len(branches) == 1:
            (branch,) = branches
            head = f"{source.owner}:{branch}"
            logger.debug(f"Listing pull requests of {source} from {head}")
        return self._listing(
            'pull requests',
            lambda: client.list_pull_requests(source.owner, source.repository, 'open', head=head)
        )

    @property
    def branches(self) -> LazyCollection[GitHubBranch]:
        self._check_open()
        return self._branches

    @property
    def tags(self) -> LazyCollection[GitHubTag]:
        self._check_open()
        return self._tags

    @property
    def pull_requests(self) -> LazyCollection[GitHubPullRequest]:
        self._check_open()
        return self._pull_requests

    def pull_request(self, number: int) -> Optional[GitHubPullRequest]:
        """The listed open pull request with this number, if any."""
        for pull in self.pull_requests:
            if pull.number == number:
                return pull
        return None

    # Lookups

    @property
    def collaborator_names(self) -> FrozenSet[str]:
        """Collaborator logins; empty when the token may not list them."""
        client, source = self._require_remote()
        if self._collaborator_names is None:
            try:
                names = frozenset(client.get_collaborator_names(source.owner, source.repository))
            except NotFoundError:
                logger.warning(f"Not permitted to list collaborators of {source}")
                names = frozenset()
            except TransportError as e:
                if e.status_code not in NOT_PERMITTED_STATUSES:
                    raise
                logger.warning(f"Not permitted to list collaborators of {source}")
                names = frozenset()
            self._collaborator_names = names
        return self._collaborator_names

    def get_permission(self, username: str) -> str:
        """Permission of a user on the repository, looked up once per scan."""
        client, source = self._require_remote()
        with self._permission_lock:
            if username not in self._permissions:
                self._permissions[username] = client.get_collaborator_permission(
                    source.owner, source.repository, username
                )
            return self._permissions[username]

    def branch_sha(self, name: str) -> Optional[str]:
        """Current commit of a branch, taken from the listing when it is loaded."""
        client, source = self._require_remote()
        if name not in self._branch_shas:
            sha = None
            if self._branches.is_loaded:
                sha = next((b.sha for b in self._branches if b.name == name), None)
            if sha is None:
                branch = client.get_branch(source.owner, source.repository, name)
                sha = branch.sha if branch is not None else None
            self._branch_shas[name] = sha
        return self._branch_shas[name]

    def resolve_merge_state(self, number: int) -> MergeState:
        """
        Mergeability of a pull request.

        GitHub computes it in the background and answers ``null`` until
        done, so a pending answer is re-queried once after
        ``merge_retry_delay`` seconds; still pending is an error.
        """
        client, source = self._require_remote()
        with self._lock:
            if number in self._merge_states:
                return self._merge_states[number]

        listed = self.pull_request(number)
        state = MergeState.from_api(listed.mergeable, listed.merge_commit_sha) if listed else MergeState.not_computed()
        attempts = 0
        while not state.is_resolved:
            if attempts == 1:
                logger.info(
                    f"Mergeability of pull request {number} of {source} not computed yet, "
                    f"retrying in {self.merge_retry_delay}s"
                )
                if self.cancel.wait(self.merge_retry_delay):
                    self.check_cancelled()
            elif attempts > 1:
                raise TransportError(
                    f"GitHub did not compute the mergeability of pull request {number} of {source}"
                )
            pull = client.get_pull_request(source.owner, source.repository, number)
            if pull is None:
                raise TransportError(f"Pull request {number} of {source} disappeared", status_code=404)
            state = MergeState.from_api(pull.mergeable, pull.merge_commit_sha)
            attempts += 1

        with self._lock:
            self._merge_states[number] = state
        return state

    # Pipeline

    def is_prefiltered(self, item: Any) -> bool:
        return any(prefilter.is_excluded(self, item) for prefilter in self.prefilters)

    def is_excluded(self, head: Head) -> bool:
        return any(head_filter.is_excluded(self, head) for head_filter in self.filters)

    def is_trusted(self, head: Head) -> bool:
        """First authority that applies and trusts the head wins; memoized."""
        self._check_open()
        with self._lock:
            if head in self._trust:
                return self._trust[head]
        trusted = False
        for authority in self.authorities:
            if authority.applies_to(head) and authority.is_trusted(self, head):
                trusted = True
                break
        with self._lock:
            self._trust[head] = trusted
        return trusted

    def _wanted(self, head: Head) -> bool:
        includes = self.observer.includes
        return includes is None or head in includes

    def _offer(self, head: Head, revision: Callable[[], Revision]) -> bool:
        """Filter, classify and observe one head. False once the observer is done."""
        self.check_cancelled()
        if self.is_excluded(head):
            logger.debug(f"{head} excluded by filters")
            return True
        trusted = self.is_trusted(head)
        self.observer.observe(head, revision(), trusted)
        return self.observer.is_observing()

    def _process_branches(self) -> bool:
        for branch in self.branches:
            self.check_cancelled()
            if self.is_prefiltered(branch):
                continue
            head = BranchHead(branch.name)
            if not self._wanted(head):
                continue
            if not self._offer(head, lambda: BranchRevision(head, branch.sha)):
                return False
        return True

    def _process_tags(self) -> bool:
        client, source = self._require_remote()
        for tag in self.tags:
            self.check_cancelled()
            if self.is_prefiltered(tag) or not self._wanted(TagHead(tag.name)):
                continue
            head = TagHead(tag.name, client.get_commit_date(source.owner, source.repository, tag.sha))
            if not self._offer(head, lambda: TagRevision(head, tag.sha)):
                return False
        return True

    def pull_request_heads(self, pull: GitHubPullRequest) -> List[PullRequestHead]:
        """One head per checkout strategy enabled for the pull request's origin."""
        fork = (pull.head_repository or '').lower() != self.source.full_name.lower()
        strategies = self.fork_pr_strategies if fork else self.origin_pr_strategies
        return [
            PullRequestHead(
                number=pull.number,
                source_branch=pull.head_ref,
                strategy=strategy,
                name=pull_request_head_name(pull.number, strategy, strategies),
                origin=HeadOrigin.FORK if fork else HeadOrigin.ORIGIN,
                source_owner=pull.head_owner,
                source_repository=pull.head_repository,
                target=pull.base_ref,
            )
            for strategy in STRATEGY_ORDER if strategy in strategies
        ]

    def pull_request_revision(self, head: PullRequestHead, pull: GitHubPullRequest) -> PullRequestRevision:
        if not head.is_merge:
            return PullRequestRevision(head, pull.base_sha, pull.head_sha)
        base_sha = self.branch_sha(head.target_head.name) or pull.base_sha
        merge = self.resolve_merge_state(pull.number)
        return PullRequestRevision(head, base_sha, pull.head_sha, merge.as_hash())

    def _process_pull_requests(self) -> bool:
        for pull in self.pull_requests:
            self.check_cancelled()
            if self.is_prefiltered(pull):
                continue
            for head in self.pull_request_heads(pull):
                if not self._wanted(head):
                    continue
                if not self._offer(head, lambda: self.pull_request_revision(head, pull)):
                    return False
        return True

    @staticmethod
    def _any_requested(requested: Optional[FrozenSet[Any]]) -> bool:
        return requested is None or bool(requested)

    def process(self) -> HeadObserver:
        """
        Run the scan: branches, then pull requests, then tags.

        A narrowed scan skips every kind it requested nothing of. Listings
        still load on demand, so filters see the same pull requests as in
        a full scan.

        Raises:
            TransportError: when a listing or lookup fails
            ScanInterrupted: when the cancel event is set
        """
        self._require_remote()
        logger.info(f"Scanning {self.source}")
        branches = self.fetch_branches and self._any_requested(self.requested_branch_names)
        pull_requests = self.fetch_prs and self._any_requested(self.requested_pull_request_numbers)
        tags = self.fetch_tags and self._any_requested(self.requested_tag_names)
        if branches and not self._process_branches():
            return self.observer
        if pull_requests and not self._process_pull_requests():
            return self.observer
        if tags:
            self._process_tags()
        logger.info(f"Scan of {self.source} observed {len(self.observer.heads)} heads")
        return self.observer
