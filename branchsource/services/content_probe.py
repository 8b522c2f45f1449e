"""
Content probe for branchsource.

Answers "does this path exist at this revision, and what is it" with one
contents API call per path, and reads file content.

GitHub's HTTP caching has a defect around absent paths: a 404 usually
carries no strong validator, so a conditional re-request can be answered
with a cached "still missing" long after the file was created. The shared
ResponseHistory therefore decides the request headers per URL:

1. unknown URL: unconditional request
2. last response had a strong ETag: If-None-Match (plus If-Modified-Since
   when a Last-Modified was seen); a 304 replays the recorded response
3. last response was a 404 without a strong ETag: ``Cache-Control:
   no-cache`` and ``Pragma: no-cache`` and no conditional headers
"""

import base64
import logging
import posixpath
import threading
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from ..domain import BranchHead, Head, PullRequestHead, PullRequestRevision, Revision, TagHead
from ..exit_codes import TransportError
from ..infra.github_client import ApiResponse, GitHubClient
from .request import RepositorySource

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 10000

NO_CACHE_HEADERS = {'Cache-Control': 'no-cache', 'Pragma': 'no-cache'}


class FileType(Enum):
    REGULAR_FILE = "file"
    DIRECTORY = "dir"
    LINK = "symlink"
    OTHER = "other"
    NONEXISTENT = "nonexistent"


_CONTENT_TYPES = {
    'file': FileType.REGULAR_FILE,
    'dir': FileType.DIRECTORY,
    'symlink': FileType.LINK,
}


@dataclass(frozen=True)
class ProbeStat:
    path: str
    type: FileType

    @property
    def exists(self) -> bool:
        return self.type is not FileType.NONEXISTENT

    def to_dict(self) -> Dict[str, Any]:
        return {'path': self.path, 'type': self.type.value}


def is_strong_etag(etag: Optional[str]) -> bool:
    return bool(etag) and not etag.startswith('W/')


@dataclass(frozen=True)
class _UrlRecord:
    status_code: int
    etag: Optional[str]
    last_modified: Optional[str]
    body: Any


class ResponseHistory:
    """
    Last response seen for each contents URL.

    Shared by every probe of a scanner and safe to use from several
    threads. Least recently used URLs are forgotten beyond ``max_entries``.
    """

    def __init__(self, max_entries: int = DEFAULT_HISTORY_SIZE):
        self.max_entries = max_entries
        self._records: 'OrderedDict[str, _UrlRecord]' = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def headers_for(self, url: str) -> Dict[str, str]:
        """Request headers for the next request to ``url``."""
        with self._lock:
            record = self._records.get(url)
            if record is not None:
                self._records.move_to_end(url)

        if record is None:
            return {}
        if record.status_code == 404 and not is_strong_etag(record.etag):
            return dict(NO_CACHE_HEADERS)
        headers = {}
        if record.etag:
            # weak comparison is valid for GET
            headers['If-None-Match'] = record.etag
        if record.last_modified:
            headers['If-Modified-Since'] = record.last_modified
        return headers

    def record(self, response: ApiResponse) -> ApiResponse:
        """
        Remember a response and return the one the caller should see.

        A 304 is resolved against the recorded response. The history is
        updated before the response is returned.
        """
        url = response.url
        with self._lock:
            previous = self._records.get(url)
            if response.status_code == 304:
                if previous is None:
                    raise TransportError(f"Unexpected 304 for {url} without a cached response", status_code=304)
                effective = ApiResponse(
                    url=url,
                    status_code=previous.status_code,
                    headers=response.headers,
                    body=previous.body,
                )
                etag = response.etag or previous.etag
                last_modified = response.last_modified or previous.last_modified
            else:
                effective = response
                etag = response.etag
                last_modified = response.last_modified

            self._records[url] = _UrlRecord(effective.status_code, etag, last_modified, effective.body)
            self._records.move_to_end(url)
            while len(self._records) > self.max_entries:
                self._records.popitem(last=False)
        return effective

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


def resolve_ref(head: Head, revision: Optional[Revision] = None) -> str:
    """
    The ref contents are read at.

    Pull requests read from GitHub's ``refs/pull/<n>/{head,merge}``; other
    heads read from the revision's commit when known, else from the named
    branch or tag. A merge revision of a pull request that cannot merge
    has nothing to read and raises ValueError.
    """
    if isinstance(revision, PullRequestRevision):
        revision.validate_merge_sha()
    if isinstance(head, PullRequestHead):
        return f"refs/pull/{head.number}/{'merge' if head.is_merge else 'head'}"
    sha = getattr(revision, 'sha', None)
    if sha:
        return sha
    if isinstance(head, TagHead):
        return f"refs/tags/{head.name}"
    if isinstance(head, BranchHead):
        return f"refs/heads/{head.name}"
    raise ValueError(f"Unsupported head: {head!r}")


def normalize_path(path: str) -> str:
    path = posixpath.normpath('/' + (path or '')).lstrip('/')
    return '' if path == '.' else path


class CachingContentProbe:
    """
    Path queries against one revision of a repository.

    Example:
        with CachingContentProbe(client, source, BranchHead("main")) as probe:
            if probe.stat("Jenkinsfile").exists:
                text = probe.read("Jenkinsfile").decode()
    """

    def __init__(
        self,
        client: GitHubClient,
        source: RepositorySource,
        head: Head,
        revision: Optional[Revision] = None,
        history: Optional[ResponseHistory] = None
    ):
        self.client = client
        self.source = source
        self.head = head
        self.revision = revision
        self.ref = resolve_ref(head, revision)
        self.history = history if history is not None else ResponseHistory()
        self._responses: Dict[str, ApiResponse] = {}
        self._missing: Set[str] = set()
        self._closed = False

    def __enter__(self) -> 'CachingContentProbe':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._closed = True
        self._responses.clear()
        self._missing.clear()

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("CachingContentProbe is closed")

    def _under_missing(self, path: str) -> bool:
        parent = path
        while parent:
            parent = posixpath.dirname(parent)
            if parent in self._missing:
                return True
        return False

    def _fetch(self, path: str) -> ApiResponse:
        if path in self._responses:
            return self._responses[path]
        url = self.client.contents_url(self.source.owner, self.source.repository, path, self.ref)
        headers = self.history.headers_for(url)
        logger.debug(f"GET contents {path or '/'} at {self.ref} {headers}")
        response = self.client.get_contents(
            self.source.owner, self.source.repository, path, self.ref, headers=headers
        )
        response = self.history.record(response)
        self._responses[path] = response
        return response

    def stat(self, path: str) -> ProbeStat:
        self._check_open()
        path = normalize_path(path)
        if path in self._missing or self._under_missing(path):
            return ProbeStat(path, FileType.NONEXISTENT)

        response = self._fetch(path)
        if response.status_code == 404:
            self._missing.add(path)
            return ProbeStat(path, FileType.NONEXISTENT)
        if isinstance(response.body, list):
            return ProbeStat(path, FileType.DIRECTORY)
        content_type = (response.body or {}).get('type')
        return ProbeStat(path, _CONTENT_TYPES.get(content_type, FileType.OTHER))

    def exists(self, path: str) -> bool:
        return self.stat(path).exists

    def list_dir(self, path: str = '') -> List[str]:
        """Entry names of a directory."""
        stat = self.stat(path)
        if not stat.exists:
            raise FileNotFoundError(stat.path or '/')
        if stat.type is not FileType.DIRECTORY:
            raise NotADirectoryError(stat.path)
        return [entry.get('name', '') for entry in self._responses[stat.path].body]

    def read(self, path: str) -> bytes:
        """
        Raw content of a file.

        Raises:
            FileNotFoundError: if the path does not exist
            IsADirectoryError: if the path is a directory
        """
        stat = self.stat(path)
        if not stat.exists:
            raise FileNotFoundError(stat.path or '/')
        if stat.type is FileType.DIRECTORY:
            raise IsADirectoryError(stat.path or '/')

        body = self._responses[stat.path].body
        content = body.get('content') or ''
        if not content and body.get('size', 0) > 0:
            # GitHub omits content for files over 1 MB
            blob = self.client.get_json(
                f"repos/{self.source.owner}/{self.source.repository}/git/blobs/{body['sha']}"
            )
            content = blob.get('content', '')
        return base64.b64decode(content)

    def root(self) -> 'ContentFile':
        self._check_open()
        return ContentFile(self, '')


class ContentFile:
    """A lazily resolved path of a probed revision."""

    def __init__(self, probe: CachingContentProbe, path: str):
        self.probe = probe
        self.path = normalize_path(path)

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    def child(self, name: str) -> 'ContentFile':
        return ContentFile(self.probe, posixpath.join(self.path, name))

    def children(self) -> List['ContentFile']:
        if self.type() is not FileType.DIRECTORY:
            return []
        return [self.child(name) for name in self.probe.list_dir(self.path)]

    def type(self) -> FileType:
        return self.probe.stat(self.path).type

    def exists(self) -> bool:
        return self.type() is not FileType.NONEXISTENT

    def content(self) -> bytes:
        return self.probe.read(self.path)

    def __repr__(self) -> str:
        return f"ContentFile({self.path or '/'!r} at {self.probe.ref})"
