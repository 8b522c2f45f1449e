"""
Commit status notifications for discovered heads.

Each notification strategy turns a NotificationContext (the head, its
revision and the state of the build running on it) into at most one
StatusPayload. collect_notifications merges the payloads of an ordered
list of strategies, keeping one payload per context label.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..domain import Head, PullRequestHead, Revision

DEFAULT_LABEL_PREFIX = "continuous-integration/jenkins"


class CommitState(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


class BuildResult(Enum):
    SUCCESS = "success"
    UNSTABLE = "unstable"
    FAILURE = "failure"
    ABORTED = "aborted"
    NOT_BUILT = "not_built"


@dataclass(frozen=True)
class BuildRun:
    """A build of a head. ``result`` is None while it has not finished."""
    result: Optional[BuildResult] = None
    building: bool = False
    url: Optional[str] = None


@dataclass(frozen=True)
class StatusPayload:
    state: CommitState
    description: str
    url: Optional[str]
    context_label: str
    ignore_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'description': self.description,
            'url': self.url,
            'context': self.context_label,
        }


_MESSAGES = {
    BuildResult.SUCCESS: "This commit looks good",
    BuildResult.UNSTABLE: "This commit has test failures",
    BuildResult.FAILURE: "This commit cannot be built",
    BuildResult.ABORTED: "The build of this commit was aborted",
    BuildResult.NOT_BUILT: "Something is wrong with the build of this commit",
}

_STATES = {
    BuildResult.SUCCESS: CommitState.SUCCESS,
    BuildResult.UNSTABLE: CommitState.FAILURE,
    BuildResult.FAILURE: CommitState.ERROR,
    BuildResult.ABORTED: CommitState.ERROR,
    BuildResult.NOT_BUILT: CommitState.ERROR,
}


def head_type_suffix(head: Head) -> str:
    """``pr-merge``, ``pr-head`` or ``branch`` (tags report as branches)."""
    if isinstance(head, PullRequestHead):
        return "pr-merge" if head.is_merge else "pr-head"
    return "branch"


@dataclass(frozen=True)
class NotificationContext:
    """Everything a strategy may look at when building a status."""
    head: Head
    revision: Optional[Revision] = None
    run: Optional[BuildRun] = None
    job_url: Optional[str] = None

    def default_context_label(self) -> str:
        return f"{DEFAULT_LABEL_PREFIX}/{head_type_suffix(self.head)}"

    def default_url(self) -> Optional[str]:
        if self.run is not None and self.run.url:
            return self.run.url
        return self.job_url

    def default_message(self) -> str:
        if self.run is None:
            return "This commit is scheduled to be built"
        if self.run.result is None:
            return "This commit is being built"
        return _MESSAGES[self.run.result]

    def default_state(self) -> CommitState:
        if self.run is not None and not self.run.building and self.run.result is not None:
            return _STATES[self.run.result]
        return CommitState.PENDING


@dataclass(frozen=True)
class DefaultNotificationStrategy:
    """Reports under the default ``continuous-integration/jenkins/*`` labels."""

    def notification(self, context: NotificationContext) -> Optional[StatusPayload]:
        return StatusPayload(
            state=context.default_state(),
            description=context.default_message(),
            url=context.default_url(),
            context_label=context.default_context_label(),
        )


@dataclass(frozen=True)
class ContextLabelNotificationStrategy:
    """
    Reports under a custom label.

    With ``type_suffix`` the head type is appended, e.g. ``ci/acme/pr-merge``.
    """
    label: str
    type_suffix: bool = True

    def notification(self, context: NotificationContext) -> Optional[StatusPayload]:
        label = self.label
        if self.type_suffix:
            label = f"{label}/{head_type_suffix(context.head)}"
        return StatusPayload(
            state=context.default_state(),
            description=context.default_message(),
            url=context.default_url(),
            context_label=label,
        )


def collect_notifications(strategies: Iterable[Any], context: NotificationContext) -> List[StatusPayload]:
    """
    Gather the payloads of every strategy.

    Payloads sharing a context label collapse to the one from the most
    recently registered strategy; labels keep the order they first
    appeared in.
    """
    payloads: Dict[str, StatusPayload] = {}
    for strategy in strategies:
        payload = strategy.notification(context)
        if payload is not None:
            payloads[payload.context_label] = payload
    return list(payloads.values())
