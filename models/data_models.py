"""Data models for tracked pull requests, poller state and notifications."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field


class ReviewState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"


class CiStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class DisplayFilter(str, Enum):
    ALL = "all"
    MINE = "mine"
    OTHERS = "others"


class EventType(str, Enum):
    NEW_PR = "new_pr"
    COMMENT = "comment"
    REVIEW = "review"
    CI_FAILURE = "ci_failure"
    CI_SUCCESS = "ci_success"
    READY_TO_MERGE = "ready_to_merge"
    STATUS = "status"


class PullRequestRecord(BaseModel):
    """An open PR relevant to the user, as seen in one poll cycle.

    Built in two steps:
    - Fetch: search result item + PR detail resource (roles, draft flag,
      comment counts, head SHA, mergeable state)
    - Activity: reviews and CI signals (review_state, ci_status, counters)

    Role flags are independent; a PR found by several queries holds all of
    the matching roles.
    """

    # Identity
    id: int
    number: int
    repo: str  # e.g., "octocat/hello-world"

    # Descriptive fields
    title: str = ""
    author: str = ""
    author_avatar: Optional[str] = None
    url: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Roles
    is_author: bool = False
    is_reviewer: bool = False
    is_assignee: bool = False

    # Derived from PR detail
    is_draft: bool = False
    comment_count: int = 0
    head_sha: Optional[str] = None
    mergeable_state: Optional[str] = None

    # Derived from activity
    review_state: ReviewState = ReviewState.PENDING
    review_count: int = 0
    approval_count: int = 0
    ci_status: CiStatus = CiStatus.NONE
    ci_checks: int = 0
    ci_passed: int = 0

    @classmethod
    def from_search_item(
        cls,
        item: dict[str, Any],
        repo: str,
        details: Optional[dict[str, Any]] = None,
        is_author: bool = False,
        is_reviewer: bool = False,
        is_assignee: bool = False,
    ) -> "PullRequestRecord":
        """Decode a search/issues item plus its PR detail payload.

        The detail payload may be degraded ({"draft": False}) when the detail
        request failed; every derived field then falls back to its default.

        Args:
            item: Item from the search/issues response
            repo: Repository full name the query was scoped to
            details: PR detail resource (or degraded stand-in)
            is_author / is_reviewer / is_assignee: Role flags

        Returns:
            Decoded PullRequestRecord

        Raises:
            KeyError: If the item lacks its id or number
        """
        details = details or {}
        user = item.get("user") or {}
        head = details.get("head") or {}

        # Detail counters are authoritative; the search item only counts issue comments
        comment_count = (details.get("comments") or 0) + (details.get("review_comments") or 0)

        return cls(
            id=item["id"],
            number=item["number"],
            repo=repo,
            title=item.get("title") or "",
            author=user.get("login") or "",
            author_avatar=user.get("avatar_url"),
            url=item.get("html_url") or "",
            created_at=item.get("created_at"),
            updated_at=item.get("updated_at"),
            is_author=is_author,
            is_reviewer=is_reviewer,
            is_assignee=is_assignee,
            is_draft=bool(details.get("draft", False)),
            comment_count=comment_count,
            head_sha=head.get("sha"),
            mergeable_state=details.get("mergeable_state"),
        )

    def merge_roles(self, other: "PullRequestRecord") -> None:
        """Union role flags with another record of the same PR."""
        self.is_author = self.is_author or other.is_author
        self.is_reviewer = self.is_reviewer or other.is_reviewer
        self.is_assignee = self.is_assignee or other.is_assignee

    @property
    def repo_owner(self) -> str:
        return self.repo.split("/", 1)[0]

    @property
    def repo_name(self) -> str:
        return self.repo.split("/", 1)[-1]

    @property
    def ref(self) -> str:
        return f"{self.repo}#{self.number}"

    @property
    def is_ready_to_merge(self) -> bool:
        return (
            self.ci_status == CiStatus.SUCCESS
            and self.review_state == ReviewState.APPROVED
            and not self.is_draft
        )


class PersistedPrState(BaseModel):
    """Per-PR snapshot kept between poll cycles for diffing.

    State fields are optional: an entry written by an older version, or
    partially, reports the missing fields as undefined rather than as a
    default value.
    """

    comment_count: Optional[int] = None
    review_state: Optional[ReviewState] = None
    ci_status: Optional[CiStatus] = None
    is_draft: Optional[bool] = None
    repo: Optional[str] = None
    number: Optional[int] = None
    title: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_record(cls, pr: PullRequestRecord) -> "PersistedPrState":
        return cls(
            comment_count=pr.comment_count,
            review_state=pr.review_state,
            ci_status=pr.ci_status,
            is_draft=pr.is_draft,
            repo=pr.repo,
            number=pr.number,
            title=pr.title,
            url=pr.url,
        )

    @property
    def is_ready_to_merge(self) -> bool:
        return (
            self.ci_status == CiStatus.SUCCESS
            and self.review_state == ReviewState.APPROVED
            and self.is_draft is False
        )


class PollerState(BaseModel):
    """Seen-id set and per-PR snapshot, read at cycle start and written at cycle end."""

    seen_pr_ids: set[int] = Field(default_factory=set)
    pr_state: dict[int, PersistedPrState] = Field(default_factory=dict)

    @classmethod
    def from_blobs(cls, blobs: dict[str, Any]) -> "PollerState":
        """Decode the `seenPRIds` and `prState` blobs from the state store."""
        return cls(
            seen_pr_ids=set(blobs.get("seenPRIds") or []),
            pr_state=blobs.get("prState") or {},
        )

    def to_blobs(self) -> dict[str, Any]:
        return {
            "seenPRIds": sorted(self.seen_pr_ids),
            "prState": {
                str(pr_id): entry.model_dump(mode="json")
                for pr_id, entry in self.pr_state.items()
            },
        }


class PullRequestRef(BaseModel):
    """Minimal PR reference carried by notification events."""

    id: int
    number: int
    repo: str
    title: str = ""
    url: str = ""
    author: str = ""

    @classmethod
    def from_record(cls, pr: PullRequestRecord) -> "PullRequestRef":
        return cls(
            id=pr.id,
            number=pr.number,
            repo=pr.repo,
            title=pr.title,
            url=pr.url,
            author=pr.author,
        )

    @property
    def ref(self) -> str:
        return f"{self.repo}#{self.number}"


class NotificationEvent(BaseModel):
    """One detected change for one PR."""

    type: EventType
    pr: PullRequestRef
    message: str
    count: Optional[int] = None  # comment events: number of new comments
    state: Optional[ReviewState] = None  # review events
    status: Optional[Literal["ready", "draft", "closed"]] = None  # status events


class Notification(BaseModel):
    """A batched, user-facing notification for one poll cycle."""

    title: str
    body: str
    tag: str = "pr-updates"
    affected_prs: list[PullRequestRef]
    events: list[NotificationEvent]

    @property
    def single_pr(self) -> Optional[PullRequestRef]:
        if len(self.affected_prs) == 1:
            return self.affected_prs[0]
        return None


class CycleResult(BaseModel):
    """Outcome of a single poll cycle."""

    success: bool
    skipped: bool = False
    error: Optional[str] = None
    prs: list[PullRequestRecord] = Field(default_factory=list)
    events: list[NotificationEvent] = Field(default_factory=list)
    notification: Optional[Notification] = None
    delivered: bool = False
    failed_repos: list[str] = Field(default_factory=list)
    last_updated: Optional[datetime] = None
