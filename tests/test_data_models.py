"""Tests for data models."""

from datetime import datetime, timezone
import pytest
from pydantic import ValidationError

from models.data_models import (
    CiStatus,
    EventType,
    Notification,
    NotificationEvent,
    PersistedPrState,
    PollerState,
    PullRequestRecord,
    PullRequestRef,
    ReviewState,
)


SEARCH_ITEM = {
    "id": 555,
    "number": 42,
    "title": "Add retries",
    "html_url": "https://github.com/octo/app/pull/42",
    "user": {"login": "alice", "avatar_url": "https://avatars/alice"},
    "created_at": "2025-01-10T09:00:00Z",
    "updated_at": "2025-01-15T10:30:00Z",
    "comments": 1,
}


class TestPullRequestRecord:
    """Tests for decoding and derived properties."""

    def test_from_search_item_with_details(self):
        details = {
            "draft": True,
            "comments": 2,
            "review_comments": 5,
            "head": {"sha": "abc123"},
            "mergeable_state": "blocked",
        }
        pr = PullRequestRecord.from_search_item(SEARCH_ITEM, "octo/app", details, is_reviewer=True)

        assert pr.id == 555
        assert pr.number == 42
        assert pr.repo == "octo/app"
        assert pr.author == "alice"
        assert pr.author_avatar == "https://avatars/alice"
        assert pr.url == "https://github.com/octo/app/pull/42"
        assert pr.updated_at == datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert pr.is_draft is True
        assert pr.comment_count == 7
        assert pr.head_sha == "abc123"
        assert pr.mergeable_state == "blocked"
        assert pr.is_reviewer and not pr.is_author and not pr.is_assignee
        assert pr.review_state == ReviewState.PENDING
        assert pr.ci_status == CiStatus.NONE

    def test_from_search_item_degraded_details(self):
        pr = PullRequestRecord.from_search_item(SEARCH_ITEM, "octo/app", {"draft": False})

        assert pr.is_draft is False
        assert pr.comment_count == 0
        assert pr.head_sha is None

    def test_missing_identity_raises(self):
        with pytest.raises(KeyError):
            PullRequestRecord.from_search_item({"title": "x"}, "octo/app")

    def test_missing_user(self):
        item = dict(SEARCH_ITEM, user=None)
        assert PullRequestRecord.from_search_item(item, "octo/app").author == ""

    def test_properties(self, make_pr):
        pr = make_pr(7, repo="octo/app")
        assert pr.repo_owner == "octo"
        assert pr.repo_name == "app"
        assert pr.ref == "octo/app#7"

    def test_ready_to_merge(self, make_pr):
        assert make_pr(ci_status=CiStatus.SUCCESS, review_state=ReviewState.APPROVED).is_ready_to_merge
        assert not make_pr(ci_status=CiStatus.SUCCESS, review_state=ReviewState.APPROVED,
                           is_draft=True).is_ready_to_merge
        assert not make_pr(ci_status=CiStatus.PENDING, review_state=ReviewState.APPROVED).is_ready_to_merge

    def test_merge_roles(self, make_pr):
        pr = make_pr(is_author=True)
        pr.merge_roles(make_pr(is_assignee=True))
        assert pr.is_author and pr.is_assignee and not pr.is_reviewer

    def test_invalid_ci_status(self, make_pr):
        with pytest.raises(ValidationError):
            make_pr(ci_status="green")


class TestPersistedPrState:
    """Tests for the per-PR snapshot."""

    def test_partial_entry_fields_undefined(self):
        entry = PersistedPrState.model_validate({"comment_count": 3})
        assert entry.review_state is None
        assert entry.ci_status is None
        assert entry.is_draft is None
        assert not entry.is_ready_to_merge

    def test_ready_requires_explicit_non_draft(self):
        entry = PersistedPrState(ci_status=CiStatus.SUCCESS, review_state=ReviewState.APPROVED)
        assert not entry.is_ready_to_merge

        entry.is_draft = False
        assert entry.is_ready_to_merge


class TestPollerState:
    """Tests for blob conversion."""

    def test_from_empty_blobs(self):
        state = PollerState.from_blobs({})
        assert state.seen_pr_ids == set()
        assert state.pr_state == {}

    def test_from_blobs_string_keys(self):
        state = PollerState.from_blobs({
            "seenPRIds": [3, 1],
            "prState": {"3": {"comment_count": 1, "ci_status": "failure", "repo": "octo/app"}},
        })
        assert state.seen_pr_ids == {1, 3}
        assert state.pr_state[3].ci_status == CiStatus.FAILURE

    def test_to_blobs_is_json_ready(self, make_pr):
        state = PollerState(
            seen_pr_ids={5, 2},
            pr_state={5: PersistedPrState.from_record(make_pr(5, review_state=ReviewState.APPROVED))},
        )
        blobs = state.to_blobs()

        assert blobs["seenPRIds"] == [2, 5]
        assert blobs["prState"]["5"]["review_state"] == "approved"
        assert blobs["prState"]["5"]["number"] == 5


class TestNotification:

    def test_single_pr(self):
        ref = PullRequestRef(id=1, number=1, repo="octo/app")
        event = NotificationEvent(type=EventType.NEW_PR, pr=ref, message="New PR")
        notification = Notification(title="t", body="b", affected_prs=[ref], events=[event])

        assert notification.single_pr == ref
        assert notification.tag == "pr-updates"

    def test_invalid_status_value(self):
        ref = PullRequestRef(id=1, number=1, repo="octo/app")
        with pytest.raises(ValidationError):
            NotificationEvent(type=EventType.STATUS, pr=ref, message="x", status="reopened")
