"""Review and CI state reduction for tracked pull requests.

GitHub reports CI through two independent systems:
- Check runs (GitHub Actions and apps), scoped to the head commit
- Commit statuses (older API used by Jenkins and other external CI)

Both are reduced separately and then merged with failure dominant. When
neither reports anything, the PR's mergeable_state is used as a fallback.
"""

import logging
from typing import Any, Iterable, Optional

from models.data_models import CiStatus, PullRequestRecord, ReviewState

logger = logging.getLogger(__name__)

# Review states that do not count as a verdict
IGNORED_REVIEW_STATES = {"COMMENTED", "PENDING"}

PENDING_RUN_STATUSES = {"queued", "in_progress", "waiting", "pending", "requested"}
FAILED_CONCLUSIONS = {"failure", "timed_out", "action_required"}
PASSED_CONCLUSIONS = {"success", "skipped", "neutral"}

MERGEABLE_STATE_FALLBACK = {
    "clean": CiStatus.SUCCESS,
    "unstable": CiStatus.FAILURE,
    "blocked": CiStatus.PENDING,
}


def reduce_reviews(reviews: Iterable[dict[str, Any]]) -> tuple[ReviewState, int, int]:
    """Reduce a review list to one review state.

    Only the latest verdict per reviewer survives (reviews are returned in
    chronological order). Comment-only and pending reviews are ignored.

    Args:
        reviews: Raw reviews from the pulls/{number}/reviews endpoint

    Returns:
        Tuple of (review_state, review_count, approval_count)
    """
    latest: dict[str, str] = {}
    for review in reviews:
        state = (review.get("state") or "").upper()
        if not state or state in IGNORED_REVIEW_STATES:
            continue
        reviewer = (review.get("user") or {}).get("login") or ""
        latest[reviewer] = state

    verdicts = list(latest.values())
    if "CHANGES_REQUESTED" in verdicts:
        review_state = ReviewState.CHANGES_REQUESTED
    elif "APPROVED" in verdicts:
        review_state = ReviewState.APPROVED
    else:
        review_state = ReviewState.PENDING

    approvals = sum(1 for v in verdicts if v == "APPROVED")
    return review_state, len(verdicts), approvals


def reduce_check_runs(runs: Optional[list[dict[str, Any]]]) -> Optional[CiStatus]:
    """Reduce check runs to failure/pending/success, or None when there are none."""
    if not runs:
        return None

    completed = [r for r in runs if r.get("status") == "completed"]

    if any(r.get("conclusion") in FAILED_CONCLUSIONS for r in completed):
        return CiStatus.FAILURE
    if any(r.get("status") in PENDING_RUN_STATUSES for r in runs):
        return CiStatus.PENDING
    if completed and all(r.get("conclusion") in PASSED_CONCLUSIONS for r in completed):
        return CiStatus.SUCCESS
    if len(completed) == len(runs):
        # All completed with other conclusions (cancelled, stale, ...)
        return CiStatus.SUCCESS
    return CiStatus.PENDING


def reduce_commit_status(payload: Optional[dict[str, Any]]) -> Optional[CiStatus]:
    """Reduce the combined commit status, or None when no statuses are reported."""
    if not payload or not payload.get("statuses"):
        return None

    state = payload.get("state")
    if state in ("failure", "error"):
        return CiStatus.FAILURE
    if state == "success":
        return CiStatus.SUCCESS
    if state == "pending":
        return CiStatus.PENDING
    return None


def merge_ci_status(
    check_runs_status: Optional[CiStatus],
    commit_status: Optional[CiStatus],
    mergeable_state: Optional[str] = None
) -> CiStatus:
    """Merge both CI signal sources into one status.

    Precedence: failure > success > pending. If neither source reported
    anything, fall back to mergeable_state (clean/unstable/blocked).
    """
    statuses = (check_runs_status, commit_status)

    if CiStatus.FAILURE in statuses:
        return CiStatus.FAILURE
    if CiStatus.SUCCESS in statuses:
        return CiStatus.SUCCESS
    if CiStatus.PENDING in statuses:
        return CiStatus.PENDING
    if check_runs_status is None and commit_status is None:
        return MERGEABLE_STATE_FALLBACK.get(mergeable_state or "", CiStatus.NONE)
    return CiStatus.NONE


def count_ci_checks(
    runs: Optional[list[dict[str, Any]]],
    status_payload: Optional[dict[str, Any]]
) -> tuple[int, int]:
    """Count total and passed CI entries across both sources."""
    runs = runs or []
    statuses = (status_payload or {}).get("statuses") or []

    total = len(runs) + len(statuses)
    passed = (
        sum(1 for r in runs if r.get("conclusion") == "success")
        + sum(1 for s in statuses if s.get("state") == "success")
    )
    return total, passed


def enrich_activity(fetcher, pr: PullRequestRecord) -> PullRequestRecord:
    """Populate review and CI fields of one PR.

    Each source is fetched independently; a failed source leaves its
    contribution empty instead of aborting the PR.

    Args:
        fetcher: GitHubFetcher (or compatible) instance
        pr: PR record to update in place

    Returns:
        The same PR record
    """
    reviews = fetcher.fetch_reviews(pr.repo, pr.number)
    if reviews is not None:
        pr.review_state, pr.review_count, pr.approval_count = reduce_reviews(reviews)

    runs = None
    status_payload = None
    if pr.head_sha:
        runs = fetcher.fetch_check_runs(pr.repo, pr.head_sha)
        status_payload = fetcher.fetch_commit_status(pr.repo, pr.head_sha)

    check_runs_status = reduce_check_runs(runs)
    commit_status = reduce_commit_status(status_payload)
    pr.ci_status = merge_ci_status(check_runs_status, commit_status, pr.mergeable_state)
    pr.ci_checks, pr.ci_passed = count_ci_checks(runs, status_payload)

    logger.debug(
        f"PR {pr.ref}: review={pr.review_state.value} "
        f"check_runs={check_runs_status.value if check_runs_status else None} "
        f"commit_status={commit_status.value if commit_status else None} "
        f"mergeable_state={pr.mergeable_state} -> ci={pr.ci_status.value} "
        f"({pr.ci_passed}/{pr.ci_checks})"
    )
    return pr


def enrich_all(fetcher, prs: list[PullRequestRecord]) -> list[PullRequestRecord]:
    """Enrich PRs one at a time to bound concurrent outbound requests."""
    for pr in prs:
        try:
            enrich_activity(fetcher, pr)
        except Exception as e:
            logger.error(f"Failed to fetch activity for PR {pr.ref}: {e}")
    return prs
