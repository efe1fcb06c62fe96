"""
Reconciliation of a poll cycle's PRs against the persisted snapshot.

Produces the ordered notification events for a cycle and the next
PollerState. Pure functions: nothing here touches the network or storage.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from models.config_models import Config
from models.data_models import (
    CiStatus,
    EventType,
    NotificationEvent,
    PersistedPrState,
    PollerState,
    PullRequestRecord,
    PullRequestRef,
    ReviewState,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(pr: PullRequestRecord) -> datetime:
    updated = pr.updated_at
    if updated is None:
        return _EPOCH
    if updated.tzinfo is None:
        return updated.replace(tzinfo=timezone.utc)
    return updated


def merge_pull_requests(prs: Iterable[PullRequestRecord]) -> list[PullRequestRecord]:
    """
    Deduplicate PRs gathered from several repositories by PR id.

    Roles are unioned when the same PR shows up more than once. The result is
    sorted by last update, most recent first.
    """
    merged: dict[int, PullRequestRecord] = {}
    for pr in prs:
        existing = merged.get(pr.id)
        if existing is None:
            merged[pr.id] = pr
        else:
            existing.merge_roles(pr)

    return sorted(merged.values(), key=_sort_key, reverse=True)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def detect_changes(
    prs: list[PullRequestRecord],
    state: PollerState,
    config: Config
) -> list[NotificationEvent]:
    """
    Diff the current PRs against the stored snapshot.

    Rules per PR:
    - Never seen before: one new_pr event and nothing else
    - Seen but no stored entry: no events (cannot diff)
    - Otherwise comment / review / ci_failure / ci_success / ready_to_merge /
      status events, each gated by the repository's notification policy

    Args:
        prs: Current, enriched PRs
        state: PollerState from the previous successful cycle
        config: Configuration (per-repository notification policies)

    Returns:
        Events in generation order
    """
    events: list[NotificationEvent] = []

    for pr in prs:
        policy = config.policy_for(pr.repo)
        ref = PullRequestRef.from_record(pr)

        if pr.id not in state.seen_pr_ids:
            if policy.new_prs:
                logger.info(f"PR {pr.ref}: new")
                events.append(NotificationEvent(
                    type=EventType.NEW_PR, pr=ref, message=f"New PR: {pr.title}"
                ))
            continue

        old = state.pr_state.get(pr.id)
        if old is None:
            logger.debug(f"No stored state for PR {pr.ref}, skipping change detection")
            continue

        events.extend(_diff_pr(pr, ref, old, policy))

    return events


def _diff_pr(pr: PullRequestRecord, ref: PullRequestRef, old: PersistedPrState, policy) -> list[NotificationEvent]:
    events = []

    old_comments = old.comment_count or 0
    if policy.comments and pr.comment_count > old_comments:
        delta = pr.comment_count - old_comments
        logger.info(f"PR {pr.ref}: {_plural(delta, 'new comment')} ({old_comments} → {pr.comment_count})")
        events.append(NotificationEvent(
            type=EventType.COMMENT, pr=ref, count=delta,
            message=_plural(delta, "new comment"),
        ))

    if (
        policy.reviews
        and old.review_state is not None
        and pr.review_state != old.review_state
    ):
        if pr.review_state == ReviewState.APPROVED:
            logger.info(f"PR {pr.ref}: review approved")
            events.append(NotificationEvent(
                type=EventType.REVIEW, pr=ref, state=ReviewState.APPROVED, message="PR approved"
            ))
        elif pr.review_state == ReviewState.CHANGES_REQUESTED:
            logger.info(f"PR {pr.ref}: changes requested")
            events.append(NotificationEvent(
                type=EventType.REVIEW, pr=ref, state=ReviewState.CHANGES_REQUESTED,
                message="Changes requested",
            ))

    if (
        policy.ci_failure
        and pr.ci_status == CiStatus.FAILURE
        and old.ci_status != CiStatus.FAILURE
    ):
        logger.info(f"PR {pr.ref}: CI failed")
        events.append(NotificationEvent(type=EventType.CI_FAILURE, pr=ref, message="CI failed"))

    if (
        policy.ci_success
        and pr.ci_status == CiStatus.SUCCESS
        and old.ci_status is not None
        and old.ci_status != CiStatus.SUCCESS
    ):
        logger.info(f"PR {pr.ref}: CI passed")
        events.append(NotificationEvent(type=EventType.CI_SUCCESS, pr=ref, message="CI passed"))

    if (
        policy.ready_to_merge
        and pr.is_ready_to_merge
        and old.ci_status is not None
        and not old.is_ready_to_merge
    ):
        logger.info(f"PR {pr.ref}: ready to merge")
        events.append(NotificationEvent(type=EventType.READY_TO_MERGE, pr=ref, message="Ready to merge"))

    if policy.status and old.is_draft is not None:
        if old.is_draft and not pr.is_draft:
            logger.info(f"PR {pr.ref}: ready for review")
            events.append(NotificationEvent(
                type=EventType.STATUS, pr=ref, status="ready", message="PR ready for review"
            ))
        elif not old.is_draft and pr.is_draft:
            logger.info(f"PR {pr.ref}: converted to draft")
            events.append(NotificationEvent(
                type=EventType.STATUS, pr=ref, status="draft", message="PR converted to draft"
            ))

    return events


def detect_closed(
    prs: list[PullRequestRecord],
    state: PollerState,
    config: Config,
    skip_repos: Optional[Iterable[str]] = None
) -> list[NotificationEvent]:
    """
    Emit a closed status event for every stored PR missing from this cycle.

    The event's PR reference is rebuilt from the stored entry since there is
    no current record. Entries without a repository, and entries belonging to
    repositories whose fetch failed this cycle, are ignored.
    """
    current_ids = {pr.id for pr in prs}
    skip = set(skip_repos or ())
    events = []

    for pr_id, old in state.pr_state.items():
        if pr_id in current_ids or not old.repo or old.repo in skip:
            continue
        if not config.policy_for(old.repo).status:
            continue

        logger.info(f"PR {old.repo}#{old.number}: no longer open (closed/merged)")
        events.append(NotificationEvent(
            type=EventType.STATUS,
            pr=PullRequestRef(
                id=pr_id,
                number=old.number or 0,
                repo=old.repo,
                title=old.title or "",
                url=old.url or "",
            ),
            status="closed",
            message="PR closed or merged",
        ))

    return events


def advance_state(
    prs: list[PullRequestRecord],
    state: PollerState,
    carry_repos: Optional[Iterable[str]] = None
) -> PollerState:
    """
    Build the PollerState to persist after this cycle.

    Every current PR gets a fresh snapshot entry and joins the seen-id set.
    Entries for PRs no longer present are dropped, except those of
    repositories listed in carry_repos, which are kept unchanged.
    """
    carry = set(carry_repos or ())

    pr_state = {
        pr_id: entry
        for pr_id, entry in state.pr_state.items()
        if entry.repo in carry
    }
    for pr in prs:
        pr_state[pr.id] = PersistedPrState.from_record(pr)

    return PollerState(
        seen_pr_ids=state.seen_pr_ids | {pr.id for pr in prs},
        pr_state=pr_state,
    )


def reconcile(
    prs: list[PullRequestRecord],
    state: PollerState,
    config: Config,
    failed_repos: Optional[Iterable[str]] = None
) -> tuple[list[NotificationEvent], PollerState]:
    """
    Run change detection, closed detection and state advance for one cycle.

    Returns:
        Tuple of (events, next_state)
    """
    failed = list(failed_repos or ())
    events = detect_changes(prs, state, config)
    events.extend(detect_closed(prs, state, config, skip_repos=failed))
    next_state = advance_state(prs, state, carry_repos=failed)

    logger.info(f"Detected {len(events)} notification event(s)")
    return events, next_state
