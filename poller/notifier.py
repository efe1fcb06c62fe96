"""
Notification batching and delivery.

A poll cycle produces at most one notification:
- One affected PR: a detailed message built from the first event
- Several affected PRs: a summary of per-category counts

Delivery goes through a Notifier transport. The PR-id -> event-type mapping
used by the UI to highlight PRs is built separately so it can be persisted
whether or not delivery succeeds.
"""

import logging
from typing import Optional

import requests

from models.data_models import EventType, Notification, NotificationEvent, PullRequestRef

logger = logging.getLogger(__name__)

NOTIFICATION_TAG = "pr-updates"
SUMMARY_SEPARATOR = " • "


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def should_deliver(
    events: list[NotificationEvent],
    first_cycle: bool,
    notifications_enabled: bool,
    had_known_prs: bool
) -> bool:
    """
    Decide whether this cycle's events are delivered at all.

    Suppressed on the first successful cycle since process start, when
    notifications are globally disabled, and when no PR was known before this
    cycle (cold start would otherwise announce every open PR).
    """
    if not events:
        return False
    if first_cycle:
        logger.info(f"{len(events)} notification(s) not sent: first cycle since start")
        return False
    if not notifications_enabled:
        logger.info(f"{len(events)} notification(s) not sent: notifications disabled")
        return False
    if not had_known_prs:
        logger.info(f"{len(events)} notification(s) not sent: first run")
        return False
    return True


def affected_prs(events: list[NotificationEvent]) -> list[PullRequestRef]:
    """Unique PRs referenced by the events, in first-seen order."""
    unique: dict[int, PullRequestRef] = {}
    for event in events:
        unique.setdefault(event.pr.id, event.pr)
    return list(unique.values())


def build_highlights(events: list[NotificationEvent]) -> dict[int, list[str]]:
    """Map each affected PR id to the event types it received this cycle."""
    highlights: dict[int, list[str]] = {}
    for event in events:
        highlights.setdefault(event.pr.id, []).append(event.type.value)
    return highlights


def summarize_counts(events: list[NotificationEvent]) -> str:
    """Build the multi-PR summary line, omitting empty categories."""
    counts = {event_type: 0 for event_type in EventType}
    total_comments = 0
    for event in events:
        counts[event.type] += 1
        if event.type == EventType.COMMENT:
            total_comments += event.count or 0

    parts = []
    if counts[EventType.NEW_PR]:
        parts.append(_plural(counts[EventType.NEW_PR], "new PR"))
    if total_comments:
        parts.append(_plural(total_comments, "comment"))
    if counts[EventType.REVIEW]:
        parts.append(_plural(counts[EventType.REVIEW], "review"))
    if counts[EventType.CI_FAILURE]:
        parts.append(_plural(counts[EventType.CI_FAILURE], "CI failure"))
    if counts[EventType.CI_SUCCESS]:
        parts.append(f"{counts[EventType.CI_SUCCESS]} CI passed")
    if counts[EventType.READY_TO_MERGE]:
        parts.append(f"{counts[EventType.READY_TO_MERGE]} ready to merge")
    if counts[EventType.STATUS]:
        parts.append(_plural(counts[EventType.STATUS], "status change"))

    return SUMMARY_SEPARATOR.join(parts)


def describe_event(event: NotificationEvent) -> str:
    """Detailed single-PR message for an event."""
    pr = event.pr

    if event.type == EventType.NEW_PR:
        return f"New PR by @{pr.author}: {pr.title}"
    if event.type == EventType.COMMENT:
        count = event.count or 0
        return f'{_plural(count, "new comment")} on "{pr.title}"'
    if event.type == EventType.REVIEW:
        if event.state is not None and event.state.value == "approved":
            return f"✓ PR approved: {pr.title}"
        return f"⚠ Changes requested: {pr.title}"
    if event.type == EventType.CI_FAILURE:
        return f"✗ CI failed: {pr.title}"
    if event.type == EventType.CI_SUCCESS:
        return f"✓ CI passed: {pr.title}"
    if event.type == EventType.READY_TO_MERGE:
        return f"🚀 Ready to merge: {pr.title}"
    if event.type == EventType.STATUS:
        if event.status == "ready":
            return f"▶ Ready for review: {pr.title}"
        if event.status == "draft":
            return f"◼ Converted to draft: {pr.title}"
        if event.status == "closed":
            return f"✓ Closed/Merged: {pr.title}"
        return f"Status changed: {pr.title}"
    return pr.title


def build_notification(events: list[NotificationEvent]) -> Optional[Notification]:
    """
    Batch a cycle's events into a single notification.

    Returns:
        Notification, or None if there are no events
    """
    if not events:
        return None

    prs = affected_prs(events)

    if len(prs) == 1:
        title = prs[0].ref
        body = describe_event(events[0])
    else:
        title = f"{_plural(len(events), 'PR update')}"
        body = summarize_counts(events)

    return Notification(
        title=title,
        body=body,
        tag=NOTIFICATION_TAG,
        affected_prs=prs,
        events=events,
    )


class Notifier:
    """Notification transport. Subclasses render a title/body somewhere."""

    def notify(self, notification: Notification) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Write notifications to the application log."""

    def notify(self, notification: Notification) -> None:
        logger.info(f"🔔 {notification.title}: {notification.body}")


class WebhookNotifier(Notifier):
    """Post notifications to a Slack-compatible incoming webhook."""

    def __init__(self, webhook_url: str, timeout: float = 10.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def build_payload(self, notification: Notification) -> dict:
        lines = [f"*{notification.title}*", notification.body]
        single = notification.single_pr
        if single is not None and single.url:
            lines.append(single.url)
        return {
            "text": "\n".join(lines),
            "tag": notification.tag,
        }

    def notify(self, notification: Notification) -> None:
        response = requests.post(
            self.webhook_url,
            json=self.build_payload(notification),
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.debug(f"Webhook notification delivered ({response.status_code})")


def deliver(notifier: Notifier, notification: Notification) -> bool:
    """
    Send a notification, logging instead of raising on transport failure.

    Returns:
        True if the transport accepted the notification
    """
    logger.info(f'Sending notification: "{notification.title}" - "{notification.body}"')
    try:
        notifier.notify(notification)
        return True
    except Exception as e:
        logger.error(f"Failed to deliver notification: {e}")
        return False


def resolve_click(notification: Optional[Notification]) -> tuple[str, Optional[str]]:
    """
    Resolve a click on the last delivered notification.

    Returns:
        ("open_pr", url) when exactly one PR was affected,
        ("open_summary", None) for multi-PR notifications,
        ("none", None) when there is nothing to resolve
    """
    if notification is None:
        return "none", None
    single = notification.single_pr
    if single is not None:
        return "open_pr", single.url
    return "open_summary", None
