"""
Poll engine: runs poll cycles and answers inbound commands.

One poll cycle:
1. Fetch open PRs per repository (repositories in parallel)
2. Enrich each PR with reviews and CI status (one PR at a time)
3. Reconcile against the stored snapshot -> notification events
4. Batch and deliver at most one notification
5. Persist the new snapshot in a single write
6. Publish the badge

Cycles are serialized: a refresh request that arrives while a cycle is
running waits for it and returns its result instead of starting another.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Optional

import requests
from pydantic import ValidationError

from fetchers.activity import enrich_all
from fetchers.github import FetchError, GitHubFetcher
from models.config_models import Config
from models.data_models import (
    CycleResult,
    DisplayFilter,
    Notification,
    PollerState,
    PullRequestRecord,
)
from poller.badge import (
    BADGE_ERROR,
    BADGE_UNCONFIGURED_TEXT,
    badge_color,
    badge_text,
    project_badge,
)
from poller.commands import (
    BadgeResult,
    ClickResult,
    GetSnapshot,
    NotificationClicked,
    RefreshNow,
    RefreshResult,
    SetDisplayFilter,
    SettingsChanged,
    SettingsResult,
    SnapshotResult,
)
from poller.notifier import (
    LogNotifier,
    Notifier,
    WebhookNotifier,
    build_highlights,
    build_notification,
    deliver,
    resolve_click,
    should_deliver,
)
from poller.reconciler import merge_pull_requests, reconcile
from storage.state_store import JsonFileStateStore, StateStore
from utils.config_loader import ConfigurationMissing

logger = logging.getLogger(__name__)


def default_fetcher_factory(config: Config) -> GitHubFetcher:
    return GitHubFetcher(config.credentials.github_token, base_url=config.credentials.github_api_url)


def create_state_store(config: Config) -> StateStore:
    """Use Supabase when credentials are configured, otherwise the local state file."""
    if config.credentials.use_supabase:
        from storage.supabase_client import SupabaseStateStore
        return SupabaseStateStore(config.credentials.supabase_url, config.credentials.supabase_key)
    return JsonFileStateStore(config.state_file)


def create_notifier(config: Config) -> Notifier:
    if config.notification_webhook_url:
        return WebhookNotifier(config.notification_webhook_url)
    return LogNotifier()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _decode_prs(raw: Optional[list]) -> list[PullRequestRecord]:
    prs = []
    for item in raw or []:
        try:
            prs.append(PullRequestRecord.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropping unreadable stored PR: {e}")
    return prs


def _decode_filter(raw: Optional[str]) -> DisplayFilter:
    try:
        return DisplayFilter(raw or DisplayFilter.ALL)
    except ValueError:
        return DisplayFilter.ALL


class PollerEngine:
    """Owns the poll cycle, the persisted state and the inbound command surface."""

    def __init__(
        self,
        config_loader: Callable[[], Config],
        store: StateStore,
        fetcher_factory: Callable[[Config], GitHubFetcher] = default_fetcher_factory,
        notifier: Optional[Notifier] = None,
        on_badge: Optional[Callable[[str], None]] = None,
    ):
        """
        Args:
            config_loader: Returns the current Config (re-invoked on settings changes)
            store: Keyed-blob persistence
            fetcher_factory: Builds the GitHub client for a Config
            notifier: Notification transport (defaults to the log)
            on_badge: Called with the badge text every time it is recomputed
        """
        self._config_loader = config_loader
        self.config = config_loader()
        self.store = store
        self.fetcher_factory = fetcher_factory
        self.notifier = notifier or LogNotifier()
        self.on_badge = on_badge

        self.badge = ""
        self.last_notification: Optional[Notification] = None

        self._cycle_lock = threading.Lock()
        self._completed_cycles = 0
        self._last_result: Optional[CycleResult] = None
        self._has_succeeded = False
        self._username: Optional[str] = None
        self._settings_listeners: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleResult:
        """
        Run one poll cycle, or wait for the one in flight.

        Returns:
            CycleResult of the cycle this call ran or waited for
        """
        observed = self._completed_cycles
        with self._cycle_lock:
            if self._completed_cycles != observed and self._last_result is not None:
                logger.info("Poll cycle finished while waiting, reusing its result")
                return self._last_result

            result = self._run_cycle_locked()
            self._last_result = result
            self._completed_cycles += 1
            return result

    def _run_cycle_locked(self) -> CycleResult:
        config = self.config

        if not config.is_configured:
            logger.info("Not configured yet (GITHUB_TOKEN and MONITORED_REPOS required), skipping poll")
            self._publish_badge(BADGE_UNCONFIGURED_TEXT)
            return CycleResult(success=False, skipped=True)

        fetcher = self.fetcher_factory(config)

        try:
            username = self._resolve_username(fetcher, config)
        except ConfigurationMissing as e:
            logger.info(f"Skipping poll: {e}")
            self._publish_badge(BADGE_UNCONFIGURED_TEXT)
            return CycleResult(success=False, skipped=True, error=str(e))
        except requests.RequestException as e:
            return self._record_failure(f"Failed to resolve GitHub user: {e}")

        state = PollerState.from_blobs(self.store.get(["seenPRIds", "prState"]))
        had_known_prs = bool(state.seen_pr_ids)

        try:
            prs, failed_repos = self._fetch_all(fetcher, config, username)
        except FetchError as e:
            return self._record_failure(str(e))

        enrich_all(fetcher, prs)

        events, next_state = reconcile(prs, state, config, failed_repos)

        values = {}
        notification = None
        delivered = False
        if should_deliver(
            events,
            first_cycle=not self._has_succeeded,
            notifications_enabled=config.notifications_enabled,
            had_known_prs=had_known_prs,
        ):
            notification = build_notification(events)
            values["highlightedPRs"] = {
                str(pr_id): types for pr_id, types in build_highlights(events).items()
            }
            delivered = deliver(self.notifier, notification)
            self.last_notification = notification

        display_prs = merge_pull_requests(prs + self._carried_prs(failed_repos))

        now = _now()
        values.update({
            "prs": [pr.model_dump(mode="json") for pr in display_prs],
            "lastUpdated": now.isoformat(),
            "error": None,
        })
        values.update(next_state.to_blobs())
        self.store.set(values)
        self._has_succeeded = True

        self._publish_count(display_prs)

        logger.info(f"Found {len(display_prs)} PRs, {len(events)} notification event(s)")
        return CycleResult(
            success=True,
            prs=display_prs,
            events=events,
            notification=notification,
            delivered=delivered,
            failed_repos=failed_repos,
            last_updated=now,
        )

    def _resolve_username(self, fetcher: GitHubFetcher, config: Config) -> str:
        if config.credentials.github_username:
            return config.credentials.github_username
        if self._username is None:
            login = fetcher.fetch_authenticated_user().get("login")
            if not login:
                raise ConfigurationMissing("Could not determine the GitHub username for the token")
            self._username = login
        return self._username

    def _fetch_all(
        self,
        fetcher: GitHubFetcher,
        config: Config,
        username: str
    ) -> tuple[list[PullRequestRecord], list[str]]:
        """
        Fetch all repositories in parallel.

        A failing repository only drops its own contribution. If every
        repository fails, the first error is raised.

        Returns:
            Tuple of (merged PRs, names of repositories that failed)

        Raises:
            FetchError: If all repositories failed
        """
        repos = [repo.full_name for repo in config.repos]
        prs: list[PullRequestRecord] = []
        failed: list[str] = []
        first_error: Optional[FetchError] = None

        with ThreadPoolExecutor(max_workers=len(repos)) as executor:
            futures = {
                repo: executor.submit(fetcher.fetch_repo_prs, repo, username, config.include_authored)
                for repo in repos
            }
            for repo, future in futures.items():
                try:
                    prs.extend(future.result())
                except FetchError as e:
                    logger.error(f"✗ {e}")
                    failed.append(repo)
                    if first_error is None:
                        first_error = e

        if first_error is not None and len(failed) == len(repos):
            raise first_error
        if failed:
            logger.warning(f"Keeping previous data for {len(failed)} failed repo(s): {', '.join(failed)}")

        return merge_pull_requests(prs), failed

    def _carried_prs(self, failed_repos: list[str]) -> list[PullRequestRecord]:
        if not failed_repos:
            return []
        previous = _decode_prs(self.store.get_one("prs"))
        return [pr for pr in previous if pr.repo in failed_repos]

    def _record_failure(self, message: str) -> CycleResult:
        """Keep the last good PR list, record the error and show the error badge."""
        logger.error(f"Failed to fetch PRs: {message}")
        now = _now()
        self.store.set({"error": message, "lastUpdated": now.isoformat()})
        self._publish_badge(badge_text(BADGE_ERROR))
        return CycleResult(success=False, error=message, last_updated=now)

    # ------------------------------------------------------------------
    # Badge
    # ------------------------------------------------------------------

    def _publish_badge(self, text: str) -> None:
        self.badge = text
        if self.on_badge is not None:
            self.on_badge(text)

    def _publish_count(self, prs: list[PullRequestRecord], display_filter: Optional[DisplayFilter] = None) -> int:
        if display_filter is None:
            display_filter = _decode_filter(self.store.get_one("prFilter"))
        count = project_badge(prs, display_filter)
        self._publish_badge(badge_text(count))
        return count

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_settings_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback run after settings are reloaded (e.g. reschedule the timer)."""
        self._settings_listeners.append(listener)

    def reload_settings(self) -> Config:
        self.config = self._config_loader()
        self._username = None
        logger.info(
            f"Settings reloaded: {len(self.config.repos)} repo(s), "
            f"polling every {self.config.poll_interval} minute(s)"
        )
        for listener in self._settings_listeners:
            listener()

        if not self.config.is_configured:
            self._publish_badge(BADGE_UNCONFIGURED_TEXT)
        return self.config

    def dispatch(self, command):
        """
        Handle an inbound command.

        Returns:
            RefreshResult, SnapshotResult, SettingsResult, BadgeResult or ClickResult

        Raises:
            TypeError: For unknown command types
        """
        if isinstance(command, RefreshNow):
            result = self.run_cycle()
            return RefreshResult(
                success=result.success,
                skipped=result.skipped,
                error=result.error,
                pr_count=len(result.prs),
                event_count=len(result.events),
                failed_repos=result.failed_repos,
            )

        if isinstance(command, GetSnapshot):
            return self.snapshot()

        if isinstance(command, SettingsChanged):
            config = self.reload_settings()
            return SettingsResult(
                configured=config.is_configured,
                repo_count=len(config.repos),
                poll_interval=config.poll_interval,
            )

        if isinstance(command, SetDisplayFilter):
            return self.set_display_filter(command.filter)

        if isinstance(command, NotificationClicked):
            return self.notification_clicked()

        raise TypeError(f"Unknown command: {command!r}")

    def snapshot(self) -> SnapshotResult:
        """Return the last persisted PR list and cycle outcome."""
        stored = self.store.get(["prs", "lastUpdated", "error", "highlightedPRs", "prFilter"])
        return SnapshotResult(
            configured=self.config.is_configured,
            prs=_decode_prs(stored.get("prs")),
            last_updated=stored.get("lastUpdated"),
            error=stored.get("error"),
            highlighted_prs=stored.get("highlightedPRs") or {},
            display_filter=_decode_filter(stored.get("prFilter")),
            badge=self.badge,
            poll_interval=self.config.poll_interval,
        )

    def set_display_filter(self, display_filter: DisplayFilter) -> BadgeResult:
        """Persist the filter and recompute the badge from stored PRs (no network)."""
        display_filter = DisplayFilter(display_filter)
        self.store.set({"prFilter": display_filter.value})

        prs = _decode_prs(self.store.get_one("prs"))
        count = self._publish_count(prs, display_filter)
        return BadgeResult(
            display_filter=display_filter,
            count=count,
            text=badge_text(count),
            color=badge_color(count),
        )

    def badge_status(self) -> BadgeResult:
        """Current badge, derived from stored state without touching the network."""
        stored = self.store.get(["prs", "error", "prFilter"])
        display_filter = _decode_filter(stored.get("prFilter"))

        if not self.config.is_configured:
            return BadgeResult(
                display_filter=display_filter,
                count=0,
                text=BADGE_UNCONFIGURED_TEXT,
                color=badge_color(None),
            )

        prs = None if stored.get("error") else _decode_prs(stored.get("prs"))
        count = project_badge(prs, display_filter)
        return BadgeResult(
            display_filter=display_filter,
            count=count,
            text=badge_text(count),
            color=badge_color(count),
        )

    def notification_clicked(self) -> ClickResult:
        """Resolve a click on the last notification and forget it."""
        action, url = resolve_click(self.last_notification)
        if action == "open_pr":
            # Going straight to the PR, so the list highlights are no longer needed
            self.store.remove(["highlightedPRs"])
        self.last_notification = None
        return ClickResult(action=action, url=url)

    def clear_highlights(self) -> None:
        self.store.remove(["highlightedPRs"])


def build_engine(config_loader: Callable[[], Config], on_badge: Optional[Callable[[str], None]] = None) -> PollerEngine:
    """Wire an engine with the store and notifier selected by the configuration."""
    config = config_loader()
    return PollerEngine(
        config_loader=config_loader,
        store=create_state_store(config),
        notifier=create_notifier(config),
        on_badge=on_badge,
    )
