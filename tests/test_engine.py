"""
Tests for the poll engine.

The GitHub client is replaced with an in-memory fake passed through
fetcher_factory, and state lives in an InMemoryStateStore.
"""

import threading
import time
from unittest.mock import Mock

import pytest
import requests

from fetchers.github import FetchError
from models.config_models import Config, CredentialsConfig, RepoConfig
from models.data_models import CiStatus, DisplayFilter, EventType, ReviewState
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
from poller.engine import PollerEngine, create_notifier, create_state_store
from poller.notifier import LogNotifier, Notifier, WebhookNotifier
from storage.state_store import InMemoryStateStore, JsonFileStateStore


class FakeFetcher:
    """Stands in for GitHubFetcher; serves prepared records and activity."""

    def __init__(self):
        self.repos = {}
        self.failing = set()
        self.reviews = {}
        self.ci = {}
        self.login = "octocat"
        self.repo_calls = 0
        self.gate = None

    def add(self, pr, review=None, ci=None):
        self.repos.setdefault(pr.repo, []).append(pr)
        if review:
            self.reviews[(pr.repo, pr.number)] = [{"user": {"login": "bob"}, "state": review}]
        if ci:
            self.ci[pr.head_sha] = ci

    def replace(self, pr, review=None, ci=None):
        self.repos[pr.repo] = [p for p in self.repos.get(pr.repo, []) if p.id != pr.id]
        self.add(pr, review, ci)

    def remove(self, repo, pr_id):
        self.repos[repo] = [p for p in self.repos.get(repo, []) if p.id != pr_id]

    def fetch_authenticated_user(self):
        return {"login": self.login}

    def fetch_repo_prs(self, repo, username, include_authored=True):
        self.repo_calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        if repo in self.failing:
            raise FetchError(repo, f"Failed to fetch PRs from {repo}", status_code=500)
        return [pr.model_copy(deep=True) for pr in self.repos.get(repo, [])]

    def fetch_reviews(self, repo, number):
        return self.reviews.get((repo, number), [])

    def fetch_check_runs(self, repo, head_sha):
        return None

    def fetch_commit_status(self, repo, head_sha):
        state = self.ci.get(head_sha)
        if state is None:
            return None
        return {"state": state, "statuses": [{"state": state}]}


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def notifier():
    return Mock(spec=Notifier)


@pytest.fixture
def badges():
    return []


@pytest.fixture
def engine(config, store, fetcher, notifier, badges):
    return PollerEngine(
        config_loader=lambda: config,
        store=store,
        fetcher_factory=lambda cfg: fetcher,
        notifier=notifier,
        on_badge=badges.append,
    )


@pytest.fixture
def pr(make_pr):
    """Factory for PRs with a head SHA so CI comes from the fake commit status."""
    def _pr(pr_id, **overrides):
        overrides.setdefault("head_sha", f"sha{pr_id}")
        return make_pr(pr_id, **overrides)
    return _pr


class TestUnconfigured:
    """Cycles are skipped until a token and repositories are configured."""

    def test_skipped_without_repos(self, store, fetcher, badges):
        config = Config(credentials=CredentialsConfig(github_token="ghp_test"))
        engine = PollerEngine(lambda: config, store, fetcher_factory=lambda c: fetcher, on_badge=badges.append)

        result = engine.run_cycle()

        assert result.skipped and not result.success
        assert badges == ["?"]
        assert fetcher.repo_calls == 0
        assert store.get(["prs", "error", "lastUpdated"]) == {}

    def test_username_resolved_from_token(self, store, fetcher):
        config = Config(
            credentials=CredentialsConfig(github_token="ghp_test"),
            repos=[RepoConfig(full_name="octo/app")],
        )
        engine = PollerEngine(lambda: config, store, fetcher_factory=lambda c: fetcher)

        assert engine.run_cycle().success

    def test_unknown_username_skips(self, store, fetcher):
        config = Config(
            credentials=CredentialsConfig(github_token="ghp_test"),
            repos=[RepoConfig(full_name="octo/app")],
        )
        fetcher.login = None
        engine = PollerEngine(lambda: config, store, fetcher_factory=lambda c: fetcher)

        result = engine.run_cycle()

        assert result.skipped
        assert fetcher.repo_calls == 0

    def test_user_lookup_failure_records_error(self, store, fetcher, badges):
        config = Config(
            credentials=CredentialsConfig(github_token="ghp_test"),
            repos=[RepoConfig(full_name="octo/app")],
        )
        fetcher.fetch_authenticated_user = Mock(side_effect=requests.ConnectionError("offline"))
        engine = PollerEngine(lambda: config, store, fetcher_factory=lambda c: fetcher, on_badge=badges.append)

        result = engine.run_cycle()

        assert not result.success and not result.skipped
        assert "offline" in store.get_one("error")
        assert badges == ["!"]


class TestPollCycle:
    """Successful cycles: persistence, enrichment and notification gating."""

    def test_first_cycle_persists_without_notifying(self, engine, fetcher, store, notifier, badges, pr):
        fetcher.add(pr(1, is_reviewer=True), review="APPROVED", ci="success")
        fetcher.add(pr(2, repo="octo/lib", is_author=True), ci="pending")

        result = engine.run_cycle()

        assert result.success
        assert {p.id for p in result.prs} == {1, 2}
        assert [e.type for e in result.events] == [EventType.NEW_PR, EventType.NEW_PR]
        assert result.notification is None
        notifier.notify.assert_not_called()

        stored = store.get(["prs", "lastUpdated", "error", "seenPRIds", "prState"])
        assert stored["error"] is None
        assert stored["lastUpdated"]
        assert stored["seenPRIds"] == [1, 2]
        assert stored["prState"]["1"]["ci_status"] == "success"
        assert stored["prState"]["1"]["review_state"] == "approved"
        assert {p["id"] for p in stored["prs"]} == {1, 2}
        assert badges == ["2"]

    def test_changes_delivered_on_later_cycle(self, engine, fetcher, store, notifier, pr):
        fetcher.add(pr(42, is_draft=True), ci="pending")
        engine.run_cycle()

        fetcher.replace(pr(42, is_draft=False, comment_count=2), review="APPROVED", ci="success")
        result = engine.run_cycle()

        assert {e.type for e in result.events} == {
            EventType.COMMENT,
            EventType.REVIEW,
            EventType.CI_SUCCESS,
            EventType.STATUS,
            EventType.READY_TO_MERGE,
        }
        assert result.delivered
        notification = notifier.notify.call_args[0][0]
        assert notification.title == "octo/app#42"
        assert notification.body == '2 new comments on "PR 42"'

        highlights = store.get_one("highlightedPRs")
        assert highlights == {"42": ["comment", "review", "ci_success", "ready_to_merge", "status"]}
        assert engine.last_notification is notification

    def test_unchanged_cycle_is_quiet(self, engine, fetcher, notifier, pr):
        fetcher.add(pr(1), ci="success")
        engine.run_cycle()
        result = engine.run_cycle()

        assert result.events == []
        notifier.notify.assert_not_called()

    def test_cold_start_suppressed(self, engine, fetcher, notifier, pr):
        """No PR known before: every open PR would be 'new', so nothing is sent."""
        engine.run_cycle()
        fetcher.add(pr(1))
        result = engine.run_cycle()

        assert [e.type for e in result.events] == [EventType.NEW_PR]
        notifier.notify.assert_not_called()

    def test_restart_does_not_replay(self, config, store, fetcher, notifier, pr):
        """A new engine over existing state treats its first cycle as silent."""
        fetcher.add(pr(1))
        PollerEngine(lambda: config, store, fetcher_factory=lambda c: fetcher).run_cycle()

        fetcher.add(pr(2))
        engine = PollerEngine(lambda: config, store, fetcher_factory=lambda c: fetcher, notifier=notifier)
        result = engine.run_cycle()

        assert [e.pr.id for e in result.events] == [2]
        notifier.notify.assert_not_called()

    def test_notifications_disabled(self, store, fetcher, notifier, pr):
        config = Config(
            credentials=CredentialsConfig(github_token="ghp_test", github_username="octocat"),
            repos=[RepoConfig(full_name="octo/app")],
            notifications_enabled=False,
        )
        engine = PollerEngine(lambda: config, store, fetcher_factory=lambda c: fetcher, notifier=notifier)
        fetcher.add(pr(1))
        engine.run_cycle()
        fetcher.add(pr(2))
        engine.run_cycle()

        notifier.notify.assert_not_called()
        assert store.get_one("highlightedPRs") is None

    def test_delivery_failure_still_persists(self, engine, fetcher, store, notifier, pr):
        notifier.notify.side_effect = RuntimeError("transport down")
        fetcher.add(pr(1))
        engine.run_cycle()
        fetcher.add(pr(2))

        result = engine.run_cycle()

        assert result.success
        assert result.delivered is False
        assert store.get_one("highlightedPRs") == {"2": ["new_pr"]}
        assert store.get_one("seenPRIds") == [1, 2]

    def test_closed_pr_reported_and_dropped(self, engine, fetcher, store, notifier, pr):
        fetcher.add(pr(1))
        fetcher.add(pr(2))
        engine.run_cycle()

        fetcher.remove("octo/app", 1)
        result = engine.run_cycle()

        assert [(e.type, e.status) for e in result.events] == [(EventType.STATUS, "closed")]
        assert set(store.get_one("prState")) == {"2"}
        assert notifier.notify.call_args[0][0].body == "✓ Closed/Merged: PR 1"


class TestFailures:
    """Fetch failures keep the last good data."""

    def test_all_repos_failing_records_error(self, engine, fetcher, store, badges, pr):
        fetcher.add(pr(1))
        engine.run_cycle()
        previous_prs = store.get_one("prs")

        fetcher.failing = {"octo/app", "octo/lib"}
        result = engine.run_cycle()

        assert not result.success
        assert "Failed to fetch PRs" in result.error
        assert store.get_one("error") == result.error
        assert store.get_one("prs") == previous_prs
        assert store.get_one("seenPRIds") == [1]
        assert badges[-1] == "!"

    def test_error_cleared_by_next_success(self, engine, fetcher, store, pr):
        fetcher.failing = {"octo/app", "octo/lib"}
        engine.run_cycle()
        assert store.get_one("error")

        fetcher.failing = set()
        assert engine.run_cycle().success
        assert store.get_one("error") is None

    def test_partial_failure_carries_repo(self, engine, fetcher, store, notifier, pr):
        fetcher.add(pr(1, repo="octo/app"))
        fetcher.add(pr(2, repo="octo/lib"))
        engine.run_cycle()

        fetcher.failing = {"octo/lib"}
        fetcher.add(pr(3, repo="octo/app"))
        result = engine.run_cycle()

        assert result.success
        assert result.failed_repos == ["octo/lib"]
        assert [e.pr.id for e in result.events] == [3]
        assert all(e.status != "closed" for e in result.events)
        assert {p.id for p in result.prs} == {1, 2, 3}
        assert set(store.get_one("prState")) == {"1", "2", "3"}

    def test_failed_repo_pr_closed_once_it_recovers(self, engine, fetcher, pr):
        fetcher.add(pr(1, repo="octo/app"))
        fetcher.add(pr(2, repo="octo/lib"))
        engine.run_cycle()

        fetcher.failing = {"octo/lib"}
        fetcher.remove("octo/lib", 2)
        engine.run_cycle()

        fetcher.failing = set()
        result = engine.run_cycle()
        assert [(e.pr.id, e.status) for e in result.events] == [(2, "closed")]


class TestCycleSerialization:
    """A refresh during a running cycle reuses that cycle's result."""

    def test_waiting_caller_reuses_result(self, engine, fetcher, pr):
        fetcher.add(pr(1))
        fetcher.gate = threading.Event()
        results = {}

        first = threading.Thread(target=lambda: results.setdefault("first", engine.run_cycle()))
        first.start()
        while fetcher.repo_calls == 0:
            time.sleep(0.01)

        second = threading.Thread(target=lambda: results.setdefault("second", engine.run_cycle()))
        second.start()
        time.sleep(0.2)
        fetcher.gate.set()

        first.join(5)
        second.join(5)

        assert results["first"] is results["second"]
        # One cycle over two repositories
        assert fetcher.repo_calls == 2


class TestCommands:
    """dispatch() for every command type."""

    def test_refresh_now(self, engine, fetcher, pr):
        fetcher.add(pr(1))
        result = engine.dispatch(RefreshNow())

        assert isinstance(result, RefreshResult)
        assert result.success
        assert result.pr_count == 1
        assert result.event_count == 1

    def test_get_snapshot(self, engine, fetcher, pr):
        fetcher.add(pr(1))
        engine.run_cycle()
        fetcher.add(pr(2))
        engine.run_cycle()

        snapshot = engine.dispatch(GetSnapshot())

        assert isinstance(snapshot, SnapshotResult)
        assert snapshot.configured
        assert {p.id for p in snapshot.prs} == {1, 2}
        assert snapshot.error is None
        assert snapshot.last_updated is not None
        assert snapshot.highlighted_prs == {2: ["new_pr"]}
        assert snapshot.display_filter == DisplayFilter.ALL
        assert snapshot.badge == "2"

    def test_set_display_filter(self, engine, fetcher, store, badges, pr):
        fetcher.add(pr(1, is_author=True))
        fetcher.add(pr(2, is_reviewer=True))
        engine.run_cycle()

        result = engine.dispatch(SetDisplayFilter(filter=DisplayFilter.MINE))

        assert isinstance(result, BadgeResult)
        assert result.count == 1
        assert result.text == "1"
        assert store.get_one("prFilter") == "mine"
        assert badges[-1] == "1"

        # Filter survives into the next cycle's badge
        engine.run_cycle()
        assert badges[-1] == "1"

    def test_settings_changed(self, config, store, fetcher):
        current = {"config": config}
        engine = PollerEngine(lambda: current["config"], store, fetcher_factory=lambda c: fetcher)
        listener = Mock()
        engine.add_settings_listener(listener)

        current["config"] = config.model_copy(update={"poll_interval": 10})
        result = engine.dispatch(SettingsChanged())

        assert isinstance(result, SettingsResult)
        assert result.poll_interval == 10
        assert result.repo_count == 2
        assert engine.config.poll_interval == 10
        listener.assert_called_once()

    def test_notification_click_single_pr(self, engine, fetcher, store, pr):
        fetcher.add(pr(1))
        engine.run_cycle()
        fetcher.add(pr(2))
        engine.run_cycle()

        result = engine.dispatch(NotificationClicked())

        assert isinstance(result, ClickResult)
        assert result.action == "open_pr"
        assert result.url == "https://github.com/octo/app/pull/2"
        assert store.get_one("highlightedPRs") is None
        assert engine.dispatch(NotificationClicked()).action == "none"

    def test_notification_click_summary_keeps_highlights(self, engine, fetcher, store, pr):
        fetcher.add(pr(1))
        engine.run_cycle()
        fetcher.add(pr(2))
        fetcher.add(pr(3))
        engine.run_cycle()

        result = engine.dispatch(NotificationClicked())

        assert result.action == "open_summary"
        assert result.url is None
        assert store.get_one("highlightedPRs") == {"3": ["new_pr"], "2": ["new_pr"]}

    def test_unknown_command(self, engine):
        with pytest.raises(TypeError):
            engine.dispatch(object())

    def test_badge_status_error(self, engine, fetcher, pr):
        fetcher.add(pr(1))
        engine.run_cycle()
        fetcher.failing = {"octo/app", "octo/lib"}
        engine.run_cycle()

        badge = engine.badge_status()
        assert badge.text == "!"
        assert badge.count == -1


class TestWiring:
    """Store and notifier selection from configuration."""

    def test_json_store_by_default(self, tmp_path):
        config = Config(credentials=CredentialsConfig(), state_file=str(tmp_path / "s.json"))
        assert isinstance(create_state_store(config), JsonFileStateStore)

    def test_notifier_selection(self):
        config = Config(credentials=CredentialsConfig())
        assert isinstance(create_notifier(config), LogNotifier)

        config = Config(credentials=CredentialsConfig(), notification_webhook_url="https://hooks.example.com/x")
        assert isinstance(create_notifier(config), WebhookNotifier)
