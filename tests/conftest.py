"""Shared pytest fixtures and configuration."""

import pytest

from models.config_models import Config, CredentialsConfig, RepoConfig, RepoNotificationPolicy
from models.data_models import CiStatus, PullRequestRecord, ReviewState


ENV_KEYS = (
    "GITHUB_TOKEN",
    "GITHUB_USERNAME",
    "GITHUB_API_URL",
    "MONITORED_REPOS",
    "REPO_NOTIFICATIONS",
    "INCLUDE_AUTHORED",
    "NOTIFICATIONS_ENABLED",
    "POLL_INTERVAL_MINUTES",
    "STATE_FILE",
    "NOTIFICATION_WEBHOOK_URL",
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "DATABASE_URL",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every configuration variable so tests start from defaults."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def test_env(monkeypatch, clean_env):
    """
    Set valid test environment variables.

    This fixture sets up valid test environment variables so config
    can be loaded during tests without requiring real credentials.
    """
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test_token_1234567890")
    monkeypatch.setenv("GITHUB_USERNAME", "octocat")
    monkeypatch.setenv("MONITORED_REPOS", "octo/app, octo/lib")
    monkeypatch.setenv("REPO_NOTIFICATIONS", '{"octo/lib": {"ci_success": false}}')
    monkeypatch.setenv("POLL_INTERVAL_MINUTES", "5")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    return {
        "github_token": "ghp_test_token_1234567890",
        "github_username": "octocat",
        "repos": ["octo/app", "octo/lib"],
        "poll_interval": 5,
        "log_level": "DEBUG",
    }


@pytest.fixture
def invalid_env(monkeypatch, clean_env):
    """
    Set up invalid environment variables for testing validation.
    """
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test_token_1234567890")
    monkeypatch.setenv("MONITORED_REPOS", "not-a-repo")
    monkeypatch.setenv("POLL_INTERVAL_MINUTES", "0")


@pytest.fixture
def config():
    """A configured Config tracking two repositories with default policies."""
    return Config(
        credentials=CredentialsConfig(github_token="ghp_test", github_username="octocat"),
        repos=[RepoConfig(full_name="octo/app"), RepoConfig(full_name="octo/lib")],
    )


@pytest.fixture
def quiet_config():
    """Config whose octo/app repository disables every notification category."""
    policy = RepoNotificationPolicy(
        new_prs=False,
        comments=False,
        reviews=False,
        ci_failure=False,
        ci_success=False,
        ready_to_merge=False,
        status=False,
    )
    return Config(
        credentials=CredentialsConfig(github_token="ghp_test", github_username="octocat"),
        repos=[RepoConfig(full_name="octo/app", notifications=policy)],
    )


@pytest.fixture
def make_pr():
    """Factory for PullRequestRecord with sensible defaults."""
    def _make_pr(pr_id: int = 1, **overrides) -> PullRequestRecord:
        fields = {
            "id": pr_id,
            "number": pr_id,
            "repo": "octo/app",
            "title": f"PR {pr_id}",
            "author": "someone",
            "url": f"https://github.com/octo/app/pull/{pr_id}",
            "updated_at": "2025-01-15T10:30:00Z",
            "comment_count": 0,
            "review_state": ReviewState.PENDING,
            "ci_status": CiStatus.PENDING,
            "is_draft": False,
        }
        fields.update(overrides)
        return PullRequestRecord(**fields)

    return _make_pr
