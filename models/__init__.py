"""Data models for the PR monitor."""

from models.config_models import Config, CredentialsConfig, RepoConfig, RepoNotificationPolicy
from models.data_models import (
    CiStatus,
    CycleResult,
    DisplayFilter,
    EventType,
    Notification,
    NotificationEvent,
    PersistedPrState,
    PollerState,
    PullRequestRecord,
    PullRequestRef,
    ReviewState,
)

__all__ = [
    "Config",
    "CredentialsConfig",
    "RepoConfig",
    "RepoNotificationPolicy",
    "CiStatus",
    "CycleResult",
    "DisplayFilter",
    "EventType",
    "Notification",
    "NotificationEvent",
    "PersistedPrState",
    "PollerState",
    "PullRequestRecord",
    "PullRequestRef",
    "ReviewState",
]
