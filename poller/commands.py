"""Typed inbound commands and their results.

Callers (CLI, HTTP API, tests) build a command and hand it to
`PollerEngine.dispatch`, which returns the matching result model.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter

from models.data_models import DisplayFilter, PullRequestRecord


class RefreshNow(BaseModel):
    type: Literal["refresh_now"] = "refresh_now"


class GetSnapshot(BaseModel):
    type: Literal["get_snapshot"] = "get_snapshot"


class SettingsChanged(BaseModel):
    type: Literal["settings_changed"] = "settings_changed"


class SetDisplayFilter(BaseModel):
    type: Literal["set_display_filter"] = "set_display_filter"
    filter: DisplayFilter = DisplayFilter.ALL


class NotificationClicked(BaseModel):
    type: Literal["notification_clicked"] = "notification_clicked"


Command = Annotated[
    Union[RefreshNow, GetSnapshot, SettingsChanged, SetDisplayFilter, NotificationClicked],
    Field(discriminator="type"),
]


class RefreshResult(BaseModel):
    type: Literal["refresh"] = "refresh"
    success: bool
    skipped: bool = False
    error: Optional[str] = None
    pr_count: int = 0
    event_count: int = 0
    failed_repos: list[str] = Field(default_factory=list)


class SnapshotResult(BaseModel):
    type: Literal["snapshot"] = "snapshot"
    configured: bool
    prs: list[PullRequestRecord] = Field(default_factory=list)
    last_updated: Optional[datetime] = None
    error: Optional[str] = None
    highlighted_prs: dict[int, list[str]] = Field(default_factory=dict)
    display_filter: DisplayFilter = DisplayFilter.ALL
    badge: str = ""
    poll_interval: int = 2


class SettingsResult(BaseModel):
    type: Literal["settings"] = "settings"
    configured: bool
    repo_count: int = 0
    poll_interval: int = 2


class BadgeResult(BaseModel):
    type: Literal["badge"] = "badge"
    display_filter: DisplayFilter
    count: int
    text: str
    color: str


class ClickResult(BaseModel):
    type: Literal["click"] = "click"
    action: Literal["open_pr", "open_summary", "none"]
    url: Optional[str] = None


CommandResult = Union[RefreshResult, SnapshotResult, SettingsResult, BadgeResult, ClickResult]

_command_adapter = TypeAdapter(Command)


def parse_command(payload: dict[str, Any]) -> BaseModel:
    """Decode a raw command payload, e.g. {"type": "set_display_filter", "filter": "mine"}."""
    return _command_adapter.validate_python(payload)
