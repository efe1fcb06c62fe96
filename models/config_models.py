"""Configuration models for validation using Pydantic."""

import re
from typing import Optional
from pydantic import BaseModel, Field, field_validator

REPO_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")

# Notification categories that can be toggled per repository
NOTIFICATION_CATEGORIES = (
    "new_prs",
    "comments",
    "reviews",
    "ci_failure",
    "ci_success",
    "ready_to_merge",
    "status",
)


class CredentialsConfig(BaseModel):
    """API credentials loaded from environment variables."""

    # GitHub (optional here - a missing token makes poll cycles skip)
    github_token: Optional[str] = Field(None, description="GitHub personal access token")
    github_username: Optional[str] = Field(None, description="Login to track; resolved via /user when unset")
    github_api_url: str = Field(default="https://api.github.com", description="GitHub REST API base URL")

    # Supabase (optional - local JSON state file is used when unset)
    supabase_url: Optional[str] = Field(None, description="Supabase project URL")
    supabase_key: Optional[str] = Field(None, description="Supabase API key")
    database_url: Optional[str] = Field(None, description="PostgreSQL database URL (optional, for schema setup)")

    @field_validator("github_token", "github_username", "supabase_url", "supabase_key", "database_url")
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank environment values as unset."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("github_token")
    @classmethod
    def validate_github_token(cls, v: Optional[str]) -> Optional[str]:
        """Reject the placeholder token from .env.example."""
        if v == "ghp_your_token_here":
            raise ValueError("GitHub token must be set in .env file")
        return v

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Supabase URL format."""
        if v is None:
            return v
        if v == "https://your-project.supabase.co":
            raise ValueError("Supabase URL must be set in .env file")
        if not v.startswith("https://"):
            raise ValueError("Supabase URL must start with https://")
        return v

    @field_validator("github_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def use_supabase(self) -> bool:
        """Whether poller state should be persisted in Supabase."""
        return bool(self.supabase_url and self.supabase_key)


class RepoNotificationPolicy(BaseModel):
    """Per-repository notification toggles. Every category defaults to enabled."""

    new_prs: bool = True
    comments: bool = True
    reviews: bool = True
    ci_failure: bool = True
    ci_success: bool = True
    ready_to_merge: bool = True
    status: bool = True

    def allows(self, category: str) -> bool:
        """Check whether notifications of the given category are enabled."""
        if category not in NOTIFICATION_CATEGORIES:
            raise ValueError(f"Unknown notification category: {category}")
        return getattr(self, category)


class RepoConfig(BaseModel):
    """A tracked repository and its optional notification policy."""

    full_name: str = Field(..., description="Repository in owner/name format")
    notifications: Optional[RepoNotificationPolicy] = None

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not REPO_NAME_PATTERN.match(v):
            raise ValueError(f"Repository must be in 'owner/name' format, got '{v}'")
        return v


class Config(BaseModel):
    """Application configuration."""

    credentials: CredentialsConfig
    repos: list[RepoConfig] = Field(default_factory=list)
    include_authored: bool = Field(default=True, description="Also track PRs authored by the user")
    notifications_enabled: bool = Field(default=True, description="Global notification switch")
    poll_interval: int = Field(default=2, ge=1, description="Poll interval in minutes")
    state_file: str = Field(default=".pr_monitor_state.json", description="Local state file path")
    notification_webhook_url: Optional[str] = Field(None, description="Incoming webhook for notifications")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("notification_webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        if not v.startswith(("https://", "http://")):
            raise ValueError("Notification webhook URL must be an http(s) URL")
        return v

    @property
    def is_configured(self) -> bool:
        """A token and at least one repository are required to poll."""
        return bool(self.credentials.github_token and self.repos)

    def policy_for(self, repo_full_name: str) -> RepoNotificationPolicy:
        """Return the repository's explicit policy, or the all-enabled default."""
        for repo in self.repos:
            if repo.full_name == repo_full_name and repo.notifications is not None:
                return repo.notifications
        return RepoNotificationPolicy()
