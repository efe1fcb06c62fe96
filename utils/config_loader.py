"""Configuration loader that reads from .env and validates with Pydantic."""

import json
import os
import sys
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import ValidationError

from models.config_models import Config, CredentialsConfig, RepoConfig


class ConfigurationMissing(Exception):
    """Raised when a poll cycle cannot run: no token, no repositories or no username."""


def _env_flag(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def parse_repos(repos_value: Optional[str], notifications_value: Optional[str]) -> list:
    """
    Build repository entries from MONITORED_REPOS and REPO_NOTIFICATIONS.

    Args:
        repos_value: Comma separated "owner/name" list
        notifications_value: JSON object mapping "owner/name" to a partial
            notification policy, e.g. {"octo/app": {"ci_success": false}}

    Returns:
        List of dicts ready to be validated as RepoConfig

    Raises:
        ValueError: If REPO_NOTIFICATIONS is not a JSON object
    """
    names = [name.strip() for name in (repos_value or "").split(",") if name.strip()]

    policies = {}
    if notifications_value and notifications_value.strip():
        try:
            policies = json.loads(notifications_value)
        except json.JSONDecodeError as e:
            raise ValueError(f"REPO_NOTIFICATIONS is not valid JSON: {e}") from e
        if not isinstance(policies, dict):
            raise ValueError("REPO_NOTIFICATIONS must be a JSON object keyed by repository")

    repos = []
    seen = set()
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        repos.append({"full_name": name, "notifications": policies.get(name)})
    return repos


def load_config(env_path: Optional[Path] = None) -> Config:
    """
    Load and validate configuration from environment variables.

    Reads from .env file in the project root and validates all settings
    using Pydantic models. A missing token or repository list is not an
    error here: poll cycles are skipped until both are configured.

    Args:
        env_path: Optional .env path (defaults to the project root .env)

    Returns:
        Config: Validated configuration object

    Raises:
        SystemExit: If configuration is invalid
    """
    # Load .env file from project root
    if env_path is None:
        env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(dotenv_path=env_path)

    try:
        repos = parse_repos(os.getenv("MONITORED_REPOS"), os.getenv("REPO_NOTIFICATIONS"))

        config = Config(
            credentials=CredentialsConfig(
                github_token=os.getenv("GITHUB_TOKEN"),
                github_username=os.getenv("GITHUB_USERNAME"),
                github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com"),
                supabase_url=os.getenv("SUPABASE_URL"),
                supabase_key=os.getenv("SUPABASE_KEY"),
                database_url=os.getenv("DATABASE_URL"),
            ),
            repos=[RepoConfig(**repo) for repo in repos],
            include_authored=_env_flag("INCLUDE_AUTHORED", True),
            notifications_enabled=_env_flag("NOTIFICATIONS_ENABLED", True),
            poll_interval=os.getenv("POLL_INTERVAL_MINUTES", "2"),
            state_file=os.getenv("STATE_FILE", ".pr_monitor_state.json"),
            notification_webhook_url=os.getenv("NOTIFICATION_WEBHOOK_URL"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

        return config

    except ValidationError as e:
        print("❌ Configuration validation failed:", file=sys.stderr)
        print("\nPlease check your .env file. Missing or invalid fields:", file=sys.stderr)

        for error in e.errors():
            field_path = " → ".join(str(x) for x in error["loc"])
            message = error["msg"]
            print(f"  • {field_path}: {message}", file=sys.stderr)

        print("\nHint: Copy .env.example to .env and fill in your settings.", file=sys.stderr)
        sys.exit(1)

    except ValueError as e:
        print(f"❌ Configuration validation failed: {e}", file=sys.stderr)
        sys.exit(1)
