#!/usr/bin/env python3
"""
PR Monitor - Main CLI entrypoint

Polls GitHub for open pull requests that involve you (review requested,
assigned, authored), detects what changed since the last poll, and sends
one batched notification per poll cycle.

Usage:
    python main.py poll                  # Run one poll cycle and print the result
    python main.py watch                 # Poll on a timer in the foreground
    python main.py serve --port 8000     # Poll on a timer and serve the HTTP API
    python main.py whoami                # Validate GITHUB_TOKEN
    python main.py repos                 # List repositories the token can access
"""

import argparse
import sys
import time

import requests

from fetchers.github import GitHubFetcher
from models.data_models import CycleResult
from poller.badge import badge_text, project_badge
from poller.engine import build_engine
from poller.scheduler import PollScheduler
from utils.config_loader import load_config
from utils.logger import setup_logger

logger = setup_logger(__name__)


def print_cycle_result(result: CycleResult) -> None:
    """Log a human-readable summary of a poll cycle."""
    logger.info("=" * 80)
    if result.skipped:
        logger.info("POLL SKIPPED (not configured)")
        logger.info("Set GITHUB_TOKEN and MONITORED_REPOS in your .env file")
        logger.info("=" * 80)
        return

    if not result.success:
        logger.error(f"POLL FAILED: {result.error}")
        logger.info("=" * 80)
        return

    logger.info(f"POLL COMPLETE: {len(result.prs)} open PRs")
    logger.info("=" * 80)

    for pr in result.prs:
        roles = [
            name for name, flag in (
                ("author", pr.is_author),
                ("reviewer", pr.is_reviewer),
                ("assignee", pr.is_assignee),
            ) if flag
        ]
        draft = " [draft]" if pr.is_draft else ""
        logger.info(
            f"  {pr.ref}{draft} {pr.title[:60]} "
            f"(review: {pr.review_state.value}, CI: {pr.ci_status.value} "
            f"{pr.ci_passed}/{pr.ci_checks}, comments: {pr.comment_count}, "
            f"roles: {', '.join(roles) or '-'})"
        )

    if result.events:
        logger.info("-" * 80)
        logger.info(f"{len(result.events)} change(s):")
        for event in result.events:
            logger.info(f"  {event.pr.ref}: {event.message}")

    if result.notification:
        status = "delivered" if result.delivered else "delivery failed"
        logger.info(f"\nNotification ({status}): {result.notification.title} - {result.notification.body}")

    if result.failed_repos:
        logger.warning(f"\n⚠ Kept previous data for: {', '.join(result.failed_repos)}")

    logger.info(f"\nBadge: '{badge_text(project_badge(result.prs))}'")


def poll_once() -> bool:
    """
    Run a single poll cycle.

    Returns:
        bool: True if the cycle succeeded or was skipped, False on failure
    """
    engine = build_engine(load_config)
    result = engine.run_cycle()
    print_cycle_result(result)
    return result.success or result.skipped


def watch() -> None:
    """Poll on a timer until interrupted."""
    engine = build_engine(load_config, on_badge=lambda text: logger.debug(f"Badge: '{text}'"))
    scheduler = PollScheduler(engine)
    scheduler.start()

    logger.info("Press Ctrl+C to stop")
    try:
        while scheduler.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Stopping poller...")
    finally:
        scheduler.stop(timeout=5)


def whoami() -> bool:
    """Validate the configured token and print the user it belongs to."""
    config = load_config()
    if not config.credentials.github_token:
        logger.error("GITHUB_TOKEN not set in .env file")
        return False

    fetcher = GitHubFetcher(config.credentials.github_token, base_url=config.credentials.github_api_url)
    try:
        user = fetcher.fetch_authenticated_user()
    except requests.RequestException as e:
        logger.error(f"✗ Invalid token: {e}")
        return False

    logger.info(f"✓ Authenticated as @{user.get('login')}")
    if config.credentials.github_username and config.credentials.github_username != user.get("login"):
        logger.warning(
            f"⚠ GITHUB_USERNAME is '{config.credentials.github_username}' "
            f"but the token belongs to '{user.get('login')}'"
        )
    return True


def list_repos() -> bool:
    """List accessible repositories grouped by owner, the token's user first."""
    config = load_config()
    if not config.credentials.github_token:
        logger.error("GITHUB_TOKEN not set in .env file")
        return False

    fetcher = GitHubFetcher(config.credentials.github_token, base_url=config.credentials.github_api_url)
    try:
        login = fetcher.fetch_authenticated_user().get("login")
        repos = fetcher.list_user_repos()
    except requests.RequestException as e:
        logger.error(f"✗ Failed to fetch repositories: {e}")
        return False

    by_owner: dict[str, list[str]] = {}
    for repo in repos:
        owner = (repo.get("owner") or {}).get("login", "")
        by_owner.setdefault(owner, []).append(repo.get("full_name", ""))

    owners = sorted(by_owner, key=lambda o: (o != login, o.lower()))
    monitored = {repo.full_name for repo in config.repos}

    for owner in owners:
        logger.info(f"{owner}:")
        for full_name in sorted(by_owner[owner], key=str.lower):
            marker = "  [monitored]" if full_name in monitored else ""
            logger.info(f"  {full_name}{marker}")

    return True


def main():
    parser = argparse.ArgumentParser(
        description="PR Monitor - track pull requests that need your attention",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("poll", help="Run one poll cycle")
    subparsers.add_parser("watch", help="Poll on a timer in the foreground")

    serve_parser = subparsers.add_parser("serve", help="Poll on a timer and serve the HTTP API")
    serve_parser.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    subparsers.add_parser("whoami", help="Validate GITHUB_TOKEN")
    subparsers.add_parser("repos", help="List repositories accessible to the token")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Apply LOG_LEVEL from configuration
    setup_logger(load_config().log_level)

    if args.command == "poll":
        sys.exit(0 if poll_once() else 1)

    elif args.command == "watch":
        watch()
        sys.exit(0)

    elif args.command == "serve":
        logger.info("=" * 80)
        logger.info("Starting PR Monitor API Server")
        logger.info("=" * 80)
        logger.info(f"API will be available at: http://{args.host}:{args.port}")
        logger.info(f"API docs available at: http://{args.host}:{args.port}/docs")
        logger.info("=" * 80)

        from backend.app import run_server
        run_server(host=args.host, port=args.port)
        sys.exit(0)

    elif args.command == "whoami":
        sys.exit(0 if whoami() else 1)

    elif args.command == "repos":
        sys.exit(0 if list_repos() else 1)


if __name__ == "__main__":
    main()
