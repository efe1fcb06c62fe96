"""GitHub API client for tracking open pull requests.

This module implements the network side of a poll cycle:
- Repository fetch: role-scoped search queries per repository (reviewer,
  assignee, optionally author), deduplicated into PR records with role flags
- Detail enrichment: draft flag, comment counters, head SHA and mergeable state
- Activity sources: reviews, check runs and combined commit status

Every call is a read-only GET. Role-query failures raise FetchError for the
whole repository; detail and activity failures degrade to "no data".
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

import requests

from models.data_models import PullRequestRecord

logger = logging.getLogger(__name__)

ROLE_REVIEWER = "reviewer"
ROLE_ASSIGNEE = "assignee"
ROLE_AUTHOR = "author"


class FetchError(Exception):
    """A role query for a repository did not succeed."""

    def __init__(self, repo: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.repo = repo
        self.status_code = status_code


class GitHubFetcher:
    """Fetch pull request data from the GitHub REST API."""

    def __init__(self, token: str, base_url: str = "https://api.github.com"):
        """Initialize GitHub API client.

        Args:
            token: GitHub personal access token for authentication
            base_url: REST API base URL (GitHub Enterprise uses a different host)
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": "2022-11-28"
        }

    def _make_github_request(self, url: str, params: Optional[dict] = None) -> requests.Response:
        """Make a GitHub API GET request.

        Rate limit headers are logged; status handling is left to the caller.

        Args:
            url: GitHub API URL to request
            params: Optional query parameters

        Returns:
            Response object from requests

        Raises:
            requests.RequestException: On transport errors
        """
        response = requests.get(url, headers=self.headers, params=params)

        remaining = response.headers.get("X-RateLimit-Remaining")
        limit = response.headers.get("X-RateLimit-Limit")
        if remaining and limit:
            logger.debug(f"Rate limit: {remaining}/{limit} remaining")

        return response

    def _get_json_or_none(self, url: str, description: str, params: Optional[dict] = None) -> Optional[Any]:
        """GET a resource, returning None (and logging) on any failure.

        Used for enrichment calls where a missing signal must not abort the cycle.
        """
        try:
            response = self._make_github_request(url, params=params)
        except requests.RequestException as e:
            logger.warning(f"Error fetching {description}: {e}")
            return None

        if not response.ok:
            logger.warning(f"Failed to fetch {description}: HTTP {response.status_code}")
            return None

        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"Invalid JSON for {description}: {e}")
            return None

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def fetch_authenticated_user(self) -> dict[str, Any]:
        """Fetch the user the token belongs to (token validation).

        Returns:
            User dictionary (login, avatar_url, ...)

        Raises:
            requests.HTTPError: If the token is invalid (401) or lacks access
        """
        response = self._make_github_request(f"{self.base_url}/user")

        if response.status_code in (401, 403):
            logger.error(f"Authentication error: {response.status_code}")
        response.raise_for_status()

        user = response.json()
        logger.info(f"Authenticated as @{user.get('login')}")
        return user

    def list_user_repos(self, max_pages: int = 10) -> list[dict[str, Any]]:
        """List repositories accessible to the token.

        Includes repos the user owns, collaborates on, or reaches through an
        organization membership, most recently updated first.

        Args:
            max_pages: Maximum number of 100-item pages to fetch

        Returns:
            List of raw repository dictionaries

        Raises:
            requests.HTTPError: On authentication or other HTTP errors
        """
        url = f"{self.base_url}/user/repos"
        all_repos = []
        per_page = 100

        for page in range(1, max_pages + 1):
            params = {
                "per_page": per_page,
                "page": page,
                "sort": "updated",
                "affiliation": "owner,collaborator,organization_member",
            }
            response = self._make_github_request(url, params=params)
            response.raise_for_status()

            repos = response.json()
            if not repos:
                break

            all_repos.extend(repos)
            if len(repos) < per_page:
                break

        logger.info(f"Found {len(all_repos)} accessible repositories")
        return all_repos

    # ------------------------------------------------------------------
    # Repository fetch
    # ------------------------------------------------------------------

    @staticmethod
    def build_search_queries(repo_full_name: str, username: str, include_authored: bool) -> dict[str, str]:
        """Build the role-scoped search queries for one repository.

        Returns:
            Mapping of role -> search query (author only when include_authored)
        """
        base = f"type:pr state:open repo:{repo_full_name}"
        queries = {
            ROLE_REVIEWER: f"{base} review-requested:{username}",
            ROLE_ASSIGNEE: f"{base} assignee:{username}",
        }
        if include_authored:
            queries[ROLE_AUTHOR] = f"{base} author:{username}"
        return queries

    def search_pull_requests(self, repo_full_name: str, query: str) -> list[dict[str, Any]]:
        """Run one search query and return its items.

        Raises:
            FetchError: If the request fails or the response is not successful
        """
        url = f"{self.base_url}/search/issues"
        params = {"q": query, "per_page": 100}

        try:
            response = self._make_github_request(url, params=params)
        except requests.RequestException as e:
            raise FetchError(repo_full_name, f"Failed to fetch PRs from {repo_full_name}: {e}") from e

        if not response.ok:
            logger.error(
                f"Search failed for {repo_full_name}: {response.status_code} - "
                f"{response.text[:200]}"
            )
            raise FetchError(
                repo_full_name,
                f"Failed to fetch PRs from {repo_full_name}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise FetchError(repo_full_name, f"Invalid search response for {repo_full_name}: {e}") from e

        items = payload.get("items") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise FetchError(repo_full_name, f"Unexpected search response for {repo_full_name}")
        return items

    def fetch_repo_prs(
        self,
        repo_full_name: str,
        username: str,
        include_authored: bool = True
    ) -> list[PullRequestRecord]:
        """Fetch open PRs in a repository that involve the user.

        The role queries run concurrently. Results are deduplicated by PR id,
        each unique PR gets one detail request, and roles are merged with OR.

        Args:
            repo_full_name: Repository (e.g., "octocat/hello-world")
            username: Login whose reviews/assignments/authored PRs to track
            include_authored: Whether to run the author query

        Returns:
            List of PullRequestRecord (activity fields not yet populated)

        Raises:
            FetchError: If any role query fails (no partial results)
        """
        queries = self.build_search_queries(repo_full_name, username, include_authored)

        with ThreadPoolExecutor(max_workers=len(queries)) as executor:
            futures = {
                role: executor.submit(self.search_pull_requests, repo_full_name, query)
                for role, query in queries.items()
            }
            # First failure (in role order) abandons the whole repository
            results = {role: future.result() for role, future in futures.items()}

        role_ids = {
            role: {item.get("id") for item in items}
            for role, items in results.items()
        }

        records: dict[int, PullRequestRecord] = {}
        for items in results.values():
            for item in items:
                pr_id = item.get("id")
                if pr_id is None or pr_id in records:
                    continue

                details = self.fetch_pr_details(self._detail_url(repo_full_name, item))
                try:
                    records[pr_id] = PullRequestRecord.from_search_item(
                        item,
                        repo=repo_full_name,
                        details=details,
                        is_author=pr_id in role_ids.get(ROLE_AUTHOR, set()),
                        is_reviewer=pr_id in role_ids.get(ROLE_REVIEWER, set()),
                        is_assignee=pr_id in role_ids.get(ROLE_ASSIGNEE, set()),
                    )
                except (KeyError, ValueError) as e:
                    raise FetchError(
                        repo_full_name, f"Malformed search item in {repo_full_name}: {e}"
                    ) from e

        logger.info(
            f"Fetched {len(records)} open PRs from {repo_full_name} "
            f"({', '.join(f'{role}: {len(items)}' for role, items in results.items())})"
        )
        return list(records.values())

    def _detail_url(self, repo_full_name: str, item: dict[str, Any]) -> str:
        pull_request = item.get("pull_request") or {}
        return pull_request.get("url") or f"{self.base_url}/repos/{repo_full_name}/pulls/{item.get('number')}"

    def fetch_pr_details(self, pr_url: str) -> dict[str, Any]:
        """Fetch the PR detail resource.

        Args:
            pr_url: API URL of the pull request

        Returns:
            PR detail dictionary, or {"draft": False} if the request failed
        """
        details = self._get_json_or_none(pr_url, f"PR details from {pr_url}")
        if not isinstance(details, dict):
            return {"draft": False}

        logger.debug(
            f"PR #{details.get('number')} details: comments={details.get('comments')}, "
            f"review_comments={details.get('review_comments')}, "
            f"mergeable_state={details.get('mergeable_state')}"
        )
        return details

    # ------------------------------------------------------------------
    # Activity sources
    # ------------------------------------------------------------------

    def fetch_reviews(self, repo_full_name: str, pr_number: int) -> Optional[list[dict[str, Any]]]:
        """Fetch the review list of a PR, or None on failure."""
        url = f"{self.base_url}/repos/{repo_full_name}/pulls/{pr_number}/reviews"
        reviews = self._get_json_or_none(
            url, f"reviews for {repo_full_name}#{pr_number}", params={"per_page": 100}
        )
        return reviews if isinstance(reviews, list) else None

    def fetch_check_runs(self, repo_full_name: str, head_sha: str) -> Optional[list[dict[str, Any]]]:
        """Fetch check runs for a commit, or None on failure."""
        url = f"{self.base_url}/repos/{repo_full_name}/commits/{head_sha}/check-runs"
        data = self._get_json_or_none(
            url, f"check runs for {repo_full_name}@{head_sha[:7]}", params={"per_page": 100}
        )
        if not isinstance(data, dict):
            return None
        return data.get("check_runs") or []

    def fetch_commit_status(self, repo_full_name: str, head_sha: str) -> Optional[dict[str, Any]]:
        """Fetch the combined (legacy) commit status, or None on failure."""
        url = f"{self.base_url}/repos/{repo_full_name}/commits/{head_sha}/status"
        data = self._get_json_or_none(url, f"commit status for {repo_full_name}@{head_sha[:7]}")
        return data if isinstance(data, dict) else None
