"""Badge projection: one indicator derived from the current PR list and filter."""

from typing import Optional, Union

from models.data_models import DisplayFilter, PullRequestRecord

BADGE_ERROR = -1

BADGE_ERROR_TEXT = "!"
BADGE_UNCONFIGURED_TEXT = "?"

BADGE_ERROR_COLOR = "#f85149"
BADGE_COUNT_COLOR = "#cf222e"
BADGE_UNCONFIGURED_COLOR = "#6e7681"


def filter_prs(
    prs: list[PullRequestRecord],
    display_filter: Union[DisplayFilter, str] = DisplayFilter.ALL
) -> list[PullRequestRecord]:
    """Apply a display filter: mine = authored by the user, others = not authored."""
    display_filter = DisplayFilter(display_filter)
    if display_filter == DisplayFilter.MINE:
        return [pr for pr in prs if pr.is_author]
    if display_filter == DisplayFilter.OTHERS:
        return [pr for pr in prs if not pr.is_author]
    return list(prs)


def project_badge(
    prs: Optional[list[PullRequestRecord]],
    display_filter: Union[DisplayFilter, str] = DisplayFilter.ALL
) -> int:
    """Count the PRs visible under the filter, or BADGE_ERROR when prs is None."""
    if prs is None:
        return BADGE_ERROR
    return len(filter_prs(prs, display_filter))


def badge_text(count: int) -> str:
    if count < 0:
        return BADGE_ERROR_TEXT
    if count == 0:
        return ""
    return str(count)


def badge_color(count: Optional[int]) -> str:
    """Background color for a badge count (None means not configured)."""
    if count is None:
        return BADGE_UNCONFIGURED_COLOR
    if count < 0:
        return BADGE_ERROR_COLOR
    return BADGE_COUNT_COLOR
