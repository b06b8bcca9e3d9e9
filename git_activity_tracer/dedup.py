"""Deduplication of contributions reported by several API surfaces."""

from collections.abc import Iterable

from .config import DEFAULT_BASE_BRANCHES
from .models import Contribution


def contribution_key(contribution: Contribution) -> tuple:
    """Return the identity key used to detect duplicate contributions.

    A contribution with a URL is identified by its type and URL. Without a
    URL, every descriptive field takes part in the key.
    """
    if contribution.url:
        return (contribution.type, contribution.url)

    return (
        contribution.type,
        contribution.timestamp,
        contribution.text or "",
        contribution.repository or "",
        contribution.target or "",
    )


def _prefer(existing: Contribution, candidate: Contribution, base_branches: set[str]) -> Contribution:
    existing_on_base = bool(existing.target) and existing.target.lower() in base_branches
    candidate_on_base = bool(candidate.target) and candidate.target.lower() in base_branches

    if candidate_on_base != existing_on_base:
        return candidate if candidate_on_base else existing

    if candidate.target and not existing.target:
        return candidate

    return existing


def deduplicate_contributions(
    contributions: Iterable[Contribution],
    base_branches: Iterable[str] = DEFAULT_BASE_BRANCHES,
) -> list[Contribution]:
    """Collapse contributions describing the same event into one.

    When two records share a key, the one on a base branch wins, then the one
    that knows its branch at all, then whichever came first.

    Args:
        contributions: Contributions in any order, possibly from several sources
        base_branches: Branch names treated as mainline (case-insensitive)

    Returns:
        One contribution per distinct event, in first-seen key order
    """
    base = {branch.lower() for branch in base_branches}
    seen: dict[tuple, Contribution] = {}

    for contribution in contributions:
        key = contribution_key(contribution)
        if key in seen:
            seen[key] = _prefer(seen[key], contribution, base)
        else:
            seen[key] = contribution

    return list(seen.values())
