"""Report generation across all configured connectors."""

import asyncio
import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime

from .cache import CacheStore
from .config import Configuration
from .connector import Connector, gather_isolated
from .dedup import deduplicate_contributions
from .models import Contribution

logger = logging.getLogger(__name__)

Fetcher = Callable[[Connector, datetime, datetime], Awaitable[list[Contribution]]]


def enrich_contributions(
    contributions: Iterable[Contribution], repository_project_ids: dict[str, str]
) -> list[Contribution]:
    """Attach project ids to contributions whose repository is mapped.

    Args:
        contributions: Contributions to enrich
        repository_project_ids: Mapping of "owner/name" to project id

    Returns:
        New list; mapped contributions are replaced by updated copies
    """
    enriched = []
    for contribution in contributions:
        project_id = repository_project_ids.get(contribution.repository) if contribution.repository else None
        if project_id is not None:
            contribution = dataclasses.replace(contribution, project_id=project_id)
        enriched.append(contribution)
    return enriched


async def _fetch_with_cache(
    connector: Connector,
    fetch: Fetcher,
    from_date: datetime,
    to_date: datetime,
    cache_store: CacheStore | None,
) -> list[Contribution]:
    """Fetch one connector's contributions, merging them into the cache."""
    platform = connector.get_platform_name()
    start_time = time.monotonic()

    if cache_store is None:
        contributions = await fetch(connector, from_date, to_date)
        duration = time.monotonic() - start_time
        logger.info(f"{platform}: fetched {len(contributions)} contributions (took {duration:.2f}s)")
        return contributions

    username = await connector.get_user_login()
    cached = await asyncio.to_thread(cache_store.load, platform, username)
    logger.info(f"{platform}: {len(cached)} contributions cached for {username}")

    contributions = await fetch(connector, from_date, to_date)
    metadata = await asyncio.to_thread(cache_store.save, platform, username, contributions)
    logger.info(
        f"{platform}: fetched {len(contributions)} contributions, cache now holds "
        f"{metadata.contribution_count} (took {time.monotonic() - start_time:.2f}s)"
    )
    return contributions


async def _run(
    connectors: Iterable[Connector],
    fetch: Fetcher,
    configuration: Configuration,
    from_date: datetime,
    to_date: datetime,
    cache_store: CacheStore | None,
) -> list[Contribution]:
    connectors = list(connectors)
    contributions = await gather_isolated(
        (
            f"{connector.get_platform_name()} connector",
            _fetch_with_cache(connector, fetch, from_date, to_date, cache_store),
        )
        for connector in connectors
    )

    unique = deduplicate_contributions(contributions, configuration.base_branches)
    enriched = enrich_contributions(unique, configuration.repository_project_ids)
    enriched.sort(key=lambda c: c.occurred_at, reverse=True)

    api_calls = sum(connector.get_api_call_count() for connector in connectors)
    logger.debug(f"Report: {len(enriched)} contributions from {len(connectors)} connectors, {api_calls} API calls")
    return enriched


async def _contributions(connector: Connector, from_date: datetime, to_date: datetime) -> list[Contribution]:
    return await connector.fetch_contributions(from_date, to_date)


async def _all_commits_and_contributions(
    connector: Connector, from_date: datetime, to_date: datetime
) -> list[Contribution]:
    # Both fetches settle before a failure propagates, so none outlives the connector.
    results = await asyncio.gather(
        connector.fetch_all_commits(from_date, to_date),
        connector.fetch_contributions(from_date, to_date),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    commits, contributions = results
    return [*commits, *contributions]


async def generate_report(
    connectors: Iterable[Connector],
    configuration: Configuration,
    from_date: datetime,
    to_date: datetime,
    cache_store: CacheStore | None = None,
) -> list[Contribution]:
    """Collect base-branch commits, pull/merge requests and reviews.

    A connector that fails is logged and contributes nothing; the others
    still produce a report.

    Args:
        connectors: Initialized platform connectors
        configuration: Base branches and project id mapping
        from_date: Start of date range
        to_date: End of date range
        cache_store: Store to merge fetched data into (no caching if None)

    Returns:
        Deduplicated, enriched contributions, newest first
    """
    return await _run(connectors, _contributions, configuration, from_date, to_date, cache_store)


async def generate_commits_report(
    connectors: Iterable[Connector],
    configuration: Configuration,
    from_date: datetime,
    to_date: datetime,
    cache_store: CacheStore | None = None,
) -> list[Contribution]:
    """Like generate_report, but also include commits from every branch."""
    return await _run(
        connectors, _all_commits_and_contributions, configuration, from_date, to_date, cache_store
    )
