"""Base class for platform connectors."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterable
from datetime import datetime

import httpx

from .config import Configuration
from .errors import ConstructionError
from .models import Contribution, ensure_aware, parse_timestamp

logger = logging.getLogger(__name__)


async def gather_isolated(units: Iterable[tuple[str, Awaitable[list]]]) -> list:
    """Run labelled coroutines concurrently and flatten their results.

    A unit that raises is logged with its label and contributes nothing;
    its siblings are unaffected.

    Args:
        units: Pairs of (label, coroutine returning a list)

    Returns:
        Concatenation of every successful unit's list
    """
    units = list(units)
    results = await asyncio.gather(*(coro for _, coro in units), return_exceptions=True)

    collected = []
    for (label, _), result in zip(units, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.warning(f"{label} failed, skipping: {result}")
            continue
        collected.extend(result)
    return collected


def within_range(timestamp: str | None, from_date: datetime, to_date: datetime) -> bool:
    """Return True if the timestamp parses and falls inside [from_date, to_date]."""
    if not timestamp:
        return False
    try:
        occurred_at = parse_timestamp(timestamp)
    except ValueError:
        return False
    return ensure_aware(from_date) <= occurred_at <= ensure_aware(to_date)


def first_line(message: str | None) -> str | None:
    """Return the first non-empty line of a commit message, or None."""
    if not message:
        return None
    return message.strip().split("\n")[0].strip() or None


class Connector(ABC):
    """Abstract base class for platform connectors.

    A connector turns one hosting platform's activity APIs into
    Contribution records for the authenticated user. Subclasses implement
    identity lookup and the two fetch operations; this class owns the HTTP
    client, rate-limit handling and API call accounting.
    """

    default_endpoint: str = ""

    def __init__(
        self,
        client_or_token: httpx.AsyncClient | str | None,
        configuration: Configuration | None = None,
        endpoint: str | None = None,
        max_rate_limit_wait: float = 60.0,
    ):
        """Initialize the connector.

        Args:
            client_or_token: Pre-built HTTP client carrying credentials, or a bearer token
            configuration: Base branches and project id mapping (defaults if omitted)
            endpoint: API endpoint URL (for self-hosted instances)
            max_rate_limit_wait: Longest rate-limit reset, in seconds, worth sleeping for

        Raises:
            ConstructionError: If neither a client nor a non-empty token is given
        """
        self.endpoint = (endpoint or self.default_endpoint).rstrip("/")
        self.configuration = configuration or Configuration()
        self.max_rate_limit_wait = max_rate_limit_wait
        self.api_call_count = 0

        if isinstance(client_or_token, httpx.AsyncClient):
            self.client = client_or_token
            self._owns_client = False
        elif isinstance(client_or_token, str) and client_or_token.strip():
            self.client = httpx.AsyncClient(
                headers=self._build_headers(client_or_token.strip()), timeout=30.0
            )
            self._owns_client = True
        else:
            raise ConstructionError(
                f"A non-empty {self.get_platform_name()} token or HTTP client is required."
            )

    @abstractmethod
    def _build_headers(self, token: str) -> dict[str, str]:
        """Return the default headers, including authentication, for a token."""

    @abstractmethod
    def get_platform_name(self) -> str:
        """Return the name of this platform (e.g., 'GitHub', 'GitLab').

        Returns:
            Stable short identifier used in logs and cache file names
        """

    @abstractmethod
    async def get_user_login(self) -> str:
        """Resolve the username of the token owner.

        Raises:
            AuthenticationError: If the platform does not report an identity
        """

    @abstractmethod
    async def fetch_contributions(self, from_date: datetime, to_date: datetime) -> list[Contribution]:
        """Fetch base-branch commits, pull/merge requests and reviews.

        Args:
            from_date: Start of date range (inclusive)
            to_date: End of date range (inclusive)

        Returns:
            Deduplicated contributions authored by the authenticated user
        """

    @abstractmethod
    async def fetch_all_commits(self, from_date: datetime, to_date: datetime) -> list[Contribution]:
        """Fetch commits from every branch the user worked on.

        Includes commits only reachable through merged pull/merge requests
        whose source branch has since been deleted.

        Args:
            from_date: Start of date range (inclusive)
            to_date: End of date range (inclusive)

        Returns:
            Deduplicated commit contributions
        """

    def _rate_limit_delay(self, response: httpx.Response) -> float | None:
        """Return seconds to wait before retrying a rate-limited response."""
        if response.status_code not in (403, 429):
            return None

        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                pass

        remaining = response.headers.get("X-RateLimit-Remaining", response.headers.get("RateLimit-Remaining"))
        reset = response.headers.get("X-RateLimit-Reset", response.headers.get("RateLimit-Reset"))
        if remaining != "0" or not reset:
            return None

        try:
            return max(0.0, int(reset) - time.time()) + 1
        except ValueError:
            return None

    async def _request(
        self,
        method: str,
        url: str,
        params: dict | None = None,
        json: dict | None = None,
    ) -> httpx.Response:
        """Send one API request, retrying once after a short rate-limit wait.

        Raises:
            httpx.HTTPStatusError: If the final response has an error status
        """
        name = self.get_platform_name()
        logger.debug(f"{name} API: {method} {url} (params: {params})")

        response = await self.client.request(method, url, params=params, json=json)
        self.api_call_count += 1

        delay = self._rate_limit_delay(response)
        if delay is not None and delay <= self.max_rate_limit_wait:
            logger.warning(f"{name} API rate limit reached, retrying in {delay:.0f}s")
            await asyncio.sleep(delay)
            response = await self.client.request(method, url, params=params, json=json)
            self.api_call_count += 1

        response.raise_for_status()
        return response

    async def aclose(self) -> None:
        """Close the HTTP client if this connector created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def get_api_call_count(self) -> int:
        """Get the number of API calls made by this connector.

        Returns:
            Total number of API calls
        """
        return self.api_call_count

    def reset_api_call_count(self) -> None:
        """Reset the API call counter to zero."""
        self.api_call_count = 0
