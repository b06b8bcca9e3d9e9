"""GitHub connector implementation."""

import asyncio
import logging
import time
from datetime import datetime
from urllib.parse import urlparse

import httpx

from ..config import Configuration
from ..connector import Connector, first_line, gather_isolated, within_range
from ..dedup import deduplicate_contributions
from ..errors import (
    ActivityTrackerError,
    AuthenticationError,
    ConstructionError,
    UpstreamPartialError,
    UpstreamStructuralError,
)
from ..models import Contribution, ContributionType, ensure_aware, parse_timestamp

logger = logging.getLogger(__name__)

_COMMIT_FIELDS = """
              nodes {
                oid
                committedDate
                messageHeadline
                message
                url
                author {
                  name
                  email
                  user { login }
                }
              }
              pageInfo {
                hasNextPage
                endCursor
              }
"""

CONTRIBUTIONS_QUERY = (
    """
query($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    contributionsCollection(from: $from, to: $to) {
      commitContributionsByRepository(maxRepositories: 50) {
        repository {
          nameWithOwner
          defaultBranchRef {
            name
            target {
              ... on Commit {
                history(first: 100) {"""
    + _COMMIT_FIELDS
    + """
                }
              }
            }
          }
        }
      }
      pullRequestContributions(first: 100) {
        nodes {
          occurredAt
          pullRequest { title url baseRefName }
        }
      }
      pullRequestReviewContributions(first: 100) {
        nodes {
          occurredAt
          pullRequestReview {
            url
            pullRequest { baseRefName }
          }
        }
      }
    }
  }
}"""
)

COMMIT_HISTORY_QUERY = (
    """
query($owner: String!, $name: String!, $branch: String!, $cursor: String, $from: GitTimestamp, $to: GitTimestamp) {
  repository(owner: $owner, name: $name) {
    ref(qualifiedName: $branch) {
      target {
        ... on Commit {
          history(first: 100, after: $cursor, since: $from, until: $to) {"""
    + _COMMIT_FIELDS
    + """
          }
        }
      }
    }
  }
}"""
)


def _dig(data, *keys):
    """Walk nested dicts, returning None as soon as a level is missing."""
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _same_login(left: str | None, right: str) -> bool:
    return bool(left) and left.lower() == right.lower()


def repository_from_url(url: str | None) -> str | None:
    """Extract "owner/name" from a GitHub web URL."""
    if not url:
        return None
    parts = [part for part in urlparse(url).path.split("/") if part]
    if len(parts) < 2:
        return None
    return f"{parts[0]}/{parts[1]}"


class GitHubConnector(Connector):
    """GitHub connector using the GraphQL contributions API and REST listings."""

    default_endpoint = "https://api.github.com"

    def __init__(
        self,
        client_or_token: httpx.AsyncClient | str | None,
        configuration: Configuration | None = None,
        endpoint: str | None = None,
        max_rate_limit_wait: float = 60.0,
    ):
        """Initialize GitHub connector.

        Args:
            client_or_token: Authenticated HTTP client or GitHub personal access token
            configuration: Base branches and project id mapping
            endpoint: API endpoint URL (for GitHub Enterprise, e.g. https://ghe.example.com/api/v3)
            max_rate_limit_wait: Longest rate-limit reset, in seconds, worth sleeping for
        """
        super().__init__(client_or_token, configuration, endpoint, max_rate_limit_wait)
        if self.endpoint.endswith("/api/v3"):
            self.graphql_url = self.endpoint[: -len("v3")] + "graphql"
        else:
            self.graphql_url = f"{self.endpoint}/graphql"
        self._login: str | None = None

    def _build_headers(self, token: str) -> dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "Authorization": f"Bearer {token}",
        }

    def get_platform_name(self) -> str:
        """Return the platform name."""
        return "GitHub"

    async def get_user_login(self) -> str:
        """Return the login of the token owner, caching it for later calls."""
        if self._login:
            return self._login

        try:
            response = await self._request("GET", f"{self.endpoint}/user")
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                raise AuthenticationError(
                    f"GitHub rejected the token (HTTP {e.response.status_code}). Check GH_TOKEN."
                ) from e
            raise

        login = _dig(response.json(), "login")
        if not isinstance(login, str) or not login:
            raise AuthenticationError("Unable to determine authenticated user login from GitHub.")

        self._login = login
        return login

    async def _graphql(self, query: str, variables: dict) -> dict:
        """Run a GraphQL query and return the decoded payload.

        Raises:
            UpstreamStructuralError: If the payload carries an "errors" list
            httpx.HTTPError: On transport or HTTP status errors
        """
        response = await self._request("POST", self.graphql_url, json={"query": query, "variables": variables})
        payload = response.json()

        if not isinstance(payload, dict):
            raise UpstreamStructuralError("GitHub GraphQL API returned a non-object payload")

        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            messages = ", ".join(str(_dig(error, "message") or error) for error in errors)
            raise UpstreamStructuralError(f"GraphQL API returned errors: {messages}")

        return payload

    async def _fetch_contributions_collection(
        self, login: str, from_date: datetime, to_date: datetime
    ) -> dict:
        """Run the aggregate contributions query for the user.

        Raises:
            UpstreamStructuralError: If the query fails or returns no collection
        """
        variables = {"login": login, "from": from_date.isoformat(), "to": to_date.isoformat()}

        try:
            payload = await self._graphql(CONTRIBUTIONS_QUERY, variables)
        except httpx.HTTPError as e:
            raise UpstreamStructuralError(f"Error fetching data from GitHub GraphQL API: {e}") from e

        collection = _dig(payload, "data", "user", "contributionsCollection")
        if not isinstance(collection, dict):
            raise UpstreamStructuralError("No data returned from GitHub GraphQL API")

        return collection

    def _history_commit(
        self,
        node: dict,
        repository: str,
        branch: str | None,
        login: str,
        from_date: datetime,
        to_date: datetime,
    ) -> Contribution | None:
        """Convert one GraphQL history node, or None if it is out of scope.

        Branch history is shared, so the author must be the authenticated
        user through a linked account.
        """
        if not isinstance(node, dict):
            return None

        timestamp = node.get("committedDate")
        if not within_range(timestamp, from_date, to_date):
            return None

        if not _same_login(_dig(node, "author", "user", "login"), login):
            return None

        headline = (node.get("messageHeadline") or "").strip()
        return Contribution(
            type=ContributionType.COMMIT,
            timestamp=timestamp,
            text=headline or first_line(node.get("message")),
            url=node.get("url"),
            repository=repository,
            target=branch,
        )

    async def _paginate_commit_history(
        self,
        repository: str,
        branch: str,
        cursor: str,
        login: str,
        from_date: datetime,
        to_date: datetime,
    ) -> list[Contribution]:
        """Follow a branch's commit history past the first page.

        A failing page stops pagination but keeps what was already gathered.
        """
        owner, name = repository.split("/", 1)
        contributions = []
        page_num = 2

        while cursor:
            variables = {
                "owner": owner,
                "name": name,
                "branch": f"refs/heads/{branch}",
                "cursor": cursor,
                "from": from_date.isoformat(),
                "to": to_date.isoformat(),
            }
            try:
                payload = await self._graphql(COMMIT_HISTORY_QUERY, variables)
            except (ActivityTrackerError, httpx.HTTPError) as e:
                logger.warning(f"Failed to paginate commits for {repository}/{branch}: {e}")
                break

            history = _dig(payload, "data", "repository", "ref", "target", "history")
            if not isinstance(history, dict):
                break

            nodes = history.get("nodes") or []
            logger.debug(f"GitHub API: {repository}/{branch} history page {page_num}: {len(nodes)} commits")
            for node in nodes:
                contribution = self._history_commit(node, repository, branch, login, from_date, to_date)
                if contribution:
                    contributions.append(contribution)

            page_info = history.get("pageInfo") or {}
            cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
            page_num += 1

        return contributions

    async def _repository_commits(
        self, wrapper: dict, login: str, from_date: datetime, to_date: datetime
    ) -> list[Contribution]:
        """Extract one repository's default-branch commits, paginating if needed."""
        repository = _dig(wrapper, "repository", "nameWithOwner")
        default_branch = _dig(wrapper, "repository", "defaultBranchRef") or {}
        history = _dig(default_branch, "target", "history")

        # Empty repositories have no default branch
        if not repository or not isinstance(history, dict):
            return []

        branch = default_branch.get("name")
        contributions = []
        for node in history.get("nodes") or []:
            contribution = self._history_commit(node, repository, branch, login, from_date, to_date)
            if contribution:
                contributions.append(contribution)

        page_info = history.get("pageInfo") or {}
        if page_info.get("hasNextPage") and page_info.get("endCursor") and branch and "/" in repository:
            contributions.extend(
                await self._paginate_commit_history(
                    repository, branch, page_info["endCursor"], login, from_date, to_date
                )
            )

        return contributions

    def _pull_request_contributions(
        self, nodes: list, from_date: datetime, to_date: datetime
    ) -> list[Contribution]:
        contributions = []
        for node in nodes:
            occurred_at = _dig(node, "occurredAt")
            if not within_range(occurred_at, from_date, to_date):
                continue

            url = _dig(node, "pullRequest", "url")
            contributions.append(
                Contribution(
                    type=ContributionType.PR,
                    timestamp=occurred_at,
                    text=_dig(node, "pullRequest", "title"),
                    url=url,
                    repository=repository_from_url(url),
                    target=_dig(node, "pullRequest", "baseRefName"),
                )
            )
        return contributions

    def _review_contributions(
        self, nodes: list, from_date: datetime, to_date: datetime
    ) -> list[Contribution]:
        contributions = []
        for node in nodes:
            occurred_at = _dig(node, "occurredAt")
            if not within_range(occurred_at, from_date, to_date):
                continue

            url = _dig(node, "pullRequestReview", "url")
            contributions.append(
                Contribution(
                    type=ContributionType.REVIEW,
                    timestamp=occurred_at,
                    text="review",
                    url=url,
                    repository=repository_from_url(url),
                    target=_dig(node, "pullRequestReview", "pullRequest", "baseRefName"),
                )
            )
        return contributions

    async def fetch_contributions(self, from_date: datetime, to_date: datetime) -> list[Contribution]:
        """Fetch default-branch commits, pull requests and reviews.

        One GraphQL query covers the common case; repositories with more than
        one page of history are paginated concurrently.

        Args:
            from_date: Start of date range
            to_date: End of date range

        Returns:
            Deduplicated contributions of the authenticated user
        """
        start_time = time.monotonic()
        login = await self.get_user_login()

        logger.info("Fetching contributions from GitHub...")
        collection = await self._fetch_contributions_collection(login, from_date, to_date)

        repositories = collection.get("commitContributionsByRepository") or []
        contributions = await gather_isolated(
            (
                f"GitHub repository {_dig(wrapper, 'repository', 'nameWithOwner') or '?'}",
                self._repository_commits(wrapper, login, from_date, to_date),
            )
            for wrapper in repositories
        )

        contributions.extend(
            self._pull_request_contributions(
                _dig(collection, "pullRequestContributions", "nodes") or [], from_date, to_date
            )
        )
        contributions.extend(
            self._review_contributions(
                _dig(collection, "pullRequestReviewContributions", "nodes") or [], from_date, to_date
            )
        )

        duration = time.monotonic() - start_time
        logger.info(f"GitHub: found {len(contributions)} contributions (took {duration:.2f}s)")

        return deduplicate_contributions(contributions, self.configuration.base_branches)

    async def _paginate(
        self, url: str, params: dict | None = None, updated_since: datetime | None = None
    ) -> list[dict]:
        """Make paginated requests to the GitHub REST API.

        Args:
            url: API endpoint URL
            params: Query parameters
            updated_since: For listings sorted by "updated" descending, stop
                once a page ends with an item last updated before this time

        Returns:
            List of all results from paginated responses
        """
        results = []
        params = dict(params or {})
        params["per_page"] = 100

        page_num = 1
        while url:
            response = await self._request("GET", url, params=params)
            data = response.json()

            if isinstance(data, list):
                logger.debug(f"GitHub API: Received {len(data)} items (page {page_num})")
                results.extend(data)
            else:
                results.append(data)

            if updated_since and data and isinstance(data, list):
                last_updated = _dig(data[-1], "updated_at")
                if last_updated and parse_timestamp(last_updated) < ensure_aware(updated_since):
                    break

            url = self._get_next_page_url(response.headers.get("Link", ""))
            params = None
            page_num += 1

        return results

    def _get_next_page_url(self, link_header: str) -> str | None:
        """Extract next page URL from Link header.

        Args:
            link_header: GitHub Link header value

        Returns:
            URL of next page or None if no more pages
        """
        if not link_header:
            return None

        for link in link_header.split(","):
            parts = link.split(";")
            if len(parts) == 2 and 'rel="next"' in parts[1]:
                return parts[0].strip("<> ")

        return None

    def _rest_commit(self, commit: dict, repository: str, target: str | None) -> Contribution | None:
        """Convert a REST commit object into a commit contribution."""
        try:
            return Contribution(
                type=ContributionType.COMMIT,
                timestamp=_dig(commit, "commit", "author", "date"),
                text=first_line(_dig(commit, "commit", "message")),
                url=commit.get("html_url"),
                repository=repository,
                target=target,
            )
        except ValueError:
            return None

    async def _branch_commits(
        self, repository: str, branch: str, login: str, from_date: datetime, to_date: datetime
    ) -> list[Contribution]:
        """Fetch the user's commits on one branch."""
        params = {
            "sha": branch,
            "author": login,
            "since": from_date.isoformat(),
            "until": to_date.isoformat(),
        }
        try:
            commits = await self._paginate(f"{self.endpoint}/repos/{repository}/commits", params)
        except httpx.HTTPError as e:
            raise UpstreamPartialError(f"commits for {repository}@{branch}: {e}") from e

        contributions = []
        for commit in commits:
            contribution = self._rest_commit(commit, repository, branch)
            if contribution:
                contributions.append(contribution)
        return contributions

    async def _pull_request_commits(
        self, repository: str, pull_request: dict, login: str, from_date: datetime, to_date: datetime
    ) -> list[Contribution]:
        """Fetch the user's commits from one merged pull request.

        The source branch may be gone, so the pull request is the only place
        these commits are still listed.
        """
        number = pull_request.get("number")
        try:
            commits = await self._paginate(f"{self.endpoint}/repos/{repository}/pulls/{number}/commits")
        except httpx.HTTPError as e:
            raise UpstreamPartialError(f"commits for {repository}#{number}: {e}") from e

        head_branch = _dig(pull_request, "head", "ref")
        contributions = []
        for commit in commits:
            if not (
                _same_login(_dig(commit, "author", "login"), login)
                or _same_login(_dig(commit, "committer", "login"), login)
            ):
                continue
            if not within_range(_dig(commit, "commit", "author", "date"), from_date, to_date):
                continue

            contribution = self._rest_commit(commit, repository, head_branch)
            if contribution:
                contributions.append(contribution)
        return contributions

    async def _all_repository_commits(
        self, repository: str, login: str, from_date: datetime, to_date: datetime
    ) -> list[Contribution]:
        """Collect commits from every live branch and merged pull request of a repository."""
        base_url = f"{self.endpoint}/repos/{repository}"
        logger.info(f"{repository}: fetching branches and merged pull requests...")

        branches, pull_requests = await asyncio.gather(
            self._paginate(f"{base_url}/branches"),
            self._paginate(
                f"{base_url}/pulls",
                {"state": "closed", "sort": "updated", "direction": "desc"},
                updated_since=from_date,
            ),
            return_exceptions=True,
        )
        if isinstance(branches, Exception):
            logger.warning(f"{repository}: failed to list branches: {branches}")
            branches = []
        if isinstance(pull_requests, Exception):
            logger.warning(f"{repository}: failed to list pull requests: {pull_requests}")
            pull_requests = []

        merged = [
            pr
            for pr in pull_requests
            if pr.get("merged_at")
            and _same_login(_dig(pr, "user", "login"), login)
            and within_range(pr["merged_at"], from_date, to_date)
        ]

        units = [
            (
                f"{repository}@{branch['name']}",
                self._branch_commits(repository, branch["name"], login, from_date, to_date),
            )
            for branch in branches
            if branch.get("name")
        ]
        units.extend(
            (
                f"{repository}#{pr.get('number')}",
                self._pull_request_commits(repository, pr, login, from_date, to_date),
            )
            for pr in merged
        )

        contributions = await gather_isolated(units)
        logger.info(
            f"{repository}: found {len(contributions)} commits from {len(branches)} branches "
            f"and {len(merged)} merged pull requests"
        )
        return contributions

    async def fetch_all_commits(self, from_date: datetime, to_date: datetime) -> list[Contribution]:
        """Fetch the user's commits from every branch of every active repository.

        Repositories are discovered through the contributions query. Each is
        scanned through its live branches and its merged pull requests, which
        also recovers commits from deleted branches.

        Args:
            from_date: Start of date range
            to_date: End of date range

        Returns:
            Deduplicated commit contributions
        """
        start_time = time.monotonic()
        login = await self.get_user_login()

        logger.info("Discovering GitHub repositories...")
        collection = await self._fetch_contributions_collection(login, from_date, to_date)

        # Repositories with unlinked commits only show up through pull requests
        names = [
            _dig(wrapper, "repository", "nameWithOwner")
            for wrapper in collection.get("commitContributionsByRepository") or []
        ]
        names.extend(
            repository_from_url(_dig(node, "pullRequest", "url"))
            for node in _dig(collection, "pullRequestContributions", "nodes") or []
        )
        repositories = list(dict.fromkeys(n for n in names if isinstance(n, str) and "/" in n))
        logger.info(f"Found {len(repositories)} repositories to check")

        contributions = await gather_isolated(
            (f"GitHub repository {name}", self._all_repository_commits(name, login, from_date, to_date))
            for name in repositories
        )

        duration = time.monotonic() - start_time
        logger.info(f"GitHub: collected {len(contributions)} commits (took {duration:.2f}s)")

        return deduplicate_contributions(contributions, self.configuration.base_branches)


def create_github_connector(
    token: str | None,
    configuration: Configuration | None = None,
    endpoint: str | None = None,
) -> GitHubConnector:
    """Create a GitHub connector from a personal access token.

    Raises:
        ConstructionError: If the token is missing or blank
    """
    if token is None:
        raise ConstructionError(
            "GH_TOKEN environment variable is missing. "
            "To create a GitHub token see https://github.com/settings/tokens"
        )
    if not token.strip():
        raise ConstructionError("A non-empty GitHub token string is required.")

    return GitHubConnector(token, configuration, endpoint)
