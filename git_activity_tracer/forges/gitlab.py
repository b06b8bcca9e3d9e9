"""GitLab connector implementation."""

import asyncio
import logging
import time
from datetime import datetime, timedelta

import httpx

from ..config import Configuration
from ..connector import Connector, first_line, gather_isolated, within_range
from ..dedup import deduplicate_contributions
from ..errors import AuthenticationError, ConstructionError, UpstreamPartialError
from ..models import Contribution, ContributionType

logger = logging.getLogger(__name__)

PUSH_ACTIONS = ("pushed to", "pushed new")


def project_from_url(web_url: str | None) -> str | None:
    """Extract the project path from a GitLab web URL.

    Args:
        web_url: URL like https://gitlab.com/group/project/-/merge_requests/123

    Returns:
        Project path such as "group/project", or None
    """
    if not web_url:
        return None

    parts = web_url.split("/-/")
    if len(parts) < 2:
        return None

    # Everything after the host
    project = parts[0].split("/", 3)[-1]
    return project or None


class GitLabConnector(Connector):
    """GitLab connector using the events feed and merge request listings.

    The events feed does not say which branch is the project default, so
    pushes count as mainline work only when they target a configured base
    branch.
    """

    default_endpoint = "https://gitlab.com/api/v4"

    def __init__(
        self,
        client_or_token: httpx.AsyncClient | str | None,
        configuration: Configuration | None = None,
        endpoint: str | None = None,
        max_rate_limit_wait: float = 60.0,
        max_pages: int = 10,
    ):
        """Initialize GitLab connector.

        Args:
            client_or_token: Authenticated HTTP client or GitLab personal access token
            configuration: Base branches and project id mapping
            endpoint: API endpoint URL (for self-hosted GitLab)
            max_rate_limit_wait: Longest rate-limit reset, in seconds, worth sleeping for
            max_pages: Page cap for the events feed and merge request listing
        """
        super().__init__(client_or_token, configuration, endpoint, max_rate_limit_wait)
        self.max_pages = max_pages
        self._user: dict | None = None

    def _build_headers(self, token: str) -> dict[str, str]:
        return {"PRIVATE-TOKEN": token}

    def get_platform_name(self) -> str:
        """Return the platform name."""
        return "GitLab"

    async def _current_user(self) -> dict:
        """Fetch and cache the authenticated user record."""
        if self._user is not None:
            return self._user

        try:
            response = await self._request("GET", f"{self.endpoint}/user")
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                raise AuthenticationError(
                    f"GitLab rejected the token (HTTP {e.response.status_code}). Check GITLAB_TOKEN."
                ) from e
            raise

        user = response.json()
        if not isinstance(user, dict) or not isinstance(user.get("username"), str) or not user["username"]:
            raise AuthenticationError("Unable to determine authenticated user username from GitLab.")
        if not user.get("id"):
            raise AuthenticationError("Unable to determine authenticated user ID from GitLab.")

        self._user = user
        return user

    async def get_user_login(self) -> str:
        """Return the username of the token owner."""
        user = await self._current_user()
        return user["username"]

    async def _paginate(self, url: str, params: dict | None = None, max_pages: int | None = None) -> list[dict]:
        """Make paginated requests to GitLab API.

        Args:
            url: API endpoint URL
            params: Query parameters
            max_pages: Stop after this many pages

        Returns:
            List of all results from paginated responses
        """
        results = []
        params = dict(params or {})
        params["per_page"] = 100

        page = 1
        while True:
            params["page"] = page
            response = await self._request("GET", url, params=params)
            data = response.json()

            if not data:
                break

            if isinstance(data, list):
                logger.debug(f"GitLab API: Received {len(data)} items (page {page})")
                results.extend(data)
            else:
                results.append(data)
                break

            total_pages = response.headers.get("X-Total-Pages")
            if total_pages and page >= int(total_pages):
                break
            if response.headers.get("X-Next-Page") == "" or len(data) < params["per_page"]:
                break
            if max_pages and page >= max_pages:
                logger.debug(f"GitLab API: Stopping at page cap ({max_pages}) for {url}")
                break

            page += 1

        return results

    async def _fetch_events(self, user_id: int, from_date: datetime, to_date: datetime) -> list[dict]:
        """Fetch the user's events feed.

        The feed filters by whole days with exclusive bounds, so the window
        is widened by a day on each side and trimmed precisely later.
        """
        params = {
            "after": (from_date.date() - timedelta(days=1)).isoformat(),
            "before": (to_date.date() + timedelta(days=1)).isoformat(),
        }
        try:
            return await self._paginate(f"{self.endpoint}/users/{user_id}/events", params, self.max_pages)
        except httpx.HTTPError as e:
            raise UpstreamPartialError(f"events feed: {e}") from e

    async def _fetch_merge_requests(self, user_id: int, from_date: datetime, to_date: datetime) -> list[dict]:
        """Fetch merge requests the user created within the range."""
        params = {
            "author_id": user_id,
            "created_after": from_date.isoformat(),
            "created_before": to_date.isoformat(),
            "scope": "all",
        }
        try:
            return await self._paginate(f"{self.endpoint}/merge_requests", params, self.max_pages)
        except httpx.HTTPError as e:
            raise UpstreamPartialError(f"merge request listing: {e}") from e

    async def _fetch_activity(self, user_id: int, from_date: datetime, to_date: datetime) -> tuple[list, list]:
        """Fetch the events feed and merge request listing concurrently."""
        return await asyncio.gather(
            gather_isolated([("GitLab events feed", self._fetch_events(user_id, from_date, to_date))]),
            gather_isolated(
                [("GitLab merge request listing", self._fetch_merge_requests(user_id, from_date, to_date))]
            ),
        )

    async def _fetch_projects(self, project_ids) -> dict[int, dict]:
        """Look up projects by id; failed lookups are left out."""
        ids = sorted({project_id for project_id in project_ids if project_id})
        results = await asyncio.gather(
            *(self._request("GET", f"{self.endpoint}/projects/{project_id}") for project_id in ids),
            return_exceptions=True,
        )

        projects = {}
        for project_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(f"GitLab: failed to look up project {project_id}: {result}")
                continue
            data = result.json()
            if isinstance(data, dict):
                projects[project_id] = data
        return projects

    def _push_commit(
        self, event: dict, projects: dict[int, dict], from_date: datetime, to_date: datetime
    ) -> Contribution | None:
        """Convert a push to a base branch into a commit contribution."""
        if event.get("action_name") not in PUSH_ACTIONS:
            return None

        created_at = event.get("created_at")
        if not within_range(created_at, from_date, to_date):
            return None

        push_data = event.get("push_data") or {}
        ref = push_data.get("ref")
        if not isinstance(ref, str) or push_data.get("ref_type", "branch") != "branch":
            return None

        branch = ref.removeprefix("refs/heads/")
        base_branches = {b.lower() for b in self.configuration.base_branches}
        if branch.lower() not in base_branches:
            return None

        project = projects.get(event.get("project_id")) or {}
        web_url = project.get("web_url")
        sha = push_data.get("commit_to")

        return Contribution(
            type=ContributionType.COMMIT,
            timestamp=created_at,
            text=push_data.get("commit_title"),
            url=f"{web_url}/-/commit/{sha}" if web_url and sha else None,
            repository=project.get("path_with_namespace"),
            target=branch,
        )

    def _approval_review(
        self, event: dict, projects: dict[int, dict], from_date: datetime, to_date: datetime
    ) -> Contribution | None:
        """Convert a merge request approval into a review contribution."""
        if event.get("action_name") != "approved":
            return None
        if event.get("target_type", "MergeRequest") != "MergeRequest":
            return None

        created_at = event.get("created_at")
        if not within_range(created_at, from_date, to_date):
            return None

        project = projects.get(event.get("project_id")) or {}
        web_url = project.get("web_url")
        iid = event.get("target_iid")

        return Contribution(
            type=ContributionType.REVIEW,
            timestamp=created_at,
            text="review",
            url=f"{web_url}/-/merge_requests/{iid}" if web_url and iid else None,
            repository=project.get("path_with_namespace"),
        )

    def _merge_request(
        self, merge_request: dict, projects: dict[int, dict], from_date: datetime, to_date: datetime
    ) -> Contribution | None:
        created_at = merge_request.get("created_at")
        if not within_range(created_at, from_date, to_date):
            return None

        project = projects.get(merge_request.get("project_id")) or {}
        web_url = merge_request.get("web_url")

        return Contribution(
            type=ContributionType.PR,
            timestamp=created_at,
            text=merge_request.get("title"),
            url=web_url,
            repository=project.get("path_with_namespace") or project_from_url(web_url),
            target=merge_request.get("target_branch"),
        )

    async def fetch_contributions(self, from_date: datetime, to_date: datetime) -> list[Contribution]:
        """Fetch base-branch pushes, merge requests and approvals.

        Args:
            from_date: Start of date range
            to_date: End of date range

        Returns:
            Deduplicated contributions of the authenticated user
        """
        start_time = time.monotonic()
        user = await self._current_user()

        logger.info("Fetching contributions from GitLab...")
        events, merge_requests = await self._fetch_activity(user["id"], from_date, to_date)

        events = [event for event in events if isinstance(event, dict)]
        projects = await self._fetch_projects(
            event.get("project_id")
            for event in events
            if event.get("action_name") in (*PUSH_ACTIONS, "approved")
        )

        contributions = []
        for event in events:
            contribution = self._push_commit(event, projects, from_date, to_date) or self._approval_review(
                event, projects, from_date, to_date
            )
            if contribution:
                contributions.append(contribution)

        for merge_request in merge_requests:
            if isinstance(merge_request, dict):
                contribution = self._merge_request(merge_request, projects, from_date, to_date)
                if contribution:
                    contributions.append(contribution)

        duration = time.monotonic() - start_time
        logger.info(f"GitLab: found {len(contributions)} contributions (took {duration:.2f}s)")

        return deduplicate_contributions(contributions, self.configuration.base_branches)

    def _is_own_commit(self, commit: dict, user: dict, include_committer: bool = False) -> bool:
        """Return True if the commit's author email belongs to the user.

        GitLab commits carry emails rather than account links; display names
        are not unique and never count. Committer emails are only trusted for
        the user's own merged merge requests, since branch history also holds
        other people's commits the user rebased or merged.
        """
        emails = {
            email.lower()
            for email in (user.get("email"), user.get("public_email"), user.get("commit_email"))
            if email
        }
        roles = ("author", "committer") if include_committer else ("author",)
        for role in roles:
            email = commit.get(f"{role}_email")
            if email and email.lower() in emails:
                return True
        return False

    def _commit(self, commit: dict, repository: str, target: str | None) -> Contribution | None:
        try:
            return Contribution(
                type=ContributionType.COMMIT,
                timestamp=commit.get("authored_date") or commit.get("created_at"),
                text=commit.get("title") or first_line(commit.get("message")),
                url=commit.get("web_url"),
                repository=repository,
                target=target,
            )
        except ValueError:
            return None

    async def _branch_commits(
        self, project_id: int, repository: str, branch: str, user: dict, from_date: datetime, to_date: datetime
    ) -> list[Contribution]:
        """Fetch the user's commits on one branch of a project."""
        params = {"ref_name": branch, "since": from_date.isoformat(), "until": to_date.isoformat()}
        try:
            commits = await self._paginate(f"{self.endpoint}/projects/{project_id}/repository/commits", params)
        except httpx.HTTPError as e:
            raise UpstreamPartialError(f"commits for {repository}@{branch}: {e}") from e

        contributions = []
        for commit in commits:
            if self._is_own_commit(commit, user):
                contribution = self._commit(commit, repository, branch)
                if contribution:
                    contributions.append(contribution)
        return contributions

    async def _merge_request_commits(
        self,
        project_id: int,
        repository: str,
        merge_request: dict,
        user: dict,
        from_date: datetime,
        to_date: datetime,
    ) -> list[Contribution]:
        """Fetch the user's commits from one merged merge request."""
        iid = merge_request.get("iid")
        try:
            commits = await self._paginate(
                f"{self.endpoint}/projects/{project_id}/merge_requests/{iid}/commits"
            )
        except httpx.HTTPError as e:
            raise UpstreamPartialError(f"commits for {repository}!{iid}: {e}") from e

        contributions = []
        for commit in commits:
            if not self._is_own_commit(commit, user, include_committer=True):
                continue
            if not within_range(commit.get("authored_date") or commit.get("created_at"), from_date, to_date):
                continue
            contribution = self._commit(commit, repository, merge_request.get("source_branch"))
            if contribution:
                contributions.append(contribution)
        return contributions

    async def _all_project_commits(
        self, project_id: int, project: dict | None, user: dict, from_date: datetime, to_date: datetime
    ) -> list[Contribution]:
        """Collect commits from every live branch and merged merge request of a project."""
        repository = (project or {}).get("path_with_namespace") or str(project_id)
        base_url = f"{self.endpoint}/projects/{project_id}"
        logger.info(f"{repository}: fetching branches and merged merge requests...")

        branches, merge_requests = await asyncio.gather(
            self._paginate(f"{base_url}/repository/branches"),
            self._paginate(
                f"{base_url}/merge_requests",
                {"state": "merged", "author_id": user["id"], "updated_after": from_date.isoformat()},
            ),
            return_exceptions=True,
        )
        if isinstance(branches, Exception):
            logger.warning(f"{repository}: failed to list branches: {branches}")
            branches = []
        if isinstance(merge_requests, Exception):
            logger.warning(f"{repository}: failed to list merge requests: {merge_requests}")
            merge_requests = []

        merged = [mr for mr in merge_requests if within_range(mr.get("merged_at"), from_date, to_date)]

        units = [
            (
                f"{repository}@{branch['name']}",
                self._branch_commits(project_id, repository, branch["name"], user, from_date, to_date),
            )
            for branch in branches
            if branch.get("name")
        ]
        units.extend(
            (
                f"{repository}!{mr.get('iid')}",
                self._merge_request_commits(project_id, repository, mr, user, from_date, to_date),
            )
            for mr in merged
        )

        contributions = await gather_isolated(units)
        logger.info(
            f"{repository}: found {len(contributions)} commits from {len(branches)} branches "
            f"and {len(merged)} merged merge requests"
        )
        return contributions

    async def fetch_all_commits(self, from_date: datetime, to_date: datetime) -> list[Contribution]:
        """Fetch the user's commits from every branch of every active project.

        Projects are discovered from push events and merge requests in the
        range.

        Args:
            from_date: Start of date range
            to_date: End of date range

        Returns:
            Deduplicated commit contributions
        """
        start_time = time.monotonic()
        user = await self._current_user()

        logger.info("Discovering GitLab projects...")
        events, merge_requests = await self._fetch_activity(user["id"], from_date, to_date)

        project_ids = {
            event.get("project_id")
            for event in events
            if isinstance(event, dict) and event.get("action_name") in PUSH_ACTIONS
        }
        project_ids.update(mr.get("project_id") for mr in merge_requests if isinstance(mr, dict))
        project_ids.discard(None)

        projects = await self._fetch_projects(project_ids)
        logger.info(f"Found {len(project_ids)} projects to check")

        contributions = await gather_isolated(
            (
                f"GitLab project {project_id}",
                self._all_project_commits(project_id, projects.get(project_id), user, from_date, to_date),
            )
            for project_id in sorted(project_ids)
        )

        duration = time.monotonic() - start_time
        logger.info(f"GitLab: collected {len(contributions)} commits (took {duration:.2f}s)")

        return deduplicate_contributions(contributions, self.configuration.base_branches)


def create_gitlab_connector(
    token: str | None,
    configuration: Configuration | None = None,
    endpoint: str | None = None,
) -> GitLabConnector:
    """Create a GitLab connector from a personal access token.

    Raises:
        ConstructionError: If the token is missing or blank
    """
    if token is None:
        raise ConstructionError(
            "GITLAB_TOKEN environment variable is missing. To create a GitLab token see "
            "https://docs.gitlab.com/ee/user/profile/personal_access_tokens.html"
        )
    if not token.strip():
        raise ConstructionError("A non-empty GitLab token string is required.")

    return GitLabConnector(token, configuration, endpoint)
