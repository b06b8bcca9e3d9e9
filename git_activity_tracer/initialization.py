"""Connector setup from environment tokens."""

import logging
import os
from collections.abc import Mapping

from .config import Configuration
from .connector import Connector
from .errors import ActivityTrackerError, ConstructionError
from .forges.github import create_github_connector
from .forges.gitlab import create_gitlab_connector

logger = logging.getLogger(__name__)

DEFAULT_GITLAB_HOST = "https://gitlab.com"


def gitlab_endpoint(host: str | None) -> str:
    """Return the REST API endpoint for a GitLab host.

    Args:
        host: Host name or base URL, e.g. "gitlab.example.com" (gitlab.com if empty)

    Returns:
        Endpoint URL ending in /api/v4
    """
    host = (host or "").strip() or DEFAULT_GITLAB_HOST
    if "://" not in host:
        host = f"https://{host}"
    host = host.rstrip("/")
    if host.endswith("/api/v4"):
        return host
    return f"{host}/api/v4"


def initialize_connectors(
    configuration: Configuration, environ: Mapping[str, str] | None = None
) -> list[Connector]:
    """Create a connector for every platform with a token in the environment.

    GH_TOKEN enables GitHub; GITLAB_TOKEN enables GitLab, with GITLAB_HOST
    selecting a self-hosted instance.

    Args:
        configuration: Configuration passed to each connector
        environ: Environment to read tokens from (defaults to os.environ)

    Returns:
        Initialized connectors

    Raises:
        ConstructionError: If no connector could be created
    """
    environ = os.environ if environ is None else environ
    connectors = []

    github_token = environ.get("GH_TOKEN", "")
    if github_token.strip():
        try:
            connectors.append(create_github_connector(github_token, configuration))
        except ActivityTrackerError as e:
            logger.warning(f"Failed to initialize GitHub connector: {e}")

    gitlab_token = environ.get("GITLAB_TOKEN", "")
    if gitlab_token.strip():
        try:
            connectors.append(
                create_gitlab_connector(
                    gitlab_token, configuration, gitlab_endpoint(environ.get("GITLAB_HOST"))
                )
            )
        except ActivityTrackerError as e:
            logger.warning(f"Failed to initialize GitLab connector: {e}")

    if not connectors:
        raise ConstructionError(
            "No connectors available. Please provide at least one token: GH_TOKEN or GITLAB_TOKEN"
        )

    logger.debug(f"Initialized connectors: {', '.join(c.get_platform_name() for c in connectors)}")
    return connectors
