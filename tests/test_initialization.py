import pytest

from git_activity_tracer.config import Configuration
from git_activity_tracer.errors import ConstructionError
from git_activity_tracer.forges.github import GitHubConnector
from git_activity_tracer.forges.gitlab import GitLabConnector
from git_activity_tracer.initialization import gitlab_endpoint, initialize_connectors


@pytest.mark.parametrize(
    "host,expected",
    [
        (None, "https://gitlab.com/api/v4"),
        ("", "https://gitlab.com/api/v4"),
        ("gitlab.example.com", "https://gitlab.example.com/api/v4"),
        ("https://gitlab.example.com/", "https://gitlab.example.com/api/v4"),
        ("https://gitlab.example.com/api/v4", "https://gitlab.example.com/api/v4"),
    ],
)
def test_gitlab_endpoint(host, expected):
    assert gitlab_endpoint(host) == expected


def test_both_tokens():
    connectors = initialize_connectors(
        Configuration(), {"GH_TOKEN": "gh", "GITLAB_TOKEN": "gl", "GITLAB_HOST": "git.example.com"}
    )

    assert [type(c) for c in connectors] == [GitHubConnector, GitLabConnector]
    assert connectors[1].endpoint == "https://git.example.com/api/v4"


def test_configuration_is_shared():
    configuration = Configuration(base_branches=["trunk"])

    [connector] = initialize_connectors(configuration, {"GITLAB_TOKEN": "gl"})

    assert connector.configuration is configuration


def test_blank_token_is_ignored():
    connectors = initialize_connectors(Configuration(), {"GH_TOKEN": "  ", "GITLAB_TOKEN": "gl"})
    assert [c.get_platform_name() for c in connectors] == ["GitLab"]


def test_no_tokens():
    with pytest.raises(ConstructionError, match="GH_TOKEN or GITLAB_TOKEN"):
        initialize_connectors(Configuration(), {})
