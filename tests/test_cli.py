import json

import pytest
from conftest import make_contribution
from typer.testing import CliRunner

from git_activity_tracer import cli

runner = CliRunner()


class StubConnector:
    def __init__(self, contributions):
        self.contributions = contributions
        self.closed = False

    def get_platform_name(self):
        return "GitHub"

    async def get_user_login(self):
        return "octocat"

    async def fetch_contributions(self, from_date, to_date):
        return list(self.contributions)

    async def fetch_all_commits(self, from_date, to_date):
        return []

    def get_api_call_count(self):
        return 1

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "config.yaml"


@pytest.fixture
def cache_dir(tmp_path, monkeypatch):
    path = tmp_path / "cache"
    monkeypatch.setattr(cli, "DEFAULT_CACHE_DIRECTORY", path)
    return path


@pytest.fixture
def connector(monkeypatch):
    stub = StubConnector(
        [make_contribution(url="https://github.com/acme/api/commit/abc", timestamp="2025-01-15T10:00:00Z")]
    )
    monkeypatch.setattr(cli, "initialize_connectors", lambda configuration: [stub])
    return stub


def test_report_writes_json_file(tmp_path, config_file, cache_dir, connector):
    output = tmp_path / "out.json"

    result = runner.invoke(
        cli.app,
        [
            "report",
            "--config", str(config_file),
            "--from", "2025-01-01",
            "--to", "2025-01-31",
            "--format", "json",
            "--with-links",
            "--output", str(output),
        ],
    )

    assert result.exit_code == 0, result.output
    items = json.loads(output.read_text())
    assert items[0]["url"] == "https://github.com/acme/api/commit/abc"
    assert connector.closed
    assert (cache_dir / "GitHub-octocat.json").exists()


def test_report_console_without_cache(config_file, cache_dir, connector):
    result = runner.invoke(
        cli.app,
        ["report", "--config", str(config_file), "--from", "2025-01-01", "--to", "2025-01-31", "--no-cache"],
    )

    assert result.exit_code == 0, result.output
    assert "## 2025-01-15" in result.output
    assert "[acme/api]" in result.output
    assert not cache_dir.exists()


def test_commits_command(config_file, cache_dir, connector):
    result = runner.invoke(
        cli.app, ["commits", "--config", str(config_file), "--last-week", "--no-cache"]
    )

    assert result.exit_code == 0, result.output


def test_invalid_date_exits_with_suggestions(config_file, cache_dir, connector):
    result = runner.invoke(cli.app, ["report", "--config", str(config_file), "--from", "someday"])

    assert result.exit_code == 1
    assert "Invalid start date" in result.output
    assert "YYYY-MM-DD" in result.output


def test_unknown_format_exits(config_file, cache_dir, connector):
    result = runner.invoke(cli.app, ["report", "--config", str(config_file), "--format", "xml"])

    assert result.exit_code == 1
    assert "Unknown output format" in result.output


def test_no_tokens_exits(config_file, cache_dir, monkeypatch):
    monkeypatch.delenv("GH_TOKEN", raising=False)
    monkeypatch.delenv("GITLAB_TOKEN", raising=False)

    result = runner.invoke(cli.app, ["report", "--config", str(config_file)])

    assert result.exit_code == 1
    assert "No connectors available" in result.output


def test_cache_status_and_clear(cache_dir):
    result = runner.invoke(cli.app, ["cache", "status"])
    assert "Cache is empty" in result.output

    cli.CacheStore(cache_dir).save("GitHub", "octocat", [make_contribution()])

    result = runner.invoke(cli.app, ["cache", "status"])
    assert result.exit_code == 0, result.output
    assert "GitHub/octocat" in result.output
    assert "Contributions: 1" in result.output

    result = runner.invoke(cli.app, ["cache", "clear"])
    assert "Cleared 1 cache file" in result.output

    result = runner.invoke(cli.app, ["cache", "clear"])
    assert "Cache is already empty" in result.output


def test_project_id_commands(config_file):
    result = runner.invoke(cli.app, ["project-id", "list", "--config", str(config_file)])
    assert "No repository project ID mappings" in result.output

    result = runner.invoke(cli.app, ["project-id", "add", "acme/api", "P1", "--config", str(config_file)])
    assert result.exit_code == 0, result.output

    result = runner.invoke(cli.app, ["project-id", "list", "--config", str(config_file)])
    assert "acme/api -> P1" in result.output

    result = runner.invoke(cli.app, ["project-id", "remove", "acme/api", "--config", str(config_file)])
    assert result.exit_code == 0, result.output

    result = runner.invoke(cli.app, ["project-id", "remove", "acme/api", "--config", str(config_file)])
    assert result.exit_code == 1


def test_project_id_add_rejects_bad_repository(config_file):
    result = runner.invoke(cli.app, ["project-id", "add", "api", "P1", "--config", str(config_file)])

    assert result.exit_code == 1
    assert "owner/name" in result.output


def test_show_config(config_file, cache_dir, monkeypatch):
    monkeypatch.setenv("GH_TOKEN", "secret-token")
    monkeypatch.delenv("GITLAB_TOKEN", raising=False)

    result = runner.invoke(cli.app, ["show-config", "--config", str(config_file)])

    assert result.exit_code == 0, result.output
    assert "base_branches" in result.output
    assert "GH_TOKEN: set" in result.output
    assert "GITLAB_TOKEN: not set" in result.output
    assert "secret-token" not in result.output


def test_uncreatable_config_exits_cleanly(tmp_path, cache_dir, connector):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    result = runner.invoke(
        cli.app, ["report", "--config", str(blocker / "config.yaml"), "--last-week", "--no-cache"]
    )

    assert result.exit_code == 1
    assert "Error:" in result.output
    assert not isinstance(result.exception, OSError)


def test_show_config_uncreatable_config_exits_cleanly(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    result = runner.invoke(cli.app, ["show-config", "--config", str(blocker / "config.yaml")])

    assert result.exit_code == 1
    assert "Error:" in result.output
