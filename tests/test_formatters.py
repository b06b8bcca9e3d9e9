import csv
import io
import json
from datetime import datetime

import pytest
from conftest import make_contribution

from git_activity_tracer.errors import ValidationError
from git_activity_tracer.formatters import (
    format_console,
    format_contributions,
    format_csv,
    format_json,
    output_filename,
)
from git_activity_tracer.models import ContributionType


@pytest.fixture
def contributions():
    return [
        make_contribution(
            type=ContributionType.PR,
            timestamp="2025-01-16T09:30:00Z",
            text='Add "fast", path',
            url="https://github.com/acme/api/pull/7",
            target="main",
            project_id="P1",
        ),
        make_contribution(
            timestamp="2025-01-15T10:00:00Z",
            url="https://github.com/acme/api/commit/abc",
        ),
    ]


def test_console_groups_by_day_oldest_first(contributions):
    output = format_console(contributions)

    assert output.splitlines() == [
        "",
        "## 2025-01-15",
        "commit: 10:00:00: [acme/api]: (main): Fix parser",
        "",
        "## 2025-01-16",
        'pr: 09:30:00: [acme/api]: (main): Add "fast", path',
    ]


def test_console_links(contributions):
    output = format_console(contributions, with_links=True)
    assert "(https://github.com/acme/api/commit/abc)" in output


def test_console_empty():
    assert format_console([]) == "No contributions found in this range"


def test_json_fields(contributions):
    items = json.loads(format_json(contributions))

    assert [item["type"] for item in items] == ["commit", "pr"]
    assert items[1] == {
        "type": "pr",
        "timestamp": "2025-01-16T09:30:00Z",
        "date": "2025-01-16",
        "repository": "acme/api",
        "target": "main",
        "projectId": "P1",
        "text": 'Add "fast", path',
    }
    assert "url" in json.loads(format_json(contributions, with_links=True))[1]


def test_csv_quotes_fields(contributions):
    output = format_csv(contributions, with_links=True)
    rows = list(csv.reader(io.StringIO(output)))

    assert rows[0] == ["type", "timestamp", "date", "repository", "target", "text", "url"]
    assert rows[2][5] == 'Add "fast", path'
    assert '"Add ""fast"", path"' in output


def test_csv_without_links_has_no_url_column(contributions):
    header = format_csv(contributions).splitlines()[0]
    assert header == "type,timestamp,date,repository,target,text"


def test_format_dispatch(contributions):
    assert format_contributions(contributions, "JSON") == format_json(contributions)

    with pytest.raises(ValidationError):
        format_contributions(contributions, "xml")


def test_output_filename():
    name = output_filename(datetime(2025, 1, 1), datetime(2025, 1, 31), "csv")
    assert name == "git-contributions-2025-01-01-2025-01-31.csv"
