from datetime import datetime, timezone

import pytest

from git_activity_tracer.models import (
    CacheMetadata,
    Contribution,
    ContributionType,
    parse_timestamp,
)


def test_parse_timestamp_handles_z_suffix():
    assert parse_timestamp("2025-01-15T10:00:00Z") == datetime(2025, 1, 15, 10, tzinfo=timezone.utc)


def test_parse_timestamp_treats_naive_as_utc():
    assert parse_timestamp("2025-01-15T10:00:00").tzinfo == timezone.utc


@pytest.mark.parametrize("value", ["", "yesterday", None])
def test_parse_timestamp_rejects_invalid(value):
    with pytest.raises(ValueError):
        parse_timestamp(value)


def test_contribution_coerces_type_string():
    contribution = Contribution(type="pr", timestamp="2025-01-15T10:00:00Z")
    assert contribution.type is ContributionType.PR


def test_contribution_rejects_bad_timestamp():
    with pytest.raises(ValueError):
        Contribution(type="commit", timestamp="not a date")


def test_contribution_rejects_unknown_type():
    with pytest.raises(ValueError):
        Contribution(type="issue", timestamp="2025-01-15T10:00:00Z")


def test_to_dict_omits_unset_fields_and_uses_project_id_key():
    contribution = Contribution(
        type=ContributionType.COMMIT,
        timestamp="2025-01-15T10:00:00Z",
        repository="acme/api",
        project_id="PROJ-1",
    )
    assert contribution.to_dict() == {
        "type": "commit",
        "timestamp": "2025-01-15T10:00:00Z",
        "repository": "acme/api",
        "projectId": "PROJ-1",
    }


def test_from_dict_reads_serialized_form():
    contribution = Contribution.from_dict(
        {
            "type": "review",
            "timestamp": "2025-01-15T10:00:00Z",
            "text": "review",
            "url": "https://github.com/acme/api/pull/1#pullrequestreview-9",
            "projectId": "PROJ-1",
        }
    )
    assert contribution.type is ContributionType.REVIEW
    assert contribution.project_id == "PROJ-1"
    assert contribution.target is None


def test_from_dict_rejects_non_objects():
    with pytest.raises(ValueError):
        Contribution.from_dict(["commit"])


def test_cache_metadata_wire_format():
    metadata = CacheMetadata(
        platform="GitHub",
        username="octocat",
        last_updated="2025-02-01T00:00:00Z",
        contribution_count=2,
        earliest="2025-01-01T00:00:00Z",
        latest="2025-01-31T00:00:00Z",
    )
    data = metadata.to_dict()

    assert data["dateRange"] == {"earliest": "2025-01-01T00:00:00Z", "latest": "2025-01-31T00:00:00Z"}
    assert data["contributionCount"] == 2
    assert CacheMetadata.from_dict(data) == metadata
