from datetime import datetime, timezone

import pytest

from git_activity_tracer.models import Contribution, ContributionType


def make_contribution(**overrides) -> Contribution:
    fields = {
        "type": ContributionType.COMMIT,
        "timestamp": "2025-01-15T10:00:00Z",
        "text": "Fix parser",
        "url": None,
        "repository": "acme/api",
        "target": "main",
    }
    fields.update(overrides)
    return Contribution(**fields)


@pytest.fixture
def january() -> tuple[datetime, datetime]:
    return (
        datetime(2025, 1, 1, tzinfo=timezone.utc),
        datetime(2025, 1, 31, 23, 59, 59, tzinfo=timezone.utc),
    )
