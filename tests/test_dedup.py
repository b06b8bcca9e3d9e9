from conftest import make_contribution

from git_activity_tracer.config import Configuration
from git_activity_tracer.dedup import contribution_key, deduplicate_contributions
from git_activity_tracer.models import ContributionType


def test_same_type_and_url_collapse():
    url = "https://github.com/acme/api/commit/abc"
    first = make_contribution(url=url, text="first", target=None)
    second = make_contribution(url=url, text="second", target=None, timestamp="2025-01-16T00:00:00Z")

    assert deduplicate_contributions([first, second]) == [first]


def test_same_url_different_type_kept():
    url = "https://github.com/acme/api/pull/1"
    pr = make_contribution(type=ContributionType.PR, url=url)
    review = make_contribution(type=ContributionType.REVIEW, url=url)

    assert len(deduplicate_contributions([pr, review])) == 2


def test_base_branch_wins_over_feature_branch():
    url = "https://github.com/acme/api/commit/abc"
    feature = make_contribution(url=url, target="feature-x")
    main = make_contribution(url=url, target="main")

    assert deduplicate_contributions([feature, main]) == [main]
    assert deduplicate_contributions([main, feature]) == [main]


def test_base_branch_match_is_case_insensitive():
    url = "https://github.com/acme/api/commit/abc"
    feature = make_contribution(url=url, target="feature-x")
    master = make_contribution(url=url, target="Master")

    assert deduplicate_contributions([feature, master]) == [master]


def test_default_base_branches_match_configuration_defaults():
    url = "https://github.com/acme/api/commit/abc"
    feature = make_contribution(url=url, target="feature-x")
    trunk = make_contribution(url=url, target="trunk")

    assert "trunk" in Configuration().base_branches
    assert deduplicate_contributions([feature, trunk]) == [trunk]


def test_custom_base_branches():
    url = "https://github.com/acme/api/commit/abc"
    main = make_contribution(url=url, target="main")
    release = make_contribution(url=url, target="release")

    assert deduplicate_contributions([main, release], ["release"]) == [release]


def test_known_target_wins_over_missing_target():
    url = "https://github.com/acme/api/commit/abc"
    unknown = make_contribution(url=url, target=None)
    feature = make_contribution(url=url, target="feature-x")

    assert deduplicate_contributions([unknown, feature]) == [feature]


def test_first_wins_when_equally_preferred():
    url = "https://github.com/acme/api/commit/abc"
    first = make_contribution(url=url, target="feature-a")
    second = make_contribution(url=url, target="feature-b")

    assert deduplicate_contributions([first, second]) == [first]


def test_without_url_all_fields_form_the_key():
    base = make_contribution()
    same = make_contribution()
    other_text = make_contribution(text="Other")

    assert contribution_key(base) == contribution_key(same)
    assert deduplicate_contributions([base, same, other_text]) == [base, other_text]


def test_idempotent():
    contributions = [
        make_contribution(url="https://x/1", target="feature"),
        make_contribution(url="https://x/1", target="main"),
        make_contribution(url="https://x/2"),
        make_contribution(),
        make_contribution(),
    ]
    once = deduplicate_contributions(contributions)

    assert deduplicate_contributions(once) == once
    assert len(once) == 3


def test_empty_input():
    assert deduplicate_contributions([]) == []
