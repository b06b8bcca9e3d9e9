import pytest
import yaml

from git_activity_tracer.config import (
    DEFAULT_BASE_BRANCHES,
    Configuration,
    load_configuration,
    remove_project_id,
    save_configuration,
    set_project_id,
)
from git_activity_tracer.errors import ValidationError


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "app" / "config.yaml"


def test_missing_file_is_created_with_defaults(config_path):
    configuration = load_configuration(config_path)

    assert configuration.base_branches == DEFAULT_BASE_BRANCHES
    assert configuration.repository_project_ids == {}
    assert yaml.safe_load(config_path.read_text()) == {
        "base_branches": DEFAULT_BASE_BRANCHES,
        "repository_project_ids": {},
    }


def test_values_merge_over_defaults(config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("base_branches: [main, release]\n")

    configuration = load_configuration(config_path)

    assert configuration.base_branches == ["main", "release"]
    assert configuration.repository_project_ids == {}


def test_project_ids_are_strings(config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("repository_project_ids:\n  acme/api: 42\n")

    assert load_configuration(config_path).repository_project_ids == {"acme/api": "42"}


def test_empty_file_gives_defaults(config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("")

    assert load_configuration(config_path) == Configuration()


def test_invalid_yaml_falls_back_to_defaults(config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("base_branches: [main\n")

    assert load_configuration(config_path) == Configuration()


def test_non_list_base_branches_rejected(config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("base_branches: main\n")

    with pytest.raises(ValidationError) as exc_info:
        load_configuration(config_path)
    assert exc_info.value.suggestions


def test_non_mapping_project_ids_rejected(config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("repository_project_ids: [acme/api]\n")

    with pytest.raises(ValidationError):
        load_configuration(config_path)


def test_save_and_reload(config_path):
    save_configuration(Configuration(["trunk"], {"acme/api": "P1"}), config_path)

    assert load_configuration(config_path) == Configuration(["trunk"], {"acme/api": "P1"})


def test_set_and_remove_project_id(config_path):
    set_project_id("acme/api", "P1", config_path)
    assert load_configuration(config_path).repository_project_ids == {"acme/api": "P1"}

    assert remove_project_id("acme/api", config_path) is True
    assert remove_project_id("acme/api", config_path) is False
    assert load_configuration(config_path).repository_project_ids == {}


def test_set_project_id_requires_owner_and_name(config_path):
    with pytest.raises(ValidationError):
        set_project_id("api", "P1", config_path)
