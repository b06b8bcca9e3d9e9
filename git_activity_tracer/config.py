"""Configuration management for git-activity-tracer."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import ValidationError

logger = logging.getLogger(__name__)

APP_DIRECTORY = Path.home() / ".git-activity-tracer"
CONFIG_FILE_NAME = "config.yaml"

DEFAULT_BASE_BRANCHES = ["main", "master", "develop", "development", "trunk"]


@dataclass
class Configuration:
    """Main configuration object."""

    base_branches: list[str] = field(default_factory=lambda: list(DEFAULT_BASE_BRANCHES))
    repository_project_ids: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "base_branches": list(self.base_branches),
            "repository_project_ids": dict(self.repository_project_ids),
        }


def get_config_path() -> Path:
    """Return the default configuration file path."""
    return APP_DIRECTORY / CONFIG_FILE_NAME


def _parse_config(raw_config: dict) -> Configuration:
    """Validate raw YAML data and merge it over the defaults.

    Args:
        raw_config: Mapping loaded from the configuration file

    Returns:
        Parsed configuration object

    Raises:
        ValidationError: If a field has the wrong shape
    """
    configuration = Configuration()

    base_branches = raw_config.get("base_branches")
    if base_branches is not None:
        if not isinstance(base_branches, list) or not all(isinstance(b, str) for b in base_branches):
            raise ValidationError(
                "'base_branches' must be a list of branch names",
                ["Example: base_branches: [main, master, develop]"],
            )
        configuration.base_branches = [b.strip() for b in base_branches if b.strip()]

    project_ids = raw_config.get("repository_project_ids")
    if project_ids is not None:
        if not isinstance(project_ids, dict):
            raise ValidationError(
                "'repository_project_ids' must map 'owner/name' to a project id",
                ["Example: repository_project_ids: {acme/api: PROJ-1}"],
            )
        configuration.repository_project_ids = {
            str(repo): str(project_id) for repo, project_id in project_ids.items()
        }

    return configuration


def load_configuration(config_path: str | Path | None = None) -> Configuration:
    """Load configuration from a YAML file, creating it with defaults if absent.

    An unreadable or syntactically invalid file falls back to the defaults
    with a warning.

    Args:
        config_path: Path to the configuration file (defaults to the home directory)

    Returns:
        Parsed configuration object

    Raises:
        ValidationError: If the file parses but holds invalid values
        OSError: If a missing file cannot be created
    """
    config_path = Path(config_path) if config_path else get_config_path()

    if not config_path.exists():
        configuration = Configuration()
        save_configuration(configuration, config_path)
        logger.info(f"Created default configuration at {config_path}")
        return configuration

    try:
        with open(config_path) as f:
            raw_config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load configuration from {config_path}, using defaults: {e}")
        return Configuration()

    if not raw_config:
        return Configuration()

    if not isinstance(raw_config, dict):
        raise ValidationError(f"Configuration file {config_path} must contain a mapping")

    return _parse_config(raw_config)


def save_configuration(configuration: Configuration, config_path: str | Path | None = None) -> None:
    """Write the configuration to a YAML file.

    Args:
        configuration: Configuration to persist
        config_path: Destination path (defaults to the home directory)
    """
    config_path = Path(config_path) if config_path else get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        yaml.safe_dump(configuration.to_dict(), f, sort_keys=False)


def set_project_id(repository: str, project_id: str, config_path: str | Path | None = None) -> Configuration:
    """Map a repository to a billing project id and persist it."""
    if "/" not in repository:
        raise ValidationError(
            f"Invalid repository name: {repository}",
            ["Use the 'owner/name' form, e.g. acme/api"],
        )

    configuration = load_configuration(config_path)
    configuration.repository_project_ids[repository] = project_id
    save_configuration(configuration, config_path)
    return configuration


def remove_project_id(repository: str, config_path: str | Path | None = None) -> bool:
    """Remove a repository mapping. Returns False if none existed."""
    configuration = load_configuration(config_path)
    if repository not in configuration.repository_project_ids:
        return False

    del configuration.repository_project_ids[repository]
    save_configuration(configuration, config_path)
    return True
