"""Configuration loading for Rsync Watch.

Projects are read from a JSON file mapping a project name to its
source, destination, exclude patterns, rsync options and behaviour
flags.  When no file is found, the ``FROM`` and ``TO`` environment
variables describe a single ``default`` project.
"""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rsync_watch.platform_utils import get_config_dir

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"

ENV_SOURCE = "FROM"
ENV_DESTINATION = "TO"
ENV_PROJECT_NAME = "default"

# Used only by the environment fallback
DEFAULT_EXCLUDE: tuple[str, ...] = (
    "**/*.pyc",
    "npm-debug.log",
    "**/.git",
    "**/node_modules",
    "auditLog/**",
    "*.log",
)

# None = bare flag; ``out-format`` prints one line per transferred file
DEFAULT_RSYNC_OPTIONS: dict[str, Any] = {
    "out-format": "%n",
    "recursive": None,
    "update": None,
    "copy-links": None,
    "perms": None,
    "times": None,
    "delete": None,
    "delete-during": None,
    "no-owner": None,
}


class ConfigError(ValueError):
    """Raised when no usable project configuration can be loaded."""


@dataclass(frozen=True)
class Project:
    """One configured source -> destination mirror."""

    name: str
    source: str
    destination: str
    exclude: tuple[str, ...] = ()
    rsync_options: dict[str, Any] = field(default_factory=dict)
    desktop_notification: bool = False

    @classmethod
    def from_mapping(cls, name: str, data: Any) -> "Project":
        """Build a project from one entry of the JSON config."""
        if not isinstance(data, Mapping):
            raise ConfigError(f"Project '{name}' must be an object")

        source = data.get("from")
        destination = data.get("to")
        if not source or not destination:
            raise ConfigError(f"Project '{name}' needs both 'from' and 'to'")

        exclude = data.get("exclude") or []
        if not isinstance(exclude, list):
            raise ConfigError(f"Project '{name}': 'exclude' must be a list")

        rsync_options = data.get("rsyncOptions") or {}
        if not isinstance(rsync_options, Mapping):
            raise ConfigError(f"Project '{name}': 'rsyncOptions' must be an object")

        options = data.get("options") or {}
        if not isinstance(options, Mapping):
            raise ConfigError(f"Project '{name}': 'options' must be an object")

        return cls(
            name=name,
            source=str(source),
            destination=str(destination),
            exclude=tuple(str(p) for p in exclude),
            rsync_options=dict(rsync_options),
            desktop_notification=bool(options.get("desktopNotification", False)),
        )


def find_config_file(path: Path | None = None) -> Path | None:
    """
    Locate the config file.

    An explicit *path* must exist.  Otherwise ``./config.json`` is tried,
    then ``config.json`` in the per-user config directory.
    """
    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        return path

    for candidate in (Path.cwd() / CONFIG_FILENAME, get_config_dir() / CONFIG_FILENAME):
        if candidate.is_file():
            return candidate
    return None


def parse_projects(data: Any) -> dict[str, Project]:
    """Turn the decoded JSON document into projects, keeping file order."""
    if not isinstance(data, Mapping):
        raise ConfigError("Config must be an object mapping project names to projects")
    if not data:
        raise ConfigError("Config defines no projects")
    return {str(name): Project.from_mapping(str(name), entry) for name, entry in data.items()}


def projects_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Project] | None:
    """Return the single ``default`` project from FROM/TO, or None if unset."""
    env = os.environ if environ is None else environ
    source = env.get(ENV_SOURCE)
    destination = env.get(ENV_DESTINATION)
    if not source or not destination:
        return None
    project = Project(
        name=ENV_PROJECT_NAME,
        source=source,
        destination=destination,
        exclude=DEFAULT_EXCLUDE,
        rsync_options=dict(DEFAULT_RSYNC_OPTIONS),
        desktop_notification=False,
    )
    return {project.name: project}


def load_projects(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Project]:
    """
    Load every configured project.

    Raises
    ------
    ConfigError
        If no config file is found and FROM/TO are not both set, or if
        the file cannot be read or describes an invalid project.
    """
    config_path = find_config_file(path)
    if config_path is not None:
        try:
            with open(config_path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (json.JSONDecodeError, OSError) as exc:
            raise ConfigError(f"Could not read config {config_path}: {exc}") from exc
        projects = parse_projects(data)
        logger.info("Configuration loaded from %s (%d projects)", config_path, len(projects))
        return projects

    projects = projects_from_env(environ)
    if projects is None:
        raise ConfigError(
            "Please provide a config file or set the environment variables "
            f"{ENV_SOURCE} and {ENV_DESTINATION}"
        )
    logger.info("Configuration taken from %s/%s environment variables", ENV_SOURCE, ENV_DESTINATION)
    return projects
