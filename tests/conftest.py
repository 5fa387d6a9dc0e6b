"""Shared fixtures for the Rsync Watch tests."""

import pytest

from rsync_watch.config import Project


@pytest.fixture
def make_project():
    """Factory for projects with sensible defaults."""

    def _make(name="web", source="/src", destination="/dst", **kwargs):
        return Project(name=name, source=source, destination=destination, **kwargs)

    return _make
