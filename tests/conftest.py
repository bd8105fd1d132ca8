"""Global pytest fixtures for EPHEMERA."""

from __future__ import annotations

from pathlib import Path

import pytest

# pylint: disable=unused-argument

pytest_plugins = [
    "tests.fixtures.sqlite",
    "tests.fixtures.postgres",
    "tests.fixtures.redis",
    "tests.fixtures.mongo",
    "tests.fixtures.mssql",
    "tests.fixtures.backends",
]

TESTS_ROOT = Path(__file__).parent.resolve()
# top-level folder -> default marker
FOLDER_MARKERS = {"unit": "unit", "integration": "integration", "e2e": "e2e"}


@pytest.hookimpl(tryfirst=True)
def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Mark items with the name of their top-level test folder.

    Explicit marks win: an item already carrying the folder's marker is left
    alone.
    """
    for item in items:
        path = item.path.resolve()  # pytest>=8: pathlib.Path
        if TESTS_ROOT not in path.parents:
            continue
        folder = path.relative_to(TESTS_ROOT).parts[0]
        marker = FOLDER_MARKERS.get(folder)
        if marker is None:
            continue
        if not any(existing.name == marker for existing in item.iter_markers()):
            item.add_marker(getattr(pytest.mark, marker))
