"""Shared fixtures.

pytest's ``tmp_path`` lives under ``/tmp``, which is protected on Linux, so
every test that touches the disk injects a guard with a reduced deny-list.
"""

import json

import pytest

from figma_mcp.paths import PathGuard
from figma_mcp.resolver import PathResolver
from figma_mcp.workspace import WorkspaceLocator

TEST_DENY_LIST = ("/", "/usr", "/etc", "/bin", "/proc")


@pytest.fixture
def guard():
    return PathGuard(platform="linux", deny_list=TEST_DENY_LIST)


@pytest.fixture
def home(tmp_path):
    path = tmp_path / "home"
    path.mkdir()
    return path


def make_project(path, name="demo-app"):
    path.mkdir(parents=True, exist_ok=True)
    (path / "package.json").write_text(json.dumps({"name": name}), encoding="utf-8")
    (path / ".git").mkdir(exist_ok=True)
    return path


@pytest.fixture
def project(home):
    return make_project(home / "project")


@pytest.fixture
def locator(project, home, guard):
    return WorkspaceLocator(
        environ={"PROJECT_ROOT": str(project)},
        home=home,
        cwd=project,
        guard=guard,
    )


@pytest.fixture
def resolver(locator, home, guard):
    return PathResolver(locator=locator, home=home, guard=guard)
