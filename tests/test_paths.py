"""Tests for figma_mcp.paths."""

import pytest

from figma_mcp.paths import (
    LINUX_DANGEROUS_PATHS,
    MACOS_DANGEROUS_PATHS,
    WINDOWS_DANGEROUS_PATHS,
    PathGuard,
    dangerous_paths,
    is_dangerous,
    is_system_root,
)


# ---------------------------------------------------------------------------
# Deny-list selection
# ---------------------------------------------------------------------------


class TestDangerousPaths:
    def test_platform_lists(self):
        assert dangerous_paths("linux") == LINUX_DANGEROUS_PATHS
        assert dangerous_paths("darwin") == MACOS_DANGEROUS_PATHS
        assert dangerous_paths("win32") == WINDOWS_DANGEROUS_PATHS

    def test_windows_list_covers_every_drive_root(self):
        for letter in "ACDZ":
            assert f"{letter}:\\" in WINDOWS_DANGEROUS_PATHS

    @pytest.mark.parametrize("platform", ["linux", "darwin", "win32"])
    def test_every_entry_is_dangerous(self, platform):
        guard = PathGuard(platform=platform)
        for entry in dangerous_paths(platform):
            assert guard.is_dangerous(entry), entry


# ---------------------------------------------------------------------------
# POSIX classification
# ---------------------------------------------------------------------------


class TestLinuxGuard:
    @pytest.fixture
    def guard(self):
        return PathGuard(platform="linux")

    @pytest.mark.parametrize(
        "path",
        ["/", "/usr", "/usr/local/bin", "/etc/nginx", "/tmp/figma", "/proc/1", "/root/x"],
    )
    def test_protected(self, guard, path):
        assert guard.is_dangerous(path)
        assert not guard.is_safe_directory(path)

    @pytest.mark.parametrize(
        "path",
        ["/home/user/project", "/srv/app/assets", "/usrlocal", "/opt/figma"],
    )
    def test_allowed(self, guard, path):
        assert not guard.is_dangerous(path)
        assert guard.is_safe_directory(path)

    def test_root_only_matches_itself(self, guard):
        # "/" is on the list but must not swallow every absolute path
        assert guard.is_dangerous("/")
        assert not guard.is_dangerous("/home")

    def test_normalizes_before_matching(self, guard):
        assert guard.is_dangerous("/home/../etc/passwd")
        assert guard.is_dangerous("/usr//lib/")
        assert not guard.is_dangerous("/etc/../home/user")

    def test_system_root(self, guard):
        assert guard.is_system_root("/")
        assert not guard.is_system_root("/home")


class TestMacGuard:
    def test_protected_and_allowed(self):
        guard = PathGuard(platform="darwin")
        assert guard.is_dangerous("/Applications/Figma.app")
        assert guard.is_dangerous("/private/var/folders/xy")
        assert guard.is_dangerous("/System/Library")
        assert not guard.is_dangerous("/Users/me/project")


# ---------------------------------------------------------------------------
# Windows classification
# ---------------------------------------------------------------------------


class TestWindowsGuard:
    @pytest.fixture
    def guard(self):
        return PathGuard(platform="win32")

    def test_drive_roots(self, guard):
        assert guard.is_dangerous("C:\\")
        assert guard.is_dangerous("D:\\")
        assert guard.is_system_root("C:\\")
        assert guard.is_system_root("D:")
        assert not guard.is_system_root("C:\\Users")

    def test_case_insensitive(self, guard):
        assert guard.is_dangerous("c:\\windows\\System32")
        assert guard.is_dangerous("C:/Program Files/App")

    def test_user_directories_allowed(self, guard):
        assert not guard.is_dangerous("C:\\Users\\me\\project")
        assert guard.is_safe_directory("D:\\work\\assets")

    def test_public_profile_blocked(self, guard):
        assert guard.is_dangerous("C:\\Users\\Public\\Documents")


# ---------------------------------------------------------------------------
# Injection and module helpers
# ---------------------------------------------------------------------------


class TestCustomDenyList:
    def test_only_listed_entries_block(self):
        guard = PathGuard(platform="linux", deny_list=("/", "/data"))
        assert guard.is_dangerous("/data/cache")
        assert not guard.is_dangerous("/tmp/work")
        assert guard.entries == ("/", "/data")

    def test_module_functions_take_platform(self):
        assert is_dangerous("/usr/bin", platform="linux")
        assert not is_dangerous("/home/me", platform="linux")
        assert is_system_root("E:\\", platform="win32")
        assert not is_system_root("/home", platform="linux")
