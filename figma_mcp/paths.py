"""Classification of protected system directories.

Every filesystem mutation in the package is gated on :class:`PathGuard`. The
guard is a pure value object: it never touches the disk, so it can be called
freely while candidate directories are being ranked.
"""

from __future__ import annotations

import ntpath
import os
import posixpath
import re
import string
import sys
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple, Union

PathLike = Union[str, "os.PathLike[str]"]

WINDOWS_DANGEROUS_PATHS: Tuple[str, ...] = tuple(
    f"{letter}:\\" for letter in string.ascii_uppercase
) + (
    "C:\\Windows",
    "C:\\Program Files",
    "C:\\Program Files (x86)",
    "C:\\System32",
    "C:\\Users\\Public",
)

MACOS_DANGEROUS_PATHS: Tuple[str, ...] = (
    "/",
    "/System",
    "/Library",
    "/usr",
    "/bin",
    "/sbin",
    "/etc",
    "/var",
    "/tmp",
    "/Applications",
    "/private",
)

LINUX_DANGEROUS_PATHS: Tuple[str, ...] = (
    "/",
    "/bin",
    "/usr",
    "/etc",
    "/root",
    "/var",
    "/sys",
    "/proc",
    "/boot",
    "/dev",
    "/lib",
    "/sbin",
    "/tmp",
)

_DRIVE_ROOT = re.compile(r"^[A-Za-z]:\\?$")


def is_windows(platform: Optional[str] = None) -> bool:
    return (platform or sys.platform).startswith("win")


def dangerous_paths(platform: Optional[str] = None) -> Tuple[str, ...]:
    """Return the deny-list for ``platform`` (defaults to the running OS)."""
    platform = platform or sys.platform
    if is_windows(platform):
        return WINDOWS_DANGEROUS_PATHS
    if platform == "darwin":
        return MACOS_DANGEROUS_PATHS
    return LINUX_DANGEROUS_PATHS


@dataclass(frozen=True)
class PathGuard:
    """Decides whether a directory is a system root or a protected location."""

    platform: str = field(default_factory=lambda: sys.platform)
    deny_list: Optional[Sequence[str]] = None

    @property
    def flavour(self):
        return ntpath if is_windows(self.platform) else posixpath

    @property
    def entries(self) -> Tuple[str, ...]:
        if self.deny_list is None:
            return dangerous_paths(self.platform)
        return tuple(self.deny_list)

    def normalize(self, path: PathLike) -> str:
        normalized = self.flavour.normpath(os.fspath(path))
        if is_windows(self.platform):
            normalized = ntpath.normcase(normalized)
        return normalized

    def is_system_root(self, path: PathLike) -> bool:
        if is_windows(self.platform):
            return bool(_DRIVE_ROOT.match(ntpath.normpath(os.fspath(path))))
        normalized = self.normalize(path)
        return normalized == posixpath.sep or len(normalized) <= 1

    def is_dangerous(self, path: PathLike) -> bool:
        candidate = self.normalize(path)
        sep = self.flavour.sep
        for entry in self.entries:
            protected = self.normalize(entry)
            if candidate == protected:
                return True
            # Roots only match exactly, otherwise every absolute path would be blocked.
            if self.is_system_root(protected):
                continue
            if candidate.startswith(protected + sep):
                return True
        return False

    def is_safe_directory(self, path: PathLike) -> bool:
        return not self.is_system_root(path) and not self.is_dangerous(path)


def is_dangerous(path: PathLike, platform: Optional[str] = None) -> bool:
    """True when ``path`` equals or lies under a protected directory."""
    return PathGuard(platform=platform or sys.platform).is_dangerous(path)


def is_system_root(path: PathLike, platform: Optional[str] = None) -> bool:
    """True when ``path`` has no meaningful parent (``/`` or ``C:\\``)."""
    return PathGuard(platform=platform or sys.platform).is_system_root(path)
