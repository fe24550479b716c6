"""Turn user-supplied destinations into safe, writable absolute directories."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import List, Optional, Union

from .errors import DirectoryProvisionError, UnsafePathError
from .models import Confidence, ResolvedPath, WorkspaceCandidate
from .paths import PathGuard, is_windows
from .workspace import FALLBACK_WORKSPACE_NAME, WorkspaceLocator

logger = logging.getLogger("figma_mcp")

DEFAULT_ASSET_DIR = "figma-assets"
EMERGENCY_DIR = "figma-emergency-downloads"
WRITE_PROBE_NAME = ".figma-test-write"
DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


def clean_input(raw: str) -> str:
    """Drop surrounding whitespace and anything outside printable ASCII."""
    return "".join(ch for ch in raw.strip() if 0x20 <= ord(ch) <= 0x7E)


def _contained_parts(relative: str) -> List[str]:
    """Path segments of ``relative`` without parent traversal or drive letters."""
    parts = (DRIVE_PREFIX.sub("", part) for part in re.split(r"[\\/]+", relative))
    return [part for part in parts if part not in ("", ".", "..")]


class PathResolver:
    """Resolves destinations against the detected workspace."""

    def __init__(
        self,
        locator: Optional[WorkspaceLocator] = None,
        home: Optional[Path] = None,
        guard: Optional[PathGuard] = None,
    ) -> None:
        self.guard = guard or (locator.guard if locator is not None else PathGuard())
        self.home = Path(home) if home is not None else (
            locator.home if locator is not None else Path.home()
        )
        self.locator = locator or WorkspaceLocator(home=self.home, guard=self.guard)
        self.last_workspace: Optional[WorkspaceCandidate] = None

    def _relative_part(self, cleaned: str) -> str:
        prefixes = ["./"]
        roots = ["/"]
        if is_windows(self.guard.platform):
            prefixes.append(".\\")
            roots.append("\\")
        for prefix in prefixes:
            if cleaned.startswith(prefix):
                return cleaned[len(prefix):]
        if cleaned.startswith("../") or cleaned.startswith("..\\"):
            return cleaned
        for root in roots:
            if cleaned.startswith(root):
                return cleaned[len(root):]
        return cleaned

    def workspace(self) -> WorkspaceCandidate:
        candidate = self.locator.locate()
        if not self.guard.is_safe_directory(candidate.directory):
            fallback = self.home / FALLBACK_WORKSPACE_NAME
            logger.error(
                "Workspace %s is a protected location, using %s instead",
                candidate.directory,
                fallback,
            )
            candidate = WorkspaceCandidate(fallback, Confidence.LOW, "Emergency Safe Fallback")
        self.last_workspace = candidate
        return candidate

    def resolve(self, user_path: str) -> ResolvedPath:
        flavour = self.guard.flavour
        cleaned = clean_input(user_path or "")
        if cleaned != user_path:
            logger.debug("Normalized path input %r -> %r", user_path, cleaned)

        if flavour.isabs(cleaned) and self.guard.is_safe_directory(cleaned):
            logger.debug("Using explicit absolute path %s", cleaned)
            return ResolvedPath(user_path, Path(cleaned))
        if flavour.isabs(cleaned):
            logger.warning("Absolute path %s is protected, resolving it as relative", cleaned)

        workspace = self.workspace()
        relative = self._relative_part(cleaned)
        drive, rest = flavour.splitdrive(relative)
        if drive:
            relative = rest.lstrip("\\/")
        if relative in ("", "."):
            relative = DEFAULT_ASSET_DIR

        resolved = flavour.normpath(flavour.join(str(workspace.directory), relative))
        if self.guard.is_dangerous(resolved) or self.guard.is_system_root(
            flavour.dirname(resolved)
        ):
            emergency = flavour.join(str(self.home), EMERGENCY_DIR, *_contained_parts(relative))
            logger.error(
                "Resolved path %s is protected, using emergency path %s", resolved, emergency
            )
            if (
                not flavour.isabs(emergency)
                or self.guard.is_dangerous(emergency)
                or self.guard.is_system_root(emergency)
            ):
                raise UnsafePathError(
                    f"Cannot create a safe download path: emergency path {emergency} "
                    "is protected. Check the HOME configuration."
                )
            return ResolvedPath(user_path, Path(emergency))

        logger.info("Resolved %r -> %s", user_path, resolved)
        return ResolvedPath(user_path, Path(resolved))


def ensure_directory(
    resolved: Union[str, "os.PathLike[str]"],
    original: Optional[str] = None,
    guard: Optional[PathGuard] = None,
) -> Path:
    """Create ``resolved`` if needed and prove that it accepts writes."""
    guard = guard or PathGuard()
    path = Path(resolved)
    if not os.fspath(resolved):
        raise DirectoryProvisionError("Invalid or empty path after resolution")
    if guard.is_dangerous(path):
        raise UnsafePathError(
            f"Blocked directory creation at protected location {path} "
            f"(requested {original or path})"
        )

    try:
        path.mkdir(parents=True, exist_ok=True, mode=0o755)
    except FileExistsError as exc:
        raise DirectoryProvisionError(f"Path exists but is not a directory: {path}") from exc
    except OSError as exc:
        raise DirectoryProvisionError(f"Failed to create directory {path}: {exc}") from exc

    if not path.is_dir():
        raise DirectoryProvisionError(f"Path exists but is not a directory: {path}")

    probe = path / WRITE_PROBE_NAME
    try:
        probe.write_text("test", encoding="utf-8")
        probe.unlink()
    except OSError as exc:
        raise DirectoryProvisionError(
            f"Directory exists but is not writable: {path}: {exc}"
        ) from exc

    logger.debug("Directory verified: %s", path)
    return path
