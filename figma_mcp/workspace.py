"""Detection of the project directory the calling IDE is working in.

MCP hosts launch the server with a working directory that is frequently wrong
(often the filesystem root), so the locator gathers candidates from a chain of
environment variables and from a marker-file search, validates each of them,
and picks the most trusted one.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .models import Confidence, WorkspaceCandidate
from .paths import PathGuard

logger = logging.getLogger("figma_mcp")

FALLBACK_WORKSPACE_NAME = "figma-mcp-workspace"
CONVENTIONAL_USER_DIRS = ("Desktop", "Documents", "Projects", "Development", "Code")


@dataclass(frozen=True)
class EnvProvider:
    """An environment variable that may name the workspace."""

    name: str
    label: str
    confidence: Confidence
    multi_valued: bool = False

    def directories(self, environ: Mapping[str, str]) -> List[str]:
        value = environ.get(self.name)
        if not value:
            return []
        parts = value.split(";") if self.multi_valued else [value]
        return [part.strip() for part in parts if part.strip()]


DEFAULT_ENV_PROVIDERS: Tuple[EnvProvider, ...] = (
    EnvProvider("WORKSPACE_FOLDER_PATHS", "IDE Workspace Folders", Confidence.HIGH, True),
    EnvProvider("CURSOR_WORKSPACE_ROOT", "Cursor Workspace Root", Confidence.HIGH),
    EnvProvider("VSCODE_WORKSPACE_ROOT", "VS Code Workspace Root", Confidence.HIGH),
    EnvProvider("PROJECT_ROOT", "Project Root", Confidence.HIGH),
    EnvProvider("WORKSPACE_ROOT", "Workspace Root", Confidence.HIGH),
    EnvProvider("npm_config_prefix", "NPM Project Root", Confidence.HIGH),
    EnvProvider("INIT_CWD", "Initial Working Directory", Confidence.HIGH),
    EnvProvider("PWD", "Shell Working Directory", Confidence.MEDIUM),
    EnvProvider("OLDPWD", "Previous Working Directory", Confidence.MEDIUM),
)

DEFAULT_MARKER_WEIGHTS: Dict[str, int] = {
    "package.json": 10,
    "pyproject.toml": 10,
    ".git": 8,
    "tsconfig.json": 7,
    "setup.py": 7,
    "yarn.lock": 6,
    "package-lock.json": 6,
    "pnpm-lock.yaml": 6,
    "node_modules": 5,
    "requirements.txt": 5,
    "src": 4,
    "dist": 3,
    ".gitignore": 3,
    "README.md": 2,
    "index.js": 2,
    "index.ts": 2,
}

DEFAULT_PROJECT_INDICATORS = (
    "package.json",
    "pyproject.toml",
    "tsconfig.json",
    ".git",
    "src",
    "node_modules",
)


@dataclass(frozen=True)
class MarkerPolicy:
    """Weights and thresholds used to decide whether a directory is a project."""

    weights: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_MARKER_WEIGHTS))
    real_project_bonus: int = 5
    score_threshold: int = 10
    max_upward_levels: int = 8
    max_subdirectories: int = 20
    max_search_entries: int = 10
    project_indicators: Sequence[str] = DEFAULT_PROJECT_INDICATORS
    min_indicators: int = 2
    ignored_package_prefix: str = FALLBACK_WORKSPACE_NAME

    def score(self, directory: Path) -> int:
        total = 0
        for marker, weight in self.weights.items():
            marker_path = directory / marker
            if not marker_path.exists():
                continue
            total += weight
            if marker == "package.json" and self._is_real_package(marker_path):
                total += self.real_project_bonus
        return total

    def _is_real_package(self, manifest: Path) -> bool:
        try:
            data = json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return False
        name = data.get("name") if isinstance(data, dict) else None
        return bool(name) and not str(name).startswith(self.ignored_package_prefix)

    def accepts(self, directory: Path) -> bool:
        return self.score(directory) >= self.score_threshold

    def looks_like_project(self, directory: Path) -> bool:
        found = sum(1 for name in self.project_indicators if (directory / name).exists())
        return found >= self.min_indicators


class WorkspaceLocator:
    """Ranks candidate workspace directories and selects the best one."""

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        providers: Sequence[EnvProvider] = DEFAULT_ENV_PROVIDERS,
        policy: Optional[MarkerPolicy] = None,
        home: Optional[Path] = None,
        cwd: Optional[Path] = None,
        guard: Optional[PathGuard] = None,
        fallback_name: str = FALLBACK_WORKSPACE_NAME,
    ) -> None:
        self.environ = os.environ if environ is None else environ
        self.providers = tuple(providers)
        self.policy = policy or MarkerPolicy()
        self.home = Path(home) if home is not None else Path.home()
        self._cwd = Path(cwd) if cwd is not None else None
        self.guard = guard or PathGuard()
        self.fallback_name = fallback_name

    @property
    def cwd(self) -> Path:
        if self._cwd is not None:
            return self._cwd
        return Path(os.getcwd())

    @property
    def fallback_directory(self) -> Path:
        return self.home / self.fallback_name

    def _usable(self, directory: Path) -> bool:
        if not self.guard.is_safe_directory(directory):
            return False
        try:
            return directory.is_dir()
        except OSError:
            return False

    def _env_candidates(self) -> List[WorkspaceCandidate]:
        found: List[WorkspaceCandidate] = []
        for provider in self.providers:
            for raw in provider.directories(self.environ):
                directory = Path(raw)
                if not self._usable(directory):
                    logger.debug("%s not usable: %s", provider.label, raw)
                    continue
                if not self.policy.looks_like_project(directory):
                    logger.debug("%s does not look like a project: %s", provider.label, raw)
                    continue
                logger.debug("Found %s: %s", provider.label, directory)
                found.append(WorkspaceCandidate(directory, provider.confidence, provider.label))
        return found

    def _search_roots(self) -> List[Path]:
        roots: List[Path] = []
        for name in ("PWD", "INIT_CWD"):
            value = self.environ.get(name)
            if value and not self.guard.is_system_root(value):
                roots.append(Path(value))
        if not self.guard.is_system_root(self.cwd):
            roots.append(self.cwd)
        roots.extend(self.home / name for name in CONVENTIONAL_USER_DIRS)
        roots.append(self.home)

        unique: List[Path] = []
        for root in roots:
            if root not in unique:
                unique.append(root)
        return unique

    def _subdirectories(self, directory: Path) -> List[Path]:
        try:
            entries = sorted(directory.iterdir())
        except OSError:
            return []
        children = [
            entry
            for entry in entries
            if not entry.name.startswith(".") and entry.name != "node_modules" and entry.is_dir()
        ]
        return children[: self.policy.max_subdirectories]

    def find_by_markers(self) -> List[Path]:
        """Walk up from each search root, and one level down, scoring marker files."""
        found: List[Path] = []

        def consider(directory: Path) -> None:
            if directory in found or not self._usable(directory):
                return
            if self.policy.accepts(directory):
                logger.debug("Project markers matched: %s", directory)
                found.append(directory)

        for start in self._search_roots():
            if not self._usable(start):
                continue
            current = start
            for _ in range(self.policy.max_upward_levels):
                consider(current)
                parent = current.parent
                if parent == current:
                    break
                current = parent
            if start != self.home:
                for child in self._subdirectories(start):
                    consider(child)
        return found

    def candidates(self) -> List[WorkspaceCandidate]:
        """All validated candidates, highest confidence first."""
        collected = self._env_candidates()
        seen = {candidate.directory for candidate in collected}

        for directory in self.find_by_markers():
            if directory not in seen:
                seen.add(directory)
                collected.append(
                    WorkspaceCandidate(directory, Confidence.MEDIUM, "Project Markers")
                )

        cwd = self.cwd
        if self.guard.is_system_root(cwd):
            logger.debug("Ignoring working directory at filesystem root: %s", cwd)
        elif cwd not in seen and self._usable(cwd) and self.policy.looks_like_project(cwd):
            collected.append(
                WorkspaceCandidate(cwd, Confidence.LOW, "Process Working Directory")
            )

        collected.sort(key=lambda candidate: -candidate.confidence.rank)
        return collected

    def locate(self) -> WorkspaceCandidate:
        """Return the best workspace, creating the fallback workspace if needed."""
        candidates = self.candidates()
        for index, candidate in enumerate(candidates, start=1):
            logger.debug(
                "Workspace candidate %d: %s (%s, %s)",
                index,
                candidate.directory,
                candidate.confidence.value,
                candidate.source,
            )
        if candidates:
            best = candidates[0]
            logger.info(
                "Selected workspace %s (%s confidence from %s)",
                best.directory,
                best.confidence.value,
                best.source,
            )
            return best

        searched = self.search_common_locations()
        if searched is not None:
            logger.info("Selected workspace %s from common project locations", searched.directory)
            return searched

        fallback = self.fallback_directory
        logger.warning("No workspace detected, using fallback %s", fallback)
        self._prepare_fallback(fallback)
        return WorkspaceCandidate(fallback, Confidence.LOW, "Fallback Workspace")

    def search_common_locations(self) -> Optional[WorkspaceCandidate]:
        """First project among the leading entries of the usual user folders."""
        bases = [self.home / name for name in CONVENTIONAL_USER_DIRS] + [self.home]
        for base in bases:
            try:
                entries = sorted(base.iterdir())[: self.policy.max_search_entries]
            except OSError:
                continue
            for entry in entries:
                if self._usable(entry) and self.policy.looks_like_project(entry):
                    return WorkspaceCandidate(entry, Confidence.MEDIUM, "Project Search")
        return None

    def _prepare_fallback(self, directory: Path) -> None:
        if not self.guard.is_safe_directory(directory):
            logger.error(
                "Fallback workspace %s is a protected location, not creating it", directory
            )
            return
        manifest = directory / "package.json"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            if not manifest.exists():
                manifest.write_text(
                    json.dumps(
                        {
                            "name": self.fallback_name,
                            "version": "1.0.0",
                            "description": "Workspace for Figma MCP assets",
                            "private": True,
                        },
                        indent=2,
                    ),
                    encoding="utf-8",
                )
        except OSError as exc:
            logger.warning("Could not prepare fallback workspace %s: %s", directory, exc)
