"""Post-download verification and recovery of misplaced assets.

Some MCP hosts run the server with a working directory that differs from the
one the caller sees, so files can land somewhere unexpected. After a batch
completes, every successful result is checked on disk; anything missing is
searched for in a ranked list of likely locations and moved back.
"""

from __future__ import annotations

import logging
import os
import sys
from collections import deque
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import FigmaMcpError
from .models import (
    DownloadResult,
    RecoveryEntry,
    RecoveryReport,
    VerificationRecord,
    WorkspaceEnforcement,
)
from .mover import MoveResult, move_into_place
from .naming import FilenameDeduplicator
from .paths import PathGuard, is_windows
from .resolver import DEFAULT_ASSET_DIR, PathResolver, clean_input, ensure_directory
from .utils import format_size
from .workspace import FALLBACK_WORKSPACE_NAME

logger = logging.getLogger("figma_mcp")

MAX_SEARCH_DEPTH = 3
SKIPPED_DIRECTORIES = frozenset(
    {
        "node_modules",
        "__pycache__",
        ".git",
        "venv",
        ".venv",
        "site-packages",
        "dist",
        "build",
    }
)

Mover = Callable[[Path, Path], MoveResult]


def verify_assets(
    paths: Iterable[str], cwd: Optional[Path] = None
) -> Tuple[List[VerificationRecord], Dict[str, int]]:
    """Stat every expected path and summarize what is present."""
    base = Path(cwd) if cwd is not None else Path(os.getcwd())
    records = [_record_for(Path(path), base) for path in paths]
    found = sum(1 for record in records if record.exists)
    summary = {"total": len(records), "found": found, "missing": len(records) - found}
    return records, summary


def _record_for(path: Path, cwd: Path) -> VerificationRecord:
    try:
        stat = path.stat()
    except OSError:
        return VerificationRecord(path=str(path), exists=False)
    if not path.is_file():
        return VerificationRecord(path=str(path), exists=False)
    try:
        relative = str(path.relative_to(cwd))
    except ValueError:
        relative = str(path)
    return VerificationRecord(path=str(path), exists=True, size=stat.st_size, relative_path=relative)


def asset_search_locations(
    home: Path, cwd: Path, platform: Optional[str] = None
) -> List[Path]:
    """Directories where a stray download is most likely to end up, best first."""
    locations = [
        home,
        home / "figma-workspace",
        home / "figma-workspace" / "assets",
        home / FALLBACK_WORKSPACE_NAME / "assets",
        cwd,
        cwd.parent,
        cwd / "assets",
        cwd / DEFAULT_ASSET_DIR,
        home / "Downloads",
        home / "Desktop",
        home / "Documents",
    ]
    platform = platform or sys.platform
    if is_windows(platform):
        locations += [Path("C:\\temp"), Path("C:\\tmp")]
    elif platform == "darwin":
        locations += [Path("/tmp"), home / "Library" / "Application Support"]
    else:
        locations += [Path("/tmp"), Path("/assets"), Path("/figma-assets")]

    unique: List[Path] = []
    for location in locations:
        if location not in unique and location != location.parent:
            unique.append(location)
    return unique


def _non_empty_file(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def search_file_recursively(
    filename: str,
    roots: Sequence[Path],
    max_depth: int = MAX_SEARCH_DEPTH,
    skipped: Iterable[str] = SKIPPED_DIRECTORIES,
) -> Optional[Path]:
    """Breadth-first search for a non-empty ``filename`` under ``roots``.

    Depth 0 is the root itself; directories at ``max_depth`` are not opened.
    Hidden directories and entries in ``skipped`` are never descended into.
    """
    skipped = frozenset(skipped)
    for root in roots:
        queue = deque([(Path(root), 0)])
        while queue:
            directory, depth = queue.popleft()
            if depth >= max_depth:
                continue
            try:
                entries = sorted(directory.iterdir())
            except OSError:
                continue
            for entry in entries:
                if entry.name == filename and _non_empty_file(entry):
                    return entry
            for entry in entries:
                if entry.name.startswith(".") or entry.name in skipped:
                    continue
                try:
                    if entry.is_dir() and not entry.is_symlink():
                        queue.append((entry, depth + 1))
                except OSError:
                    continue
    return None


class RecoveryEngine:
    """Reconciles a batch of download results with what is actually on disk."""

    def __init__(
        self,
        search_locations: Optional[Sequence[Path]] = None,
        recursive_roots: Optional[Sequence[Path]] = None,
        max_depth: int = MAX_SEARCH_DEPTH,
        mover: Mover = move_into_place,
        home: Optional[Path] = None,
        cwd: Optional[Path] = None,
        guard: Optional[PathGuard] = None,
    ) -> None:
        self.home = Path(home) if home is not None else Path.home()
        self._cwd = Path(cwd) if cwd is not None else None
        self.guard = guard or PathGuard()
        self._search_locations = list(search_locations) if search_locations is not None else None
        self._recursive_roots = list(recursive_roots) if recursive_roots is not None else None
        self.max_depth = max_depth
        self.mover = mover

    @property
    def cwd(self) -> Path:
        return self._cwd if self._cwd is not None else Path(os.getcwd())

    def search_locations(self) -> List[Path]:
        if self._search_locations is not None:
            return self._search_locations
        return asset_search_locations(self.home, self.cwd, self.guard.platform)

    def recursive_roots(self) -> List[Path]:
        if self._recursive_roots is not None:
            return self._recursive_roots
        return [
            self.home / "figma-workspace",
            self.home / FALLBACK_WORKSPACE_NAME,
            self.home,
        ]

    def find_stray(self, filename: str, exclude: Optional[Path] = None) -> Optional[Path]:
        """Look for ``filename`` in the direct locations, then recursively."""
        for location in self.search_locations():
            if exclude is not None and location == exclude:
                continue
            candidate = location / filename
            if _non_empty_file(candidate):
                logger.info("Found %s at %s", filename, candidate)
                return candidate
        found = search_file_recursively(filename, self.recursive_roots(), self.max_depth)
        if found is not None and exclude is not None and found.parent == exclude:
            return None
        return found

    def _relocate(self, found: Path, expected: Path) -> MoveResult:
        try:
            ensure_directory(expected.parent, guard=self.guard)
        except FigmaMcpError as exc:
            return MoveResult(
                success=False, source=str(found), destination=str(expected), errors=[str(exc)]
            )
        return self.mover(found, expected)

    def verify_and_recover(
        self, results: List[DownloadResult], destination_dir: Path
    ) -> RecoveryReport:
        """Check every successful result and pull missing files back into place.

        Results are updated in place: recovered files get their new path, and
        files that cannot be located or moved are marked failed.
        """
        destination = Path(destination_dir)
        report = RecoveryReport()

        for result in results:
            if not result.success:
                continue
            report.checked += 1
            if not result.file_path:
                report.records.append(VerificationRecord(path="", exists=False))
                report.failed += 1
                result.success = False
                result.error = "Download reported success without a file path"
                continue

            expected = Path(result.file_path)
            record = _record_for(expected, self.cwd)
            report.records.append(record)
            if record.exists:
                report.in_place += 1
                continue

            logger.warning("Missing after download: %s", expected)
            found = self.find_stray(expected.name, exclude=destination)
            if found is None:
                report.failed += 1
                result.success = False
                result.error = f"File not found at {expected} or in any search location"
                logger.error("Could not locate missing file %s", expected.name)
                continue

            move = self._relocate(found, expected)
            entry = RecoveryEntry(
                node_id=result.node_id,
                node_name=result.node_name,
                old_path=str(found),
                new_path=str(expected),
                success=move.success,
                error=move.reason or None,
            )
            report.recovered.append(entry)
            if move.success:
                report.recovered_count += 1
                result.file_path = str(expected)
                record.exists = True
                record.size = move.size
                logger.info("Recovered %s: %s -> %s", expected.name, found, expected)
            else:
                report.failed += 1
                result.success = False
                result.error = f"Found at {found} but could not move it: {move.reason}"

        logger.info(
            "Verification: %d checked, %d in place, %d recovered, %d failed",
            report.checked,
            report.in_place,
            report.recovered_count,
            report.failed,
        )
        return report

    def enforce_workspace(
        self,
        results: List[DownloadResult],
        requested_path: str,
        resolver: PathResolver,
    ) -> WorkspaceEnforcement:
        """Move successful downloads into ``<workspace>/<basename(requested_path)>``."""
        workspace = resolver.workspace()
        flavour = self.guard.flavour
        cleaned = clean_input(requested_path or "").rstrip("/\\")
        basename = flavour.basename(cleaned) if cleaned else ""
        if basename in ("", ".", ".."):
            basename = DEFAULT_ASSET_DIR
        target_dir = Path(workspace.directory) / basename
        ensure_directory(target_dir, requested_path, guard=self.guard)
        names = FilenameDeduplicator(target_dir)

        enforcement = WorkspaceEnforcement(
            final_location=str(target_dir),
            workspace_source=workspace.source,
            confidence=workspace.confidence,
        )
        for result in results:
            if not result.success or not result.file_path:
                continue
            current = Path(result.file_path)
            target = target_dir / current.name
            if flavour.normpath(str(current)) == flavour.normpath(str(target)):
                enforcement.already_correct += 1
                continue

            if not current.exists():
                found = self.find_stray(current.name, exclude=target_dir)
                if found is None:
                    enforcement.failed += 1
                    enforcement.entries.append(
                        RecoveryEntry(
                            result.node_id,
                            result.node_name,
                            str(current),
                            str(target),
                            False,
                            "File not found for workspace enforcement",
                        )
                    )
                    continue
                current = found

            target = target_dir / names.claim(current.name)
            if target.name != current.name:
                logger.warning(
                    "%s already exists in %s, keeping this copy as %s",
                    current.name,
                    target_dir,
                    target.name,
                )
            move = self.mover(current, target)
            enforcement.entries.append(
                RecoveryEntry(
                    result.node_id,
                    result.node_name,
                    str(current),
                    str(target),
                    move.success,
                    move.reason or None,
                )
            )
            if move.success:
                enforcement.moved += 1
                result.file_path = str(target)
                logger.info("Moved %s into workspace (%s)", target.name, format_size(move.size or 0))
            else:
                enforcement.failed += 1

        logger.info(
            "Workspace enforcement: %d already correct, %d moved, %d failed -> %s",
            enforcement.already_correct,
            enforcement.moved,
            enforcement.failed,
            target_dir,
        )
        return enforcement
