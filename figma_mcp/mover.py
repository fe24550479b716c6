"""Move files between directories that may live on different filesystems.

Strategies are tried in order until one succeeds. A copy-based strategy only
removes the source after the destination has been stat'ed and its size
matches, so an interrupted move leaves two copies rather than none.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from .utils import format_size

logger = logging.getLogger("figma_mcp")

STREAM_CHUNK_SIZE = 1024 * 1024

PathArg = Union[str, "os.PathLike[str]"]
MoveStrategy = Callable[[Path, Path, int], None]


class MoveVerificationError(OSError):
    """Raised when a copied file does not match the source size."""


@dataclass
class MoveResult:
    """Outcome of :func:`move_into_place`."""

    success: bool
    source: str
    destination: str
    method: Optional[str] = None
    size: Optional[int] = None
    source_removed: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        return "; ".join(self.errors)


def _verify_size(destination: Path, expected: int) -> None:
    actual = destination.stat().st_size
    if actual != expected:
        raise MoveVerificationError(
            f"Copy verification failed: size mismatch ({expected} vs {actual})"
        )


def _discard_partial(destination: Path, source: Path) -> None:
    try:
        if destination.exists() and not os.path.samefile(destination, source):
            destination.unlink()
    except OSError as exc:
        logger.warning("Could not remove partial copy %s: %s", destination, exc)


def _remove_source(source: Path) -> None:
    """Unlink a source whose copy is already verified; failure keeps both copies."""
    try:
        source.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Copied %s but could not remove the source: %s", source, exc)


def atomic_rename(source: Path, destination: Path, expected_size: int) -> None:
    """Single rename; only works within one filesystem."""
    os.replace(source, destination)


def copy_verify_delete(source: Path, destination: Path, expected_size: int) -> None:
    try:
        shutil.copyfile(source, destination)
        _verify_size(destination, expected_size)
    except OSError:
        _discard_partial(destination, source)
        raise
    _remove_source(source)


def stream_verify_delete(source: Path, destination: Path, expected_size: int) -> None:
    try:
        with source.open("rb") as reader, destination.open("wb") as writer:
            shutil.copyfileobj(reader, writer, STREAM_CHUNK_SIZE)
            writer.flush()
            os.fsync(writer.fileno())
        _verify_size(destination, expected_size)
    except OSError:
        _discard_partial(destination, source)
        raise
    _remove_source(source)


DEFAULT_STRATEGIES: Sequence[MoveStrategy] = (
    atomic_rename,
    copy_verify_delete,
    stream_verify_delete,
)


def _same_file(source: Path, destination: Path) -> bool:
    try:
        return destination.exists() and os.path.samefile(source, destination)
    except OSError:
        return False


def move_into_place(
    source: PathArg,
    destination: PathArg,
    strategies: Sequence[MoveStrategy] = DEFAULT_STRATEGIES,
) -> MoveResult:
    """Relocate ``source`` to ``destination`` and report how it went."""
    src = Path(source)
    dst = Path(destination)
    result = MoveResult(success=False, source=str(src), destination=str(dst))

    try:
        size = src.stat().st_size
    except OSError as exc:
        result.errors.append(f"Source file does not exist: {src} ({exc})")
        return result
    result.size = size

    if _same_file(src, dst):
        result.success = True
        result.method = "in place"
        return result

    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning("Could not create %s: %s", dst.parent, exc)

    for strategy in strategies:
        name = strategy.__name__
        try:
            strategy(src, dst, size)
        except OSError as exc:
            logger.debug("Move via %s failed for %s: %s", name, src.name, exc)
            result.errors.append(f"{name}: {exc}")
            continue

        result.success = True
        result.method = name
        result.source_removed = not src.exists()
        if not result.source_removed:
            logger.warning("Moved %s but the source copy is still present", src)
        logger.debug("Moved %s via %s (%s)", src.name, name, format_size(size))
        return result

    logger.error("All move strategies failed for %s: %s", src, result.reason)
    return result
