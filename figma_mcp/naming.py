"""Collision-free filenames for exported assets."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Set

logger = logging.getLogger("figma_mcp")

ILLEGAL_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|]')
WHITESPACE = re.compile(r"\s+")
FINGERPRINT_STRIP = re.compile(r"[^a-zA-Z0-9]")

# Reusing a file for visually identical nodes overwrote unrelated assets in
# practice, so every node gets its own file.
CONTENT_REUSE_ENABLED = False


def sanitize_node_name(name: str, fallback: str = "node") -> str:
    """Replace characters that are illegal in filenames and collapse whitespace."""
    cleaned = ILLEGAL_FILENAME_CHARS.sub("-", name or "")
    cleaned = WHITESPACE.sub(" ", cleaned).strip()
    return cleaned or fallback


def scale_label(scale: float) -> str:
    value = float(scale)
    if value.is_integer():
        return f"x{int(value)}"
    return f"x{value:g}"


def base_name_for(name: str, scale: float, suffix: Optional[str] = None) -> str:
    """An explicit export suffix wins; otherwise the scale is part of the name."""
    if suffix:
        return f"{name}{suffix}"
    return f"{name}-{scale_label(scale)}"


def content_fingerprint(
    node: Mapping[str, Any],
    fmt: str,
    scale: float,
    constraint: Optional[str] = None,
    suffix: Optional[str] = None,
) -> str:
    """Summarize the visually relevant properties of ``node``."""
    box = node.get("absoluteBoundingBox") or {}
    size = ""
    if box:
        size = f"{round(box.get('width', 0))}x{round(box.get('height', 0))}"
    components = [
        node.get("type", ""),
        node.get("id", ""),
        node.get("name", ""),
        fmt,
        constraint or "none",
        scale,
        suffix or "",
        json.dumps(node.get("fills") or [], sort_keys=True),
        json.dumps(node.get("strokes") or [], sort_keys=True),
        json.dumps(node.get("effects") or [], sort_keys=True),
        node.get("cornerRadius") or 0,
        node.get("strokeWeight") or 0,
        node.get("characters", "") if node.get("type") == "TEXT" else "",
        size,
        node.get("blendMode") or "",
        node.get("opacity", 1),
        json.dumps(node.get("strokeDashes") or []),
    ]
    joined = "|".join(str(part) for part in components)
    return FINGERPRINT_STRIP.sub("", joined)[:32]


class FilenameDeduplicator:
    """Hands out unique filenames within one destination directory for one batch."""

    def __init__(self, directory: Optional[Path] = None) -> None:
        self.used: Set[str] = set()
        self.counters: Dict[str, int] = {}
        self.fingerprints: Dict[str, str] = {}
        if directory is not None:
            self.seed_from(directory)

    def seed_from(self, directory: Path) -> None:
        try:
            existing = [entry.name for entry in Path(directory).iterdir()]
        except OSError:
            logger.debug("Destination %s is empty or unreadable", directory)
            return
        self.used.update(existing)
        if existing:
            logger.debug("Found %d existing files in %s", len(existing), directory)

    def is_reusable(self, node: Mapping[str, Any], name: str) -> bool:
        return CONTENT_REUSE_ENABLED

    def unique_name(
        self,
        node: Mapping[str, Any],
        base_name: str,
        extension: str,
        fingerprint: Optional[str] = None,
    ) -> str:
        candidate = f"{base_name}.{extension}"

        if fingerprint and self.is_reusable(node, base_name):
            existing = self.fingerprints.get(fingerprint)
            if existing:
                logger.debug("Reusing %s for identical content of %s", existing, base_name)
                return existing
            self.fingerprints[fingerprint] = candidate

        return self.claim(candidate)

    def claim(self, filename: str) -> str:
        """Reserve ``filename``, or the first free ``<stem>-<n><suffix>`` after it."""
        if filename not in self.used:
            self.used.add(filename)
            return filename

        stem, suffix = Path(filename).stem, Path(filename).suffix
        counter = self.counters.get(stem, 1) + 1
        while f"{stem}-{counter}{suffix}" in self.used:
            counter += 1
        unique = f"{stem}-{counter}{suffix}"
        self.counters[stem] = counter
        self.used.add(unique)
        logger.debug("Filename collision resolved: %s -> %s", filename, unique)
        return unique
