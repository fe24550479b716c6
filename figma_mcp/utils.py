"""Utility helpers for Figma URLs, node IDs and human-readable sizes."""

from __future__ import annotations

from typing import Optional, Tuple
from urllib.parse import parse_qs, urlparse

from .errors import InvalidFigmaUrlError

FILE_KEY_SEGMENTS = ("file", "design", "proto")


def parse_figma_url(url: str) -> Tuple[str, Optional[str]]:
    """Extract ``(file_key, node_id)`` from a Figma share URL.

    The node ID is returned in the URL form (``1530-166``); use
    :func:`to_api_node_id` before sending it to the REST API.
    """
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidFigmaUrlError(f"Invalid Figma URL: {url}")
    if not parsed.netloc.endswith("figma.com"):
        raise InvalidFigmaUrlError(f"Not a Figma URL: {url}")

    parts = [part for part in parsed.path.split("/") if part]
    file_key = None
    for index, part in enumerate(parts[:-1]):
        if part in FILE_KEY_SEGMENTS:
            file_key = parts[index + 1]
            break
    if not file_key:
        raise InvalidFigmaUrlError(f"Could not find a file key in URL: {url}")

    node_values = parse_qs(parsed.query).get("node-id")
    node_id = node_values[0] if node_values else None
    return file_key, node_id


def to_api_node_id(node_id: str) -> str:
    """Convert the URL form ``1530-166`` to the API form ``1530:166``."""
    return node_id.replace("-", ":")


def format_size(size: int) -> str:
    return f"{size / 1024:.1f}KB"
