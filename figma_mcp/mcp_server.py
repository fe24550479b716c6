"""MCP server exposing Figma asset download tools."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from .api import FigmaApiClient, FigmaApiError
from .config import FigmaConfig
from .images import EXPORT_SCAN_DEPTH, AssetDownloader
from .resolver import PathResolver
from .utils import parse_figma_url, to_api_node_id

logger = logging.getLogger("figma_mcp.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="figma-mcp")

_downloader: Optional[AssetDownloader] = None


def get_downloader() -> AssetDownloader:
    """Build the shared downloader on first use so the server starts without a key."""
    global _downloader
    if _downloader is None:
        client = FigmaApiClient(FigmaConfig.from_env())
        _downloader = AssetDownloader(client)
    return _downloader


def _target(url: Optional[str], file_key: Optional[str], node_id: Optional[str]):
    if url:
        parsed_key, parsed_node = parse_figma_url(url)
        return parsed_key, node_id or parsed_node
    if not file_key:
        raise FigmaApiError("Either url or file_key is required")
    return file_key, node_id


def _root_nodes(
    downloader: AssetDownloader, file_key: str, node_id: Optional[str]
) -> List[Dict[str, Any]]:
    client = downloader.client
    if node_id:
        documents = client.get_node_documents(file_key, [node_id], depth=EXPORT_SCAN_DEPTH)
        document = documents.get(node_id)
        if not document:
            raise FigmaApiError(f"Node {node_id} not found in file {file_key}")
        return [document]
    document = client.get_file(file_key).get("document") or {}
    return list(document.get("children") or [])


@mcp.tool()
async def download_design_assets(
    local_path: str,
    url: Optional[str] = None,
    file_key: Optional[str] = None,
    node_id: Optional[str] = None,
) -> str:
    """Download every asset with export settings plus a reference.png of the selection."""

    downloader = get_downloader()
    key, raw_node = _target(url, file_key, node_id)
    api_node = to_api_node_id(raw_node) if raw_node else None

    roots = _root_nodes(downloader, key, api_node)
    report = downloader.download_images_with_export_settings(key, roots, local_path)
    reference = downloader.create_reference_image(
        key, [api_node] if api_node else [], local_path
    )
    payload = report.to_dict()
    payload["referenceImage"] = reference
    return json.dumps(payload, indent=2)


@mcp.tool()
async def download_images(
    file_key: str,
    node_ids: List[str],
    local_path: str,
    scale: float = 1,
    format: str = "png",
) -> str:
    """Render specific nodes in one format and scale and save them locally."""

    downloader = get_downloader()
    report = downloader.download_images(
        file_key,
        [to_api_node_id(node_id) for node_id in node_ids],
        local_path,
        scale=scale,
        format=format,
    )
    return json.dumps(report.to_dict(), indent=2)


@mcp.tool()
async def locate_workspace(local_path: Optional[str] = None) -> str:
    """Report the detected workspace and, optionally, where ``local_path`` resolves."""

    resolver = PathResolver()
    payload: Dict[str, Any] = {
        "workspace": resolver.workspace().to_dict(),
        "candidates": [candidate.to_dict() for candidate in resolver.locator.candidates()],
    }
    if local_path is not None:
        payload["resolvedPath"] = str(resolver.resolve(local_path).resolved)
    return json.dumps(payload, indent=2)


def main() -> None:
    """Entry point for running the MCP server."""
    load_dotenv()
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
