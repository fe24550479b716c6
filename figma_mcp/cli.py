"""Command-line entry point for the Figma asset downloader."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Iterable, Sequence

from dotenv import load_dotenv

from .api import FigmaApiClient
from .config import FigmaConfig
from .errors import FigmaMcpError
from .images import EXPORT_SCAN_DEPTH, AssetDownloader
from .resolver import PathResolver, ensure_directory
from .utils import parse_figma_url, to_api_node_id

logger = logging.getLogger("figma_mcp.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("download", *argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def _add_download_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("target", help="Figma URL or file key")
    parser.add_argument(
        "--output",
        default="./figma-assets",
        help="Destination directory, relative paths resolve against the workspace",
    )
    parser.add_argument(
        "--node",
        dest="nodes",
        action="append",
        default=[],
        help="Node ID to render (repeatable); defaults to the URL's node-id",
    )
    parser.add_argument(
        "--format",
        default="png",
        choices=("png", "jpg", "svg", "pdf"),
        help="Image format for explicit node downloads",
    )
    parser.add_argument(
        "--scale",
        type=float,
        default=1.0,
        help="Render scale for explicit node downloads (ignored for SVG)",
    )
    parser.add_argument(
        "--export-settings",
        action="store_true",
        help="Download every export setting defined on the target instead of --node renders",
    )
    parser.add_argument(
        "--figma-api-key",
        default=None,
        help="Figma personal access token (defaults to FIGMA_API_KEY)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Download Figma assets into the caller's workspace.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Run the MCP server over stdio")

    download_parser = subparsers.add_parser(
        "download", help="Download rendered nodes or export-setting assets"
    )
    _add_download_arguments(download_parser)

    workspace_parser = subparsers.add_parser(
        "workspace", help="Show the detected workspace and all candidates"
    )
    workspace_parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    resolve_parser = subparsers.add_parser(
        "resolve", help="Show where a destination path would resolve"
    )
    resolve_parser.add_argument("path", help="Destination path to resolve")
    resolve_parser.add_argument(
        "--create", action="store_true", help="Also create the directory and test writes"
    )
    resolve_parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def _run_download(args: argparse.Namespace) -> int:
    _configure_logging(args.verbose)
    if args.target.startswith("http"):
        file_key, url_node = parse_figma_url(args.target)
    else:
        file_key, url_node = args.target, None
    node_ids = [to_api_node_id(node) for node in (args.nodes or ([url_node] if url_node else []))]

    client = FigmaApiClient(FigmaConfig.from_env(api_key=args.figma_api_key))
    downloader = AssetDownloader(client)
    overall_start = time.perf_counter()
    try:
        if args.export_settings or not node_ids:
            if node_ids:
                documents = client.get_node_documents(file_key, node_ids, depth=EXPORT_SCAN_DEPTH)
                roots = [doc for doc in documents.values() if doc]
            else:
                roots = (client.get_file(file_key).get("document") or {}).get("children") or []
            report = downloader.download_images_with_export_settings(
                file_key, roots, args.output
            )
        else:
            report = downloader.download_images(
                file_key, node_ids, args.output, scale=args.scale, format=args.format
            )
    finally:
        client.close()
    total_elapsed = time.perf_counter() - overall_start

    summary = report.summary()
    logger.info(
        "Finished in %.2fs (%d/%d succeeded, %d failed) -> %s",
        total_elapsed,
        summary["successful"],
        summary["total"],
        summary["failed"],
        report.destination,
    )
    for result in report.results:
        if not result.success:
            logger.error("%s (%s): %s", result.node_name, result.node_id, result.error)
    sys.stdout.write(json.dumps(report.to_dict(), indent=2) + "\n")
    return 0 if summary["failed"] == 0 else 1


def _run_workspace(args: argparse.Namespace) -> int:
    _configure_logging(args.verbose)
    resolver = PathResolver()
    payload = {
        "workspace": resolver.workspace().to_dict(),
        "candidates": [candidate.to_dict() for candidate in resolver.locator.candidates()],
    }
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    return 0


def _run_resolve(args: argparse.Namespace) -> int:
    _configure_logging(args.verbose)
    resolver = PathResolver()
    resolved = resolver.resolve(args.path)
    if args.create:
        ensure_directory(resolved.resolved, args.path, guard=resolver.guard)
    sys.stdout.write(f"{resolved.resolved}\n")
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    if args.command == "serve":
        from .mcp_server import main as serve

        serve()
        return

    handlers = {
        "download": _run_download,
        "workspace": _run_workspace,
        "resolve": _run_resolve,
    }
    try:
        code = handlers[args.command](args)
    except FigmaMcpError as exc:
        logger.error("%s", exc)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
