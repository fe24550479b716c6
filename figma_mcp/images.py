"""Image export, downloading and validation utilities."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from filetype import guess

from .api import IMAGE_FORMATS, FigmaApiClient, FigmaApiError
from .errors import FigmaMcpError
from .models import DownloadReport, DownloadResult, DownloadTask, ExportSetting
from .mover import move_into_place
from .naming import (
    FilenameDeduplicator,
    base_name_for,
    content_fingerprint,
    sanitize_node_name,
)
from .paths import PathGuard
from .recovery import RecoveryEngine
from .resolver import PathResolver, ensure_directory
from .utils import format_size

logger = logging.getLogger("figma_mcp")

REFERENCE_FILENAME = "reference.png"
EXPORT_SCAN_DEPTH = 10


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect the file type using filetype; returns a lowercase extension."""
    kind = guess(data)
    if kind is None:
        return None
    ext = kind.extension.lower()
    if ext == "jpeg":
        return "jpg"
    return ext


def check_payload(data: bytes, fmt: str, content_type: str = "") -> bool:
    """Warn when the downloaded bytes do not look like the requested format."""
    if fmt == "svg":
        head = data.lstrip()[:256].lower()
        matches = head.startswith(b"<svg") or head.startswith(b"<?xml")
        detected = "svg" if matches else None
    else:
        detected = detect_image_format(data)
        matches = detected == fmt
    if not matches:
        logger.warning(
            "Downloaded bytes look like %s, expected %s (Content-Type=%s)",
            detected or "unknown",
            fmt,
            content_type or "n/a",
        )
    return matches


def find_nodes_with_export_settings(root: Optional[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Depth-first list of nodes under ``root`` that carry export settings."""
    found: List[Mapping[str, Any]] = []

    def scan(node: Mapping[str, Any]) -> None:
        if node.get("exportSettings"):
            found.append(node)
        for child in node.get("children") or []:
            scan(child)

    if root:
        scan(root)
    return found


def collect_export_tasks(nodes: Iterable[Mapping[str, Any]]) -> List[DownloadTask]:
    """One task per (node, export setting) pair, including descendants."""
    tasks: List[DownloadTask] = []
    for root in nodes:
        for node in find_nodes_with_export_settings(root):
            for raw in node.get("exportSettings") or []:
                setting = ExportSetting.from_dict(raw)
                tasks.append(
                    DownloadTask(
                        node_id=str(node.get("id", "")),
                        node=dict(node),
                        format=setting.extension,
                        scale=setting.scale,
                        export_setting=setting,
                    )
                )
    return tasks


def group_export_tasks(
    tasks: Iterable[DownloadTask],
) -> "OrderedDict[Tuple[str, float], List[DownloadTask]]":
    """Group tasks so each (format, scale) pair needs one render call per batch."""
    groups: "OrderedDict[Tuple[str, float], List[DownloadTask]]" = OrderedDict()
    for task in tasks:
        groups.setdefault((task.format, task.scale), []).append(task)
    return groups


def _failed(task: DownloadTask, name: str, error: str, path: str = "") -> DownloadResult:
    return DownloadResult(
        node_id=task.node_id,
        node_name=name,
        file_path=path,
        success=False,
        error=error,
        export_setting=task.export_setting,
    )


class AssetDownloader:
    """Downloads rendered Figma nodes into a resolved local directory."""

    def __init__(
        self,
        client: FigmaApiClient,
        resolver: Optional[PathResolver] = None,
        recovery: Optional[RecoveryEngine] = None,
        guard: Optional[PathGuard] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.guard = guard or (resolver.guard if resolver is not None else PathGuard())
        self.resolver = resolver or PathResolver(guard=self.guard)
        self.recovery = recovery or RecoveryEngine(home=self.resolver.home, guard=self.guard)
        self.batch_size = batch_size or client.config.batch_size
        self.batch_delay = client.config.batch_delay if batch_delay is None else batch_delay
        self.sleep = sleep

    def _prepare_destination(self, local_path: str) -> Path:
        resolved = self.resolver.resolve(local_path)
        return ensure_directory(resolved.resolved, local_path, guard=self.guard)

    def _inside_workspace(self, destination: Path) -> bool:
        workspace = self.resolver.last_workspace
        if workspace is None:
            return True
        try:
            destination.relative_to(workspace.directory)
        except ValueError:
            return False
        return True

    def _run_task(self, task: DownloadTask, url: str, destination: Path, name: str) -> DownloadResult:
        """Fetch into a working file next to the target, then move it into place."""
        final_path = destination / task.target_filename
        task.write_path = destination / f".{task.target_filename}.part"
        try:
            data, content_type = self.client.download_bytes(url)
            if not data:
                raise FigmaApiError("Empty response body")
            check_payload(data, task.format, content_type)
            task.write_path.write_bytes(data)
        except (FigmaApiError, OSError) as exc:
            logger.warning("Failed to download %s: %s", task.target_filename, exc)
            try:
                task.write_path.unlink()
            except OSError:
                pass
            return _failed(task, name, f"Download failed: {exc}", str(final_path))

        move = move_into_place(task.write_path, final_path)
        if not move.success:
            logger.error("Could not place %s: %s", final_path, move.reason)
            return _failed(task, name, f"Move failed: {move.reason}", str(task.write_path))

        logger.info("Downloaded %s (%s)", task.target_filename, format_size(len(data)))
        return DownloadResult(
            node_id=task.node_id,
            node_name=name,
            file_path=str(final_path),
            success=True,
            export_setting=task.export_setting,
        )

    def download_images(
        self,
        file_key: str,
        node_ids: Sequence[str],
        local_path: str,
        scale: Optional[float] = None,
        format: Optional[str] = None,
        enforce_workspace: bool = True,
    ) -> DownloadReport:
        """Render ``node_ids`` in one format and scale and save them under ``local_path``."""
        if not file_key:
            raise FigmaApiError("File key is required")
        if not node_ids:
            raise FigmaApiError("At least one node ID is required")
        fmt = (format or "png").lower()
        if fmt not in IMAGE_FORMATS:
            raise FigmaApiError(f"Unsupported image format: {fmt}")
        scale = 1.0 if fmt == "svg" else float(scale or 1)

        destination = self._prepare_destination(local_path)
        report = DownloadReport(destination=str(destination))
        names = FilenameDeduplicator(destination)

        try:
            nodes = self.client.get_file_nodes(
                file_key, list(node_ids), depth=1, use_absolute_bounds=True
            ).get("nodes") or {}
            urls = self.client.get_images(
                file_key, list(node_ids), fmt=fmt, scale=scale, use_absolute_bounds=True
            )
        except FigmaApiError as exc:
            logger.error("Could not fetch node data for %s: %s", file_key, exc)
            report.results = [
                DownloadResult(node_id, "Unknown", "", False, f"Failed to fetch node data: {exc}")
                for node_id in node_ids
            ]
            return report

        for node_id in node_ids:
            document = (nodes.get(node_id) or {}).get("document")
            task = DownloadTask(node_id=node_id, node=document or {}, format=fmt, scale=scale)
            if not document:
                report.results.append(_failed(task, "Unknown", f"Node {node_id} not found"))
                continue
            name = sanitize_node_name(document.get("name") or f"node-{node_id}")
            url = urls.get(node_id)
            if not url:
                report.results.append(_failed(task, name, "No image URL returned from Figma API"))
                continue
            task.target_filename = names.unique_name(
                document,
                base_name_for(name, scale),
                fmt,
                content_fingerprint(document, fmt, scale),
            )
            report.results.append(self._run_task(task, url, destination, name))

        logger.info(
            "Download completed: %d/%d successful", report.successful, len(report.results)
        )

        verify_dir = destination
        if report.successful and enforce_workspace and not self._inside_workspace(destination):
            try:
                report.enforcement = self.recovery.enforce_workspace(
                    report.results, local_path, self.resolver
                )
                verify_dir = Path(report.enforcement.final_location)
            except FigmaMcpError as exc:
                logger.warning("Workspace enforcement failed, verifying in place: %s", exc)

        report.recovery = self.recovery.verify_and_recover(report.results, verify_dir)
        return report

    def download_images_with_export_settings(
        self,
        file_key: str,
        root_nodes: Sequence[Mapping[str, Any]],
        local_path: str,
    ) -> DownloadReport:
        """Download every export setting found on ``root_nodes`` and their descendants."""
        if not file_key:
            raise FigmaApiError("File key is required")

        destination = self._prepare_destination(local_path)
        report = DownloadReport(destination=str(destination), skipped=0)

        tasks = collect_export_tasks(root_nodes)
        supported = [task for task in tasks if task.format in IMAGE_FORMATS]
        report.skipped = len(tasks) - len(supported)
        if not supported:
            logger.warning(
                "No nodes with export settings found in %d root nodes; add export "
                "settings in Figma's Export panel",
                len(root_nodes),
            )
            return report

        names = FilenameDeduplicator(destination)
        groups = group_export_tasks(supported)
        logger.info("Grouped %d export tasks into %d format/scale groups", len(supported), len(groups))

        for (fmt, scale), items in groups.items():
            for start in range(0, len(items), self.batch_size):
                batch = items[start:start + self.batch_size]
                node_ids = list(OrderedDict.fromkeys(task.node_id for task in batch))
                try:
                    urls = self.client.get_images(
                        file_key, node_ids, fmt=fmt, scale=scale, use_absolute_bounds=True
                    )
                except FigmaApiError as exc:
                    logger.error("Batch failed for %s@%gx: %s", fmt, scale, exc)
                    for task in batch:
                        name = sanitize_node_name(task.node.get("name", ""))
                        report.results.append(
                            _failed(task, name, f"Batch API call failed: {exc}")
                        )
                else:
                    for task in batch:
                        report.results.append(self._export_task(task, urls, destination, names))

                if start + self.batch_size < len(items):
                    self.sleep(self.batch_delay)

        logger.info(
            "Export download completed: %d/%d successful", report.successful, len(report.results)
        )
        report.recovery = self.recovery.verify_and_recover(report.results, destination)
        return report

    def _export_task(
        self,
        task: DownloadTask,
        urls: Mapping[str, Optional[str]],
        destination: Path,
        names: FilenameDeduplicator,
    ) -> DownloadResult:
        name = sanitize_node_name(task.node.get("name", ""))
        url = urls.get(task.node_id)
        if not url:
            return _failed(task, name, "No image URL returned from Figma API")
        setting = task.export_setting or ExportSetting(format=task.format)
        task.target_filename = names.unique_name(
            task.node,
            base_name_for(name, task.scale, setting.suffix),
            task.format,
            content_fingerprint(
                task.node, task.format, task.scale, setting.constraint_type, setting.suffix
            ),
        )
        return self._run_task(task, url, destination, name)

    def create_reference_image(
        self, file_key: str, node_ids: Sequence[str], local_path: str
    ) -> Dict[str, Any]:
        """Render the selection (or the first page) at 1x as ``reference.png``."""
        reference_id: Optional[str] = None
        context_type = "document"
        context_name = "Visual Context"

        if node_ids:
            try:
                document = self.client.get_node_documents(file_key, [node_ids[0]], depth=2).get(
                    node_ids[0]
                )
            except FigmaApiError as exc:
                logger.warning("Could not load selected node %s: %s", node_ids[0], exc)
                document = None
            if document:
                reference_id = document.get("id") or node_ids[0]
                context_type = "page" if document.get("type") == "CANVAS" else "frame"
                context_name = document.get("name") or context_name

        if reference_id is None:
            try:
                pages = (self.client.get_file(file_key, depth=2).get("document") or {}).get(
                    "children"
                ) or []
            except FigmaApiError as exc:
                return {"success": False, "contextType": "document", "error": str(exc)}
            if pages:
                reference_id = pages[0].get("id")
                context_type = "page"
                context_name = pages[0].get("name") or context_name

        if not reference_id:
            return {
                "success": False,
                "contextType": "document",
                "error": "Could not determine reference context",
            }

        rendered = self.download_images(
            file_key, [reference_id], local_path, scale=1, format="png", enforce_workspace=False
        )
        first = rendered.results[0] if rendered.results else None
        if first is None or not first.success:
            return {
                "success": False,
                "contextType": context_type,
                "contextName": context_name,
                "error": first.error if first else "Failed to download reference image",
            }

        target = Path(first.file_path).parent / REFERENCE_FILENAME
        move = move_into_place(first.file_path, target)
        if not move.success:
            return {
                "success": False,
                "contextType": context_type,
                "contextName": context_name,
                "filePath": first.file_path,
                "error": move.reason,
            }
        return {
            "success": True,
            "filePath": str(target),
            "contextType": context_type,
            "contextName": context_name,
        }
