"""Tests for figma_mcp.images."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from figma_mcp.api import FigmaApiError
from figma_mcp.config import FigmaConfig
from figma_mcp.images import (
    AssetDownloader,
    check_payload,
    collect_export_tasks,
    detect_image_format,
    find_nodes_with_export_settings,
    group_export_tasks,
)
from figma_mcp.models import Confidence, WorkspaceCandidate
from figma_mcp.recovery import RecoveryEngine
from figma_mcp.resolver import PathResolver

PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR" + b"\x00" * 32
SVG_BYTES = b'<svg xmlns="http://www.w3.org/2000/svg" width="24" height="24"></svg>'


def node(node_id, name, export_settings=None, children=None):
    data = {"id": node_id, "name": name, "type": "FRAME"}
    if export_settings is not None:
        data["exportSettings"] = export_settings
    if children is not None:
        data["children"] = children
    return data


def png_setting(scale=1, suffix=""):
    return {"format": "PNG", "suffix": suffix, "constraint": {"type": "SCALE", "value": scale}}


SVG_SETTING = {"format": "SVG", "suffix": "", "constraint": {"type": "SCALE", "value": 1}}


@pytest.fixture
def client():
    mock = MagicMock()
    mock.config = FigmaConfig(api_key="test-token")
    mock.download_bytes.return_value = (PNG_BYTES, "image/png")
    return mock


@pytest.fixture
def recovery(home, guard):
    return RecoveryEngine(search_locations=[], recursive_roots=[], home=home, cwd=home, guard=guard)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def downloader(client, resolver, recovery, guard, sleeps):
    return AssetDownloader(
        client,
        resolver=resolver,
        recovery=recovery,
        guard=guard,
        batch_size=5,
        batch_delay=0.25,
        sleep=sleeps.append,
    )


def serve_nodes(client, ids, name="icon"):
    client.get_file_nodes.return_value = {
        "nodes": {node_id: {"document": node(node_id, name)} for node_id in ids}
    }
    client.get_images.return_value = {node_id: f"https://cdn/{node_id}" for node_id in ids}


# ---------------------------------------------------------------------------
# Byte sniffing
# ---------------------------------------------------------------------------


class TestPayloadChecks:
    def test_detects_png(self):
        assert detect_image_format(PNG_BYTES) == "png"
        assert check_payload(PNG_BYTES, "png", "image/png")

    def test_unknown_bytes(self):
        assert detect_image_format(b"hello") is None

    def test_svg_by_markup(self):
        assert check_payload(b"  " + SVG_BYTES, "svg")
        assert not check_payload(PNG_BYTES, "svg")

    def test_mismatch_only_warns(self, caplog):
        assert not check_payload(PNG_BYTES, "jpg", "image/jpeg")
        assert "expected jpg" in caplog.text


# ---------------------------------------------------------------------------
# Export-setting discovery
# ---------------------------------------------------------------------------


class TestExportTasks:
    def test_finds_nested_nodes(self):
        tree = node(
            "0:1",
            "Page",
            children=[
                node("1:1", "Logo", [SVG_SETTING]),
                node("1:2", "Card", children=[node("2:1", "Avatar", [png_setting(2)])]),
            ],
        )
        found = find_nodes_with_export_settings(tree)
        assert [item["id"] for item in found] == ["1:1", "2:1"]
        assert find_nodes_with_export_settings(None) == []

    def test_one_task_per_setting(self):
        tasks = collect_export_tasks(
            [node("1:1", "Hero", [png_setting(1), png_setting(2, "@2x"), SVG_SETTING])]
        )
        assert [(t.format, t.scale) for t in tasks] == [("png", 1.0), ("png", 2.0), ("svg", 1.0)]
        assert tasks[1].export_setting.suffix == "@2x"

    def test_svg_is_always_one_x(self):
        setting = {"format": "SVG", "constraint": {"type": "SCALE", "value": 3}}
        assert collect_export_tasks([node("1:1", "Logo", [setting])])[0].scale == 1.0

    def test_width_constraint_renders_at_one_x(self):
        setting = {"format": "PNG", "constraint": {"type": "WIDTH", "value": 300}}
        assert collect_export_tasks([node("1:1", "Logo", [setting])])[0].scale == 1.0

    def test_grouping_preserves_order(self):
        tasks = collect_export_tasks(
            [
                node("1:1", "A", [png_setting(2)]),
                node("1:2", "B", [SVG_SETTING]),
                node("1:3", "C", [png_setting(2)]),
            ]
        )
        groups = group_export_tasks(tasks)
        assert list(groups) == [("png", 2.0), ("svg", 1.0)]
        assert [t.node_id for t in groups[("png", 2.0)]] == ["1:1", "1:3"]


# ---------------------------------------------------------------------------
# Direct downloads
# ---------------------------------------------------------------------------


class TestDownloadImages:
    def test_downloads_every_node(self, downloader, client, tmp_path):
        ids = ["1:1", "1:2"]
        serve_nodes(client, ids)
        out = tmp_path / "out"

        report = downloader.download_images("KEY", ids, str(out))

        assert report.summary() == {"total": 2, "successful": 2, "failed": 0}
        assert sorted(p.name for p in out.iterdir()) == ["icon-x1-2.png", "icon-x1.png"]
        assert (out / "icon-x1.png").read_bytes() == PNG_BYTES
        assert report.recovery.state == "reconciled"

    def test_partial_failure_is_isolated(self, downloader, client, tmp_path):
        ids = [f"1:{index}" for index in range(1, 6)]
        serve_nodes(client, ids)

        def fetch(url):
            if url.endswith("1:2"):
                raise FigmaApiError("Download failed: 500 Server Error")
            return PNG_BYTES, "image/png"

        client.download_bytes.side_effect = fetch
        out = tmp_path / "out"

        report = downloader.download_images("KEY", ids, str(out))

        summary = report.summary()
        assert summary["total"] == 5
        assert summary["successful"] + summary["failed"] == summary["total"]
        assert summary["failed"] == 1
        failed = [r for r in report.results if not r.success]
        assert [r.node_id for r in failed] == ["1:2"]
        assert "Download failed" in failed[0].error
        assert len(list(out.glob("*.png"))) == 4
        assert not list(out.glob(".*.part"))

    def test_svg_forces_scale_one(self, downloader, client, tmp_path):
        serve_nodes(client, ["1:1"], name="logo")
        client.download_bytes.return_value = (SVG_BYTES, "image/svg+xml")

        report = downloader.download_images("KEY", ["1:1"], str(tmp_path / "out"), scale=3, format="svg")

        assert client.get_images.call_args[1]["scale"] == 1.0
        assert Path(report.results[0].file_path).name == "logo-x1.svg"

    def test_metadata_failure_fails_all(self, downloader, client, tmp_path):
        client.get_file_nodes.side_effect = FigmaApiError("Figma API rate limit exceeded")

        report = downloader.download_images("KEY", ["1:1", "1:2"], str(tmp_path / "out"))

        assert report.summary() == {"total": 2, "successful": 0, "failed": 2}
        assert all("Failed to fetch node data" in r.error for r in report.results)

    def test_missing_node_and_missing_url(self, downloader, client, tmp_path):
        serve_nodes(client, ["1:1", "1:2"])
        client.get_images.return_value = {"1:1": None, "1:2": "https://cdn/1:2", "1:3": "x"}

        report = downloader.download_images("KEY", ["1:1", "1:2", "1:3"], str(tmp_path / "out"))

        errors = {r.node_id: r.error for r in report.results}
        assert errors["1:1"] == "No image URL returned from Figma API"
        assert errors["1:2"] is None
        assert errors["1:3"] == "Node 1:3 not found"

    def test_empty_body_is_a_failure(self, downloader, client, tmp_path):
        serve_nodes(client, ["1:1"])
        client.download_bytes.return_value = (b"", "image/png")

        report = downloader.download_images("KEY", ["1:1"], str(tmp_path / "out"))

        assert not report.results[0].success
        assert "Empty response body" in report.results[0].error

    def test_existing_files_are_not_overwritten(self, downloader, client, tmp_path):
        out = tmp_path / "out"
        out.mkdir()
        (out / "icon-x1.png").write_bytes(b"keep")
        serve_nodes(client, ["1:1"])

        report = downloader.download_images("KEY", ["1:1"], str(out))

        assert (out / "icon-x1.png").read_bytes() == b"keep"
        assert Path(report.results[0].file_path).name == "icon-x1-2.png"

    def test_relative_path_lands_in_workspace(self, downloader, client, project):
        serve_nodes(client, ["1:1"])

        report = downloader.download_images("KEY", ["1:1"], "./assets")

        assert (project / "assets" / "icon-x1.png").exists()
        assert report.enforcement is None

    def test_path_outside_workspace_is_enforced(self, client, recovery, home, guard, tmp_path):
        workspace = tmp_path / "ws"
        workspace.mkdir()
        locator = MagicMock()
        locator.locate.return_value = WorkspaceCandidate(workspace, Confidence.HIGH, "Stub")
        resolver = PathResolver(locator=locator, home=home, guard=guard)
        downloader = AssetDownloader(client, resolver=resolver, recovery=recovery, guard=guard)
        serve_nodes(client, ["1:1"])

        report = downloader.download_images("KEY", ["1:1"], "../loose")

        assert report.enforcement.moved == 1
        assert (workspace / "loose" / "icon-x1.png").exists()
        assert report.results[0].file_path == str(workspace / "loose" / "icon-x1.png")

    @pytest.mark.parametrize("file_key, ids", [("", ["1:1"]), ("KEY", [])])
    def test_invalid_arguments(self, downloader, file_key, ids, tmp_path):
        with pytest.raises(FigmaApiError):
            downloader.download_images(file_key, ids, str(tmp_path))

    def test_report_dict(self, downloader, client, tmp_path):
        serve_nodes(client, ["1:1"])
        data = downloader.download_images("KEY", ["1:1"], str(tmp_path / "out")).to_dict()
        assert data["summary"]["successful"] == 1
        assert data["downloaded"][0]["nodeId"] == "1:1"
        assert data["verification"]["state"] == "reconciled"


# ---------------------------------------------------------------------------
# Export-setting downloads
# ---------------------------------------------------------------------------


class TestDownloadWithExportSettings:
    def test_batches_and_throttles(self, downloader, client, tmp_path, sleeps):
        children = [node(f"2:{index}", f"Icon {index}", [png_setting(2)]) for index in range(12)]
        children.append(node("3:1", "Logo", [SVG_SETTING]))
        root = node("0:1", "Page", children=children)

        def render(file_key, node_ids, fmt="png", scale=None, **kwargs):
            return {node_id: f"https://cdn/{node_id}" for node_id in node_ids}

        client.get_images.side_effect = render

        report = downloader.download_images_with_export_settings("KEY", [root], str(tmp_path / "out"))

        assert report.summary() == {"total": 13, "successful": 13, "failed": 0, "skipped": 0}
        assert client.get_images.call_count == 4
        assert sleeps == [0.25, 0.25]
        assert (tmp_path / "out" / "Icon 0-x2.png").exists()
        assert (tmp_path / "out" / "Logo-x1.svg").exists()

    def test_failed_batch_only_fails_its_items(self, downloader, client, tmp_path):
        root = node(
            "0:1",
            "Page",
            children=[node("1:1", "Hero", [png_setting(1)]), node("1:2", "Logo", [SVG_SETTING])],
        )

        def render(file_key, node_ids, fmt="png", scale=None, **kwargs):
            if fmt == "svg":
                raise FigmaApiError("Figma image render error: timeout")
            return {node_id: f"https://cdn/{node_id}" for node_id in node_ids}

        client.get_images.side_effect = render

        report = downloader.download_images_with_export_settings("KEY", [root], str(tmp_path / "out"))

        results = {r.node_id: r for r in report.results}
        assert results["1:1"].success
        assert not results["1:2"].success
        assert "Batch API call failed" in results["1:2"].error

    def test_suffix_names_file(self, downloader, client, tmp_path):
        root = node("1:1", "Hero", [png_setting(2, "@2x")])
        client.get_images.return_value = {"1:1": "https://cdn/1:1"}

        downloader.download_images_with_export_settings("KEY", [root], str(tmp_path / "out"))

        assert (tmp_path / "out" / "Hero@2x.png").exists()

    def test_unsupported_formats_are_skipped(self, downloader, client, tmp_path):
        root = node("1:1", "Hero", [{"format": "GIF"}])
        report = downloader.download_images_with_export_settings("KEY", [root], str(tmp_path / "out"))
        assert report.summary() == {"total": 0, "successful": 0, "failed": 0, "skipped": 1}
        client.get_images.assert_not_called()

    def test_nothing_to_export(self, downloader, client, tmp_path):
        report = downloader.download_images_with_export_settings(
            "KEY", [node("1:1", "Plain")], str(tmp_path / "out")
        )
        assert report.results == []
        client.get_images.assert_not_called()


# ---------------------------------------------------------------------------
# Reference image
# ---------------------------------------------------------------------------


class TestReferenceImage:
    def test_selected_frame(self, downloader, client, tmp_path):
        client.get_node_documents.return_value = {"1:1": {"id": "1:1", "type": "FRAME", "name": "Hero"}}
        serve_nodes(client, ["1:1"], name="Hero")
        out = tmp_path / "out"

        result = downloader.create_reference_image("KEY", ["1:1"], str(out))

        assert result["success"]
        assert result["contextType"] == "frame"
        assert result["contextName"] == "Hero"
        assert (out / "reference.png").read_bytes() == PNG_BYTES
        assert not (out / "Hero-x1.png").exists()

    def test_first_page_without_selection(self, downloader, client, tmp_path):
        client.get_file.return_value = {
            "document": {"children": [{"id": "0:1", "name": "Page 1", "type": "CANVAS"}]}
        }
        serve_nodes(client, ["0:1"], name="Page 1")

        result = downloader.create_reference_image("KEY", [], str(tmp_path / "out"))

        assert result["success"]
        assert result["contextType"] == "page"
        assert (tmp_path / "out" / "reference.png").exists()

    def test_empty_document(self, downloader, client, tmp_path):
        client.get_file.return_value = {"document": {"children": []}}
        result = downloader.create_reference_image("KEY", [], str(tmp_path / "out"))
        assert not result["success"]
