"""Tests for figma_mcp.api."""

from unittest.mock import MagicMock

import pytest
import requests

from figma_mcp.api import FigmaApiClient, FigmaApiError, ResponseCache
from figma_mcp.config import FigmaConfig


def make_response(status=200, payload=None, content=b"", headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload if payload is not None else {}
    resp.text = str(payload)
    resp.content = content
    resp.headers = headers or {}
    return resp


@pytest.fixture
def session():
    mock = MagicMock()
    mock.headers = {"X-Figma-Token": "test-token"}
    return mock


@pytest.fixture
def download_session():
    return MagicMock()


@pytest.fixture
def client(session, download_session):
    return FigmaApiClient(
        FigmaConfig(api_key="test-token"), session=session, download_session=download_session
    )


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestClientSetup:
    def test_requires_api_key(self):
        with pytest.raises(FigmaApiError):
            FigmaApiClient(FigmaConfig(api_key=""))

    def test_token_only_sent_to_api(self):
        client = FigmaApiClient(FigmaConfig(api_key="secret"))
        try:
            assert client.session.headers["X-Figma-Token"] == "secret"
            assert "X-Figma-Token" not in client.download_session.headers
        finally:
            client.close()

    def test_update_api_key_clears_cache(self, client, session):
        client.cache.set("k", {"v": 1})
        client.update_api_key("new-token")
        assert session.headers["X-Figma-Token"] == "new-token"
        assert len(client.cache) == 0

    def test_update_api_key_rejects_empty(self, client):
        with pytest.raises(FigmaApiError):
            client.update_api_key("")


# ---------------------------------------------------------------------------
# Requests and caching
# ---------------------------------------------------------------------------


class TestRequests:
    def test_get_file_is_cached(self, client, session):
        session.get.return_value = make_response(payload={"document": {"id": "0:0"}})

        first = client.get_file("FILEKEY", depth=2)
        second = client.get_file("FILEKEY", depth=2)

        assert first == second
        assert session.get.call_count == 1
        url = session.get.call_args[0][0]
        assert url == "https://api.figma.com/v1/files/FILEKEY"
        assert session.get.call_args[1]["params"] == {"depth": "2"}
        assert client.cache_stats()["hits"] == 1

    def test_get_file_nodes_params(self, client, session):
        session.get.return_value = make_response(payload={"nodes": {}})
        client.get_file_nodes("KEY", ["1:2", "3:4"], depth=1, use_absolute_bounds=True)
        params = session.get.call_args[1]["params"]
        assert params == {"ids": "1:2,3:4", "depth": "1", "use_absolute_bounds": "true"}

    def test_get_images_is_never_cached(self, client, session):
        session.get.return_value = make_response(payload={"images": {"1:2": "https://cdn/x"}})

        client.get_images("KEY", ["1:2"], fmt="SVG", scale=2)
        images = client.get_images("KEY", ["1:2"], fmt="svg", scale=2)

        assert images == {"1:2": "https://cdn/x"}
        assert session.get.call_count == 2
        params = session.get.call_args[1]["params"]
        assert params["format"] == "svg"
        assert params["scale"] == "2"

    def test_render_error_raises(self, client, session):
        session.get.return_value = make_response(payload={"err": "Render timeout"})
        with pytest.raises(FigmaApiError, match="Render timeout"):
            client.get_images("KEY", ["1:2"])

    def test_node_documents(self, client, session):
        session.get.return_value = make_response(
            payload={"nodes": {"1:2": {"document": {"id": "1:2"}}, "3:4": None}}
        )
        documents = client.get_node_documents("KEY", ["1:2", "3:4"])
        assert documents == {"1:2": {"id": "1:2"}, "3:4": None}

    @pytest.mark.parametrize(
        "call",
        [
            lambda c: c.get_file(""),
            lambda c: c.get_images("KEY", []),
            lambda c: c.get_images("KEY", "1:2"),
            lambda c: c.get_images("KEY", ["1:2"], fmt="gif"),
            lambda c: c.get_file_nodes("KEY", []),
        ],
    )
    def test_invalid_arguments(self, client, session, call):
        with pytest.raises(FigmaApiError):
            call(client)
        session.get.assert_not_called()


class TestErrors:
    @pytest.mark.parametrize(
        "status, fragment",
        [(403, "FIGMA_API_KEY"), (404, "not found"), (429, "rate limit"), (500, "HTTP 500")],
    )
    def test_status_mapping(self, client, session, status, fragment):
        session.get.return_value = make_response(status=status, payload={})
        with pytest.raises(FigmaApiError, match=fragment) as excinfo:
            client.get_file("KEY")
        assert excinfo.value.status == status

    def test_timeout(self, client, session):
        session.get.side_effect = requests.Timeout("slow")
        with pytest.raises(FigmaApiError) as excinfo:
            client.get_file("KEY")
        assert excinfo.value.code == "TIMEOUT"

    def test_network_error(self, client, session):
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(FigmaApiError) as excinfo:
            client.get_file("KEY")
        assert excinfo.value.code == "NETWORK_ERROR"

    def test_failed_download(self, client, download_session):
        resp = make_response(status=500)
        resp.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        download_session.get.return_value = resp
        with pytest.raises(FigmaApiError) as excinfo:
            client.download_bytes("https://cdn/x.png")
        assert excinfo.value.code == "DOWNLOAD_ERROR"

    def test_download_returns_body_and_type(self, client, download_session):
        download_session.get.return_value = make_response(
            content=b"bytes", headers={"Content-Type": "image/png"}
        )
        assert client.download_bytes("https://cdn/x.png") == (b"bytes", "image/png")


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class TestResponseCache:
    def test_entries_expire(self):
        now = [100.0]
        cache = ResponseCache(ttl=10, max_size=5, clock=lambda: now[0])
        cache.set("a", 1)
        assert cache.get("a") == 1
        now[0] = 111.0
        assert cache.get("a") is None
        assert cache.misses == 1

    def test_oldest_entry_evicted(self):
        cache = ResponseCache(ttl=60, max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert cache.get("a") is None
        assert cache.get("c") == 3
        assert len(cache) == 2

    def test_zero_size_disables_cache(self):
        cache = ResponseCache(ttl=60, max_size=0)
        cache.set("a", 1)
        assert cache.get("a") is None
