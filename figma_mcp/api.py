"""Figma REST API client.

Wraps a :class:`requests.Session` with retry/backoff, an in-memory response
cache and a bound on concurrent requests. Signed image URLs are downloaded
with a separate session so the API token is never sent to the CDN.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import USER_AGENT, FigmaConfig
from .errors import FigmaMcpError

logger = logging.getLogger("figma_mcp.api")

RETRY_STATUSES = (429, 500, 502, 503, 504)
IMAGE_FORMATS = ("jpg", "png", "svg", "pdf")


class FigmaApiError(FigmaMcpError):
    """Raised when a Figma API call fails or is called with invalid arguments."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.details = details


class ResponseCache:
    """Bounded TTL cache; the oldest entry is evicted when full."""

    def __init__(self, ttl: float, max_size: int, clock=time.monotonic) -> None:
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            expires, value = entry
            if expires <= self._clock():
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, key: Hashable, value: Any) -> None:
        if self.max_size <= 0:
            return
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = (self._clock() + self.ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _build_session(config: FigmaConfig, headers: Dict[str, str]) -> requests.Session:
    session = requests.Session()
    session.headers.update(headers)
    retry = Retry(
        total=config.retry_attempts,
        backoff_factor=config.retry_backoff,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_maxsize=max(config.burst_size, 1))
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def _require_file_key(file_key: str) -> None:
    if not file_key or not isinstance(file_key, str):
        raise FigmaApiError("File key is required and must be a string")


def _require_node_ids(node_ids: Sequence[str]) -> None:
    if not node_ids or isinstance(node_ids, str):
        raise FigmaApiError("Node IDs are required and must be a non-empty list")


class FigmaApiClient:
    """Synchronous Figma REST client."""

    def __init__(
        self,
        config: FigmaConfig,
        session: Optional[requests.Session] = None,
        download_session: Optional[requests.Session] = None,
    ) -> None:
        if not config.api_key:
            raise FigmaApiError("API key is required")
        self.config = config
        self.session = session or _build_session(
            config,
            {
                "X-Figma-Token": config.api_key,
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
        )
        self.download_session = download_session or _build_session(
            config, {"User-Agent": USER_AGENT}
        )
        self.cache = ResponseCache(config.cache_ttl, config.cache_max_size)
        self._limiter = threading.BoundedSemaphore(max(config.burst_size, 1))

    def close(self) -> None:
        self.session.close()
        self.download_session.close()

    def update_api_key(self, api_key: str) -> None:
        if not api_key or not isinstance(api_key, str):
            raise FigmaApiError("API key is required and must be a string")
        self.config.api_key = api_key
        self.session.headers["X-Figma-Token"] = api_key
        self.cache.clear()
        logger.info("API key updated")

    def cache_stats(self) -> Dict[str, int]:
        return {"keys": len(self.cache), "hits": self.cache.hits, "misses": self.cache.misses}

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Cache cleared")

    def _request(
        self, endpoint: str, params: Optional[Dict[str, str]] = None, use_cache: bool = True
    ) -> Dict[str, Any]:
        params = params or {}
        cache_key = f"{endpoint}:{json.dumps(params, sort_keys=True)}"
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Cache hit for %s", endpoint)
                return cached

        url = f"{self.config.base_url.rstrip('/')}{endpoint}"
        with self._limiter:
            logger.debug("GET %s %s", endpoint, params)
            try:
                resp = self.session.get(url, params=params, timeout=self.config.timeout)
            except requests.Timeout as exc:
                raise FigmaApiError(f"Figma API timeout: {endpoint}", code="TIMEOUT") from exc
            except requests.RequestException as exc:
                raise FigmaApiError(
                    f"Network error calling {endpoint}: {exc}", code="NETWORK_ERROR"
                ) from exc

        if resp.status_code != 200:
            raise self._error_for(resp, endpoint)
        try:
            data = resp.json()
        except ValueError as exc:
            raise FigmaApiError(
                f"Invalid JSON from {endpoint}", status=resp.status_code
            ) from exc

        if use_cache:
            self.cache.set(cache_key, data)
        return data

    @staticmethod
    def _error_for(resp: requests.Response, endpoint: str) -> FigmaApiError:
        detail: Any = None
        message = ""
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text[:200]
        if isinstance(detail, dict):
            message = str(detail.get("err") or detail.get("message") or "")
        if resp.status_code == 403:
            message = message or "Forbidden"
            message = f"Figma API returned 403 ({message}). Check that FIGMA_API_KEY is valid."
        elif resp.status_code == 404:
            message = f"Figma resource not found: {endpoint}"
        elif resp.status_code == 429:
            message = "Figma API rate limit exceeded. Retry later."
        else:
            message = message or f"HTTP {resp.status_code} error"
        return FigmaApiError(message, status=resp.status_code, code=str(resp.status_code), details=detail)

    def get_file(
        self,
        file_key: str,
        depth: Optional[int] = None,
        use_absolute_bounds: bool = False,
    ) -> Dict[str, Any]:
        _require_file_key(file_key)
        params: Dict[str, str] = {}
        if depth is not None:
            params["depth"] = str(depth)
        if use_absolute_bounds:
            params["use_absolute_bounds"] = "true"
        return self._request(f"/files/{file_key}", params)

    def get_file_nodes(
        self,
        file_key: str,
        node_ids: Sequence[str],
        depth: Optional[int] = None,
        use_absolute_bounds: bool = False,
    ) -> Dict[str, Any]:
        """GET /files/:key/nodes; returns the raw response with a ``nodes`` map."""
        _require_file_key(file_key)
        _require_node_ids(node_ids)
        params = {"ids": ",".join(node_ids)}
        if depth is not None:
            params["depth"] = str(depth)
        if use_absolute_bounds:
            params["use_absolute_bounds"] = "true"
        data = self._request(f"/files/{file_key}/nodes", params)
        logger.debug(
            "get_file_nodes: file=%s requested=%d returned=%d",
            file_key,
            len(node_ids),
            len(data.get("nodes") or {}),
        )
        return data

    def get_images(
        self,
        file_key: str,
        node_ids: Sequence[str],
        fmt: str = "png",
        scale: Optional[float] = None,
        use_absolute_bounds: bool = False,
        svg_include_id: bool = False,
        svg_simplify_stroke: bool = False,
        version: Optional[str] = None,
    ) -> Dict[str, Optional[str]]:
        """GET /images/:key; returns node ID -> signed URL (``None`` when not rendered).

        Responses are never cached because the signed URLs expire.
        """
        _require_file_key(file_key)
        _require_node_ids(node_ids)
        fmt = fmt.lower()
        if fmt not in IMAGE_FORMATS:
            raise FigmaApiError(f"Unsupported image format: {fmt}")
        params = {"ids": ",".join(node_ids), "format": fmt}
        if scale:
            params["scale"] = f"{scale:g}"
        if use_absolute_bounds:
            params["use_absolute_bounds"] = "true"
        if svg_include_id:
            params["svg_include_id"] = "true"
        if svg_simplify_stroke:
            params["svg_simplify_stroke"] = "true"
        if version:
            params["version"] = version

        data = self._request(f"/images/{file_key}", params, use_cache=False)
        if data.get("err"):
            raise FigmaApiError(f"Figma image render error: {data['err']}", details=data)
        images = data.get("images") or {}
        logger.debug(
            "get_images: file=%s requested=%d rendered=%d",
            file_key,
            len(node_ids),
            sum(1 for url in images.values() if url),
        )
        return images

    def download_bytes(self, url: str) -> Tuple[bytes, str]:
        """Fetch a signed asset URL; returns the body and its Content-Type."""
        try:
            resp = self.download_session.get(url, timeout=self.config.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise FigmaApiError(f"Download failed: {exc}", code="DOWNLOAD_ERROR") from exc
        return resp.content, resp.headers.get("Content-Type", "")

    def get_node_documents(
        self, file_key: str, node_ids: List[str], depth: Optional[int] = None
    ) -> Dict[str, Optional[Dict[str, Any]]]:
        """Convenience wrapper returning node ID -> document (or ``None``)."""
        data = self.get_file_nodes(file_key, node_ids, depth=depth, use_absolute_bounds=True)
        nodes = data.get("nodes") or {}
        return {
            node_id: (nodes.get(node_id) or {}).get("document") for node_id in node_ids
        }
