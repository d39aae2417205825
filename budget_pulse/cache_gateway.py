"""
Offline Cache Gateway
Network-vs-cache policy for read requests to the Budget API, shared by the
foreground dashboard and the background worker.

Authenticated GETs are network-first with a 10s bound and fall back to the
last good response. Unauthenticated GETs race a slow network (500ms) against
the cache while the network call keeps running to refresh the cache.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urlsplit

import requests

from .errors import NetworkFailure, RequestTimeout

LOGGER = logging.getLogger(__name__)

CACHE_PREFIX = "budget-pulse-api-cache-"
API_CACHE_NAME = f"{CACHE_PREFIX}v2"
NETWORK_TIMEOUT_SECONDS = 10.0
SOFT_TIMEOUT_SECONDS = 0.5
DEFAULT_API_HOSTS = ("api.lunchmoney.dev", "dev.lunchmoney.app")
LOCAL_API_PORTS = (3000, 4600)


@dataclass(frozen=True)
class ApiRequest:
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def cache_key(self) -> str:
        return f"{self.method.upper()} {self.url}"

    @property
    def is_authenticated(self) -> bool:
        return any(name.lower() == "authorization" for name in self.headers)


@dataclass(frozen=True)
class ApiResponse:
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


Transport = Callable[[ApiRequest, float], Awaitable[ApiResponse]]


class ResponseCache:
    """
    One named cache: a single entry per request identity, overwritten on every
    successful fetch and never evicted. Persisted to ``path`` when given.
    """

    def __init__(self, name: str, path: Optional[Path] = None) -> None:
        self.name = name
        self.path = path
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._write_lock = threading.Lock()
        if path is not None:
            self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (json.JSONDecodeError, OSError) as exc:
            LOGGER.warning("Ignoring unreadable cache file %s: %s", self.path, exc)
            return
        if isinstance(data, dict):
            self._entries = {key: value for key, value in data.items() if isinstance(value, dict)}

    def _save(self) -> None:
        if self.path is None:
            return
        try:
            with self._write_lock:
                entries = dict(self._entries)
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("w", encoding="utf-8") as handle:
                    json.dump(entries, handle)
        except OSError as exc:
            LOGGER.warning("Failed to persist cache %s: %s", self.name, exc)

    def match(self, request: ApiRequest) -> Optional[ApiResponse]:
        entry = self._entries.get(request.cache_key)
        if entry is None:
            return None
        return ApiResponse(
            status=int(entry["status"]),
            body=base64.b64decode(entry["body"]),
            headers=dict(entry.get("headers") or {}),
            from_cache=True,
        )

    def _record(self, request: ApiRequest, response: ApiResponse) -> None:
        self._entries[request.cache_key] = {
            "status": response.status,
            "body": base64.b64encode(response.body).decode("ascii"),
            "headers": dict(response.headers),
            "stored_at": time.time(),
        }

    def put(self, request: ApiRequest, response: ApiResponse) -> None:
        self._record(request, response)
        self._save()

    async def put_async(self, request: ApiRequest, response: ApiResponse) -> None:
        """Record the entry now and write the file from a worker thread."""
        self._record(request, response)
        if self.path is not None:
            await asyncio.to_thread(self._save)

    def __len__(self) -> int:
        return len(self._entries)


class CacheStorage:
    """Registry of named caches, optionally rooted in a directory."""

    def __init__(self, root: Optional[Path] = None) -> None:
        self.root = Path(root) if root is not None else None
        self._caches: Dict[str, ResponseCache] = {}

    def _path_for(self, name: str) -> Optional[Path]:
        return self.root / f"{name}.json" if self.root is not None else None

    def open(self, name: str) -> ResponseCache:
        if name not in self._caches:
            self._caches[name] = ResponseCache(name, self._path_for(name))
        return self._caches[name]

    def keys(self) -> List[str]:
        names = set(self._caches)
        if self.root is not None and self.root.exists():
            names.update(path.stem for path in self.root.glob("*.json"))
        return sorted(names)

    def delete(self, name: str) -> bool:
        removed = self._caches.pop(name, None) is not None
        path = self._path_for(name)
        if path is not None and path.exists():
            path.unlink()
            removed = True
        return removed

    def purge_stale(self, prefix: str = CACHE_PREFIX, keep: str = API_CACHE_NAME) -> List[str]:
        """Delete caches sharing ``prefix`` whose version is not ``keep``."""
        stale = [name for name in self.keys() if name.startswith(prefix) and name != keep]
        for name in stale:
            self.delete(name)
            LOGGER.info("Deleted stale API cache %s", name)
        return stale


class RequestsTransport:
    """Blocking ``requests`` session driven from a worker thread."""

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self.session = session or requests.Session()

    def _send(self, request: ApiRequest, timeout: float) -> ApiResponse:
        try:
            response = self.session.request(
                request.method,
                request.url,
                headers=request.headers,
                timeout=timeout,
            )
        except requests.Timeout as exc:
            raise RequestTimeout(f"Timed out after {timeout:.1f}s: {request.url}") from exc
        except requests.RequestException as exc:
            raise NetworkFailure(f"Request to {request.url} failed: {exc}") from exc
        return ApiResponse(
            status=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    async def __call__(self, request: ApiRequest, timeout: float) -> ApiResponse:
        return await asyncio.to_thread(self._send, request, timeout)


def offline_response(reason: str) -> ApiResponse:
    body = json.dumps({"error": reason, "message": "No cached data available"}).encode("utf-8")
    return ApiResponse(
        status=503,
        body=body,
        headers={"Content-Type": "application/json"},
    )


def _host_key(url: str) -> Tuple[str, Optional[int]]:
    parts = urlsplit(url)
    return (parts.hostname or "").lower(), parts.port


class OfflineCacheGateway:
    """Per-request network/cache policy for Budget API reads."""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        cache: Optional[ResponseCache] = None,
        api_hosts: Iterable[str] = DEFAULT_API_HOSTS,
        network_timeout: float = NETWORK_TIMEOUT_SECONDS,
        soft_timeout: float = SOFT_TIMEOUT_SECONDS,
    ) -> None:
        self.transport = transport or RequestsTransport()
        self.cache = cache if cache is not None else ResponseCache(API_CACHE_NAME)
        self.network_timeout = network_timeout
        self.soft_timeout = soft_timeout
        self._api_hosts: Set[str] = {host.lower() for host in api_hosts}
        self._api_origins: Set[Tuple[str, Optional[int]]] = set()
        self._background: Set[asyncio.Task] = set()

    @classmethod
    def with_storage(cls, storage: CacheStorage, **kwargs: Any) -> "OfflineCacheGateway":
        storage.purge_stale()
        return cls(cache=storage.open(API_CACHE_NAME), **kwargs)

    def register_api_base(self, base_url: str) -> None:
        """Treat requests to ``base_url``'s host and port as Budget API traffic."""
        self._api_origins.add(_host_key(base_url))

    def is_api_request(self, url: str) -> bool:
        host, port = _host_key(url)
        if host in self._api_hosts or (host, port) in self._api_origins:
            return True
        return host == "localhost" and port in LOCAL_API_PORTS

    async def fetch(self, request: ApiRequest) -> ApiResponse:
        if request.method.upper() != "GET" or not self.is_api_request(request.url):
            return await self.transport(request, self.network_timeout)

        if request.is_authenticated:
            response, reason = await self._fetch_network(request)
            return self._settle(request, response, reason)

        return await self._fetch_racing(request)

    async def _fetch_network(self, request: ApiRequest) -> Tuple[Optional[ApiResponse], Optional[str]]:
        """Hit the network once; successful responses are cached."""
        try:
            response = await asyncio.wait_for(
                self.transport(request, self.network_timeout),
                timeout=self.network_timeout,
            )
        except (asyncio.TimeoutError, RequestTimeout):
            LOGGER.warning("Budget API request timed out, falling back to cache: %s", request.url)
            return None, "timeout"
        except NetworkFailure as exc:
            LOGGER.warning("Budget API request failed, falling back to cache: %s", exc)
            return None, "offline"

        if response.ok:
            await self.cache.put_async(request, response)
        return response, None

    def _settle(
        self,
        request: ApiRequest,
        response: Optional[ApiResponse],
        reason: Optional[str],
    ) -> ApiResponse:
        if response is not None and response.ok:
            return response

        cached = self.cache.match(request)
        if cached is not None:
            return cached

        if response is not None:
            return response
        return offline_response(reason or "offline")

    async def _fetch_racing(self, request: ApiRequest) -> ApiResponse:
        network = asyncio.ensure_future(self._fetch_network(request))
        done, _ = await asyncio.wait({network}, timeout=self.soft_timeout)
        if done:
            response, reason = network.result()
            return self._settle(request, response, reason)

        cached = self.cache.match(request)
        if cached is not None:
            LOGGER.debug("Slow network for %s, serving cached response", request.url)
            self._keep_refreshing(network)
            return cached

        response, reason = await network
        return self._settle(request, response, reason)

    def _keep_refreshing(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for background cache refreshes still in flight."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
