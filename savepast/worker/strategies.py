from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum

import httpx

from savepast.cache.messages import FetchRequest, FetchResponse, offline_json_response, service_unavailable
from savepast.cache.storage import CacheStorage

log = logging.getLogger("worker.strategies")

# Headers that describe a single hop and must not be replayed upstream.
_HOP_BY_HOP = {
    "host",
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "content-length",
    "accept-encoding",
}

Spawn = Callable[[Awaitable], "asyncio.Task"]


class Route(str, Enum):
    BYPASS = "bypass"
    NETWORK_FIRST = "network_first"
    CACHE_FIRST = "cache_first"
    NETWORK_FIRST_OFFLINE_FALLBACK = "network_first_offline_fallback"
    STALE_WHILE_REVALIDATE = "stale_while_revalidate"


def is_static_asset(path: str, static_extensions: Sequence[str]) -> bool:
    return any(path.endswith(ext) for ext in static_extensions)


def is_navigation(request: FetchRequest) -> bool:
    if request.mode == "navigate":
        return True
    return "text/html" in (request.header("accept") or "")


def classify(request: FetchRequest, *, api_prefixes: Sequence[str], static_extensions: Sequence[str]) -> Route:
    """Pick exactly one strategy for a request, by decreasing priority."""

    if request.method.upper() != "GET":
        return Route.BYPASS
    if not request.scheme.startswith("http"):
        return Route.BYPASS

    path = request.path
    if any(path.startswith(p) for p in api_prefixes):
        return Route.NETWORK_FIRST
    if is_static_asset(path, static_extensions):
        return Route.CACHE_FIRST
    if is_navigation(request):
        return Route.NETWORK_FIRST_OFFLINE_FALLBACK
    return Route.STALE_WHILE_REVALIDATE


def forwardable_headers(headers: dict[str, str]) -> dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in _HOP_BY_HOP}


async def network_fetch(client: httpx.AsyncClient, request: FetchRequest) -> FetchResponse:
    """Fetch from the network. Raises httpx.RequestError when no usable response arrives."""

    resp = await client.request(
        request.method,
        request.url,
        headers=forwardable_headers(request.headers),
        content=request.body or None,
    )
    return FetchResponse.from_httpx(resp)


class StrategyEngine:
    """Applies the per-route caching strategy to intercepted GET requests.

    Every branch resolves to a FetchResponse: a network response, a cache hit,
    or a synthesized 503. Any httpx.RequestError counts as network failure,
    an undecodable body included.
    """

    def __init__(
        self,
        *,
        storage: CacheStorage,
        client: httpx.AsyncClient,
        spawn: Spawn,
        static_cache: str,
        dynamic_cache: str,
        api_cache: str,
        api_prefixes: Sequence[str],
        static_extensions: Sequence[str],
        shell_path: str = "/index.html",
        offline_page_path: str = "/offline.html",
    ) -> None:
        self.storage = storage
        self.client = client
        self.spawn = spawn
        self.static_cache = static_cache
        self.dynamic_cache = dynamic_cache
        self.api_cache = api_cache
        self.api_prefixes = list(api_prefixes)
        self.static_extensions = list(static_extensions)
        self.shell_path = shell_path
        self.offline_page_path = offline_page_path

    def classify(self, request: FetchRequest) -> Route:
        return classify(request, api_prefixes=self.api_prefixes, static_extensions=self.static_extensions)

    async def handle(self, request: FetchRequest) -> FetchResponse | None:
        """Return the response for request, or None when it is not intercepted."""

        route = self.classify(request)
        log.debug("%s %s -> %s", request.method, request.url, route.value)

        if route == Route.NETWORK_FIRST:
            return await self.network_first(request, self.api_cache)
        if route == Route.CACHE_FIRST:
            return await self.cache_first(request, self.static_cache)
        if route == Route.NETWORK_FIRST_OFFLINE_FALLBACK:
            return await self.network_first_with_offline_fallback(request)
        if route == Route.STALE_WHILE_REVALIDATE:
            return await self.stale_while_revalidate(request, self.dynamic_cache)
        return None

    async def cache_first(self, request: FetchRequest, cache_name: str) -> FetchResponse:
        cached = await self._match(request)
        if cached is not None:
            return cached

        try:
            resp = await network_fetch(self.client, request)
        except httpx.RequestError as e:
            log.error("Cache first strategy failed for %s: %s", request.url, e)
            return service_unavailable("Network error")

        if resp.ok:
            await asyncio.to_thread(self.storage.put, cache_name, request, resp.clone())
        return resp

    async def network_first(self, request: FetchRequest, cache_name: str) -> FetchResponse:
        try:
            resp = await network_fetch(self.client, request)
        except httpx.RequestError as e:
            log.info("Network unavailable for %s (%s); trying cache", request.url, type(e).__name__)
            cached = await self._match(request)
            if cached is not None:
                return cached
            return offline_json_response()

        if resp.ok:
            self.spawn(self._store(cache_name, request, resp.clone()))
        return resp

    async def network_first_with_offline_fallback(self, request: FetchRequest) -> FetchResponse:
        try:
            return await network_fetch(self.client, request)
        except httpx.RequestError as e:
            log.info("Navigation to %s failed offline (%s); serving shell", request.url, type(e).__name__)

        for path in (self.shell_path, self.offline_page_path):
            cached = await self._match(request.sibling(path))
            if cached is not None:
                return cached

        return service_unavailable("Offline")

    async def stale_while_revalidate(self, request: FetchRequest, cache_name: str) -> FetchResponse:
        cached = await self._match(request)
        # Revalidation runs to completion even when the cached copy is returned right away.
        refresh = self.spawn(self._revalidate(request, cache_name))
        if cached is not None:
            return cached
        return await refresh

    async def _revalidate(self, request: FetchRequest, cache_name: str) -> FetchResponse:
        try:
            resp = await network_fetch(self.client, request)
        except httpx.RequestError as e:
            log.info("Revalidation of %s failed: %s", request.url, type(e).__name__)
            return service_unavailable("Network error")

        if resp.ok:
            await asyncio.to_thread(self.storage.put, cache_name, request, resp.clone())
        return resp

    async def _store(self, cache_name: str, request: FetchRequest, response: FetchResponse) -> None:
        await asyncio.to_thread(self.storage.put, cache_name, request, response)

    async def _match(self, request: FetchRequest) -> FetchResponse | None:
        return await asyncio.to_thread(self.storage.match, request)

    def with_partitions(self, names: dict[str, str]) -> "StrategyEngine":
        """Copy of this engine writing to other partitions; names maps current -> replacement."""

        other = copy.copy(self)
        other.static_cache = names.get(self.static_cache, self.static_cache)
        other.dynamic_cache = names.get(self.dynamic_cache, self.dynamic_cache)
        other.api_cache = names.get(self.api_cache, self.api_cache)
        return other
