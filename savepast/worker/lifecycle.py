from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum
from urllib.parse import urljoin

import httpx

from savepast.cache.messages import FetchRequest
from savepast.cache.storage import CacheStorage
from savepast.worker.strategies import network_fetch

log = logging.getLogger("worker.lifecycle")


class State(str, Enum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVE = "active"
    REDUNDANT = "redundant"


class InstallError(Exception):
    pass


class LifecycleError(Exception):
    pass


class Lifecycle:
    """Install/activate state machine for one cache generation.

    install() pre-warms the static partition from the asset manifest; it either
    caches every asset or none and leaves the instance redundant. activate()
    drops partitions from other generations and claims known clients.
    """

    def __init__(
        self,
        *,
        storage: CacheStorage,
        client: httpx.AsyncClient,
        origin: str,
        static_assets: Sequence[str],
        cache_prefix: str,
        cache_version: str,
        current_caches: Sequence[str],
        static_cache: str,
    ) -> None:
        self.storage = storage
        self.client = client
        self.origin = origin
        self.static_assets = list(static_assets)
        self.cache_prefix = cache_prefix
        self.cache_version = cache_version
        self.current_caches = list(current_caches)
        self.static_cache = static_cache

        self.state = State.PARSED
        self.skip_waiting_requested = False
        self.known_clients: set[str] = set()
        self.controlled_clients: set[str] = set()
        self.last_error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.state == State.ACTIVE

    @property
    def update_waiting(self) -> bool:
        return self.state == State.INSTALLED

    def asset_requests(self) -> list[FetchRequest]:
        return [FetchRequest(url=urljoin(self.origin, path)) for path in self.static_assets]

    async def install(self) -> None:
        if self.state != State.PARSED:
            raise LifecycleError(f"cannot install from state={self.state.value}")

        log.info("Installing service worker...")
        self.state = State.INSTALLING
        try:
            pairs = []
            for req in self.asset_requests():
                resp = await network_fetch(self.client, req)
                if not resp.ok:
                    raise InstallError(f"{req.url} returned status {resp.status}")
                pairs.append((req, resp))

            log.info("Caching static assets")
            self.storage.put_many(self.static_cache, pairs)
        except (httpx.RequestError, InstallError) as e:
            self.state = State.REDUNDANT
            self.last_error = str(e)
            log.error("Failed to cache static assets: %s", e)
            if isinstance(e, InstallError):
                raise
            raise InstallError(str(e)) from e

        self.state = State.INSTALLED
        log.info("Static assets cached successfully")

    def skip_waiting(self) -> None:
        self.skip_waiting_requested = True

    async def activate(self) -> list[str]:
        """Evict stale partitions and take control. Returns deleted partition names."""

        if self.state != State.INSTALLED:
            raise LifecycleError(f"cannot activate from state={self.state.value}")

        log.info("Activating service worker...")
        self.state = State.ACTIVATING
        deleted = self.storage.delete_partitions_except(self.current_caches, prefix=self.cache_prefix)
        self.claim()
        self.state = State.ACTIVE
        log.info("Service worker activated (deleted=%s, clients=%s)", len(deleted), len(self.controlled_clients))
        return deleted

    def claim(self) -> None:
        self.controlled_clients = set(self.known_clients)

    def register_client(self, client_id: str) -> None:
        self.known_clients.add(client_id)
        if self.is_active:
            self.controlled_clients.add(client_id)

    def previous_generation(self) -> dict[str, str]:
        """Map each current partition name to its counterpart in the newest older generation.

        Empty when no older generation survives. Activation only ever leaves one
        generation behind, so the newest older static partition names it.
        """

        stems = {name: name[: -len(self.cache_version)] for name in self.current_caches}
        static_stem = stems[self.static_cache]
        older = [
            name
            for name in self.storage.keys()
            if name.startswith(static_stem) and name not in self.current_caches
        ]
        if not older:
            return {}
        version = older[-1][len(static_stem) :]
        return {name: stem + version for name, stem in stems.items()}
