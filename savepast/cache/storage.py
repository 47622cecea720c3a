from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy.orm import Session, sessionmaker

from savepast.cache.messages import FetchRequest, FetchResponse
from savepast.models.tables import CacheEntry, CachePartition
from savepast.util.time import now_utc

log = logging.getLogger("cache")


class Partition:
    """Handle on one named partition. Obtained from CacheStorage.open()."""

    def __init__(self, storage: "CacheStorage", name: str) -> None:
        self.storage = storage
        self.name = name

    def match(self, request: FetchRequest) -> FetchResponse | None:
        return self.storage.match(request, partition=self.name)

    def put(self, request: FetchRequest, response: FetchResponse) -> bool:
        return self.storage.put(self.name, request, response)

    def add_all(self, pairs: Iterable[tuple[FetchRequest, FetchResponse]]) -> None:
        self.storage.put_many(self.name, pairs)

    def keys(self) -> list[FetchRequest]:
        with self.storage.session_factory() as db:
            rows = db.query(CacheEntry).filter(CacheEntry.partition == self.name).order_by(CacheEntry.id.asc()).all()
            return [FetchRequest(url=r.url, method=r.method) for r in rows]


class CacheStorage:
    """Named, versioned cache partitions persisted through SQLAlchemy.

    Keys are exact (method, url) pairs. Only successful GET responses are stored;
    a later write for the same key replaces the earlier one.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def open(self, name: str) -> Partition:
        with self.session_factory() as db:
            self._ensure_partition(db, name)
            db.commit()
        return Partition(self, name)

    def has(self, name: str) -> bool:
        with self.session_factory() as db:
            return db.get(CachePartition, name) is not None

    def keys(self) -> list[str]:
        with self.session_factory() as db:
            rows = db.query(CachePartition).order_by(CachePartition.created_at.asc(), CachePartition.name.asc()).all()
            return [r.name for r in rows]

    def match(self, request: FetchRequest, *, partition: str | None = None) -> FetchResponse | None:
        """Look up a response across all partitions (creation order) or in one."""

        with self.session_factory() as db:
            q = (
                db.query(CacheEntry)
                .join(CachePartition, CachePartition.name == CacheEntry.partition)
                .filter(CacheEntry.method == request.method.upper(), CacheEntry.url == request.url)
            )
            if partition is not None:
                q = q.filter(CacheEntry.partition == partition)
            row = q.order_by(CachePartition.created_at.asc(), CacheEntry.id.asc()).first()
            if row is None:
                return None
            return FetchResponse(status=row.status, headers=dict(row.headers or {}), body=bytes(row.body or b""))

    def put(self, name: str, request: FetchRequest, response: FetchResponse) -> bool:
        if not _cacheable(request, response):
            log.debug("Not caching %s %s (status=%s)", request.method, request.url, response.status)
            return False
        self.put_many(name, [(request, response)])
        return True

    def put_many(self, name: str, pairs: Iterable[tuple[FetchRequest, FetchResponse]]) -> None:
        """Write all pairs in one transaction. Non-cacheable pairs raise ValueError."""

        pairs = list(pairs)
        for request, response in pairs:
            if not _cacheable(request, response):
                raise ValueError(f"Refusing to cache {request.method} {request.url} status={response.status}")

        with self.session_factory() as db:
            self._ensure_partition(db, name)
            for request, response in pairs:
                stored = response.clone()
                row = (
                    db.query(CacheEntry)
                    .filter(
                        CacheEntry.partition == name,
                        CacheEntry.method == request.method.upper(),
                        CacheEntry.url == request.url,
                    )
                    .one_or_none()
                )
                if row is None:
                    row = CacheEntry(partition=name, method=request.method.upper(), url=request.url)
                    db.add(row)
                row.status = stored.status
                row.headers = stored.headers
                row.body = stored.body
                row.stored_at = now_utc()
                db.flush()
            db.commit()

    def delete(self, name: str) -> bool:
        with self.session_factory() as db:
            p = db.get(CachePartition, name)
            if p is None:
                return False
            db.query(CacheEntry).filter(CacheEntry.partition == name).delete(synchronize_session=False)
            db.delete(p)
            db.commit()
            return True

    def delete_partitions_except(self, active_names: Iterable[str], *, prefix: str) -> list[str]:
        """Delete every partition under `prefix` whose name is not in active_names."""

        active = set(active_names)
        deleted = []
        for name in self.keys():
            if name.startswith(prefix) and name not in active:
                log.info("Deleting old cache: %s", name)
                if self.delete(name):
                    deleted.append(name)
        return deleted

    @staticmethod
    def _ensure_partition(db: Session, name: str) -> CachePartition:
        p = db.get(CachePartition, name)
        if p is None:
            p = CachePartition(name=name, created_at=now_utc())
            db.add(p)
            db.flush()
        return p


def _cacheable(request: FetchRequest, response: FetchResponse) -> bool:
    return request.method.upper() == "GET" and response.ok
