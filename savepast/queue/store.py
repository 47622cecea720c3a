from __future__ import annotations

import logging

from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from savepast.models.tables import QueuedOperation
from savepast.schemas.operations_v1 import OPERATION_TYPES, QueuedOperationOut, normalize_payload
from savepast.util.ids import new_uuid
from savepast.util.time import now_utc

log = logging.getLogger("queue.store")


class InvalidOperationError(Exception):
    pass


class OperationQueueStore:
    """Durable FIFO of deferred mutating operations.

    The store is the only writer of queue rows; callers get frozen snapshots.
    """

    def __init__(self, session_factory: sessionmaker, *, max_retries: int = 3) -> None:
        self.session_factory = session_factory
        self.max_retries = max_retries

    def validate(self, op_type: str, payload: dict | None) -> dict:
        if op_type not in OPERATION_TYPES:
            raise InvalidOperationError(f"Unknown operation type: {op_type}")
        try:
            return normalize_payload(op_type, payload or {})
        except ValidationError as e:
            raise InvalidOperationError(f"Invalid payload for {op_type}: {e.errors(include_url=False)}") from e

    def enqueue(self, op_type: str, payload: dict) -> str:
        normalized = self.validate(op_type, payload)
        op_id = new_uuid()
        with self.session_factory() as db:
            db.add(
                QueuedOperation(
                    id=op_id,
                    type=op_type,
                    payload=normalized,
                    retry_count=0,
                    created_at=now_utc(),
                )
            )
            db.commit()
        log.info("Queued operation %s (%s)", op_id, op_type)
        return op_id

    def list(self) -> list[QueuedOperationOut]:
        with self.session_factory() as db:
            rows = db.query(QueuedOperation).order_by(QueuedOperation.seq.asc()).all()
            return [QueuedOperationOut.model_validate(r) for r in rows]

    def get(self, op_id: str) -> QueuedOperationOut | None:
        with self.session_factory() as db:
            row = db.query(QueuedOperation).filter(QueuedOperation.id == op_id).one_or_none()
            return QueuedOperationOut.model_validate(row) if row else None

    def count(self) -> int:
        with self.session_factory() as db:
            return db.query(QueuedOperation).count()

    def remove(self, op_id: str) -> bool:
        with self.session_factory() as db:
            n = db.query(QueuedOperation).filter(QueuedOperation.id == op_id).delete(synchronize_session=False)
            db.commit()
            return n > 0

    def clear(self) -> int:
        with self.session_factory() as db:
            n = db.query(QueuedOperation).delete(synchronize_session=False)
            db.commit()
        log.info("Cleared %s queued operations", n)
        return n

    def increment_retry(self, op_id: str) -> int | None:
        """Bump retry_count and return the new value (None if the entry is gone)."""

        with self.session_factory() as db:
            row = db.query(QueuedOperation).filter(QueuedOperation.id == op_id).one_or_none()
            if row is None:
                return None
            row.retry_count = (row.retry_count or 0) + 1
            db.commit()
            return row.retry_count
