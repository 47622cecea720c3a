from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from savepast.models.tables import AuditLog
from savepast.util.ids import new_uuid
from savepast.util.time import now_utc


def audit(db: Session, *, event_type: str, severity: str, message: str, context: dict | None = None) -> None:
    db.add(
        AuditLog(
            id=new_uuid(),
            event_type=event_type,
            severity=severity,
            message=message[:1000],
            context=context or {},
            created_at=now_utc(),
        )
    )


def record(session_factory: sessionmaker, *, event_type: str, severity: str, message: str, context: dict | None = None) -> None:
    with session_factory() as db:
        audit(db, event_type=event_type, severity=severity, message=message, context=context)
        db.commit()


def recent(session_factory: sessionmaker, *, event_type: str, limit: int = 50) -> list[dict]:
    with session_factory() as db:
        rows = (
            db.query(AuditLog)
            .filter(AuditLog.event_type == event_type)
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "id": r.id,
                "event_type": r.event_type,
                "severity": r.severity,
                "message": r.message,
                "context": r.context,
                "created_at": r.created_at,
            }
            for r in rows
        ]
