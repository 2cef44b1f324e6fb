import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select
from sqlalchemy import func

from . import db
from .models import EventType, LedgerEntry, ShareGrant
from .utils import canonical_json, utcnow

logger = logging.getLogger(__name__)

VIEW_EVENTS = (EventType.VIEWED.value, EventType.SHARE_VIEWED.value)
SHARE_EVENTS = (
    EventType.SHARED.value,
    EventType.SHARE_VIEWED.value,
    EventType.SHARE_ACKNOWLEDGED.value,
    EventType.SHARE_SIGNED.value,
)
MAX_TIMELINE_LIMIT = 200
RECENT_ACTIVITY_LIMIT = 20


def track(
    disclosure_id: int,
    event_type: EventType,
    actor: Optional[str] = None,
    metadata: Optional[dict] = None,
    correlation_id: Optional[int] = None,
    origin: Optional[dict] = None,
):
    origin = origin or {}
    payload = {
        "disclosure_id": disclosure_id,
        "event_type": EventType(event_type).value,
        "actor_user_id": actor,
        "correlation_id": correlation_id,
        "metadata": metadata or {},
        "ip_address": origin.get("ip"),
        "user_agent": origin.get("user_agent"),
        "occurred_at": utcnow().isoformat(),
    }
    try:
        from .worker import record_event
        record_event.delay(payload)
    except Exception:
        logger.exception(
            "dropping ledger event %s for disclosure %s", payload["event_type"], disclosure_id
        )


def write_entry(payload: dict) -> int:
    occurred_at = payload.get("occurred_at")
    entry = LedgerEntry(
        disclosure_id=payload["disclosure_id"],
        event_type=EventType(payload["event_type"]).value,
        actor_user_id=payload.get("actor_user_id"),
        correlation_id=payload.get("correlation_id"),
        metadata_json=canonical_json(payload.get("metadata") or {}),
        ip_address=payload.get("ip_address"),
        user_agent=(payload.get("user_agent") or "")[:500] or None,
        occurred_at=datetime.fromisoformat(occurred_at) if occurred_at else utcnow(),
    )
    with Session(db.engine) as session:
        session.add(entry)
        session.commit()
        session.refresh(entry)
        return entry.id


def serialize_entry(entry: LedgerEntry) -> dict:
    return {
        "id": entry.id,
        "event_type": entry.event_type,
        "actor_user_id": entry.actor_user_id,
        "share_id": entry.correlation_id,
        "metadata": entry.meta,
        "occurred_at": entry.occurred_at,
    }


def _count(session: Session, *criteria) -> int:
    stmt = select(func.count(LedgerEntry.id)).where(*criteria)
    return session.exec(stmt).one()


def _by_type(session: Session, *criteria) -> dict:
    rows = session.exec(
        select(LedgerEntry.event_type, func.count(LedgerEntry.id))
        .where(*criteria)
        .group_by(LedgerEntry.event_type)
    ).all()
    return {event_type: int(count) for event_type, count in rows}


def summary(session: Session, disclosure_id: int) -> dict:
    """``view_count`` is seller reads plus recipient views; ``share_view_count`` is comparable to grant counts."""
    scope = LedgerEntry.disclosure_id == disclosure_id
    is_view = LedgerEntry.event_type.in_(VIEW_EVENTS)
    last_viewed = session.exec(
        select(func.max(LedgerEntry.occurred_at)).where(scope, is_view)
    ).one()
    return {
        "total_events": _count(session, scope),
        "view_count": _count(session, scope, is_view),
        "seller_view_count": _count(session, scope, LedgerEntry.event_type == EventType.VIEWED.value),
        "share_view_count": _count(session, scope, LedgerEntry.event_type == EventType.SHARE_VIEWED.value),
        "share_count": _count(session, scope, LedgerEntry.event_type == EventType.SHARED.value),
        "last_viewed_at": last_viewed,
        "events_by_type": _by_type(session, scope),
    }


def timeline(session: Session, disclosure_id: int, limit: int = 50, offset: int = 0) -> list:
    limit = max(1, min(int(limit), MAX_TIMELINE_LIMIT))
    offset = max(0, int(offset))
    entries = session.exec(
        select(LedgerEntry)
        .where(LedgerEntry.disclosure_id == disclosure_id)
        .order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    return [serialize_entry(e) for e in entries]


def share_analytics(session: Session, disclosure_id: int) -> list:
    """One bucket per share id, built from the ledger only.

    Grants that were deleted since still get a bucket: nothing here joins
    against ``share_grant``.
    """
    entries = session.exec(
        select(LedgerEntry)
        .where(
            LedgerEntry.disclosure_id == disclosure_id,
            LedgerEntry.event_type.in_(SHARE_EVENTS),
            LedgerEntry.correlation_id.is_not(None),
        )
        .order_by(LedgerEntry.occurred_at.asc(), LedgerEntry.id.asc())
    ).all()
    buckets = {}
    for entry in entries:
        bucket = buckets.setdefault(
            entry.correlation_id,
            {"share_id": entry.correlation_id, "recipient_email": None, "events": []},
        )
        if bucket["recipient_email"] is None:
            bucket["recipient_email"] = entry.meta.get("recipient_email")
        bucket["events"].append({"type": entry.event_type, "timestamp": entry.occurred_at})
    return list(buckets.values())


def seller_analytics(
    session: Session,
    seller_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    criteria = [LedgerEntry.actor_user_id == seller_id]
    if start:
        criteria.append(LedgerEntry.occurred_at >= start)
    if end:
        criteria.append(LedgerEntry.occurred_at <= end)
    recent = session.exec(
        select(LedgerEntry)
        .where(*criteria)
        .order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
    ).all()
    return {
        "total_events": _count(session, *criteria),
        "events_by_type": _by_type(session, *criteria),
        "recent_activity": [
            {**serialize_entry(e), "disclosure_id": e.disclosure_id} for e in recent
        ],
    }


def view_count_drift(session: Session, disclosure_id: Optional[int] = None) -> list:
    """Compare each grant's denormalized ``view_count`` with its ledger views."""
    stmt = select(ShareGrant)
    if disclosure_id is not None:
        stmt = stmt.where(ShareGrant.disclosure_id == disclosure_id)
    grants = session.exec(stmt.order_by(ShareGrant.id)).all()
    if not grants:
        return []
    counts = dict(
        session.exec(
            select(LedgerEntry.correlation_id, func.count(LedgerEntry.id))
            .where(
                LedgerEntry.event_type == EventType.SHARE_VIEWED.value,
                LedgerEntry.correlation_id.in_([g.id for g in grants]),
            )
            .group_by(LedgerEntry.correlation_id)
        ).all()
    )
    report = []
    for grant in grants:
        ledger_views = int(counts.get(grant.id, 0))
        report.append({
            "share_id": grant.id,
            "disclosure_id": grant.disclosure_id,
            "view_count": grant.view_count,
            "ledger_views": ledger_views,
            "drift": grant.view_count - ledger_views,
        })
    return report
