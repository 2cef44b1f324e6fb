from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends
from sqlmodel import Session
from ..db import get_session
from ..auth import Identity, require_identity
from .. import ledger, lifecycle

router = APIRouter()

@router.get("/disclosures/{disclosure_id}/summary")
def disclosure_summary(
    disclosure_id: int,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    lifecycle.get_for_seller(session, disclosure_id, identity.user_id)
    return ledger.summary(session, disclosure_id)

@router.get("/disclosures/{disclosure_id}/timeline")
def disclosure_timeline(
    disclosure_id: int,
    limit: int = 50,
    offset: int = 0,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    lifecycle.get_for_seller(session, disclosure_id, identity.user_id)
    return ledger.timeline(session, disclosure_id, limit=limit, offset=offset)

@router.get("/disclosures/{disclosure_id}/shares")
def disclosure_share_analytics(
    disclosure_id: int,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    lifecycle.get_for_seller(session, disclosure_id, identity.user_id)
    return ledger.share_analytics(session, disclosure_id)

@router.get("/disclosures/{disclosure_id}/view-drift")
def disclosure_view_drift(
    disclosure_id: int,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    lifecycle.get_for_seller(session, disclosure_id, identity.user_id)
    return ledger.view_count_drift(session, disclosure_id)

@router.get("/seller")
def seller_activity(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    return ledger.seller_analytics(session, identity.user_id, start=start, end=end)
