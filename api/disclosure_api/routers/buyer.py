from fastapi import APIRouter, Depends, Request
from sqlmodel import Session
from ..db import get_session
from ..auth import Identity, require_identity, request_origin
from ..errors import NotFound
from ..models import Disclosure, ShareGrant
from ..schemas import SignRequest
from .. import lifecycle, sharing

router = APIRouter()

def _disclosure(session: Session, grant: ShareGrant) -> Disclosure:
    disclosure = session.get(Disclosure, grant.disclosure_id)
    if not disclosure:
        raise NotFound("Disclosure not found")
    return disclosure

# ---------- authenticated recipient ----------

@router.get("/disclosures")
def list_shared_disclosures(
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    items = []
    for grant in sharing.list_for_recipient(session, identity):
        disclosure = session.get(Disclosure, grant.disclosure_id)
        if not disclosure:
            continue
        items.append({
            **sharing.serialize(grant),
            "address": disclosure.header.get("property_address"),
            "disclosure_status": disclosure.status,
            "pdf_url": disclosure.pdf_url,
            "seller": lifecycle.shareable_seller(disclosure),
        })
    return items

@router.get("/stats")
def shared_disclosure_stats(
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    return sharing.recipient_stats(session, identity)

@router.get("/disclosures/{share_id}")
def view_shared_disclosure(
    share_id: int,
    request: Request,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    grant = sharing.resolve_for_identity(session, share_id, identity)
    disclosure = _disclosure(session, grant)
    first_view = sharing.view(session, grant, actor=identity.user_id, origin=request_origin(request))
    return {**sharing.recipient_view(grant, disclosure), "first_view": first_view}

@router.post("/disclosures/{share_id}/acknowledge")
def acknowledge_shared_disclosure(
    share_id: int,
    request: Request,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    grant = sharing.resolve_for_identity(session, share_id, identity)
    sharing.acknowledge(session, grant, actor=identity.user_id, origin=request_origin(request))
    return {"status": grant.status, "acknowledged_at": grant.acknowledged_at}

@router.post("/disclosures/{share_id}/sign")
def sign_shared_disclosure(
    share_id: int,
    data: SignRequest,
    request: Request,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    grant = sharing.resolve_for_identity(session, share_id, identity)
    slot = sharing.sign(
        session,
        grant,
        data.signature_data,
        data.printed_name,
        signer_user_id=identity.user_id,
        actor=identity.user_id,
        origin=request_origin(request),
    )
    return {"status": grant.status, "signed_at": grant.signed_at, "slot": slot}

# ---------- anonymous access by link token ----------

@router.get("/view/{token}")
def view_by_token(token: str, request: Request, session: Session = Depends(get_session)):
    grant = sharing.resolve_by_token(session, token)
    disclosure = _disclosure(session, grant)
    sharing.view(session, grant, public=True, origin=request_origin(request))
    return sharing.public_view(grant, disclosure)

@router.post("/view/{token}/acknowledge")
def acknowledge_by_token(token: str, request: Request, session: Session = Depends(get_session)):
    grant = sharing.resolve_by_token(session, token)
    sharing.acknowledge(session, grant, origin=request_origin(request))
    return {"status": grant.status, "acknowledged_at": grant.acknowledged_at}

@router.post("/view/{token}/sign")
def sign_by_token(
    token: str,
    data: SignRequest,
    request: Request,
    session: Session = Depends(get_session),
):
    grant = sharing.resolve_by_token(session, token)
    slot = sharing.sign(
        session,
        grant,
        data.signature_data,
        data.printed_name,
        signer_user_id=grant.recipient_user_id,
        origin=request_origin(request),
    )
    return {"status": grant.status, "signed_at": grant.signed_at, "slot": slot}
