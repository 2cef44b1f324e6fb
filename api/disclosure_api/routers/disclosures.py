from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlmodel import Session
from minio.error import S3Error
from ..db import get_session
from ..auth import Identity, require_identity, request_origin
from ..models import EventType
from ..schemas import (
    AttachmentCreate,
    CompleteRequest,
    DisclosureCreate,
    SectionSave,
    ShareCreate,
    SignRequest,
)
from ..storage import get_bytes
from .. import lifecycle, ledger, sharing
from ..notifications import share_link

router = APIRouter()

def _seller_context(identity: Identity, data: Optional[DisclosureCreate]) -> dict:
    seller = {
        "first_name": identity.first_name,
        "last_name": identity.last_name,
        "email": identity.email,
        "phone": identity.phone,
    }
    if data and data.seller:
        seller.update({k: v for k, v in data.seller.model_dump().items() if v is not None})
    return seller

def _load(session: Session, disclosure_id: int, identity: Identity):
    return lifecycle.get_for_seller(session, disclosure_id, identity.user_id)

@router.post("/property/{property_id}")
def create_or_get_disclosure(
    property_id: str,
    request: Request,
    data: Optional[DisclosureCreate] = None,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    prop = data.property.model_dump(exclude_none=True) if data and data.property else None
    disclosure, created = lifecycle.create_or_get(
        session,
        property_id,
        identity.user_id,
        seller=_seller_context(identity, data),
        property_context=prop,
        origin=request_origin(request),
    )
    return {"created": created, **lifecycle.serialize(disclosure)}

@router.get("")
def list_disclosures(
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    return [
        {
            "id": d.id,
            "property_id": d.property_id,
            "status": d.status,
            "completion_percentage": d.completion_percentage,
            "address": d.header.get("property_address"),
            "pdf_url": d.pdf_url,
            "updated_at": d.updated_at,
        }
        for d in lifecycle.list_for_seller(session, identity.user_id)
    ]

@router.get("/{disclosure_id}")
def get_disclosure(
    disclosure_id: int,
    request: Request,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    disclosure = _load(session, disclosure_id, identity)
    ledger.track(disclosure.id, EventType.VIEWED, actor=identity.user_id, origin=request_origin(request))
    return lifecycle.serialize(disclosure)

@router.patch("/{disclosure_id}/sections/{part}")
def save_section(
    disclosure_id: int,
    part: str,
    data: SectionSave,
    request: Request,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    disclosure = _load(session, disclosure_id, identity)
    return lifecycle.save_section(
        session, disclosure, part, data.data, actor=identity.user_id, origin=request_origin(request)
    )

@router.post("/{disclosure_id}/validate")
def validate_disclosure(
    disclosure_id: int,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    return lifecycle.validation_report(_load(session, disclosure_id, identity))

@router.post("/{disclosure_id}/complete")
def complete_disclosure(
    disclosure_id: int,
    request: Request,
    data: Optional[CompleteRequest] = None,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    disclosure = _load(session, disclosure_id, identity)
    report = lifecycle.complete(
        session,
        disclosure,
        force=bool(data and data.force),
        actor=identity.user_id,
        origin=request_origin(request),
    )
    return {"status": disclosure.status, "completion": report["completion"], "warnings": report["warnings"]}

@router.post("/{disclosure_id}/sign")
def sign_disclosure(
    disclosure_id: int,
    data: SignRequest,
    request: Request,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    disclosure = _load(session, disclosure_id, identity)
    slot = lifecycle.sign_as_seller(
        session,
        disclosure,
        data.signature_data,
        data.printed_name,
        actor=identity.user_id,
        origin=request_origin(request),
    )
    return {"slot": slot, "status": disclosure.status, "signed_at": disclosure.signature(slot).get("signed_at")}

@router.post("/{disclosure_id}/attachments")
def add_attachment(
    disclosure_id: int,
    data: AttachmentCreate,
    request: Request,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    disclosure = _load(session, disclosure_id, identity)
    return lifecycle.add_attachment(
        session,
        disclosure,
        data.name,
        data.type,
        data.url,
        size=data.size,
        actor=identity.user_id,
        origin=request_origin(request),
    )

@router.delete("/{disclosure_id}/attachments/{attachment_id}")
def remove_attachment(
    disclosure_id: int,
    attachment_id: str,
    request: Request,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    disclosure = _load(session, disclosure_id, identity)
    remaining = lifecycle.remove_attachment(
        session, disclosure, attachment_id, actor=identity.user_id, origin=request_origin(request)
    )
    return {"ok": True, "remaining": remaining}

@router.post("/{disclosure_id}/pdf")
def generate_pdf(
    disclosure_id: int,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    disclosure = _load(session, disclosure_id, identity)
    pdf_url = lifecycle.generate_pdf(session, disclosure, actor=identity.user_id)
    return {"pdf_url": pdf_url, "pdf_generated_at": disclosure.pdf_generated_at}

@router.get("/{disclosure_id}/pdf")
def download_pdf(
    disclosure_id: int,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    disclosure = _load(session, disclosure_id, identity)
    if not disclosure.pdf_key:
        raise HTTPException(404, "PDF has not been generated yet")
    try:
        pdf_bytes = get_bytes(disclosure.pdf_key)
    except S3Error:
        raise HTTPException(404, "stored file missing for this disclosure")
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="disclosure-{disclosure.id}.pdf"'},
    )

@router.post("/{disclosure_id}/shares")
def share_disclosure(
    disclosure_id: int,
    data: ShareCreate,
    request: Request,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    disclosure = _load(session, disclosure_id, identity)
    grant, warning = sharing.share(
        session,
        disclosure,
        data.recipient_email,
        recipient_name=data.recipient_name,
        message=data.message,
        expires_in_days=data.expires_in_days,
        actor=identity.user_id,
        origin=request_origin(request),
    )
    body = {**sharing.serialize(grant), "share_link": share_link(grant)}
    if warning:
        body["notification_warning"] = warning
    return body

@router.get("/{disclosure_id}/shares")
def list_shares(
    disclosure_id: int,
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_identity),
):
    disclosure = _load(session, disclosure_id, identity)
    return [sharing.serialize(g) for g in sharing.list_for_disclosure(session, disclosure.id)]
