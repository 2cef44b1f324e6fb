"""
Share grant status only moves forward::

    pending --view--> viewed --acknowledge--> acknowledged --sign--> signed
                        \\______________________sign_____________/

Viewing never changes an acknowledged or signed grant's status. Signing from
``pending`` is refused (the recipient must have opened the disclosure first);
with ``SIGN_REQUIRES_ACKNOWLEDGMENT`` enabled signing also requires
``acknowledged``. Every transition is a single conditional UPDATE so two
concurrent requests cannot both win it.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import case, func, or_, update
from sqlmodel import Session, select

from . import config, ledger, lifecycle, notifications
from .auth import Identity
from .errors import BadRequest, Expired, InvalidTransition, NotFound
from .models import Disclosure, DisclosureStatus, EventType, ShareGrant, ShareStatus
from .utils import new_access_token, utcnow

logger = logging.getLogger(__name__)

SHAREABLE_STATUSES = (DisclosureStatus.COMPLETED.value, DisclosureStatus.SIGNED.value)
TOKEN_NOT_FOUND = "Disclosure not found or link has expired"


def serialize(grant: ShareGrant) -> dict:
    return {
        "id": grant.id,
        "disclosure_id": grant.disclosure_id,
        "recipient_email": grant.recipient_email,
        "recipient_name": grant.recipient_name,
        "recipient_user_id": grant.recipient_user_id,
        "status": grant.status,
        "message": grant.message,
        "shared_at": grant.created_at,
        "view_count": grant.view_count,
        "first_viewed_at": grant.first_viewed_at,
        "last_viewed_at": grant.last_viewed_at,
        "acknowledged_at": grant.acknowledged_at,
        "signed_at": grant.signed_at,
        "expires_at": grant.expires_at,
    }


def _is_expired(grant: ShareGrant) -> bool:
    return grant.expires_at is not None and utcnow() > grant.expires_at


def _ensure_live(grant: ShareGrant):
    if _is_expired(grant):
        raise Expired("This disclosure link has expired", expired_at=grant.expires_at)


def _conditional(session: Session, grant_id: int, *criteria, **values):
    stmt = (
        update(ShareGrant)
        .where(ShareGrant.id == grant_id, *criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return session.exec(stmt).rowcount


# ---------- creation ----------

def share(
    session: Session,
    disclosure: Disclosure,
    recipient_email: str,
    recipient_name: Optional[str] = None,
    message: Optional[str] = None,
    expires_in_days: Optional[int] = None,
    actor: Optional[str] = None,
    origin: Optional[dict] = None,
):
    """Create a pending grant; returns ``(grant, notification_warning)``."""
    email = (recipient_email or "").strip().lower()
    if not email or "@" not in email:
        raise BadRequest("Recipient email is required")
    if disclosure.status not in SHAREABLE_STATUSES:
        raise InvalidTransition(
            "Please complete the disclosure before sharing",
            guard="disclosure_not_ready",
            status=disclosure.status,
            completion=disclosure.completion_percentage,
        )
    days = config.SHARE_EXPIRY_DAYS if expires_in_days is None else expires_in_days
    grant = ShareGrant(
        disclosure_id=disclosure.id,
        recipient_email=email,
        recipient_name=recipient_name or None,
        shared_by=actor or disclosure.seller_id,
        message=message or None,
        access_token=new_access_token(),
        status=ShareStatus.PENDING.value,
        expires_at=utcnow() + timedelta(days=days) if days else None,
    )
    session.add(grant)
    session.commit()
    session.refresh(grant)

    if not disclosure.pdf_url:
        lifecycle.schedule_pdf_refresh(disclosure.id)
    ledger.track(disclosure.id, EventType.SHARED, actor=actor, correlation_id=grant.id, origin=origin,
                 metadata={"share_id": grant.id, "recipient_email": email, "recipient_name": recipient_name})

    warning = None
    try:
        notifications.share_created(grant, disclosure)
    except Exception:
        logger.warning("share %s created but notification to %s failed", grant.id, email, exc_info=True)
        warning = "Disclosure shared, but the notification email could not be sent"
    return grant, warning


def list_for_disclosure(session: Session, disclosure_id: int) -> list:
    return session.exec(
        select(ShareGrant)
        .where(ShareGrant.disclosure_id == disclosure_id)
        .order_by(ShareGrant.created_at.desc(), ShareGrant.id.desc())
    ).all()


# ---------- identity resolution ----------

def _visible_to(identity: Identity):
    return or_(
        ShareGrant.recipient_user_id == identity.user_id,
        ShareGrant.recipient_email == identity.email,
    )


def _bind(session: Session, grant: ShareGrant, identity: Identity):
    if grant.recipient_user_id is not None or grant.recipient_email != identity.email:
        return
    bound = _conditional(
        session, grant.id, ShareGrant.recipient_user_id.is_(None),
        recipient_user_id=identity.user_id,
    )
    session.commit()
    session.refresh(grant)
    if bound:
        logger.info("share %s bound to user %s", grant.id, identity.user_id)


def resolve_for_identity(session: Session, grant_id: int, identity: Identity) -> ShareGrant:
    grant = session.exec(
        select(ShareGrant).where(ShareGrant.id == grant_id, _visible_to(identity))
    ).first()
    if not grant:
        raise NotFound("Shared disclosure not found")
    _ensure_live(grant)
    _bind(session, grant, identity)
    return grant


def resolve_by_token(session: Session, token: str) -> ShareGrant:
    grant = None
    if token:
        grant = session.exec(select(ShareGrant).where(ShareGrant.access_token == token)).first()
    if not grant:
        raise NotFound(TOKEN_NOT_FOUND)
    _ensure_live(grant)
    return grant


def list_for_recipient(session: Session, identity: Identity) -> list:
    grants = session.exec(
        select(ShareGrant)
        .where(_visible_to(identity))
        .order_by(ShareGrant.created_at.desc(), ShareGrant.id.desc())
    ).all()
    for grant in grants:
        if not _is_expired(grant):
            _bind(session, grant, identity)
    return grants


def recipient_stats(session: Session, identity: Identity) -> dict:
    rows = session.exec(
        select(ShareGrant.status, func.count(ShareGrant.id))
        .where(_visible_to(identity))
        .group_by(ShareGrant.status)
    ).all()
    counts = {s.value: 0 for s in ShareStatus}
    counts.update({status: int(count) for status, count in rows})
    return {
        "total": sum(counts.values()),
        **counts,
        "needs_action": counts[ShareStatus.PENDING.value] + counts[ShareStatus.VIEWED.value],
    }


# ---------- transitions ----------

def view(
    session: Session,
    grant: ShareGrant,
    actor: Optional[str] = None,
    public: bool = False,
    origin: Optional[dict] = None,
) -> bool:
    """Record one view; returns True when this request was the first view."""
    now = utcnow()
    _conditional(session, grant.id, view_count=ShareGrant.view_count + 1, last_viewed_at=now)
    first_view = _conditional(
        session, grant.id, ShareGrant.first_viewed_at.is_(None),
        first_viewed_at=now,
        status=case(
            (ShareGrant.status == ShareStatus.PENDING.value, ShareStatus.VIEWED.value),
            else_=ShareGrant.status,
        ),
    ) == 1
    session.commit()
    session.refresh(grant)

    ledger.track(grant.disclosure_id, EventType.SHARE_VIEWED, actor=actor, correlation_id=grant.id,
                 origin=origin, metadata={
                     "share_id": grant.id,
                     "view_count": grant.view_count,
                     "first_view": first_view,
                     "public_access": public,
                 })
    return first_view


def _refuse(session: Session, grant: ShareGrant, action: str):
    session.rollback()
    session.refresh(grant)
    if grant.status == ShareStatus.PENDING.value:
        raise InvalidTransition(
            f"Disclosure must be viewed before it can be {action}",
            guard="share_not_viewed", status=grant.status,
        )
    if action == "acknowledged":
        raise InvalidTransition(
            "Disclosure has already been acknowledged",
            guard="share_already_acknowledged", status=grant.status,
        )
    if grant.status == ShareStatus.SIGNED.value:
        raise InvalidTransition(
            "Disclosure has already been signed",
            guard="share_already_signed", status=grant.status,
        )
    raise InvalidTransition(
        "Disclosure must be acknowledged before it can be signed",
        guard="share_not_acknowledged", status=grant.status,
    )


def acknowledge(
    session: Session,
    grant: ShareGrant,
    actor: Optional[str] = None,
    origin: Optional[dict] = None,
) -> ShareGrant:
    updated = _conditional(
        session, grant.id, ShareGrant.status == ShareStatus.VIEWED.value,
        status=ShareStatus.ACKNOWLEDGED.value, acknowledged_at=utcnow(),
    )
    if updated != 1:
        _refuse(session, grant, "acknowledged")
    session.commit()
    session.refresh(grant)

    ledger.track(grant.disclosure_id, EventType.SHARE_ACKNOWLEDGED, actor=actor,
                 correlation_id=grant.id, origin=origin, metadata={"share_id": grant.id})
    disclosure = session.get(Disclosure, grant.disclosure_id)
    if disclosure:
        notifications.share_acknowledged(grant, disclosure)
    return grant


def _signable_statuses():
    if config.SIGN_REQUIRES_ACKNOWLEDGMENT:
        return (ShareStatus.ACKNOWLEDGED.value,)
    return (ShareStatus.VIEWED.value, ShareStatus.ACKNOWLEDGED.value)


def sign(
    session: Session,
    grant: ShareGrant,
    signature_data: str,
    printed_name: str,
    signer_user_id: Optional[str] = None,
    actor: Optional[str] = None,
    origin: Optional[dict] = None,
) -> str:
    """Sign the grant and the disclosure's first empty buyer slot in one transaction."""
    if not signature_data or not printed_name:
        raise BadRequest("Signature data and printed name are required")
    try:
        updated = _conditional(
            session, grant.id, ShareGrant.status.in_(_signable_statuses()),
            status=ShareStatus.SIGNED.value, signed_at=utcnow(),
        )
        if updated != 1:
            _refuse(session, grant, "signed")
        disclosure = session.exec(
            select(Disclosure)
            .where(Disclosure.id == grant.disclosure_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if not disclosure:
            raise NotFound("Disclosure not found")
        slot = lifecycle.apply_buyer_signature(
            disclosure, signature_data, printed_name,
            user_id=signer_user_id, email=grant.recipient_email,
        )
        session.add(disclosure)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(grant)

    ledger.track(grant.disclosure_id, EventType.SHARE_SIGNED, actor=actor, correlation_id=grant.id,
                 origin=origin, metadata={"share_id": grant.id, "printed_name": printed_name})
    ledger.track(grant.disclosure_id, EventType.SIGNED_BUYER, actor=actor, correlation_id=grant.id,
                 origin=origin, metadata={"share_id": grant.id, "slot": slot})
    notifications.share_signed(grant, disclosure)
    lifecycle.schedule_pdf_refresh(disclosure.id)
    return slot


# ---------- recipient views ----------

def _signature_summary(disclosure: Disclosure) -> dict:
    summary = {}
    for slot, sig in lifecycle.signatures(disclosure).items():
        summary[slot] = {"printed_name": sig.get("printed_name"), "signed_at": sig.get("signed_at")} if sig else None
    return summary


def recipient_view(grant: ShareGrant, disclosure: Disclosure) -> dict:
    return {
        "share": serialize(grant),
        "disclosure": {
            "id": disclosure.id,
            "status": disclosure.status,
            "completion_percentage": disclosure.completion_percentage,
            "pdf_url": disclosure.pdf_url,
            "header": disclosure.header,
            "sections": disclosure.sections,
            "utilities": disclosure.utilities,
            "attachments": disclosure.attachments,
            "signatures": _signature_summary(disclosure),
        },
        "seller": lifecycle.shareable_seller(disclosure),
    }


def public_view(grant: ShareGrant, disclosure: Disclosure) -> dict:
    header = disclosure.header
    return {
        "requires_auth": False,
        "share": {"id": grant.id, "status": grant.status, "view_count": grant.view_count},
        "disclosure": {
            "id": disclosure.id,
            "status": disclosure.status,
            "pdf_url": disclosure.pdf_url,
            "header": header,
        },
        "property": {
            "address": header.get("property_address"),
            "city": header.get("city"),
            "zip_code": header.get("zip_code"),
        },
        "seller": lifecycle.shareable_seller(disclosure),
    }
