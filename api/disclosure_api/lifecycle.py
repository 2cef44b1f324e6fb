import logging
import secrets
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import config, ledger, notifications, sections as form
from .errors import BadRequest, CollaboratorError, InvalidTransition, NotFound, ValidationFailed
from .models import BUYER_SLOTS, SELLER_SLOTS, Disclosure, DisclosureStatus, EventType
from .renderer import render_disclosure_pdf
from .storage import disclosure_pdf_key, put_bytes, public_url
from .utils import canonical_json, utcnow

logger = logging.getLogger(__name__)

ATTACHMENT_TYPES = (
    "inspection_report",
    "hoa_document",
    "survey",
    "title_document",
    "warranty",
    "permit",
    "other",
)
SHAREABLE_SELLER_FIELDS = ("first_name", "last_name", "phone")


# ---------- views ----------

def shareable_seller(disclosure: Disclosure) -> dict:
    seller = disclosure.seller
    return {key: seller.get(key) for key in SHAREABLE_SELLER_FIELDS}


def signatures(disclosure: Disclosure) -> dict:
    return {slot: disclosure.signature(slot) for slot in SELLER_SLOTS + BUYER_SLOTS}


def serialize(disclosure: Disclosure) -> dict:
    return {
        "id": disclosure.id,
        "property_id": disclosure.property_id,
        "seller_id": disclosure.seller_id,
        "status": disclosure.status,
        "current_section": disclosure.current_section,
        "completion_percentage": disclosure.completion_percentage,
        "header": disclosure.header,
        "sections": disclosure.sections,
        "utilities": disclosure.utilities,
        "seller": disclosure.seller,
        "signatures": signatures(disclosure),
        "attachments": disclosure.attachments,
        "pdf_url": disclosure.pdf_url,
        "pdf_generated_at": disclosure.pdf_generated_at,
        "last_auto_save": disclosure.last_auto_save,
        "created_at": disclosure.created_at,
        "updated_at": disclosure.updated_at,
        "sections_summary": form.sections_summary(disclosure.sections),
    }


def snapshot(disclosure: Disclosure) -> dict:
    data = disclosure.sections
    return {
        "id": disclosure.id,
        "status": disclosure.status,
        "completion_percentage": disclosure.completion_percentage,
        "header": disclosure.header,
        "seller": shareable_seller(disclosure),
        "sections": [
            {"number": s.number, "title": s.title, "data": data.get(s.key) or {}}
            for s in form.SECTIONS
        ],
        "utilities": disclosure.utilities,
        "signatures": signatures(disclosure),
        "attachments": disclosure.attachments,
    }


# ---------- lookups ----------

def get_for_seller(session: Session, disclosure_id: int, seller_id: str) -> Disclosure:
    disclosure = session.get(Disclosure, disclosure_id)
    if not disclosure or disclosure.seller_id != seller_id:
        raise NotFound("Disclosure not found")
    return disclosure


def list_for_seller(session: Session, seller_id: str) -> list:
    return session.exec(
        select(Disclosure)
        .where(Disclosure.seller_id == seller_id)
        .order_by(Disclosure.updated_at.desc())
    ).all()


def _save(session: Session, disclosure: Disclosure):
    disclosure.updated_at = utcnow()
    session.add(disclosure)
    session.commit()
    session.refresh(disclosure)


def _lock(session: Session, disclosure_id: int) -> Disclosure:
    # reload over whatever the caller holds; the request may have read a stale row
    disclosure = session.exec(
        select(Disclosure)
        .where(Disclosure.id == disclosure_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).first()
    if not disclosure:
        raise NotFound("Disclosure not found")
    return disclosure


def create_or_get(
    session: Session,
    property_id: str,
    seller_id: str,
    seller: Optional[dict] = None,
    property_context: Optional[dict] = None,
    origin: Optional[dict] = None,
):
    """Return ``(disclosure, created)``; at most one disclosure exists per property."""
    existing = session.exec(select(Disclosure).where(Disclosure.property_id == property_id)).first()
    if existing:
        if existing.seller_id != seller_id:
            raise NotFound("Disclosure not found")
        return existing, False

    header, seeded = form.prefill_from_property(property_context)
    disclosure = Disclosure(
        property_id=property_id,
        seller_id=seller_id,
        status=DisclosureStatus.DRAFT.value,
        header_json=canonical_json(header),
        sections_json=canonical_json(seeded),
        seller_json=canonical_json(seller or {}),
        completion_percentage=form.compute_completion(seeded),
    )
    session.add(disclosure)
    try:
        session.commit()
    except IntegrityError:
        # lost a create race for the same property
        session.rollback()
        existing = session.exec(select(Disclosure).where(Disclosure.property_id == property_id)).first()
        if not existing or existing.seller_id != seller_id:
            raise NotFound("Disclosure not found")
        return existing, False
    session.refresh(disclosure)
    ledger.track(disclosure.id, EventType.CREATED, actor=seller_id,
                 metadata={"property_id": property_id, "prefilled": bool(property_context)},
                 origin=origin)
    return disclosure, True


# ---------- form ----------

def save_section(
    session: Session,
    disclosure: Disclosure,
    part,
    data: dict,
    actor: Optional[str] = None,
    origin: Optional[dict] = None,
) -> dict:
    key = form.normalize_part(part)
    if key is None:
        raise BadRequest("Invalid section number", section=str(part))
    if not isinstance(data, dict):
        raise BadRequest("Section data must be an object")

    try:
        disclosure = _lock(session, disclosure.id)
        if disclosure.status == DisclosureStatus.SIGNED.value:
            raise InvalidTransition("Cannot modify a signed disclosure", guard="disclosure_signed")
        completion_before = disclosure.completion_percentage
        if key == form.HEADER:
            disclosure.header_json = canonical_json(data)
        elif key == form.UTILITIES:
            disclosure.utilities_json = canonical_json(data)
        else:
            merged = form.merge_section(disclosure.sections, key, data)
            disclosure.sections_json = canonical_json(merged)
            number = form.section_number(key)
            if number > disclosure.current_section:
                disclosure.current_section = number
        disclosure.completion_percentage = form.compute_completion(disclosure.sections)
        if disclosure.status == DisclosureStatus.DRAFT.value:
            disclosure.status = DisclosureStatus.IN_PROGRESS.value
        disclosure.last_auto_save = utcnow()
        _save(session, disclosure)
    except Exception:
        session.rollback()
        raise

    ledger.track(disclosure.id, EventType.SECTION_SAVED, actor=actor, origin=origin, metadata={
        "section": key,
        "completion_before": completion_before,
        "completion_after": disclosure.completion_percentage,
    })
    return {
        "section": key,
        "completion": disclosure.completion_percentage,
        "current_section": disclosure.current_section,
        "status": disclosure.status,
        "last_auto_save": disclosure.last_auto_save,
    }


def validation_report(disclosure: Disclosure) -> dict:
    data = disclosure.sections
    result = form.validate_for_completion(data, disclosure.utilities)
    completion = form.compute_completion(data)
    threshold = config.SIGNING_COMPLETION_THRESHOLD
    return {
        **result,
        "completion": completion,
        "threshold": threshold,
        "incomplete_sections": form.incomplete_sections(data),
        "can_complete": result["valid"] and completion >= threshold,
    }


def _require_ready(disclosure: Disclosure, allow_below_threshold: bool = False) -> dict:
    report = validation_report(disclosure)
    if not report["valid"]:
        raise ValidationFailed(
            "Please complete all required fields before submitting",
            errors=report["errors"],
            warnings=report["warnings"],
            guard="required_fields_missing",
        )
    if report["completion"] < report["threshold"] and not allow_below_threshold:
        raise ValidationFailed(
            f"Disclosure must be at least {report['threshold']}% complete",
            errors=[],
            warnings=report["warnings"],
            guard="completion_below_threshold",
            current_completion=report["completion"],
            threshold=report["threshold"],
            incomplete_sections=report["incomplete_sections"],
        )
    return report


def complete(
    session: Session,
    disclosure: Disclosure,
    force: bool = False,
    actor: Optional[str] = None,
    origin: Optional[dict] = None,
) -> dict:
    if disclosure.status == DisclosureStatus.SIGNED.value:
        raise InvalidTransition("Disclosure is already signed", guard="disclosure_signed")
    report = _require_ready(disclosure, allow_below_threshold=force)
    if disclosure.status == DisclosureStatus.COMPLETED.value:
        return report
    disclosure.status = DisclosureStatus.COMPLETED.value
    disclosure.completion_percentage = report["completion"]
    _save(session, disclosure)

    ledger.track(disclosure.id, EventType.COMPLETED, actor=actor, origin=origin,
                 metadata={"completion": report["completion"], "forced": bool(force)})
    schedule_pdf_refresh(disclosure.id)
    return report


# ---------- signatures ----------

def _first_empty(disclosure: Disclosure, slots) -> Optional[str]:
    for slot in slots:
        if not disclosure.signature(slot):
            return slot
    return None


def _claim_slot(session: Session, disclosure: Disclosure, slots, payload: str, **values) -> Optional[str]:
    """Write ``payload`` into the first slot that is still empty in the database."""
    for slot in slots:
        column = f"{slot}_json"
        claimed = session.exec(
            update(Disclosure)
            .where(Disclosure.id == disclosure.id, getattr(Disclosure, column).is_(None))
            .values(**{column: payload}, **values)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed == 1:
            return slot
    return None


def sign_as_seller(
    session: Session,
    disclosure: Disclosure,
    signature_data: str,
    printed_name: str,
    actor: Optional[str] = None,
    origin: Optional[dict] = None,
) -> str:
    if not signature_data or not printed_name:
        raise BadRequest("Signature data and printed name are required")
    try:
        disclosure = _lock(session, disclosure.id)
        if _first_empty(disclosure, SELLER_SLOTS) is None:
            raise InvalidTransition("Both seller signature slots are already filled", guard="seller_slots_full")
        _require_ready(disclosure)
        now = utcnow()
        payload = canonical_json({
            "signature_data": signature_data,
            "printed_name": printed_name,
            "signed_at": now.isoformat(),
        })
        slot = _claim_slot(session, disclosure, SELLER_SLOTS, payload,
                           status=DisclosureStatus.SIGNED.value, updated_at=now)
        if slot is None:
            raise InvalidTransition("Both seller signature slots are already filled", guard="seller_slots_full")
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(disclosure)

    ledger.track(disclosure.id, EventType.SIGNED_SELLER, actor=actor, origin=origin,
                 metadata={"slot": slot, "printed_name": printed_name})
    notifications.seller_signed(disclosure)
    schedule_pdf_refresh(disclosure.id)
    return slot


def apply_buyer_signature(
    disclosure: Disclosure,
    signature_data: str,
    printed_name: str,
    user_id: Optional[str],
    email: str,
) -> str:
    """Write the first empty buyer slot. Does not commit."""
    slot = _first_empty(disclosure, BUYER_SLOTS)
    if slot is None:
        raise InvalidTransition("Both buyer signature slots are already filled", guard="buyer_slots_full")
    setattr(disclosure, f"{slot}_json", canonical_json({
        "signature_data": signature_data,
        "printed_name": printed_name,
        "signed_at": utcnow().isoformat(),
        "user_id": user_id,
        "email": email,
    }))
    disclosure.updated_at = utcnow()
    return slot


# ---------- attachments ----------

def add_attachment(
    session: Session,
    disclosure: Disclosure,
    name: str,
    type_: str,
    url: str,
    size: int = 0,
    actor: Optional[str] = None,
    origin: Optional[dict] = None,
) -> dict:
    if type_ not in ATTACHMENT_TYPES:
        raise BadRequest("Invalid attachment type", allowed_types=list(ATTACHMENT_TYPES))
    attachment = {
        "id": f"att_{secrets.token_hex(8)}",
        "name": name,
        "type": type_,
        "url": url,
        "size": size or 0,
        "uploaded_at": utcnow().isoformat(),
        "uploaded_by": actor,
    }
    attachments = disclosure.attachments
    attachments.append(attachment)
    disclosure.attachments_json = canonical_json(attachments)
    _save(session, disclosure)
    ledger.track(disclosure.id, EventType.ATTACHMENT_ADDED, actor=actor, origin=origin,
                 metadata={"attachment_id": attachment["id"], "name": name, "type": type_})
    return attachment


def remove_attachment(
    session: Session,
    disclosure: Disclosure,
    attachment_id: str,
    actor: Optional[str] = None,
    origin: Optional[dict] = None,
) -> int:
    attachments = disclosure.attachments
    remaining = [a for a in attachments if a.get("id") != attachment_id]
    if len(remaining) == len(attachments):
        raise NotFound("Attachment not found")
    disclosure.attachments_json = canonical_json(remaining)
    _save(session, disclosure)
    ledger.track(disclosure.id, EventType.ATTACHMENT_REMOVED, actor=actor, origin=origin,
                 metadata={"attachment_id": attachment_id})
    return len(remaining)


# ---------- pdf ----------

def refresh_pdf(session: Session, disclosure: Disclosure, actor: Optional[str] = None) -> str:
    pdf_bytes, sha = render_disclosure_pdf(snapshot(disclosure))
    stamp = utcnow()
    key = disclosure_pdf_key(disclosure.id, stamp)
    put_bytes(key, pdf_bytes, content_type="application/pdf")
    disclosure.pdf_key = key
    disclosure.pdf_url = public_url(key)
    disclosure.pdf_generated_at = stamp
    session.add(disclosure)
    session.commit()
    session.refresh(disclosure)
    ledger.track(disclosure.id, EventType.PDF_GENERATED, actor=actor,
                 metadata={"sha256": sha, "key": key})
    return disclosure.pdf_url


def schedule_pdf_refresh(disclosure_id: int):
    try:
        from .worker import render_pdf
        render_pdf.delay(disclosure_id)
    except Exception:
        logger.exception("pdf refresh failed for disclosure %s", disclosure_id)


def generate_pdf(session: Session, disclosure: Disclosure, actor: Optional[str] = None) -> str:
    try:
        return refresh_pdf(session, disclosure, actor=actor)
    except Exception as exc:
        session.rollback()
        logger.exception("pdf generation failed for disclosure %s", disclosure.id)
        raise CollaboratorError("PDF generation failed") from exc
