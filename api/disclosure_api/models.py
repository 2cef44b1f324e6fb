from enum import Enum
from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field as ORMField
from .utils import utcnow, load_json


class DisclosureStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SIGNED = "signed"


class ShareStatus(str, Enum):
    PENDING = "pending"
    VIEWED = "viewed"
    ACKNOWLEDGED = "acknowledged"
    SIGNED = "signed"


class EventType(str, Enum):
    CREATED = "created"
    VIEWED = "viewed"
    UPDATED = "updated"
    SECTION_SAVED = "section_saved"
    COMPLETED = "completed"
    SIGNED_SELLER = "signed_seller"
    SIGNED_BUYER = "signed_buyer"
    PDF_GENERATED = "pdf_generated"
    SHARED = "shared"
    SHARE_VIEWED = "share_viewed"
    SHARE_ACKNOWLEDGED = "share_acknowledged"
    SHARE_SIGNED = "share_signed"
    ATTACHMENT_ADDED = "attachment_added"
    ATTACHMENT_REMOVED = "attachment_removed"


SELLER_SLOTS = ("seller1", "seller2")
BUYER_SLOTS = ("buyer1", "buyer2")


class Disclosure(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    property_id: str = ORMField(index=True, unique=True)
    seller_id: str = ORMField(index=True)
    status: str = DisclosureStatus.DRAFT.value
    current_section: int = 1
    completion_percentage: int = 0
    header_json: str = "{}"
    sections_json: str = "{}"
    utilities_json: str = "{}"
    seller_json: str = "{}"  # first_name|last_name|phone|email
    seller1_json: Optional[str] = None
    seller2_json: Optional[str] = None
    buyer1_json: Optional[str] = None
    buyer2_json: Optional[str] = None
    attachments_json: str = "[]"
    pdf_key: Optional[str] = None
    pdf_url: Optional[str] = None
    pdf_generated_at: Optional[datetime] = None
    last_auto_save: Optional[datetime] = None
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)

    @property
    def header(self) -> dict:
        return load_json(self.header_json, {})

    @property
    def sections(self) -> dict:
        return load_json(self.sections_json, {})

    @property
    def utilities(self) -> dict:
        return load_json(self.utilities_json, {})

    @property
    def seller(self) -> dict:
        return load_json(self.seller_json, {})

    @property
    def attachments(self) -> list:
        return load_json(self.attachments_json, [])

    def signature(self, slot: str) -> Optional[dict]:
        return load_json(getattr(self, f"{slot}_json"), None) or None


class ShareGrant(SQLModel, table=True):
    __tablename__ = "share_grant"

    id: Optional[int] = ORMField(default=None, primary_key=True)
    disclosure_id: int = ORMField(index=True)
    recipient_email: str = ORMField(index=True)
    recipient_name: Optional[str] = None
    recipient_user_id: Optional[str] = ORMField(default=None, index=True)
    shared_by: str
    message: Optional[str] = None
    access_token: str = ORMField(unique=True, index=True)
    status: str = ShareStatus.PENDING.value
    view_count: int = 0
    first_viewed_at: Optional[datetime] = None
    last_viewed_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class LedgerEntry(SQLModel, table=True):
    __tablename__ = "ledger_entry"

    id: Optional[int] = ORMField(default=None, primary_key=True)
    disclosure_id: int = ORMField(index=True)
    event_type: str = ORMField(index=True)
    actor_user_id: Optional[str] = ORMField(default=None, index=True)
    correlation_id: Optional[int] = ORMField(default=None, index=True)  # share id
    metadata_json: str = "{}"
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    occurred_at: datetime = ORMField(default_factory=utcnow, index=True)
    created_at: datetime = ORMField(default_factory=utcnow)

    @property
    def meta(self) -> dict:
        return load_json(self.metadata_json, {})
