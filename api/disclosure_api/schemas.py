
from pydantic import BaseModel, Field
from typing import Optional

class SellerInfo(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

class PropertyContext(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    county: Optional[str] = None
    year_built: Optional[int] = None
    flood_zone: Optional[str] = None
    flood_zone_data: Optional[dict] = None
    mud_district: Optional[str] = None
    mud_annual_fee: Optional[float] = None
    school_district: Optional[str] = None
    property_taxes: Optional[float] = None

class DisclosureCreate(BaseModel):
    seller: Optional[SellerInfo] = None
    property: Optional[PropertyContext] = None

class SectionSave(BaseModel):
    data: dict  # field name -> answer, merged into the stored section

class CompleteRequest(BaseModel):
    force: bool = False

class SignRequest(BaseModel):
    signature_data: str  # base64 PNG or data URL
    printed_name: str

class AttachmentCreate(BaseModel):
    name: str
    type: str
    url: str
    size: int = 0

class ShareCreate(BaseModel):
    recipient_email: str
    recipient_name: Optional[str] = None
    message: Optional[str] = None
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=365)
