from datetime import datetime
from typing import Optional, List

from pydantic import EmailStr, ValidationInfo, field_validator

from procurement.schemas.common import CamelModel


class VendorCreate(CamelModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    address: Optional[str] = None

    @field_validator("name", "email", "phone", "company", "address", mode="before")
    @classmethod
    def strip_text(cls, v, info: ValidationInfo):
        if isinstance(v, str):
            v = v.strip()
            # a blank email counts as missing rather than malformed
            if not v and info.field_name == "email":
                return None
        return v


class VendorUpdate(VendorCreate):
    pass


class VendorResponse(CamelModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    company: str
    address: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class VendorRef(CamelModel):
    """Short vendor reference embedded in RFP and proposal responses."""
    id: int
    name: str
    email: str
    company: str


class VendorEnvelope(CamelModel):
    success: bool = True
    vendor: VendorResponse


class VendorListEnvelope(CamelModel):
    success: bool = True
    count: int
    vendors: List[VendorResponse]

