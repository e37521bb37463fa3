from datetime import datetime
from typing import Optional, List, Literal, Any

from pydantic import field_validator

from procurement.schemas.common import CamelModel, decode_json_list, decode_json_object
from procurement.schemas.vendor import VendorRef


class RFPItem(CamelModel):
    name: str = ""
    quantity: Optional[int] = None
    specifications: Optional[str] = None


class RFPTerms(CamelModel):
    payment_terms: Optional[str] = None
    warranty: Optional[str] = None
    delivery_terms: Optional[str] = None
    other_terms: Optional[str] = None


class RFPCreateRequest(CamelModel):
    description: Optional[str] = None


class RFPUpdate(CamelModel):
    """PUT body. Only keys present in the request are applied (see model_fields_set)."""
    title: Optional[str] = None
    description: Optional[str] = None
    items: Optional[List[RFPItem]] = None
    budget: Optional[float] = None
    deadline: Optional[datetime] = None
    terms: Optional[RFPTerms] = None
    status: Optional[Literal["draft", "sent", "closed"]] = None


class RFPSendRequest(CamelModel):
    vendor_ids: Optional[List[int]] = None


class RFPResponse(CamelModel):
    id: int
    title: str
    description: str
    items: List[RFPItem] = []
    budget: float
    deadline: datetime
    terms: RFPTerms = RFPTerms()
    vendors: List[int] = []
    vendor_details: List[VendorRef] = []
    status: str
    created_at: Optional[datetime] = None

    @field_validator("items", "vendors", mode="before")
    @classmethod
    def parse_json_list(cls, v: Any) -> Any:
        return decode_json_list(v)

    @field_validator("terms", mode="before")
    @classmethod
    def parse_json_terms(cls, v: Any) -> Any:
        return decode_json_object(v)


class RFPRef(CamelModel):
    id: int
    title: str
    budget: float
    deadline: datetime


class RFPEnvelope(CamelModel):
    success: bool = True
    rfp: RFPResponse


class RFPCreateEnvelope(RFPEnvelope):
    structured: dict[str, Any]


class RFPListEnvelope(CamelModel):
    success: bool = True
    count: int
    rfps: List[RFPResponse]


class RFPSendEnvelope(CamelModel):
    success: bool = True
    sent: int
    failed: int
    message: str
    rfp: RFPResponse
