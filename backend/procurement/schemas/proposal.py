from datetime import datetime
from typing import Optional, List, Any, Dict

from pydantic import field_validator

from procurement.schemas.common import CamelModel, decode_json_object
from procurement.schemas.rfp import RFPRef
from procurement.schemas.vendor import VendorRef


class ItemPrice(CamelModel):
    item: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[float] = None


class ProposalPricing(CamelModel):
    total_price: Optional[float] = None
    item_prices: List[ItemPrice] = []
    currency: str = "USD"


class ProposalTerms(CamelModel):
    payment_terms: Optional[str] = None
    warranty: Optional[str] = None
    delivery_time: Optional[str] = None
    other_terms: Optional[str] = None


class ProposalResponse(CamelModel):
    id: int
    rfp_id: int
    vendor_id: int
    vendor: Optional[VendorRef] = None
    parsed_data: Dict[str, Any] = {}  # free-form: any JSON value per key
    raw_email: str
    email_subject: Optional[str] = None
    pricing: ProposalPricing = ProposalPricing()
    terms: ProposalTerms = ProposalTerms()
    ai_score: Optional[float] = None
    ai_summary: Optional[str] = None
    received_at: Optional[datetime] = None

    @field_validator("parsed_data", "pricing", "terms", mode="before")
    @classmethod
    def parse_json_object(cls, v: Any) -> Any:
        return decode_json_object(v)


class ProposalDetailResponse(ProposalResponse):
    rfp: Optional[RFPRef] = None


class ProposalEnvelope(CamelModel):
    success: bool = True
    proposal: ProposalDetailResponse


class ProposalListEnvelope(CamelModel):
    success: bool = True
    count: int
    proposals: List[ProposalResponse]


class Recommendation(CamelModel):
    vendor_index: int  # 1-based position in the compared proposal list
    vendor_id: Optional[int] = None
    vendor_name: Optional[str] = None
    reasoning: str = ""


class Comparison(CamelModel):
    scores: List[float]
    summaries: List[str]
    recommendation: Recommendation


class CompareEnvelope(CamelModel):
    success: bool = True
    proposals: List[ProposalResponse]
    comparison: Comparison


class MessageOutcomeResponse(CamelModel):
    uid: str
    outcome: str  # created | skipped | failed
    reason: Optional[str] = None
    subject: Optional[str] = None
    sender: Optional[str] = None
    proposal_id: Optional[int] = None


class CheckEmailsEnvelope(CamelModel):
    success: bool = True
    processed: int
    skipped: int
    failed: int
    message: str
    results: List[MessageOutcomeResponse] = []
