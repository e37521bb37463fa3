import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from procurement import jsonfields
from procurement.database import get_db
from procurement.dependencies import get_ai_service, get_mailer
from procurement.models.rfp import RFP, RFPStatus
from procurement.models.vendor import Vendor
from procurement.schemas.rfp import (
    RFPCreateRequest,
    RFPUpdate,
    RFPSendRequest,
    RFPResponse,
    RFPEnvelope,
    RFPCreateEnvelope,
    RFPListEnvelope,
    RFPSendEnvelope,
)
from procurement.schemas.vendor import VendorRef
from procurement.services.ai_service import AIService
from procurement.services.email_service import RFPMailer
from procurement.services.normalize import build_rfp_fields

router = APIRouter(prefix="/rfps", tags=["rfps"])
logger = logging.getLogger(__name__)


def _vendor_refs(db: Session, ids: list[int]) -> dict[int, VendorRef]:
    if not ids:
        return {}
    vendors = db.query(Vendor).filter(Vendor.id.in_(ids)).all()
    return {v.id: VendorRef.model_validate(v) for v in vendors}


def _rfp_response(rfp: RFP, refs: dict[int, VendorRef]) -> RFPResponse:
    vendor_ids = jsonfields.loads(rfp.vendor_ids, default=[]) or []
    return RFPResponse(
        id=rfp.id,
        title=rfp.title,
        description=rfp.description,
        items=rfp.items,
        budget=rfp.budget,
        deadline=rfp.deadline,
        terms=rfp.terms,
        vendors=vendor_ids,
        vendor_details=[refs[i] for i in vendor_ids if i in refs],
        status=rfp.status,
        created_at=rfp.created_at,
    )


def _serialize_rfp(db: Session, rfp: RFP) -> RFPResponse:
    return _rfp_response(rfp, _vendor_refs(db, jsonfields.loads(rfp.vendor_ids, default=[]) or []))


def _get_rfp(db: Session, rfp_id: int) -> RFP:
    rfp = db.query(RFP).filter(RFP.id == rfp_id).first()
    if not rfp:
        raise HTTPException(status_code=404, detail="RFP not found")
    return rfp


@router.post("/create", response_model=RFPCreateEnvelope, status_code=201)
async def create_rfp(
    payload: RFPCreateRequest,
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai_service),
):
    """Structure a free-text request into an RFP (AI, or the heuristic fallback) and store it as a draft."""
    description = (payload.description or "").strip()
    if not description:
        raise HTTPException(status_code=400, detail="Description is required")
    structured = await asyncio.to_thread(ai.structure_rfp, description)
    fields = build_rfp_fields(structured, description)
    rfp = RFP(
        title=fields["title"],
        description=fields["description"],
        items=jsonfields.dumps(fields["items"]),
        budget=fields["budget"],
        deadline=fields["deadline"],
        terms=jsonfields.dumps(fields["terms"]),
        vendor_ids=jsonfields.dumps([]),
        status=RFPStatus.DRAFT,
    )
    db.add(rfp)
    db.commit()
    db.refresh(rfp)
    logger.info("RFP %s created (source=%s)", rfp.id, structured.get("source"))
    return RFPCreateEnvelope(rfp=_rfp_response(rfp, {}), structured=structured)


@router.get("", response_model=RFPListEnvelope)
def list_rfps(db: Session = Depends(get_db)):
    rfps = db.query(RFP).order_by(RFP.created_at.desc(), RFP.id.desc()).all()
    all_ids = {i for r in rfps for i in (jsonfields.loads(r.vendor_ids, default=[]) or [])}
    refs = _vendor_refs(db, list(all_ids))
    return RFPListEnvelope(count=len(rfps), rfps=[_rfp_response(r, refs) for r in rfps])


@router.get("/{rfp_id}", response_model=RFPEnvelope)
def get_rfp(rfp_id: int, db: Session = Depends(get_db)):
    return RFPEnvelope(rfp=_serialize_rfp(db, _get_rfp(db, rfp_id)))


@router.put("/{rfp_id}", response_model=RFPEnvelope)
def update_rfp(rfp_id: int, payload: RFPUpdate, db: Session = Depends(get_db)):
    """Update whitelisted fields. Only keys present in the body are touched."""
    rfp = _get_rfp(db, rfp_id)
    present = payload.model_fields_set
    if "status" in present and payload.status == RFPStatus.SENT and rfp.status != RFPStatus.SENT:
        raise HTTPException(status_code=400, detail="Use the send endpoint to mark an RFP as sent")
    if "title" in present:
        if not (payload.title or "").strip():
            raise HTTPException(status_code=400, detail="Title cannot be empty")
        rfp.title = payload.title.strip()
    if "description" in present:
        if not (payload.description or "").strip():
            raise HTTPException(status_code=400, detail="Description cannot be empty")
        rfp.description = payload.description
    if "items" in present:
        rfp.items = jsonfields.dumps([i.model_dump(by_alias=True) for i in (payload.items or [])])
    if "budget" in present:
        if payload.budget is None or payload.budget < 0:
            raise HTTPException(status_code=400, detail="Budget must be a non-negative number")
        rfp.budget = payload.budget
    if "deadline" in present:
        if payload.deadline is None:
            raise HTTPException(status_code=400, detail="Deadline cannot be empty")
        rfp.deadline = payload.deadline
    if "terms" in present:
        rfp.terms = jsonfields.dumps(payload.terms.model_dump(by_alias=True) if payload.terms else {})
    if "status" in present and payload.status is not None:
        rfp.status = payload.status
    db.commit()
    db.refresh(rfp)
    return RFPEnvelope(rfp=_serialize_rfp(db, rfp))


@router.post("/{rfp_id}/send", response_model=RFPSendEnvelope)
async def send_rfp(
    rfp_id: int,
    payload: RFPSendRequest,
    db: Session = Depends(get_db),
    mailer: RFPMailer = Depends(get_mailer),
):
    """Email the RFP to the selected vendors, then record the vendor list and mark it sent."""
    vendor_ids = list(dict.fromkeys(payload.vendor_ids or []))
    if not vendor_ids:
        raise HTTPException(status_code=400, detail="Vendor IDs array is required")
    rfp = _get_rfp(db, rfp_id)
    vendors = db.query(Vendor).filter(Vendor.id.in_(vendor_ids)).all()
    if not vendors:
        raise HTTPException(status_code=404, detail="No valid vendors found")

    result = await asyncio.to_thread(mailer.send_rfp, rfp, vendors)

    rfp.vendor_ids = jsonfields.dumps(vendor_ids)
    rfp.status = RFPStatus.SENT
    db.commit()
    db.refresh(rfp)
    logger.info("RFP %s sent: %s", rfp.id, result.message)
    return RFPSendEnvelope(
        sent=result.sent,
        failed=result.failed,
        message=result.message,
        rfp=_serialize_rfp(db, rfp),
    )
