from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procurement.database import get_db
from procurement.models.proposal import Proposal
from procurement.models.vendor import Vendor
from procurement.schemas.common import MessageEnvelope
from procurement.schemas.vendor import (
    VendorCreate,
    VendorUpdate,
    VendorResponse,
    VendorEnvelope,
    VendorListEnvelope,
)

router = APIRouter(prefix="/vendors", tags=["vendors"])

DUPLICATE_EMAIL = "Vendor with this email already exists"


def _get_vendor(db: Session, vendor_id: int) -> Vendor:
    vendor = db.query(Vendor).filter(Vendor.id == vendor_id).first()
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return vendor


def _email_taken(db: Session, email: str, exclude_id: int | None = None) -> bool:
    q = db.query(Vendor).filter(func.lower(Vendor.email) == email.lower())
    if exclude_id is not None:
        q = q.filter(Vendor.id != exclude_id)
    return q.first() is not None


def _commit_vendor(db: Session, vendor: Vendor) -> None:
    """The unique email column backs up the pre-insert check."""
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail=DUPLICATE_EMAIL)
    db.refresh(vendor)


@router.post("", response_model=VendorEnvelope, status_code=201)
def create_vendor(payload: VendorCreate, db: Session = Depends(get_db)):
    if not (payload.name and payload.email and payload.company):
        raise HTTPException(status_code=400, detail="Name, email, and company are required")
    email = payload.email.lower()
    if _email_taken(db, email):
        raise HTTPException(status_code=400, detail=DUPLICATE_EMAIL)
    vendor = Vendor(
        name=payload.name,
        email=email,
        phone=payload.phone or None,
        company=payload.company,
        address=payload.address or None,
    )
    db.add(vendor)
    _commit_vendor(db, vendor)
    return VendorEnvelope(vendor=VendorResponse.model_validate(vendor))


@router.get("", response_model=VendorListEnvelope)
def list_vendors(db: Session = Depends(get_db)):
    vendors = db.query(Vendor).order_by(Vendor.created_at.desc(), Vendor.id.desc()).all()
    return VendorListEnvelope(count=len(vendors), vendors=[VendorResponse.model_validate(v) for v in vendors])


@router.get("/{vendor_id}", response_model=VendorEnvelope)
def get_vendor(vendor_id: int, db: Session = Depends(get_db)):
    return VendorEnvelope(vendor=VendorResponse.model_validate(_get_vendor(db, vendor_id)))


@router.put("/{vendor_id}", response_model=VendorEnvelope)
def update_vendor(vendor_id: int, payload: VendorUpdate, db: Session = Depends(get_db)):
    """Partial update: blank fields are ignored, except address which an empty string clears."""
    vendor = _get_vendor(db, vendor_id)
    if payload.name:
        vendor.name = payload.name
    if payload.email:
        email = payload.email.lower()
        if _email_taken(db, email, exclude_id=vendor.id):
            raise HTTPException(status_code=400, detail=DUPLICATE_EMAIL)
        vendor.email = email
    if payload.phone:
        vendor.phone = payload.phone
    if payload.company:
        vendor.company = payload.company
    if payload.address is not None:
        vendor.address = payload.address or None
    _commit_vendor(db, vendor)
    return VendorEnvelope(vendor=VendorResponse.model_validate(vendor))


@router.delete("/{vendor_id}", response_model=MessageEnvelope)
def delete_vendor(vendor_id: int, db: Session = Depends(get_db)):
    vendor = _get_vendor(db, vendor_id)
    if db.query(Proposal).filter(Proposal.vendor_id == vendor.id).first():
        raise HTTPException(status_code=400, detail="Vendor has proposals and cannot be deleted")
    db.delete(vendor)
    db.commit()
    return MessageEnvelope(message="Vendor deleted successfully")
