from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Float, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from procurement.models.base import Base


class Proposal(Base):
    """A vendor's emailed reply to an RFP, with AI-extracted pricing and terms."""
    __tablename__ = "proposals"
    __table_args__ = (UniqueConstraint("rfp_id", "vendor_id", name="uq_proposal_rfp_vendor"),)

    id = Column(Integer, primary_key=True, index=True)
    rfp_id = Column(Integer, ForeignKey("rfps.id"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    parsed_data = Column(Text, nullable=True)  # JSON object, whatever the extraction returned
    raw_email = Column(Text, nullable=False)
    email_subject = Column(String(998), nullable=True)
    message_id = Column(String(998), nullable=True)
    pricing = Column(Text, nullable=True)  # JSON {totalPrice, itemPrices, currency}
    terms = Column(Text, nullable=True)  # JSON {paymentTerms, warranty, deliveryTime, otherTerms}
    ai_score = Column(Float, nullable=True)
    ai_summary = Column(Text, nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now())

    rfp = relationship("RFP", back_populates="proposals")
    vendor = relationship("Vendor", back_populates="proposals")
