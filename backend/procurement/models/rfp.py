from sqlalchemy import Column, Integer, String, Text, DateTime, Float
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from procurement.models.base import Base


class RFPStatus:
    DRAFT = "draft"
    SENT = "sent"
    CLOSED = "closed"

    ALL = (DRAFT, SENT, CLOSED)


class RFP(Base):
    __tablename__ = "rfps"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    items = Column(Text, nullable=True)  # JSON array of {name, quantity, specifications}
    budget = Column(Float, nullable=False, default=0.0)
    deadline = Column(DateTime(timezone=True), nullable=False)
    terms = Column(Text, nullable=True)  # JSON {paymentTerms, warranty, deliveryTerms, otherTerms}
    vendor_ids = Column(Text, nullable=True)  # JSON array of vendor ids the RFP was sent to
    status = Column(String(20), default=RFPStatus.DRAFT, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    proposals = relationship("Proposal", back_populates="rfp", order_by="Proposal.received_at")
