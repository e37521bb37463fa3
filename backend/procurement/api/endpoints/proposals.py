from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, joinedload

from procurement.database import get_db
from procurement.dependencies import get_ai_service, get_inbox_poller
from procurement.models.proposal import Proposal
from procurement.models.rfp import RFP
from procurement.schemas.proposal import (
    ProposalResponse,
    ProposalDetailResponse,
    ProposalEnvelope,
    ProposalListEnvelope,
    CompareEnvelope,
    Comparison,
    Recommendation,
    CheckEmailsEnvelope,
    MessageOutcomeResponse,
)
from procurement.schemas.rfp import RFPRef
from procurement.schemas.vendor import VendorRef
from procurement.services.ai_service import AIService
from procurement.services.inbox_service import InboxPoller
from procurement.services.ranking_service import rank_proposals

router = APIRouter(prefix="/proposals", tags=["proposals"])


def _proposal_fields(p: Proposal) -> dict:
    return dict(
        id=p.id,
        rfp_id=p.rfp_id,
        vendor_id=p.vendor_id,
        vendor=VendorRef.model_validate(p.vendor) if p.vendor else None,
        parsed_data=p.parsed_data,
        raw_email=p.raw_email,
        email_subject=p.email_subject,
        pricing=p.pricing,
        terms=p.terms,
        ai_score=p.ai_score,
        ai_summary=p.ai_summary,
        received_at=p.received_at,
    )


@router.get("/rfp/{rfp_id}", response_model=ProposalListEnvelope)
def list_proposals_for_rfp(rfp_id: int, db: Session = Depends(get_db)):
    """All proposals received for an RFP, newest first."""
    proposals = (
        db.query(Proposal)
        .options(joinedload(Proposal.vendor))
        .filter(Proposal.rfp_id == rfp_id)
        .order_by(Proposal.received_at.desc(), Proposal.id.desc())
        .all()
    )
    return ProposalListEnvelope(
        count=len(proposals),
        proposals=[ProposalResponse(**_proposal_fields(p)) for p in proposals],
    )


@router.post("/check-emails", response_model=CheckEmailsEnvelope)
def check_emails(
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai_service),
    poller: InboxPoller = Depends(get_inbox_poller),
):
    """Poll the inbox for vendor replies and store new proposals."""
    report = poller.poll(db, ai)
    return CheckEmailsEnvelope(
        processed=report.processed,
        skipped=report.skipped,
        failed=report.failed,
        message=report.message,
        results=[MessageOutcomeResponse(**asdict(r)) for r in report.results],
    )


@router.get("/{rfp_id}/compare", response_model=CompareEnvelope)
def compare_proposals(
    rfp_id: int,
    db: Session = Depends(get_db),
    ai: AIService = Depends(get_ai_service),
):
    """AI ranking of an RFP's proposals; scores and summaries are saved onto each proposal."""
    rfp = db.query(RFP).filter(RFP.id == rfp_id).first()
    if not rfp:
        raise HTTPException(status_code=404, detail="RFP not found")
    proposals = (
        db.query(Proposal)
        .options(joinedload(Proposal.vendor))
        .filter(Proposal.rfp_id == rfp_id)
        .order_by(Proposal.received_at.asc(), Proposal.id.asc())
        .all()
    )
    if not proposals:
        raise HTTPException(status_code=404, detail="No proposals found for this RFP")

    result = rank_proposals(db, ai, rfp, proposals)
    recommended = proposals[result.vendor_index - 1]
    return CompareEnvelope(
        proposals=[ProposalResponse(**_proposal_fields(p)) for p in proposals],
        comparison=Comparison(
            scores=result.scores,
            summaries=result.summaries,
            recommendation=Recommendation(
                vendor_index=result.vendor_index,
                vendor_id=recommended.vendor_id,
                vendor_name=recommended.vendor.name if recommended.vendor else None,
                reasoning=result.reasoning,
            ),
        ),
    )


@router.get("/{proposal_id}", response_model=ProposalEnvelope)
def get_proposal(proposal_id: int, db: Session = Depends(get_db)):
    proposal = (
        db.query(Proposal)
        .options(joinedload(Proposal.vendor), joinedload(Proposal.rfp))
        .filter(Proposal.id == proposal_id)
        .first()
    )
    if not proposal:
        raise HTTPException(status_code=404, detail="Proposal not found")
    return ProposalEnvelope(
        proposal=ProposalDetailResponse(
            **_proposal_fields(proposal),
            rfp=RFPRef.model_validate(proposal.rfp) if proposal.rfp else None,
        )
    )
