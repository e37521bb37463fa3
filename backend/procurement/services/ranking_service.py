import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from procurement import jsonfields
from procurement.exceptions import AIServiceError
from procurement.models.proposal import Proposal
from procurement.models.rfp import RFP
from procurement.services.ai_service import AIService

logger = logging.getLogger(__name__)


@dataclass
class RankingResult:
    scores: list[float]
    summaries: list[str]
    vendor_index: int  # 1-based
    reasoning: str


def build_rfp_context(rfp: RFP) -> dict[str, Any]:
    items = jsonfields.loads(rfp.items, default=[]) or []
    return {
        "budget": rfp.budget,
        "deadline": rfp.deadline.date().isoformat() if rfp.deadline else "Not specified",
        "items": ", ".join(
            f"{i.get('quantity') or 1}x {i.get('name') or 'Item'}" for i in items if isinstance(i, dict)
        ) or "Not specified",
    }


def build_proposal_rows(proposals: list[Proposal]) -> list[dict[str, Any]]:
    """One compact row per proposal, in list order; vendorIndex is the 1-based position."""
    rows = []
    for index, p in enumerate(proposals, start=1):
        pricing = jsonfields.loads(p.pricing, default={}) or {}
        terms = jsonfields.loads(p.terms, default={}) or {}
        total = pricing.get("totalPrice")
        rows.append({
            "vendorIndex": index,
            "vendorName": p.vendor.name if p.vendor else f"Vendor {p.vendor_id}",
            "totalPrice": total if total is not None else "Not provided",
            "currency": pricing.get("currency") or "USD",
            "paymentTerms": terms.get("paymentTerms") or "Not specified",
            "warranty": terms.get("warranty") or "Not specified",
            "deliveryTime": terms.get("deliveryTime") or "Not specified",
        })
    return rows


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def validate_comparison(raw: dict[str, Any], count: int) -> RankingResult:
    """Check the ranking response lines up with the proposal list; scores are clamped to 0-100."""
    scores = raw.get("scores")
    summaries = raw.get("summaries")
    recommendation = raw.get("recommendation")
    if not isinstance(scores, list) or len(scores) != count:
        raise AIServiceError(f"Comparison response must contain {count} scores")
    if not isinstance(summaries, list) or len(summaries) != count:
        raise AIServiceError(f"Comparison response must contain {count} summaries")
    if not isinstance(recommendation, dict):
        raise AIServiceError("Comparison response is missing a recommendation")

    clean_scores = []
    for s in scores:
        n = _as_number(s)
        if n is None:
            raise AIServiceError(f"Comparison score is not a number: {s!r}")
        clean_scores.append(min(100.0, max(0.0, n)))

    index = _as_number(recommendation.get("vendorIndex"))
    if index is None or not index.is_integer() or not 1 <= int(index) <= count:
        raise AIServiceError(f"Recommended vendorIndex {recommendation.get('vendorIndex')!r} is out of range 1..{count}")

    return RankingResult(
        scores=clean_scores,
        summaries=[str(s) if s is not None else "" for s in summaries],
        vendor_index=int(index),
        reasoning=str(recommendation.get("reasoning") or ""),
    )


def rank_proposals(db: Session, ai: AIService, rfp: RFP, proposals: list[Proposal]) -> RankingResult:
    """Score proposals via the completion service and store score/summary on each, by position."""
    raw = ai.compare_proposals(build_rfp_context(rfp), build_proposal_rows(proposals))
    result = validate_comparison(raw, len(proposals))
    for proposal, score, summary in zip(proposals, result.scores, result.summaries):
        proposal.ai_score = score
        proposal.ai_summary = summary
    db.commit()
    for proposal in proposals:
        db.refresh(proposal)
    logger.info(
        "Ranked %d proposals for RFP %s, recommended vendorIndex=%s",
        len(proposals), rfp.id, result.vendor_index,
    )
    return result
