import json
import logging
import re
from typing import Any

from procurement.config import AISettings
from procurement.exceptions import AIServiceError, AIUnavailableError

# Truncation limit for LLM context
_MAX_TEXT_LEN = 6000
_FALLBACK_BUDGET = 10000
_FALLBACK_DAYS = 30

_FALLBACK_BUDGET_PATTERNS = (
    re.compile(r"\$\s*(\d[\d,]*(?:\.\d+)?)\s*([kKmM])?\b"),
    re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*([kKmM])?\s*(?:usd|dollars)\b", re.IGNORECASE),
    re.compile(r"budget\D{0,20}?(\d[\d,]*(?:\.\d+)?)\s*([kKmM])?\b", re.IGNORECASE),
)
_FALLBACK_DAYS_PATTERN = re.compile(r"(\d+)\s*days?\b", re.IGNORECASE)

logger = logging.getLogger(__name__)


def _fix_trailing_commas(s: str) -> str:
    """Remove trailing commas before ] or } so JSON parses."""
    s = re.sub(r",\s*}", "}", s)
    s = re.sub(r",\s*]", "]", s)
    return s


def parse_json_from_response(text: str) -> Any:
    """Extract a JSON object from model output; tolerate code fences and trailing commas."""
    text = (text or "").strip()
    if "```json" in text:
        text = text.split("```json", 1)[-1].split("```", 1)[0].strip()
    elif "```" in text:
        text = text.split("```", 1)[-1].split("```", 1)[0].strip()
    start = text.find("{")
    if start >= 0:
        depth = 0
        for i in range(start, len(text)):
            if text[i] == "{":
                depth += 1
            elif text[i] == "}":
                depth -= 1
                if depth == 0:
                    text = text[start : i + 1]
                    break
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    return json.loads(_fix_trailing_commas(text))


def fallback_parse(description: str) -> dict[str, Any]:
    """Heuristic structuring used when the completion service is unreachable or returns junk."""
    description = description or ""
    budget: float = _FALLBACK_BUDGET
    for pattern in _FALLBACK_BUDGET_PATTERNS:
        m = pattern.search(description)
        if m:
            value = float(m.group(1).replace(",", ""))
            if m.group(2):
                value *= 1_000 if m.group(2).lower() == "k" else 1_000_000
            budget = value
            break
    m = _FALLBACK_DAYS_PATTERN.search(description)
    days = int(m.group(1)) if m else _FALLBACK_DAYS
    return {
        "title": "Procurement Request",
        "items": [{
            "name": "Items as described",
            "quantity": 1,
            "specifications": description[:100],
        }],
        "budget": budget,
        "deadline": days,
        "terms": {
            "paymentTerms": "Net 30",
            "warranty": "1 year",
            "deliveryTerms": f"{days} days",
            "otherTerms": "As per description",
        },
    }


class CompletionClient:
    """Chat completions against an Ollama-compatible endpoint, returning the raw message text."""

    def __init__(self, settings: AISettings, client: Any = None):
        self.settings = settings
        self._client = client

    @property
    def provider(self) -> str:
        return "ollama" if self.settings.enabled or self._client is not None else "none"

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.settings.enabled:
                raise AIUnavailableError("OLLAMA_BASE_URL is not configured")
            from ollama import Client

            headers = {"Authorization": f"Bearer {self.settings.api_key}"} if self.settings.api_key else None
            self._client = Client(host=self.settings.base_url, timeout=self.settings.timeout_seconds, headers=headers)
        return self._client

    def complete(self, system: str, user_content: str) -> str:
        client = self._get_client()
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user_content},
        ]
        response = client.chat(model=self.settings.model, messages=messages, format="json")
        msg = getattr(response, "message", None) or (response.get("message") if isinstance(response, dict) else None)
        text = (getattr(msg, "content", None) if msg is not None else None) or (msg.get("content") if isinstance(msg, dict) else None) or ""
        if not text.strip():
            raise AIServiceError("Completion service returned an empty response")
        return text


_RFP_SYSTEM = (
    "You are a procurement assistant. Parse natural language RFP requests into structured JSON. "
    "Return ONLY a valid JSON object, no other text or markdown."
)

_PROPOSAL_SYSTEM = (
    "You are a procurement assistant. Parse vendor proposal emails into structured JSON. "
    "Return ONLY a valid JSON object, no other text or markdown."
)

_COMPARE_SYSTEM = (
    "You are a procurement expert. Compare vendor proposals for an RFP and recommend one. "
    "Return ONLY a valid JSON object, no other text or markdown."
)


class AIService:
    """The three completion-backed operations: structure an RFP, extract a proposal, rank proposals."""

    def __init__(self, completion: CompletionClient):
        self.completion = completion

    @property
    def provider(self) -> str:
        return self.completion.provider

    def structure_rfp(self, description: str) -> dict[str, Any]:
        """
        Structure a free-text request. Never raises: any failure of the completion call or of its
        JSON falls back to fallback_parse. The result carries "source": "ai" | "fallback".
        """
        user_content = f"""Extract:
- title: A concise title for this RFP
- items: Array of items to procure with {{ "name", "quantity", "specifications" }}
- budget: Total budget as a number
- deadline: Delivery deadline as a number of days from today, or an ISO date
- terms: {{ "paymentTerms", "warranty", "deliveryTerms", "otherTerms" }}

Input: "{(description or "")[:_MAX_TEXT_LEN]}"

Return only the JSON object with keys title, items, budget, deadline, terms."""
        try:
            out = parse_json_from_response(self.completion.complete(_RFP_SYSTEM, user_content))
            if not isinstance(out, dict):
                raise ValueError(f"expected a JSON object, got {type(out).__name__}")
            out["source"] = "ai"
            logger.info("RFP structuring succeeded, title=%s", out.get("title"))
            return out
        except Exception as e:
            logger.warning("RFP structuring failed, using fallback parser: %s", e, exc_info=True)
            out = fallback_parse(description)
            out["source"] = "fallback"
            return out

    def _complete_object(self, system: str, user_content: str, what: str) -> dict[str, Any]:
        try:
            out = parse_json_from_response(self.completion.complete(system, user_content))
        except AIServiceError:
            raise
        except Exception as e:
            raise AIServiceError(f"Failed to {what} with AI: {e}") from e
        if not isinstance(out, dict):
            raise AIServiceError(f"Failed to {what} with AI: expected a JSON object")
        return out

    def parse_vendor_response(self, email_content: str) -> dict[str, Any]:
        """Extract pricing, terms and notes from a vendor's reply. No fallback."""
        user_content = f"""Extract:
- pricing: {{ "totalPrice" (number), "itemPrices": [{{ "item", "price", "quantity" }}], "currency" }}
- terms: {{ "paymentTerms", "warranty", "deliveryTime", "otherTerms" }}
- notes: Any additional important information

Email Content:
"{(email_content or "")[:_MAX_TEXT_LEN]}"

Return only the JSON object with keys pricing, terms, notes."""
        out = self._complete_object(_PROPOSAL_SYSTEM, user_content, "parse vendor response")
        pricing = out.get("pricing")
        logger.info("Proposal extraction succeeded, totalPrice=%s", pricing.get("totalPrice") if isinstance(pricing, dict) else None)
        return out

    def compare_proposals(self, rfp_context: dict[str, Any], proposal_rows: list[dict[str, Any]]) -> dict[str, Any]:
        """Ask for parallel scores/summaries and a 1-based recommended vendorIndex. Shape is checked by the caller."""
        count = len(proposal_rows)
        user_content = f"""RFP Details:
- Budget: ${rfp_context.get("budget")}
- Deadline: {rfp_context.get("deadline")}
- Items: {rfp_context.get("items")}

Proposals:
{json.dumps(proposal_rows, indent=2)}

Provide:
1. scores: Array of exactly {count} scores (0-100), one per proposal in the order given, based on price, terms, and completeness
2. summaries: Array of exactly {count} brief summaries, one per proposal in the same order
3. recommendation: {{ "vendorIndex" (1-based index into the proposals above), "reasoning" (why this vendor is recommended) }}

Return only JSON in this format:
{{"scores": [85, 72], "summaries": ["summary1", "summary2"], "recommendation": {{"vendorIndex": 1, "reasoning": "..."}}}}"""
        return self._complete_object(_COMPARE_SYSTEM, user_content, "compare proposals")
