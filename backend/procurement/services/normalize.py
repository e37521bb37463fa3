"""Coerce loosely-typed AI output into the shapes stored on RFPs and proposals."""
import re
from datetime import datetime, timedelta, timezone
from typing import Any

DEFAULT_DEADLINE_DAYS = 30

_DAYS_PATTERN = re.compile(r"(\d+)\s*days?\b", re.IGNORECASE)
_MONEY_PATTERN = re.compile(r"(-?\d[\d,]*(?:\.\d+)?)\s*([kKmM])?\b")
_INT_PATTERN = re.compile(r"\d+")
_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d %B %Y", "%B %d, %Y", "%b %d, %Y", "%B %d %Y", "%d-%m-%Y")
_MULTIPLIERS = {"k": 1_000, "m": 1_000_000}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_float(number: str, suffix: str | None = None) -> float | None:
    try:
        value = float(number.replace(",", ""))
    except ValueError:
        return None
    if suffix:
        value *= _MULTIPLIERS[suffix.lower()]
    return value


def parse_money(value: Any) -> float | None:
    """Numbers pass through; strings like "$50,000" or "12.5k" are parsed; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        m = _MONEY_PATTERN.search(value)
        if m:
            return _to_float(m.group(1), m.group(2))
    return None


def normalize_budget(value: Any) -> float:
    amount = parse_money(value)
    if amount is None or amount < 0:
        return 0.0
    return amount


def _parse_absolute_date(text: str) -> datetime | None:
    text = text.strip()
    if not text:
        return None
    parsed = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _offset(now: datetime, days: Any) -> datetime | None:
    """now + N days, or None when N does not fit a datetime (huge counts, inf, nan)."""
    try:
        return now + timedelta(days=int(days))
    except (OverflowError, ValueError):
        return None


def normalize_deadline(value: Any, now: datetime | None = None) -> datetime:
    """
    Day counts ("45", 45, "within 45 days") are offsets from now; absolute dates are kept.
    Anything else falls back to DEFAULT_DEADLINE_DAYS from now.
    """
    now = now or utcnow()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    deadline = None
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
        deadline = _offset(now, value)
    elif isinstance(value, str):
        m = _DAYS_PATTERN.search(value)
        if m:
            deadline = _offset(now, m.group(1))
        elif value.strip().isdigit():
            deadline = _offset(now, value.strip())
        else:
            deadline = _parse_absolute_date(value)
    if deadline is not None:
        return deadline
    return now + timedelta(days=DEFAULT_DEADLINE_DAYS)


def _text(value: Any) -> str | None:
    """Flatten a scalar/list/dict into a display string; blanks become None."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = ", ".join(f"{k}: {v}" for k, v in value.items() if v not in (None, ""))
    elif isinstance(value, list):
        value = ", ".join(str(v) for v in value if v not in (None, ""))
    out = str(value).strip()
    return out or None


def _quantity(value: Any, default: int | None = 1) -> int | None:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        m = _INT_PATTERN.search(value)
        if m:
            return int(m.group(0))
    return default


def _pick(d: dict, camel: str, snake: str) -> Any:
    return d.get(camel) if d.get(camel) is not None else d.get(snake)


def normalize_items(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    items = []
    for raw in value:
        if not isinstance(raw, dict):
            continue
        items.append({
            "name": _text(raw.get("name") or raw.get("item")) or "Item",
            "quantity": _quantity(raw.get("quantity", raw.get("qty"))),
            "specifications": _text(raw.get("specifications", raw.get("specs"))),
        })
    return items


def normalize_rfp_terms(value: Any) -> dict[str, str | None]:
    d = value if isinstance(value, dict) else {}
    return {
        "paymentTerms": _text(_pick(d, "paymentTerms", "payment_terms")),
        "warranty": _text(d.get("warranty")),
        "deliveryTerms": _text(_pick(d, "deliveryTerms", "delivery_terms")),
        "otherTerms": _text(_pick(d, "otherTerms", "other_terms")),
    }


def normalize_pricing(value: Any) -> dict[str, Any]:
    d = value if isinstance(value, dict) else {}
    item_prices = []
    for raw in _pick(d, "itemPrices", "item_prices") or []:
        if not isinstance(raw, dict):
            continue
        item_prices.append({
            "item": _text(raw.get("item") or raw.get("name")),
            "price": parse_money(raw.get("price")),
            "quantity": _quantity(raw.get("quantity"), None),
        })
    currency = _text(d.get("currency")) or "USD"
    return {
        "totalPrice": parse_money(_pick(d, "totalPrice", "total_price")),
        "itemPrices": item_prices,
        "currency": currency.upper(),
    }


def normalize_proposal_terms(value: Any) -> dict[str, str | None]:
    d = value if isinstance(value, dict) else {}
    return {
        "paymentTerms": _text(_pick(d, "paymentTerms", "payment_terms")),
        "warranty": _text(d.get("warranty")),
        "deliveryTime": _text(_pick(d, "deliveryTime", "delivery_time")),
        "otherTerms": _text(_pick(d, "otherTerms", "other_terms")),
    }


def build_rfp_fields(structured: dict[str, Any], description: str, now: datetime | None = None) -> dict[str, Any]:
    """Column values for a new RFP from a structuring result (AI or fallback)."""
    title = _text(structured.get("title")) or "Untitled RFP"
    return {
        "title": title[:255],
        "description": description,
        "items": normalize_items(structured.get("items")),
        "budget": normalize_budget(structured.get("budget")),
        "deadline": normalize_deadline(structured.get("deadline"), now=now),
        "terms": normalize_rfp_terms(structured.get("terms")),
    }
