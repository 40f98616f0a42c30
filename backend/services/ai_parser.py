"""
AI Parser — asks Claude to turn OCR text into receipt JSON.

This is the optional first stage in front of the heuristic parser.  It never
raises: a missing key, API error, non-JSON reply or a reply of the wrong
shape all come back as ``None`` so the pipeline falls through to the
heuristics.  Values Claude returns are coerced into the same bounds the
heuristic parser guarantees (non-negative money, confidences in [0, 1],
fixed label sets).
"""
import json
import logging
import math
import os
import re
from typing import Any, Optional

import anthropic

from models.schemas import ParsedReceipt, PaymentInfo, ReceiptItem
from services.receipt_parser import UNKNOWN_MERCHANT, format_date

logger = logging.getLogger("tally.ai")
ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
RECEIPT_AI_MODEL = os.environ.get("RECEIPT_AI_MODEL", "claude-haiku-4-5")

ITEM_CATEGORIES = {"Food", "Beverage", "General", "Healthcare", "Automotive", "Gift Card"}
RECEIPT_CATEGORIES = {"Food & Dining", "Groceries", "Healthcare", "Transportation", "Shopping", "Other"}
PAYMENT_METHODS = {"Cash", "Card", "Gift Card", "Unknown"}

PROMPT_TEMPLATE = """Analyze this receipt text and extract structured data. Return ONLY valid JSON.

RECEIPT TEXT:
<ocr_text>
{text}
</ocr_text>

Extract this exact JSON structure:
{{
  "merchant": "Store name",
  "address": "Store address if found",
  "phone": "Phone number if found",
  "date": "YYYY-MM-DD",
  "time": "HH:MM (24-hour) if found",
  "total": 0.00,
  "subtotal": 0.00,
  "tax": 0.00,
  "tip": 0.00,
  "discount": 0.00,
  "items": [
    {{
      "name": "Item name",
      "price": 0.00,
      "quantity": 1,
      "category": "Food|Beverage|General|Healthcare|Automotive|Gift Card",
      "confidence": 0.9
    }}
  ],
  "paymentMethod": {{
    "method": "Cash|Card|Gift Card|Unknown",
    "cardType": "Visa, Mastercard, ... if shown",
    "lastFourDigits": "1234",
    "amount": 0.00,
    "confidence": 0.9
  }},
  "category": "Food & Dining|Groceries|Healthcare|Transportation|Shopping|Other",
  "confidence": 0.8
}}

RULES:
- Extract ALL items with individual prices
- Gift cards are items with their amounts
- Parse dates carefully; use null for anything not on the receipt
- Include quantity if specified
- Set confidence from how clearly each value was printed
- Only return JSON, no explanations, no markdown fences"""


# ── Coercion helpers ──────────────────────────────────────────────────────────

def _money(value: Any) -> Optional[float]:
    """Parse a JSON amount; None for missing/garbage, clamped at 0."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(str(value).replace('$', '').replace(',', '').strip())
    except ValueError:
        return None
    if not math.isfinite(amount):
        return None
    return round(max(amount, 0.0), 2)


def _unit(value: Any, default: float) -> float:
    """Parse a confidence and clamp it into [0, 1]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:
        return default
    return min(max(number, 0.0), 1.0)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _time(value: Any) -> Optional[str]:
    s = _text(value)
    if s and re.fullmatch(r'([01]?\d|2[0-3]):[0-5]\d', s):
        hour, minute = s.split(':')
        return f"{int(hour):02d}:{minute}"
    return None


def _item_from_ai(raw: Any) -> Optional[ReceiptItem]:
    if not isinstance(raw, dict):
        return None
    name = _text(raw.get("name"))
    if not name:
        return None
    try:
        quantity = max(int(float(raw.get("quantity") or 1)), 1)
    except (TypeError, ValueError, OverflowError):
        quantity = 1
    category = raw.get("category")
    return ReceiptItem(
        name=name,
        price=_money(raw.get("price")) or 0.0,
        quantity=quantity,
        category=category if category in ITEM_CATEGORIES else "General",
        confidence=_unit(raw.get("confidence"), 0.8),
    )


def _payment_from_ai(raw: Any) -> PaymentInfo:
    if not isinstance(raw, dict):
        return PaymentInfo()
    method = raw.get("method")
    last_four = _text(raw.get("lastFourDigits"))
    return PaymentInfo(
        method=method if method in PAYMENT_METHODS else "Unknown",
        card_type=_text(raw.get("cardType")),
        last_four_digits=last_four if last_four and re.fullmatch(r'\d{4}', last_four) else None,
        amount=_money(raw.get("amount")) or 0.0,
        confidence=_unit(raw.get("confidence"), 0.7),
    )


def receipt_from_ai_payload(data: dict, text: str) -> ParsedReceipt:
    """Build a ParsedReceipt from Claude's JSON, substituting safe defaults."""
    iso_date = format_date(str(data["date"])) if data.get("date") else None
    category = data.get("category")
    items = [item for item in map(_item_from_ai, data.get("items") or []) if item]

    result = ParsedReceipt(
        merchant=_text(data.get("merchant")) or UNKNOWN_MERCHANT,
        address=_text(data.get("address")),
        phone=_text(data.get("phone")),
        date_detected=iso_date is not None,
        time=_time(data.get("time")),
        total=_money(data.get("total")) or 0.0,
        subtotal=_money(data.get("subtotal")),
        tax=_money(data.get("tax")),
        tip=_money(data.get("tip")),
        discount=_money(data.get("discount")),
        items=items,
        payment_method=_payment_from_ai(data.get("paymentMethod")),
        category=category if category in RECEIPT_CATEGORIES else "Other",
        confidence=_unit(data.get("confidence"), 0.7),
        raw_text=text,
    )
    if iso_date:
        result.date = iso_date
    return result


# ── Claude client ─────────────────────────────────────────────────────────────

class ClaudeReceiptParser:
    """Async callable: OCR text → ParsedReceipt, or None when Claude can't help."""

    def __init__(self, api_key: str = "", model: str = RECEIPT_AI_MODEL, client=None):
        self._api_key = api_key
        self._model = model
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def __call__(self, text: str) -> Optional[ParsedReceipt]:
        if not text or not text.strip():
            return None
        try:
            message = await self._get_client().messages.create(
                model=self._model,
                max_tokens=2000,
                temperature=0.1,
                messages=[{"role": "user", "content": PROMPT_TEMPLATE.format(text=text.strip())}],
            )
            raw = message.content[0].text.strip()
            # Strip markdown fences if present
            raw = re.sub(r'^```[a-z]*\n?', '', raw)
            raw = re.sub(r'\n?```$', '', raw)
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            result = receipt_from_ai_payload(data, text)
        except Exception as e:
            logger.warning("Claude receipt parse failed (%s): %s — using heuristic parser",
                           type(e).__name__, e)
            return None

        logger.info("Claude parsed receipt: merchant=%r items=%d total=%.2f",
                    result.merchant, len(result.items), result.total)
        return result


def get_ai_parser() -> Optional[ClaudeReceiptParser]:
    """Dependency: the Claude stage when ANTHROPIC_API_KEY is set, else None."""
    if not ANTHROPIC_API_KEY:
        return None
    return ClaudeReceiptParser(api_key=ANTHROPIC_API_KEY, model=RECEIPT_AI_MODEL)
