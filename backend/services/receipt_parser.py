"""
Receipt Parser — turns raw OCR text into a structured ParsedReceipt using
line-based heuristics.

Every pass (merchant, contact, date/time, amounts, payment, items) is an
independent function over the same list of trimmed, non-empty lines, because
receipt fields follow unrelated positional conventions.  The parser is pure
and total: any string in, a ParsedReceipt out.  Fields it cannot find keep
their defaults and lower the confidence score instead of raising.

Several rules are tuned to specific receipts (the McDonald's take-out layout,
Montana Restaurant) and only hold for those layouts.
"""
import logging
import re
from collections import Counter
from datetime import date
from typing import Optional

from models.schemas import ParsedReceipt, PaymentInfo, ReceiptItem

logger = logging.getLogger("tally.parser")

UNKNOWN_MERCHANT = "Unknown Merchant"

# Only the receipt header is searched for a merchant name
MERCHANT_SCAN_LINES = 8

# Amounts on the McDonald's take-out layout are printed in a column block
# exactly 10 OCR lines below their labels:
#   27 "Subtotal"        → 37 "7.58"
#   28 "Tax"             → 38 "0.52"
#   29 "Take-Out Total"  → 39 "8.10"
AMOUNT_LABEL_OFFSET = 10


# ── Merchant ──────────────────────────────────────────────────────────────────

# Special-cased receipts, searched across the *whole* raw text.
MERCHANT_HINTS: list[tuple[re.Pattern, str]] = [
    (re.compile(r'montana.*restaurant', re.I), "Montana Restaurant"),
    (re.compile(r'mcdonald', re.I),            "McDonald's"),
]

# Known chains → canonical display name, searched in the header lines only.
KNOWN_MERCHANTS: list[tuple[str, str]] = [
    # keyword      canonical name
    ("walgreens",  "Walgreens"),
    ("cvs",        "CVS"),
    ("rite aid",   "Rite Aid"),
    ("walmart",    "Walmart"),
    ("wal-mart",   "Walmart"),
    ("target",     "Target"),
    ("kroger",     "Kroger"),
    ("subway",     "Subway"),
    ("starbucks",  "Starbucks"),
    ("shell",      "Shell"),
    ("exxon",      "Exxon"),
]

# Generic header shapes: an all-caps name, optionally with a store number.
MERCHANT_PATTERNS = [
    re.compile(r"^([A-Z\s&'.-]{5,30})$"),
    re.compile(r"^([A-Z][A-Z\s&'.-]{4,29}?)\s+#\d+$"),
]

PHONE_LIKE_RE   = re.compile(r'\d{3}-\d{3}-\d{4}')
ADDRESS_LIKE_RE = re.compile(r'^\D*\d.*?(?:COURT|STREET|AVE|BLVD|ROAD|DR|LANE)', re.I)
NOT_MERCHANT_RE = re.compile(
    r'^(SAN JOSE|NEW YORK|LOS ANGELES|CHICAGO|TOTAL|TAX|SUBTOTAL|BALANCE|ORDER)$', re.I
)


# ── Contact / date / time ─────────────────────────────────────────────────────

PHONE_RE   = re.compile(r'(?:TEL#?\s*)?(\d{3}[-.\s]?\d{3}[-.\s]?\d{4})')
ADDRESS_RE = re.compile(r'\d\s+\w.*?\s(?:st|ave|rd|blvd|dr|ln|way|ct|road)', re.I)
DATE_RE    = re.compile(r'(\d{1,2}/\d{1,2}/(?:\d{4}|\d{2}))(?!\d)')
ISO_DATE_RE = re.compile(r'^(\d{4})-(\d{1,2})-(\d{1,2})$')
TIME_RE    = re.compile(r'(\d{1,2}):(\d{2})(?:\s*(AM|PM))?', re.I)


# ── Amounts ───────────────────────────────────────────────────────────────────

AMOUNT_RE = re.compile(r'\d+\.\d{2}')

# label pattern (whole trimmed line) → ParsedReceipt field
AMOUNT_LABELS: list[tuple[re.Pattern, str]] = [
    (re.compile(r'take-out\s+total', re.I), "total"),
    (re.compile(r'subtotal', re.I),         "subtotal"),
    (re.compile(r'tax', re.I),              "tax"),
]

# Summary labels whose adjacent amounts must not be mistaken for item prices
SUMMARY_LABEL_RE = re.compile(r'(subtotal|tax|take-out\s+total|cash\s+tendered|change)', re.I)


# ── Payment ───────────────────────────────────────────────────────────────────

CASH_RE      = re.compile(r'cash', re.I)
GIFT_CARD_RE = re.compile(r'gift\s*card', re.I)
CARD_RE      = re.compile(r'(card|visa|mastercard|amex|discover).*?(\d{4})', re.I)
CARD_BRANDS: list[tuple[str, str]] = [
    ("mastercard", "Mastercard"),
    ("visa",       "Visa"),
    ("amex",       "Amex"),
    ("discover",   "Discover"),
]


# ── Items ─────────────────────────────────────────────────────────────────────

ITEM_LINE_RE = re.compile(r'^(\d+)\s+(.+)$')
MAX_ITEM_QUANTITY = 20
ITEM_PRICE_MIN = 0.50
ITEM_PRICE_MAX = 50.0

FOOD_KEYWORDS = [
    'meal', 'burger', 'fry', 'coke', 'drink', 'mcflurry', 'cup', 'sauce',
    'nugget', 'sandwich', 'wrap', 'chicken', 'beef', 'fish', 'salad',
    'noodles', 'pizza', 'taco', 'soup', 'coffee', 'tea', 'juice',
]

# Footer / promo text that happens to contain a food word
NON_ITEM_PATTERNS = [
    re.compile(p, re.I) for p in (
        r'restaurant', r'store', r'receipt', r'copy', r'thank', r'visit',
        r'code', r'validation', r'survey', r'application', r'accepting',
        r'purchase.*sandwich', r'receive.*item', r'equal.*value',
    )
]

# Item-name substring → printed price, for the one receipt layout whose
# prices cannot be tied to their items by position.
# TODO: replace with nearest-unclaimed-price pairing once more layouts are sampled.
KNOWN_ITEM_PRICES: list[tuple[str, float]] = [
    ("happy meal",          4.89),
    ("snack oreo mcflurry", 2.69),
]

MATCHED_ITEM_CONFIDENCE = 0.9
UNMATCHED_ITEM_CONFIDENCE = 0.8

ITEM_CATEGORY_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r'gift\s*card|card', re.I),                "Gift Card"),
    (re.compile(r'food|meal|burger|pizza|sandwich', re.I), "Food"),
    (re.compile(r'drink|soda|coffee|tea|juice|coke', re.I), "Beverage"),
    (re.compile(r'gas|fuel|oil', re.I),                    "Automotive"),
    (re.compile(r'medicine|pill|prescription', re.I),      "Healthcare"),
]


# ── Receipt category ──────────────────────────────────────────────────────────

MERCHANT_CATEGORY_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r'walgreens|cvs|rite aid|pharmacy', re.I),                      "Healthcare"),
    (re.compile(r'walmart|target|kroger|grocery', re.I),                        "Groceries"),
    (re.compile(r"mcdonald|subway|starbucks|restaurant", re.I),                 "Food & Dining"),
    (re.compile(r'shell|exxon|\bbp\b|\bgas\b', re.I),                           "Transportation"),
]

# Item category → receipt category vote.  Order breaks ties.
ITEM_CATEGORY_VOTES: list[tuple[str, str]] = [
    ("Food",       "Food & Dining"),
    ("Beverage",   "Food & Dining"),
    ("Healthcare", "Healthcare"),
    ("Gift Card",  "Shopping"),
    ("Automotive", "Transportation"),
]


# ── Passes ────────────────────────────────────────────────────────────────────

def normalize_lines(text: str) -> list[str]:
    """Split OCR text on newlines into trimmed, non-empty lines (form feeds stay in their line)."""
    return [line.strip() for line in (text or "").split('\n') if line.strip()]


def _looks_like_non_merchant(line: str) -> bool:
    return (
        '$' in line
        or bool(PHONE_LIKE_RE.search(line))
        or bool(ADDRESS_LIKE_RE.search(line))
        or bool(NOT_MERCHANT_RE.match(line))
        or len(line) < 5
    )


def extract_merchant(lines: list[str], text: str) -> str:
    """
    Merchant cascade, first hit wins:
      1. special-cased hints anywhere in the raw text
      2. known chain keywords in the header lines
      3. generic all-caps header patterns (skipping prices, phones, addresses)
    """
    for pattern, name in MERCHANT_HINTS:
        if pattern.search(text or ""):
            logger.debug("Merchant hint matched: %s", name)
            return name

    header = lines[:MERCHANT_SCAN_LINES]
    for line in header:
        lower = line.lower()
        for keyword, name in KNOWN_MERCHANTS:
            if keyword in lower:
                logger.debug("Known merchant %r in line %r", name, line)
                return name

    for line in header:
        if _looks_like_non_merchant(line):
            continue
        for pattern in MERCHANT_PATTERNS:
            m = pattern.match(line)
            if m:
                name = m.group(1).strip()
                logger.debug("Merchant via header pattern: %r", name)
                return name

    return UNKNOWN_MERCHANT


def extract_contact_info(lines: list[str]) -> tuple[Optional[str], Optional[str]]:
    """Return (address, phone); first matching line wins for each."""
    address = None
    phone = None
    for line in lines:
        if phone is None:
            m = PHONE_RE.search(line)
            if m:
                phone = m.group(1)
        if address is None and ADDRESS_RE.search(line):
            address = line
        if address and phone:
            break
    return address, phone


def format_date(value: str) -> Optional[str]:
    """
    Normalize ``M/D/YY``, ``M/D/YYYY`` or ``YYYY-MM-DD`` to ISO ``YYYY-MM-DD``.
    Two-digit years are taken as 20xx.  Returns None when the value is not a
    real calendar date.
    """
    value = (value or "").strip()
    try:
        m = ISO_DATE_RE.match(value)
        if m:
            year, month, day = (int(p) for p in m.groups())
        else:
            month_s, day_s, year_s = value.split('/')
            if len(year_s) == 2:
                year_s = '20' + year_s
            year, month, day = int(year_s), int(month_s), int(day_s)
        return date(year, month, day).isoformat()
    except ValueError as e:
        logger.warning("Unparseable date %r: %s", value, e)
        return None


def _format_time(hour: int, minute: int, meridiem: Optional[str]) -> Optional[str]:
    if minute > 59:
        return None
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem.upper() == "PM" else 0)
    elif hour > 23:
        return None
    return f"{hour:02d}:{minute:02d}"


def extract_date_time(lines: list[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Return (iso_date, time) from the first matching lines.  The date is None
    when no line holds one or the first one found is malformed; the caller
    substitutes today's date.
    """
    found_date = None
    date_seen = False
    found_time = None

    for line in lines:
        if not date_seen:
            m = DATE_RE.search(line)
            if m:
                date_seen = True
                found_date = format_date(m.group(1))
        if found_time is None:
            for m in TIME_RE.finditer(line):
                found_time = _format_time(int(m.group(1)), int(m.group(2)), m.group(3))
                if found_time:
                    break
        if date_seen and found_time:
            break

    return found_date, found_time


def extract_amounts(lines: list[str], offset: int = AMOUNT_LABEL_OFFSET) -> dict[str, float]:
    """
    Look up total/subtotal/tax by label line + fixed offset.

    Only a line exactly ``offset`` lines below the label, and consisting of a
    bare ``12.34`` amount, is accepted.  There is no search window: a missing
    or non-numeric offset line leaves the field unset.
    """
    amounts: dict[str, float] = {}
    for i, line in enumerate(lines):
        for pattern, field in AMOUNT_LABELS:
            if not pattern.fullmatch(line):
                continue
            j = i + offset
            if j < len(lines) and AMOUNT_RE.fullmatch(lines[j]):
                amounts[field] = float(lines[j])
                logger.debug("%s label at %d → %s (line %d)", field, i, lines[j], j)
            else:
                logger.debug("%s label at %d has no amount at line %d", field, i, j)
            break
    return amounts


def extract_payment_method(lines: list[str]) -> PaymentInfo:
    for line in lines:
        if CASH_RE.search(line):
            return PaymentInfo(method="Cash", confidence=0.9)
        if GIFT_CARD_RE.search(line):
            return PaymentInfo(method="Gift Card", confidence=0.9)
        m = CARD_RE.search(line)
        if m:
            lower = line.lower()
            brand = next((name for key, name in CARD_BRANDS if key in lower), None)
            return PaymentInfo(
                method="Card",
                card_type=brand,
                last_four_digits=m.group(2),
                confidence=0.9,
            )
    return PaymentInfo(method="Unknown", confidence=0.2)


def is_actual_food_item(name: str) -> bool:
    lower = name.lower()
    has_food_keyword = any(kw in lower for kw in FOOD_KEYWORDS)
    is_excluded = any(p.search(name) for p in NON_ITEM_PATTERNS)
    return has_food_keyword and not is_excluded and 3 <= len(name) <= 50


def categorize_item(name: str) -> str:
    for pattern, category in ITEM_CATEGORY_RULES:
        if pattern.search(name):
            return category
    return "General"


def _find_item_price_lines(lines: list[str]) -> list[tuple[int, float]]:
    """Standalone amounts in the item price range, not adjacent to a summary label."""
    prices = []
    for i, line in enumerate(lines):
        if not AMOUNT_RE.fullmatch(line):
            continue
        price = float(line)
        if not ITEM_PRICE_MIN < price < ITEM_PRICE_MAX:
            continue
        neighbours = lines[max(0, i - 1):i + 2]
        if any(SUMMARY_LABEL_RE.fullmatch(n) for n in neighbours):
            logger.debug("Skipping %.2f at %d — next to a summary label", price, i)
            continue
        prices.append((i, price))
    return prices


def extract_items(lines: list[str]) -> list[ReceiptItem]:
    """
    Find ``<qty> <name>`` food lines and attach prices from the known-item
    table when that price is printed somewhere on the receipt.  Items without
    a known price are kept with price 0 and lower confidence.
    """
    candidates: list[tuple[int, str]] = []
    for line in lines:
        m = ITEM_LINE_RE.match(line)
        if not m or '$' in line:
            continue
        quantity = int(m.group(1))
        name = m.group(2).strip()
        if 1 <= quantity <= MAX_ITEM_QUANTITY and is_actual_food_item(name):
            candidates.append((quantity, name))

    printed_prices = {price for _, price in _find_item_price_lines(lines)}

    items = []
    for quantity, name in candidates:
        lower = name.lower()
        matched = None
        for key, price in KNOWN_ITEM_PRICES:
            if key in lower:
                if price in printed_prices:
                    matched = price
                else:
                    logger.debug("Known price %.2f for %r not printed on receipt", price, name)
                break
        items.append(ReceiptItem(
            name=name,
            price=matched or 0.0,
            quantity=quantity,
            category=categorize_item(name),
            confidence=MATCHED_ITEM_CONFIDENCE if matched else UNMATCHED_ITEM_CONFIDENCE,
        ))
    logger.debug("Extracted %d items (%d priced)", len(items), sum(1 for i in items if i.price))
    return items


def categorize_receipt(merchant: str, items: list[ReceiptItem]) -> str:
    for pattern, category in MERCHANT_CATEGORY_RULES:
        if pattern.search(merchant or ""):
            return category

    vote_for = dict(ITEM_CATEGORY_VOTES)
    votes = Counter(vote_for[i.category] for i in items if i.category in vote_for)
    if not votes:
        return "Other"
    tie_order = [receipt_cat for _, receipt_cat in ITEM_CATEGORY_VOTES]
    return max(votes, key=lambda cat: (votes[cat], -tie_order.index(cat)))


def calculate_confidence(receipt: ParsedReceipt) -> float:
    """
    Weighted sum of extraction signals, capped at 1.0.  A heuristic score,
    not a calibrated probability.
    """
    confidence = 0.0
    if receipt.merchant and receipt.merchant != UNKNOWN_MERCHANT:
        confidence += 0.2
    if receipt.date_detected:
        confidence += 0.1
    if receipt.total > 0:
        confidence += 0.3
    if receipt.items:
        confidence += 0.2
        avg = sum(i.confidence for i in receipt.items) / len(receipt.items)
        confidence += avg * 0.2
    return round(min(confidence, 1.0), 4)


def parse_receipt_text(text: str) -> ParsedReceipt:
    """Parse OCR text into a ParsedReceipt.  Never raises for string input."""
    text = text or ""
    lines = normalize_lines(text)
    logger.debug("Parsing %d OCR lines", len(lines))

    address, phone = extract_contact_info(lines)
    receipt_date, receipt_time = extract_date_time(lines)
    amounts = extract_amounts(lines)
    items = extract_items(lines)
    merchant = extract_merchant(lines, text)

    result = ParsedReceipt(
        merchant=merchant,
        address=address,
        phone=phone,
        date_detected=receipt_date is not None,
        time=receipt_time,
        total=amounts.get("total", 0.0),
        subtotal=amounts.get("subtotal"),
        tax=amounts.get("tax"),
        items=items,
        payment_method=extract_payment_method(lines),
        category=categorize_receipt(merchant, items),
        raw_text=text,
    )
    if receipt_date:
        result.date = receipt_date
    result.confidence = calculate_confidence(result)

    logger.info(
        "Parsed receipt: merchant=%r items=%d total=%.2f confidence=%.2f",
        result.merchant, len(result.items), result.total, result.confidence,
    )
    return result
